"""
Course payments (Razorpay)

Flow: /init creates a gateway order and a pending payment, the client completes
checkout and posts the signature to /verify. The webhook is the authoritative
fallback when the client never comes back.
"""

import json
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user
from codebridge.core.utils import generate_id, page_meta
from codebridge.courses.service import get_course_or_404, is_enrolled, is_owner, is_public
from codebridge.payments.gateway import RazorpayGateway, get_payment_gateway, to_minor_units
from codebridge.payments.service import complete_payment, fail_payment

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])


# ==================== PYDANTIC MODELS ====================

class PaymentInitRequest(BaseModel):
    course_id: str


class PaymentVerifyRequest(BaseModel):
    reference: str
    payment_id: str
    signature: str


# ==================== CHECKOUT ====================

@router.post("/init")
async def initialize_payment(
    data: PaymentInitRequest,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway)
):
    course = await get_course_or_404(db, data.course_id)
    uid = user["user_id"]

    if course.get("price", 0) <= 0:
        raise HTTPException(status_code=400, detail="This course is free, enroll directly")
    if is_enrolled(course, uid):
        raise HTTPException(status_code=400, detail="Already enrolled in this course")
    if is_owner(course, user):
        raise HTTPException(status_code=400, detail="You cannot buy your own course")
    if not is_public(course):
        raise HTTPException(status_code=400, detail="Course is not open for enrollment")
    if len(course.get("enrolled_students", [])) >= course.get("max_students", 100):
        raise HTTPException(status_code=400, detail="Course is full")

    currency = course.get("currency", "NGN")
    amount_minor = to_minor_units(course["price"])
    payment_id = generate_id("PAY")

    order = await gateway.create_order(
        amount=amount_minor,
        currency=currency,
        receipt=payment_id,
        notes={"course_id": course["course_id"], "user_id": uid}
    )

    now = datetime.utcnow()
    payment = {
        "payment_id": payment_id,
        "user_id": uid,
        "course_id": course["course_id"],
        "amount": course["price"],
        "currency": currency,
        "reference": order["id"],
        "gateway_payment_id": None,
        "status": "pending",
        "payment_method": "razorpay",
        "metadata": {"amount_minor": amount_minor, "course_title": course["title"]},
        "refunded_at": None,
        "refunded_by": None,
        "refund_reason": None,
        "created_at": now,
        "updated_at": now
    }
    await db.payments.insert_one(dict(payment))
    logger.info("Payment %s initialized for %s (order %s)", payment_id, course["course_id"], order["id"])

    return {
        "success": True,
        "data": {
            "payment_id": payment_id,
            "reference": order["id"],
            "order_id": order["id"],
            "amount": amount_minor,
            "currency": currency,
            "key_id": gateway.key_id,
            "course_title": course["title"],
            "prefill": {"name": user.get("name"), "email": user.get("email")}
        }
    }


@router.post("/verify")
async def verify_payment(
    data: PaymentVerifyRequest,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway)
):
    payment = await db.payments.find_one({"reference": data.reference, "user_id": user["user_id"]}, {"_id": 0})
    if not payment:
        raise HTTPException(status_code=404, detail="Payment record not found")

    if payment["status"] == "success":
        return {
            "success": True,
            "already_verified": True,
            "data": {"course_id": payment["course_id"], "status": "success"},
            "message": "Payment already verified"
        }
    if payment["status"] == "refunded":
        raise HTTPException(status_code=400, detail="Payment has been refunded")

    if not gateway.verify_payment_signature(data.reference, data.payment_id, data.signature):
        await fail_payment(db, data.reference, "Invalid payment signature")
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    await complete_payment(db, data.reference, data.payment_id, via="checkout")
    return {
        "success": True,
        "already_verified": False,
        "data": {"course_id": payment["course_id"], "status": "success"},
        "message": "Payment verified and enrollment completed"
    }


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncIOMotorDatabase = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway)
):
    """
    Razorpay webhook - NO AUTH (x-razorpay-signature verification)
    """
    body = await request.body()
    if not gateway.verify_webhook_signature(body, request.headers.get("x-razorpay-signature")):
        logger.warning("Rejected payment webhook with invalid signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event = payload.get("event")
    entities = payload.get("payload", {})
    payment_entity = entities.get("payment", {}).get("entity", {})
    order_entity = entities.get("order", {}).get("entity", {})
    reference = payment_entity.get("order_id") or order_entity.get("id")
    logger.info("Payment webhook %s for order %s", event, reference)

    if not reference:
        return {"success": True, "processed": False}

    if event in ("payment.captured", "order.paid"):
        payment = await db.payments.find_one({"reference": reference}, {"_id": 0})
        if not payment:
            logger.warning("Webhook: no payment record for order %s", reference)
            return {"success": True, "processed": False}

        amount = payment_entity.get("amount") or order_entity.get("amount_paid")
        expected = payment.get("metadata", {}).get("amount_minor")
        if amount is not None and expected is not None and amount != expected:
            logger.error("Webhook: amount mismatch for %s (expected %s, got %s)", reference, expected, amount)
            return {"success": True, "processed": False}

        processed = await complete_payment(db, reference, payment_entity.get("id"), via="webhook")
        return {"success": True, "processed": processed}

    if event == "payment.failed":
        processed = await fail_payment(db, reference, payment_entity.get("error_description"))
        return {"success": True, "processed": processed}

    return {"success": True, "processed": False}


@router.get("/history")
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"user_id": user["user_id"]}
    total = await db.payments.count_documents(query)
    payments = await db.payments.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)
    return {"success": True, "count": len(payments), **page_meta(total, page, limit), "data": payments}
