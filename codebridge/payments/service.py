"""
Payment state transitions shared by checkout verification, webhooks and refunds
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.courses.service import enroll_student, is_enrolled
from codebridge.notifications.service import NotificationType, notify

logger = logging.getLogger(__name__)


async def complete_payment(
    db: AsyncIOMotorDatabase,
    reference: str,
    gateway_payment_id: Optional[str],
    via: str
) -> bool:
    """
    Mark a payment successful and enroll the payer

    Idempotent: returns False when the payment was already processed
    """
    now = datetime.utcnow()
    result = await db.payments.update_one(
        {"reference": reference, "status": {"$nin": ["success", "refunded"]}},
        {"$set": {
            "status": "success",
            "gateway_payment_id": gateway_payment_id,
            "verified_via": via,
            "paid_at": now,
            "updated_at": now
        }}
    )
    if result.modified_count == 0:
        logger.info("Payment %s already processed", reference)
        return False

    payment = await db.payments.find_one({"reference": reference}, {"_id": 0})
    course = await db.courses.find_one({"course_id": payment["course_id"]}, {"_id": 0})
    user = await db.users.find_one({"user_id": payment["user_id"]}, {"_id": 0, "password_hash": 0})

    if course and user and not is_enrolled(course, user["user_id"]):
        await enroll_student(db, course, user, via_payment=True)

    await notify(
        db, payment["user_id"], NotificationType.PAYMENT,
        title="Payment Successful",
        message=f"Your payment of {payment['currency']} {payment['amount']:,.2f} for "
                f"{course['title'] if course else 'your course'} was successful",
        metadata={"payment_id": payment["payment_id"], "course_id": payment["course_id"]},
        priority="high",
        action_url=f"/courses/{payment['course_id']}"
    )
    logger.info("Payment %s completed via %s", reference, via)
    return True


async def fail_payment(db: AsyncIOMotorDatabase, reference: str, reason: Optional[str] = None) -> bool:
    result = await db.payments.update_one(
        {"reference": reference, "status": "pending"},
        {"$set": {"status": "failed", "failure_reason": reason, "updated_at": datetime.utcnow()}}
    )
    return result.modified_count > 0


async def refund_payment(db: AsyncIOMotorDatabase, gateway, payment: dict, admin: dict, reason: Optional[str] = None) -> dict:
    """
    Refund a successful payment in full

    Raises:
        400: Already refunded / not a successful payment
        PaymentGatewayError: Gateway rejected the refund
    """
    if payment["status"] == "refunded":
        raise HTTPException(status_code=400, detail="Payment already refunded")
    if payment["status"] != "success":
        raise HTTPException(status_code=400, detail="Only successful payments can be refunded")

    refund = await gateway.refund(payment["gateway_payment_id"], payment.get("metadata", {}).get("amount_minor"))

    now = datetime.utcnow()
    updates = {
        "status": "refunded",
        "refund_id": refund.get("id"),
        "refunded_at": now,
        "refunded_by": admin["user_id"],
        "refund_reason": reason,
        "updated_at": now
    }
    await db.payments.update_one({"payment_id": payment["payment_id"]}, {"$set": updates})

    await notify(
        db, payment["user_id"], NotificationType.PAYMENT,
        title="Payment Refunded",
        message=f"Your payment of {payment['currency']} {payment['amount']:,.2f} has been refunded",
        metadata={"payment_id": payment["payment_id"], "course_id": payment["course_id"], "reason": reason},
        priority="high"
    )
    logger.info("Payment %s refunded by %s", payment["payment_id"], admin["user_id"])
    return {**payment, **updates}
