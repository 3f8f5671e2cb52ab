import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from codebridge.admin.settings import get_integration_settings
from codebridge.ai.client import GeminiClient, get_ai_client
from codebridge.ai.prompts import render
from codebridge.assignments.service import get_assignment_or_404, get_submission_or_404
from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user, require_tutor
from codebridge.courses.service import enrollment_of, get_course_or_404, verify_course_manager, verify_course_member

logger = logging.getLogger(__name__)

router = APIRouter(tags=["AI Assistant"])


# ==================== PYDANTIC MODELS ====================

class CourseRequest(BaseModel):
    course_id: str


class ResourceRequest(BaseModel):
    course_id: str
    current_topic: Optional[str] = Field(None, max_length=200)


class StudyPlanRequest(BaseModel):
    course_id: str
    hours_per_week: float = Field(5, gt=0, le=80)
    level: str = "beginner"


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)
    course_id: Optional[str] = None


# ==================== HELPERS ====================

async def graded_submissions(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> list:
    """Caller's graded work in a course joined with assignment info"""
    submissions = await db.submissions.find(
        {"student_id": user_id, "course_id": course_id, "status": "graded"},
        {"_id": 0}
    ).sort("graded_at", -1).to_list(length=None)
    assignments = await db.assignments.find(
        {"assignment_id": {"$in": [s["assignment_id"] for s in submissions]}},
        {"_id": 0, "assignment_id": 1, "title": 1, "max_score": 1}
    ).to_list(length=None)
    by_id = {a["assignment_id"]: a for a in assignments}

    rows = []
    for submission in submissions:
        assignment = by_id.get(submission["assignment_id"], {})
        rows.append({
            "assignment": assignment.get("title"),
            "score": submission.get("final_score"),
            "max_score": assignment.get("max_score"),
            "percentage": submission.get("percentage"),
            "is_late": submission.get("is_late", False),
            "feedback": submission.get("feedback")
        })
    return rows


def clamp(value, low: float, high: float) -> Optional[float]:
    """Bound a model-reported number; None when the model left it out or sent junk"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return max(low, min(high, number))


# ==================== STUDENT ASSISTANT ====================

@router.post("/recommend")
async def recommend(
    data: CourseRequest,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    ai: GeminiClient = Depends(get_ai_client)
):
    course = await verify_course_member(db, data.course_id, user)
    entry = enrollment_of(course, user["user_id"]) or {}
    graded = await graded_submissions(db, user["user_id"], data.course_id)

    weak = [g["assignment"] for g in graded if (g["percentage"] or 0) < 60]
    prompt = render(
        "recommend",
        course_title=course["title"],
        progress=entry.get("progress", 0),
        recent_grades=", ".join(f"{g['percentage']}%" for g in graded[:5]) or "No grades yet",
        struggling_areas=", ".join(w for w in weak if w) or "None identified"
    )
    result = await ai.generate_json(prompt)
    return {"success": True, "data": result}


@router.post("/resources")
async def resources(
    data: ResourceRequest,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    ai: GeminiClient = Depends(get_ai_client)
):
    course = await get_course_or_404(db, data.course_id)
    prompt = render(
        "resources",
        course_title=course["title"],
        course_description=course.get("description", ""),
        current_topic=data.current_topic or "General course content"
    )
    return {"success": True, "data": await ai.generate_json(prompt)}


@router.get("/performance-analysis/{course_id}")
async def performance_analysis(
    course_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    ai: GeminiClient = Depends(get_ai_client)
):
    await verify_course_member(db, course_id, user)
    graded = await graded_submissions(db, user["user_id"], course_id)
    if not graded:
        raise HTTPException(status_code=400, detail="No graded submissions to analyze yet")

    prompt = render("performance", performance_data=json.dumps(graded, indent=2, default=str))
    return {"success": True, "data": await ai.generate_json(prompt), "submissions_analyzed": len(graded)}


@router.post("/study-plan")
async def study_plan(
    data: StudyPlanRequest,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    ai: GeminiClient = Depends(get_ai_client)
):
    course = await get_course_or_404(db, data.course_id)
    syllabus = ", ".join(item["title"] for item in course.get("syllabus", [])) or "Not provided"
    prompt = render(
        "study_plan",
        course_title=course["title"],
        course_description=course.get("description", ""),
        syllabus=syllabus,
        level=data.level,
        hours_per_week=data.hours_per_week
    )
    return {"success": True, "data": await ai.generate_json(prompt)}


@router.post("/ask")
async def ask(
    data: AskRequest,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    ai: GeminiClient = Depends(get_ai_client)
):
    context = "General programming and learning"
    if data.course_id:
        course = await get_course_or_404(db, data.course_id)
        context = f"{course['title']}: {course.get('description', '')}"

    answer = await ai.generate(render("ask", course_context=context, question=data.question))
    return {"success": True, "data": {"question": data.question, "answer": answer.strip()}}


# ==================== TUTOR ASSISTANT ====================

@router.post("/pre-grade/{submission_id}")
async def pre_grade(
    submission_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    ai: GeminiClient = Depends(get_ai_client)
):
    """
    Suggest a grade for a submission
    Stored as ai_pre_grade for the tutor to review; never applied automatically
    """
    if (await get_integration_settings(db)).get("ai", {}).get("pre_grading_enabled") is False:
        raise HTTPException(status_code=403, detail="AI pre-grading is disabled")

    submission = await get_submission_or_404(db, submission_id)
    assignment = await get_assignment_or_404(db, submission["assignment_id"])
    await verify_course_manager(db, assignment["course_id"], user)

    text = (submission.get("submission_text") or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Only text submissions can be pre-graded")

    max_score = assignment.get("max_score", 100)
    prompt = render(
        "pre_grade",
        assignment_title=assignment["title"],
        assignment_description=assignment.get("description", ""),
        max_score=max_score,
        rubric=json.dumps(assignment.get("rubric", []), indent=2) if assignment.get("rubric") else "None provided",
        submission_text=text
    )
    result = await ai.generate_json(prompt)
    score = clamp(result.get("score"), 0, max_score)
    confidence = clamp(result.get("confidence"), 0, 100)

    ai_pre_grade = {
        "score": score if score is None else round(score, 2),
        "feedback": str(result.get("feedback") or ""),
        "strengths": list(result.get("strengths") or []),
        "improvements": list(result.get("improvements") or []),
        "confidence": confidence if confidence is None else round(confidence),
        "generated_at": datetime.utcnow()
    }
    await db.submissions.update_one(
        {"submission_id": submission_id},
        {"$set": {"ai_pre_grade": ai_pre_grade, "updated_at": datetime.utcnow()}}
    )
    logger.info("AI pre-grade stored for %s (score %s)", submission_id, ai_pre_grade["score"])

    return {"success": True, "data": ai_pre_grade, "message": "AI suggestion saved for review"}
