import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.achievements.service import (
    XP_REWARDS,
    ActivityType,
    increment_stats,
    record_activity,
    safe_check_and_unlock,
)
from codebridge.admin.settings import get_integration_settings
from codebridge.assignments.models import AssignmentCreate, AssignmentUpdate, GradeRequest, SubmissionCreate
from codebridge.assignments.service import (
    check_upload_policy,
    compute_grade,
    default_passing_score,
    delete_assignment_cascade,
    get_assignment_or_404,
    get_submission_or_404,
    is_past_due,
)
from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user, require_tutor
from codebridge.core.utils import generate_id, get_user_brief, get_user_briefs, page_meta
from codebridge.courses.service import (
    can_manage,
    get_course_or_404,
    is_enrolled,
    to_naive_utc,
    verify_course_manager,
    verify_course_member,
)
from codebridge.notifications.service import NotificationType, notify, notify_many
from codebridge.realtime.manager import manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Assignments"])


def submission_summary(submission: dict) -> dict:
    return {
        "submission_id": submission["submission_id"],
        "assignment_id": submission["assignment_id"],
        "student_id": submission["student_id"],
        "status": submission["status"],
        "is_late": submission.get("is_late", False),
        "attempt_number": submission.get("attempt_number", 1),
        "submitted_at": submission["submitted_at"]
    }


# ==================== ASSIGNMENTS ====================

@router.post("", status_code=201)
async def create_assignment(
    data: AssignmentCreate,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await verify_course_manager(db, data.course_id, user)

    assignment = {
        **data.dict(),
        "assignment_id": generate_id("ASG"),
        "tutor_id": course["tutor_id"],
        "due_date": to_naive_utc(data.due_date),
        "passing_score": data.passing_score if data.passing_score is not None
        else default_passing_score(data.max_score),
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }
    await db.assignments.insert_one(dict(assignment))
    logger.info("Assignment %s created for %s", assignment["assignment_id"], data.course_id)

    if assignment["is_published"]:
        await notify_many(
            db,
            [e["student_id"] for e in course.get("enrolled_students", [])],
            NotificationType.ASSIGNMENT,
            title="New Assignment",
            message=f"New assignment \"{assignment['title']}\" in {course['title']}, "
                    f"due {assignment['due_date'].strftime('%b %d, %Y %H:%M')} UTC",
            metadata={"course_id": course["course_id"], "assignment_id": assignment["assignment_id"]},
            action_url=f"/assignments/{assignment['assignment_id']}"
        )

    return {"success": True, "data": assignment, "message": "Assignment created successfully"}


@router.get("/course/{course_id}")
async def list_course_assignments(
    course_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await verify_course_member(db, course_id, user)
    query = {"course_id": course_id}
    if not can_manage(course, user):
        query["is_published"] = True

    assignments = await db.assignments.find(query, {"_id": 0}).sort("due_date", 1).to_list(length=None)

    if not can_manage(course, user):
        mine = await db.submissions.find(
            {"student_id": user["user_id"], "assignment_id": {"$in": [a["assignment_id"] for a in assignments]}},
            {"_id": 0}
        ).to_list(length=None)
        by_assignment = {s["assignment_id"]: s for s in mine}
        for assignment in assignments:
            submission = by_assignment.get(assignment["assignment_id"])
            assignment["my_submission"] = submission_summary(submission) if submission else None

    return {"success": True, "count": len(assignments), "data": assignments}


@router.get("/tutor/my-assignments")
async def tutor_assignments(
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Tutor's assignments with submission counters"""
    assignments = await db.assignments.find({"tutor_id": user["user_id"]}, {"_id": 0}) \
        .sort("created_at", -1) \
        .to_list(length=None)

    ids = [a["assignment_id"] for a in assignments]
    submissions = await db.submissions.find(
        {"assignment_id": {"$in": ids}},
        {"_id": 0, "assignment_id": 1, "status": 1}
    ).to_list(length=None)

    counts = {}
    for submission in submissions:
        entry = counts.setdefault(submission["assignment_id"], {"total": 0, "graded": 0})
        entry["total"] += 1
        if submission["status"] == "graded":
            entry["graded"] += 1

    for assignment in assignments:
        entry = counts.get(assignment["assignment_id"], {"total": 0, "graded": 0})
        assignment["submission_count"] = entry["total"]
        assignment["graded_count"] = entry["graded"]
        assignment["pending_count"] = entry["total"] - entry["graded"]

    return {"success": True, "count": len(assignments), "data": assignments}


@router.get("/tutor/pending")
async def tutor_pending_submissions(
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Submissions across the tutor's assignments still waiting for a grade"""
    assignments = await db.assignments.find(
        {"tutor_id": user["user_id"]},
        {"_id": 0, "assignment_id": 1, "title": 1, "course_id": 1, "max_score": 1}
    ).to_list(length=None)
    by_id = {a["assignment_id"]: a for a in assignments}

    pending = await db.submissions.find(
        {"assignment_id": {"$in": list(by_id)}, "status": {"$in": ["submitted", "resubmitted"]}},
        {"_id": 0}
    ).sort("submitted_at", 1).to_list(length=None)

    students = await get_user_briefs(db, [s["student_id"] for s in pending])
    for submission in pending:
        submission["assignment"] = by_id.get(submission["assignment_id"])
        submission["student"] = students.get(submission["student_id"])

    return {"success": True, "count": len(pending), "data": pending}


@router.get("/student/my-submissions")
async def my_submissions(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"student_id": user["user_id"]}
    if status:
        query["status"] = status

    total = await db.submissions.count_documents(query)
    submissions = await db.submissions.find(query, {"_id": 0}) \
        .sort("submitted_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)

    assignments = await db.assignments.find(
        {"assignment_id": {"$in": [s["assignment_id"] for s in submissions]}},
        {"_id": 0, "assignment_id": 1, "title": 1, "course_id": 1, "max_score": 1, "due_date": 1}
    ).to_list(length=None)
    by_id = {a["assignment_id"]: a for a in assignments}
    for submission in submissions:
        submission["assignment"] = by_id.get(submission["assignment_id"])

    return {"success": True, "count": len(submissions), **page_meta(total, page, limit), "data": submissions}


@router.get("/{assignment_id}")
async def get_assignment(
    assignment_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await get_assignment_or_404(db, assignment_id)
    course = await verify_course_member(db, assignment["course_id"], user)

    if not can_manage(course, user):
        if not assignment.get("is_published", True):
            raise HTTPException(status_code=404, detail="Assignment not found")
        assignment["my_submission"] = await db.submissions.find_one(
            {"assignment_id": assignment_id, "student_id": user["user_id"]},
            {"_id": 0}
        )

    return {"success": True, "data": assignment}


@router.put("/{assignment_id}")
async def update_assignment(
    assignment_id: str,
    data: AssignmentUpdate,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await get_assignment_or_404(db, assignment_id)
    await verify_course_manager(db, assignment["course_id"], user)

    updates = data.dict(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "due_date" in updates:
        updates["due_date"] = to_naive_utc(updates["due_date"])

    max_score = updates.get("max_score", assignment.get("max_score", 100))
    passing_score = updates.get("passing_score", assignment.get("passing_score"))
    if passing_score is not None and passing_score > max_score:
        raise HTTPException(status_code=400, detail="passing_score cannot exceed max_score")
    updates["updated_at"] = datetime.utcnow()

    await db.assignments.update_one({"assignment_id": assignment_id}, {"$set": updates})
    return {"success": True, "data": {**assignment, **updates}, "message": "Assignment updated successfully"}


@router.delete("/{assignment_id}")
async def delete_assignment(
    assignment_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await get_assignment_or_404(db, assignment_id)
    await verify_course_manager(db, assignment["course_id"], user)
    removed = await delete_assignment_cascade(db, assignment_id)
    return {"success": True, "message": f"Assignment deleted along with {removed} submission(s)"}


# ==================== SUBMISSIONS ====================

@router.post("/{assignment_id}/submit", status_code=201)
async def submit_assignment(
    assignment_id: str,
    data: SubmissionCreate,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Submit (or resubmit) work for an assignment
    Resubmitting resets any previous grade
    """
    assignment = await get_assignment_or_404(db, assignment_id)
    course = await get_course_or_404(db, assignment["course_id"])
    uid = user["user_id"]

    if not is_enrolled(course, uid):
        raise HTTPException(status_code=403, detail="You must be enrolled in this course to submit")
    if not assignment.get("is_published", True):
        raise HTTPException(status_code=404, detail="Assignment not found")
    if not (data.submission_text or "").strip() and not data.files:
        raise HTTPException(status_code=400, detail="Submission must include text or files")
    if data.files:
        policy = (await get_integration_settings(db)).get("uploads", {})
        check_upload_policy([f.dict() for f in data.files], policy)

    is_late = is_past_due(assignment)
    if is_late and not assignment.get("allow_late_submission", False):
        raise HTTPException(status_code=400, detail="Assignment deadline has passed")

    now = datetime.utcnow()
    existing = await db.submissions.find_one({"assignment_id": assignment_id, "student_id": uid}, {"_id": 0})
    fields = {
        "submission_text": (data.submission_text or "").strip(),
        "files": [f.dict() for f in data.files],
        "submitted_at": now,
        "is_late": is_late,
        "score": None,
        "final_score": None,
        "percentage": None,
        "passed": None,
        "feedback": None,
        "graded_by": None,
        "graded_at": None,
        "ai_pre_grade": None,
        "updated_at": now
    }

    if existing:
        fields["status"] = "resubmitted"
        fields["attempt_number"] = existing.get("attempt_number", 1) + 1
        await db.submissions.update_one({"submission_id": existing["submission_id"]}, {"$set": fields})
        submission = {**existing, **fields}
    else:
        submission = {
            "submission_id": generate_id("SUB"),
            "assignment_id": assignment_id,
            "student_id": uid,
            "course_id": assignment["course_id"],
            "status": "submitted",
            "attempt_number": 1,
            "created_at": now,
            **fields
        }
        await db.submissions.insert_one(dict(submission))

    await notify(
        db, assignment["tutor_id"], NotificationType.ASSIGNMENT_SUBMITTED,
        title="New Submission",
        message=f"{user.get('name', 'A student')} submitted \"{assignment['title']}\""
                + (" (late)" if is_late else ""),
        metadata={"assignment_id": assignment_id, "submission_id": submission["submission_id"]},
        action_url=f"/assignments/{assignment_id}/submissions"
    )
    await manager.emit_to_user(assignment["tutor_id"], "assignment:submitted", {
        "assignment_id": assignment_id,
        "submission_id": submission["submission_id"],
        "student_id": uid,
        "student_name": user.get("name"),
        "is_late": is_late
    })

    if not existing:
        await increment_stats(db, uid, assignments_submitted=1)
    await record_activity(
        db, uid, ActivityType.ASSIGNMENT_SUBMITTED,
        title=f"Submitted {assignment['title']}",
        description=course["title"],
        icon="📝",
        metadata={"assignment_id": assignment_id, "course_id": course["course_id"], "is_late": is_late},
        xp=XP_REWARDS["assignment_submitted"] if not existing else 0
    )
    await safe_check_and_unlock(db, uid, "assignment_submitted")

    return {
        "success": True,
        "data": submission,
        "message": "Assignment resubmitted successfully" if existing else "Assignment submitted successfully"
    }


@router.get("/{assignment_id}/submissions")
async def list_submissions(
    assignment_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await get_assignment_or_404(db, assignment_id)
    await verify_course_manager(db, assignment["course_id"], user)

    submissions = await db.submissions.find({"assignment_id": assignment_id}, {"_id": 0}) \
        .sort("submitted_at", -1) \
        .to_list(length=None)
    students = await get_user_briefs(db, [s["student_id"] for s in submissions])
    for submission in submissions:
        submission["student"] = students.get(submission["student_id"])

    return {"success": True, "count": len(submissions), "data": submissions}


@router.put("/submissions/{submission_id}/grade")
async def grade_submission(
    submission_id: str,
    data: GradeRequest,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    submission = await get_submission_or_404(db, submission_id)
    assignment = await get_assignment_or_404(db, submission["assignment_id"])
    course = await verify_course_manager(db, assignment["course_id"], user)

    score = data.score
    if score is None:
        ai_grade = submission.get("ai_pre_grade")
        if not data.accept_ai_score:
            raise HTTPException(status_code=400, detail="Score is required")
        if not ai_grade or ai_grade.get("score") is None:
            raise HTTPException(status_code=400, detail="No AI suggestion available for this submission")
        score = ai_grade["score"]

    grade = compute_grade(assignment, submission, score)
    feedback = data.feedback
    if feedback is None and data.accept_ai_score and submission.get("ai_pre_grade"):
        feedback = submission["ai_pre_grade"].get("feedback")

    updates = {
        **grade,
        "feedback": feedback,
        "status": "graded",
        "graded_by": user["user_id"],
        "graded_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }
    # Only the transition into "graded" earns XP; later edits just update the grade
    result = await db.submissions.update_one(
        {"submission_id": submission_id, "status": {"$ne": "graded"}},
        {"$set": updates}
    )
    first_grade = result.modified_count == 1
    if not first_grade:
        await db.submissions.update_one({"submission_id": submission_id}, {"$set": updates})
    submission = {**submission, **updates}

    student_id = submission["student_id"]
    await notify(
        db, student_id, NotificationType.ASSIGNMENT_GRADED,
        title="Assignment Graded",
        message=f"Your submission for \"{assignment['title']}\" scored "
                f"{grade['final_score']}/{assignment.get('max_score', 100)}",
        metadata={"assignment_id": assignment["assignment_id"], "submission_id": submission_id,
                  "percentage": grade["percentage"], "passed": grade["passed"]},
        priority="high",
        action_url=f"/assignments/{assignment['assignment_id']}"
    )
    await manager.emit_to_user(student_id, "assignment:graded", {
        "assignment_id": assignment["assignment_id"],
        "submission_id": submission_id,
        "final_score": grade["final_score"],
        "percentage": grade["percentage"],
        "passed": grade["passed"]
    })

    if first_grade:
        await record_activity(
            db, student_id, ActivityType.ASSIGNMENT_GRADED,
            title=f"{assignment['title']} graded",
            description=f"Scored {grade['percentage']}% in {course['title']}",
            icon="✅" if grade["passed"] else "📊",
            metadata={"assignment_id": assignment["assignment_id"], "percentage": grade["percentage"]},
            xp=XP_REWARDS["assignment_graded"]
        )
    await safe_check_and_unlock(db, student_id, "assignment_graded")

    student = await get_user_brief(db, student_id)
    return {"success": True, "data": {**submission, "student": student}, "message": "Submission graded successfully"}
