import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.achievements.service import XP_REWARDS, ActivityType, record_activity, safe_check_and_unlock
from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user, require_tutor
from codebridge.core.utils import generate_id, get_user_briefs
from codebridge.courses.service import (
    can_manage,
    get_course_or_404,
    is_enrolled,
    to_naive_utc,
    verify_course_manager,
    verify_course_member,
)
from codebridge.notifications.service import NotificationType, notify_many
from codebridge.quizzes.models import AttemptSubmit, QuizCreate, QuizUpdate
from codebridge.quizzes.service import (
    build_questions,
    check_window,
    default_passing_marks,
    get_quiz_or_404,
    hide_result_answers,
    score_attempt,
    strip_answers,
    total_marks,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tests"])


# ==================== TESTS ====================

@router.post("", status_code=201)
async def create_test(
    data: QuizCreate,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await verify_course_manager(db, data.course_id, user)

    questions = build_questions([q.dict() for q in data.questions])
    total = total_marks(questions)
    if data.passing_marks is not None and data.passing_marks > total:
        raise HTTPException(status_code=400, detail="passing_marks cannot exceed total marks")

    quiz = {
        **data.dict(exclude={"questions"}),
        "test_id": generate_id("TEST"),
        "tutor_id": course["tutor_id"],
        "questions": questions,
        "total_marks": total,
        "passing_marks": data.passing_marks if data.passing_marks is not None else default_passing_marks(total),
        "start_date": to_naive_utc(data.start_date),
        "end_date": to_naive_utc(data.end_date),
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }
    await db.tests.insert_one(dict(quiz))
    logger.info("Test %s created for %s", quiz["test_id"], data.course_id)

    if quiz["is_published"]:
        await notify_many(
            db,
            [e["student_id"] for e in course.get("enrolled_students", [])],
            NotificationType.ASSIGNMENT,
            title="New Test",
            message=f"A new test \"{quiz['title']}\" is available in {course['title']}",
            metadata={"course_id": course["course_id"], "test_id": quiz["test_id"]},
            action_url=f"/tests/{quiz['test_id']}"
        )

    return {"success": True, "data": quiz, "message": "Test created successfully"}


@router.get("/course/{course_id}")
async def list_tests(
    course_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await verify_course_member(db, course_id, user)
    manager = can_manage(course, user)

    query = {"course_id": course_id}
    if not manager:
        query["is_published"] = True
    quizzes = await db.tests.find(query, {"_id": 0}).sort("created_at", -1).to_list(length=None)

    data = []
    for quiz in quizzes:
        item = {k: v for k, v in quiz.items() if k != "questions"}
        item["question_count"] = len(quiz.get("questions", []))
        if not manager:
            item["attempts_used"] = await db.test_results.count_documents(
                {"test_id": quiz["test_id"], "student_id": user["user_id"]}
            )
        data.append(item)

    return {"success": True, "count": len(data), "data": data}


@router.get("/{test_id}")
async def get_test(
    test_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Students never receive answers or explanations here"""
    quiz = await get_quiz_or_404(db, test_id)
    course = await verify_course_member(db, quiz["course_id"], user)

    if can_manage(course, user):
        return {"success": True, "data": quiz}
    if not quiz.get("is_published"):
        raise HTTPException(status_code=404, detail="Test not found")

    data = strip_answers(quiz)
    data["attempts_used"] = await db.test_results.count_documents(
        {"test_id": test_id, "student_id": user["user_id"]}
    )
    return {"success": True, "data": data}


@router.put("/{test_id}")
async def update_test(
    test_id: str,
    data: QuizUpdate,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    quiz = await get_quiz_or_404(db, test_id)
    await verify_course_manager(db, quiz["course_id"], user)

    updates = data.dict(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    for field in ("start_date", "end_date"):
        if field in updates:
            updates[field] = to_naive_utc(updates[field])
    if updates.get("questions") is not None:
        if not updates["questions"]:
            raise HTTPException(status_code=400, detail="A test needs at least one question")
        updates["questions"] = build_questions(updates["questions"])
        updates["total_marks"] = total_marks(updates["questions"])

    total = updates.get("total_marks", quiz["total_marks"])
    passing = updates.get("passing_marks", quiz.get("passing_marks"))
    if passing is not None and passing > total:
        raise HTTPException(status_code=400, detail="passing_marks cannot exceed total marks")
    updates["updated_at"] = datetime.utcnow()

    await db.tests.update_one({"test_id": test_id}, {"$set": updates})
    return {"success": True, "data": {**quiz, **updates}, "message": "Test updated successfully"}


@router.delete("/{test_id}")
async def delete_test(
    test_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    quiz = await get_quiz_or_404(db, test_id)
    await verify_course_manager(db, quiz["course_id"], user)
    await db.test_results.delete_many({"test_id": test_id})
    await db.tests.delete_one({"test_id": test_id})
    return {"success": True, "message": "Test deleted successfully"}


# ==================== ATTEMPTS ====================

@router.post("/{test_id}/submit", status_code=201)
async def submit_attempt(
    test_id: str,
    data: AttemptSubmit,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    quiz = await get_quiz_or_404(db, test_id)
    course = await get_course_or_404(db, quiz["course_id"])
    uid = user["user_id"]

    if not is_enrolled(course, uid):
        raise HTTPException(status_code=403, detail="You must be enrolled in this course")
    if not quiz.get("is_published"):
        raise HTTPException(status_code=400, detail="This test is not available")
    check_window(quiz)

    previous = await db.test_results.count_documents({"test_id": test_id, "student_id": uid})
    if previous >= quiz.get("attempts", 1):
        raise HTTPException(status_code=400, detail="Maximum number of attempts reached")

    scored = score_attempt(quiz, [a.dict() for a in data.answers])
    now = datetime.utcnow()
    started_at = to_naive_utc(data.started_at) or now
    result = {
        "result_id": generate_id("RES"),
        "test_id": test_id,
        "course_id": quiz["course_id"],
        "student_id": uid,
        **scored,
        "started_at": started_at,
        "submitted_at": now,
        "time_taken": max(0, int((now - started_at).total_seconds())),
        "attempt_number": previous + 1,
        "feedback": None,
        "created_at": now
    }
    await db.test_results.insert_one(dict(result))

    await record_activity(
        db, uid, ActivityType.TEST_COMPLETED,
        title=f"Completed {quiz['title']}",
        description=f"Scored {result['percentage']}%",
        icon="🧪",
        metadata={"test_id": test_id, "course_id": quiz["course_id"], "percentage": result["percentage"]},
        xp=XP_REWARDS["test_completed"]
    )
    await safe_check_and_unlock(db, uid, "test_completed")

    if not quiz.get("show_correct_answers", True):
        result = hide_result_answers(result)
    return {"success": True, "data": result, "message": "Test submitted successfully"}


@router.get("/{test_id}/my-results")
async def my_results(
    test_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    quiz = await get_quiz_or_404(db, test_id)
    results = await db.test_results.find({"test_id": test_id, "student_id": user["user_id"]}, {"_id": 0}) \
        .sort("attempt_number", 1) \
        .to_list(length=None)
    if not quiz.get("show_correct_answers", True):
        results = [hide_result_answers(r) for r in results]
    return {"success": True, "count": len(results), "data": results}


@router.get("/{test_id}/results")
async def test_results(
    test_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    quiz = await get_quiz_or_404(db, test_id)
    await verify_course_manager(db, quiz["course_id"], user)

    results = await db.test_results.find({"test_id": test_id}, {"_id": 0}) \
        .sort("submitted_at", -1) \
        .to_list(length=None)
    students = await get_user_briefs(db, [r["student_id"] for r in results])
    for result in results:
        result["student"] = students.get(result["student_id"])

    return {"success": True, "count": len(results), "data": results}
