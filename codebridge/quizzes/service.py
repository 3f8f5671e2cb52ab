"""
Quiz building and automatic scoring
"""

import random
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.core.utils import generate_id

OBJECTIVE_TYPES = ("multiple-choice", "true-false", "short-answer")
ANSWER_FIELDS = ("correct_answer", "explanation")


def build_questions(questions: List[dict]) -> List[dict]:
    """Assign ids and order to incoming questions"""
    built = []
    for index, question in enumerate(questions):
        built.append({
            **question,
            "question_id": question.get("question_id") or generate_id("Q"),
            "order": question.get("order") if question.get("order") is not None else index + 1
        })
    return built


def total_marks(questions: List[dict]) -> float:
    return sum(q.get("marks", 1) for q in questions)


def default_passing_marks(total: float) -> float:
    return total * 0.5


def normalize_answer(value) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def score_question(question: dict, answer) -> dict:
    """Objective questions compare case-insensitively; essays wait for manual review"""
    if question["question_type"] not in OBJECTIVE_TYPES:
        return {"is_correct": None, "marks_awarded": 0}
    correct = normalize_answer(answer) != "" and \
        normalize_answer(answer) == normalize_answer(question.get("correct_answer"))
    return {"is_correct": correct, "marks_awarded": question.get("marks", 1) if correct else 0}


def score_attempt(quiz: dict, answers: List[dict]) -> dict:
    """
    Score an attempt

    Returns:
        dict with answers, marks_obtained, total_marks, percentage, passed
    """
    by_question = {a["question_id"]: a.get("answer") for a in answers}
    scored = []
    obtained = 0
    for question in quiz["questions"]:
        answer = by_question.get(question["question_id"])
        result = score_question(question, answer)
        obtained += result["marks_awarded"]
        scored.append({"question_id": question["question_id"], "answer": answer, **result})

    total = quiz.get("total_marks") or total_marks(quiz["questions"])
    passing = quiz.get("passing_marks")
    if passing is None:
        passing = default_passing_marks(total)

    return {
        "answers": scored,
        "marks_obtained": obtained,
        "total_marks": total,
        "percentage": round(obtained / total * 100, 1) if total else 0.0,
        "passed": obtained >= passing
    }


def check_window(quiz: dict, now: Optional[datetime] = None):
    """Raises 400 outside the quiz's start/end dates"""
    now = now or datetime.utcnow()
    if quiz.get("start_date") and now < quiz["start_date"]:
        raise HTTPException(status_code=400, detail="This test has not started yet")
    if quiz.get("end_date") and now > quiz["end_date"]:
        raise HTTPException(status_code=400, detail="This test has ended")


def strip_answers(quiz: dict) -> dict:
    """Quiz as a student sees it before attempting"""
    quiz = dict(quiz)
    questions = [{k: v for k, v in q.items() if k not in ANSWER_FIELDS} for q in quiz.get("questions", [])]
    if quiz.get("randomize_questions"):
        random.shuffle(questions)
    quiz["questions"] = questions
    return quiz


def hide_result_answers(result: dict) -> dict:
    """Drop per-question correctness when the quiz does not reveal answers"""
    result = dict(result)
    result["answers"] = [{"question_id": a["question_id"], "answer": a["answer"]} for a in result["answers"]]
    return result


async def get_quiz_or_404(db: AsyncIOMotorDatabase, test_id: str) -> dict:
    quiz = await db.tests.find_one({"test_id": test_id}, {"_id": 0})
    if not quiz:
        raise HTTPException(status_code=404, detail="Test not found")
    return quiz
