"""
Grading arithmetic and assignment lookups
"""

from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase


def default_passing_score(max_score: float) -> float:
    return max_score * 0.5


def apply_late_penalty(score: float, penalty: float, is_late: bool) -> float:
    """final = max(0, score - score * penalty / 100) for late work"""
    if not is_late or not penalty:
        return score
    return max(0.0, score - score * penalty / 100)


def compute_grade(assignment: dict, submission: dict, score: float) -> dict:
    """
    Final score, percentage and pass flag for a raw score

    Raises:
        400: Score outside [0, max_score]
    """
    max_score = assignment.get("max_score", 100)
    if score < 0 or score > max_score:
        raise HTTPException(status_code=400, detail=f"Score must be between 0 and {max_score}")

    final_score = apply_late_penalty(
        score,
        assignment.get("late_submission_penalty", 0),
        submission.get("is_late", False)
    )
    passing_score = assignment.get("passing_score")
    if passing_score is None:
        passing_score = default_passing_score(max_score)

    return {
        "score": score,
        "final_score": round(final_score, 2),
        "percentage": round(final_score / max_score * 100, 2),
        "passed": final_score >= passing_score
    }


def check_upload_policy(files: List[dict], policy: dict):
    """
    Reject attachments the admin upload policy does not allow

    Raises:
        400: File type not in allowed_types, or file larger than max_file_size_mb
    """
    allowed = set(policy.get("allowed_types") or [])
    max_mb = policy.get("max_file_size_mb")
    for f in files:
        name = f.get("file_name") or f["url"]
        extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
        file_type = (f.get("file_type") or "").lower()
        if allowed and file_type not in allowed and extension not in allowed:
            raise HTTPException(status_code=400, detail=f"File type not allowed: {name}")
        if max_mb and (f.get("file_size") or 0) > max_mb * 1024 * 1024:
            raise HTTPException(status_code=400, detail=f"File exceeds {max_mb} MB limit: {name}")


def is_past_due(assignment: dict, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return now > assignment["due_date"]


async def get_assignment_or_404(db: AsyncIOMotorDatabase, assignment_id: str) -> dict:
    assignment = await db.assignments.find_one({"assignment_id": assignment_id}, {"_id": 0})
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return assignment


async def get_submission_or_404(db: AsyncIOMotorDatabase, submission_id: str) -> dict:
    submission = await db.submissions.find_one({"submission_id": submission_id}, {"_id": 0})
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")
    return submission


async def delete_assignment_cascade(db: AsyncIOMotorDatabase, assignment_id: str) -> int:
    """Remove an assignment and its submissions; returns the number of submissions removed"""
    result = await db.submissions.delete_many({"assignment_id": assignment_id})
    await db.assignments.delete_one({"assignment_id": assignment_id})
    return result.deleted_count
