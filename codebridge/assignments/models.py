from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime
from enum import Enum

# ==================== ENUMS ====================

class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    GRADED = "graded"
    RETURNED = "returned"
    RESUBMITTED = "resubmitted"

# ==================== ASSIGNMENT MODELS ====================

class RubricItem(BaseModel):
    criteria: str
    points: float = Field(..., ge=0)
    description: Optional[str] = None

class Attachment(BaseModel):
    url: str
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)

class AssignmentCreate(BaseModel):
    course_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    due_date: datetime
    max_score: float = Field(100, gt=0)
    passing_score: Optional[float] = Field(None, ge=0)
    attachments: List[Attachment] = []
    allow_late_submission: bool = False
    late_submission_penalty: float = Field(0, ge=0, le=100)
    rubric: List[RubricItem] = []
    is_published: bool = True

    @validator('title', 'description')
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Must not be blank')
        return v

    @validator('passing_score')
    def passing_within_max(cls, v, values):
        if v is not None and 'max_score' in values and v > values['max_score']:
            raise ValueError('passing_score cannot exceed max_score')
        return v

class AssignmentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    due_date: Optional[datetime] = None
    max_score: Optional[float] = Field(None, gt=0)
    passing_score: Optional[float] = Field(None, ge=0)
    attachments: Optional[List[Attachment]] = None
    allow_late_submission: Optional[bool] = None
    late_submission_penalty: Optional[float] = Field(None, ge=0, le=100)
    rubric: Optional[List[RubricItem]] = None
    is_published: Optional[bool] = None

# ==================== SUBMISSION MODELS ====================

class SubmissionCreate(BaseModel):
    submission_text: Optional[str] = Field(None, max_length=20000)
    files: List[Attachment] = []

class GradeRequest(BaseModel):
    score: Optional[float] = None
    feedback: Optional[str] = Field(None, max_length=5000)
    accept_ai_score: bool = False
