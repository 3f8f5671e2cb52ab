from pydantic import BaseModel, Field, validator
from typing import Any, List, Optional
from datetime import datetime
from enum import Enum

# ==================== ENUMS ====================

class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    ESSAY = "essay"

# ==================== QUIZ MODELS ====================

class QuestionIn(BaseModel):
    question_text: str = Field(..., min_length=1)
    question_type: QuestionType
    options: List[str] = []
    correct_answer: Optional[str] = None
    marks: float = Field(1, gt=0)
    explanation: Optional[str] = None
    order: Optional[int] = None

    class Config:
        use_enum_values = True

    @validator('correct_answer', always=True)
    def answer_for_objective(cls, v, values):
        if values.get('question_type') != QuestionType.ESSAY.value and not (v or "").strip():
            raise ValueError('correct_answer is required for objective questions')
        return v

    @validator('options', always=True)
    def options_for_choice(cls, v, values):
        if values.get('question_type') == QuestionType.MULTIPLE_CHOICE.value and len(v) < 2:
            raise ValueError('Multiple-choice questions need at least two options')
        return v

class QuizCreate(BaseModel):
    course_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    duration: int = Field(..., ge=1, description="Minutes")
    passing_marks: Optional[float] = Field(None, ge=0)
    questions: List[QuestionIn]
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    attempts: int = Field(1, ge=1)
    is_published: bool = False
    randomize_questions: bool = False
    show_correct_answers: bool = True

    @validator('questions')
    def has_questions(cls, v):
        if not v:
            raise ValueError('A test needs at least one question')
        return v

class QuizUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    duration: Optional[int] = Field(None, ge=1)
    passing_marks: Optional[float] = Field(None, ge=0)
    questions: Optional[List[QuestionIn]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    attempts: Optional[int] = Field(None, ge=1)
    is_published: Optional[bool] = None
    randomize_questions: Optional[bool] = None
    show_correct_answers: Optional[bool] = None

# ==================== ATTEMPT MODELS ====================

class AnswerIn(BaseModel):
    question_id: str
    answer: Any = None

class AttemptSubmit(BaseModel):
    answers: List[AnswerIn] = []
    started_at: Optional[datetime] = None
