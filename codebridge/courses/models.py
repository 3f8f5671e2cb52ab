from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime
from enum import Enum

# ==================== ENUMS ====================

class Currency(str, Enum):
    NGN = "NGN"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"

class CourseCategory(str, Enum):
    PROGRAMMING = "programming"
    DESIGN = "design"
    BUSINESS = "business"
    MARKETING = "marketing"
    DATA_SCIENCE = "data-science"
    OTHER = "other"

class CourseLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    STARTED = "started"
    ENDED = "ended"
    CANCELLED = "cancelled"

# ==================== COURSE MODELS ====================

class SyllabusItem(BaseModel):
    title: str
    description: Optional[str] = None
    duration: int = Field(0, ge=0, description="Minutes")
    order: Optional[int] = None

class ScheduleCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: datetime
    duration: int = Field(60, ge=1, le=1440)

class ScheduleUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=1, le=1440)
    status: Optional[ScheduleStatus] = None

    class Config:
        use_enum_values = True

class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    price: float = Field(0, ge=0)
    currency: Currency = Currency.NGN
    thumbnail: Optional[str] = None
    category: CourseCategory
    level: CourseLevel = CourseLevel.BEGINNER
    syllabus: List[SyllabusItem] = []
    schedule: List[ScheduleCreate] = []
    max_students: int = Field(100, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    tags: List[str] = []
    is_published: bool = False

    class Config:
        use_enum_values = True

    @validator('title', 'description')
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Must not be blank')
        return v

    @validator('tags')
    def normalize_tags(cls, v):
        return [tag.strip().lower() for tag in v if tag.strip()]

class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    price: Optional[float] = Field(None, ge=0)
    currency: Optional[Currency] = None
    thumbnail: Optional[str] = None
    category: Optional[CourseCategory] = None
    level: Optional[CourseLevel] = None
    syllabus: Optional[List[SyllabusItem]] = None
    max_students: Optional[int] = Field(None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    is_published: Optional[bool] = None

    class Config:
        use_enum_values = True

class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=1000)

class ProgressUpdate(BaseModel):
    lesson_index: Optional[int] = Field(None, ge=0)
    progress: Optional[float] = Field(None, ge=0, le=100)

class RejectRequest(BaseModel):
    reason: str

    @validator('reason')
    def reason_required(cls, v):
        if not v or not v.strip():
            raise ValueError('Rejection reason is required')
        return v.strip()
