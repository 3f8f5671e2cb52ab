from pydantic import BaseModel, Field, validator
from typing import List, Optional
from enum import Enum


class Visibility(str, Enum):
    PUBLIC = "public"
    COURSE = "course"
    PRIVATE = "private"


class MediaItem(BaseModel):
    url: str
    type: str = "image"
    file_name: Optional[str] = None


class PostCreate(BaseModel):
    content_text: str = Field(..., min_length=1, max_length=5000)
    media: List[MediaItem] = []
    visibility: Visibility = Visibility.PUBLIC
    course_id: Optional[str] = None

    class Config:
        use_enum_values = True

    @validator('content_text')
    def strip_content(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Post content cannot be empty')
        return v


class PostUpdate(BaseModel):
    content_text: Optional[str] = Field(None, min_length=1, max_length=5000)
    media: Optional[List[MediaItem]] = None
    visibility: Optional[Visibility] = None

    class Config:
        use_enum_values = True


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)

    @validator('text')
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Comment cannot be empty')
        return v
