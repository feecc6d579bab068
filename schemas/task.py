from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.date_utils import to_naive_utc, utc_now
from app.models import Category, TaskStatus


def _future_due_date(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    value = to_naive_utc(value)
    if value <= utc_now():
        raise ValueError("Due date must be in the future")
    return value


class TaskCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    category: Category
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    points: Optional[int] = Field(default=None, ge=1, le=100)

    @field_validator("due_date")
    @classmethod
    def check_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _future_due_date(value)


class TaskUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category: Optional[Category] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    points: Optional[int] = Field(default=None, ge=1, le=100)

    @field_validator("due_date")
    @classmethod
    def check_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _future_due_date(value)


class TaskStatusUpdate(BaseModel):
    status: TaskStatus
