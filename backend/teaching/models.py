"""Plain data records for tasks, submissions and comments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

# Sentinel for "field omitted" in partial updates; None means "clear".
UNSET = object()


class TaskStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    IN_REVIEW = "IN_REVIEW"
    CLOSED = "CLOSED"


@dataclass
class TaskData:
    id: int
    title: str
    description: str
    status: TaskStatus
    due_date: Optional[datetime]
    group_id: Optional[int]
    created_by_id: int
    created_at: datetime
    updated_at: datetime
    in_review_student_id: Optional[int] = None


@dataclass
class SubmissionData:
    id: int
    task_id: int
    student_id: int
    content: Optional[str]
    file_url: Optional[str]
    submitted_at: datetime
    grade: Optional[int] = None
    graded_at: Optional[datetime] = None
    graded_by_id: Optional[int] = None


@dataclass
class CommentData:
    id: int
    task_id: int
    author_id: int
    content: str
    created_at: datetime
