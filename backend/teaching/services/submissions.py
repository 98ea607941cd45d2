"""Submissions service layer.

One submission per (task, student): a resubmission replaces content and file
and keeps an existing grade until a teacher grades again. Reading requires
read access to the task; students only ever see their own submissions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from identity_access.domain import Identity

from teaching.errors import InvalidInput, NotFound
from teaching.models import SubmissionData
from teaching.policy import Action, Resource, authorize, decide
from teaching.services.tasks import TasksService

logger = logging.getLogger("coursetasks.teaching.submissions")

MAX_CONTENT_LENGTH = 20_000


class SubmissionsRepoProtocol(Protocol):
    def list_submissions(self, task_id: int, student_id: Optional[int] = None) -> List[SubmissionData]:
        ...

    def get_submission(self, submission_id: int) -> Optional[SubmissionData]:
        ...

    def upsert_submission(
        self,
        task_id: int,
        student_id: int,
        *,
        content: Optional[str],
        file_url: Optional[str],
    ) -> SubmissionData:
        ...

    def delete_submission(self, submission_id: int) -> bool:
        ...

    def grade_submission(self, submission_id: int, *, grade: int, grader_id: int) -> Optional[SubmissionData]:
        ...


def _normalize_optional_text(value: object, code: str, *, max_length: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInput(code)
    trimmed = value.strip()
    if len(trimmed) > max_length:
        raise InvalidInput(code)
    return trimmed or None


def _normalize_grade(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput("invalid_grade")
    if not 0 <= value <= 100:
        raise InvalidInput("invalid_grade")
    return value


def _submission_resource(submission: SubmissionData) -> Resource:
    return Resource(owner_id=submission.student_id)


@dataclass
class SubmissionsService:
    repo: SubmissionsRepoProtocol
    tasks: TasksService

    def list_submissions(
        self,
        identity: Identity,
        task_id: int,
        *,
        student_id: Optional[int] = None,
    ) -> List[SubmissionData]:
        """Submissions of a task, newest first, scoped to what the caller may read."""
        self.tasks.require_readable(identity, task_id)
        items = self.repo.list_submissions(task_id, student_id)
        return [
            s for s in items
            if decide(identity, Action.READ_SUBMISSION, _submission_resource(s)).allowed
        ]

    def submit(
        self,
        identity: Identity,
        task_id: int,
        *,
        content: object = None,
        file_url: object = None,
    ) -> SubmissionData:
        self.tasks.require_readable(identity, task_id)
        text = _normalize_optional_text(content, "invalid_content", max_length=MAX_CONTENT_LENGTH)
        url = _normalize_optional_text(file_url, "invalid_file_url", max_length=2048)
        if text is None and url is None:
            raise InvalidInput("empty_submission")
        saved = self.repo.upsert_submission(task_id, identity.id, content=text, file_url=url)
        logger.info("submission saved task=%s student=%s", task_id, identity.id)
        return saved

    def _require_submission(self, task_id: int, submission_id: int) -> SubmissionData:
        submission = self.repo.get_submission(submission_id)
        if submission is None or submission.task_id != task_id:
            raise NotFound("submission_not_found")
        return submission

    def delete_submission(self, identity: Identity, task_id: int, submission_id: int) -> None:
        submission = self._require_submission(task_id, submission_id)
        authorize(identity, Action.DELETE_SUBMISSION, _submission_resource(submission))
        if not self.repo.delete_submission(submission_id):
            raise NotFound("submission_not_found")
        logger.info("submission deleted id=%s by=%s", submission_id, identity.id)

    def grade_submission(self, identity: Identity, task_id: int, submission_id: int, *, grade: object) -> SubmissionData:
        submission = self._require_submission(task_id, submission_id)
        authorize(identity, Action.GRADE_SUBMISSION, _submission_resource(submission))
        updated = self.repo.grade_submission(submission_id, grade=_normalize_grade(grade), grader_id=identity.id)
        if updated is None:
            raise NotFound("submission_not_found")
        return updated
