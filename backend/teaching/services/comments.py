"""Task comments: readable and writable by anyone who can read the task."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from identity_access.domain import Identity

from teaching.errors import InvalidInput, NotFound
from teaching.models import CommentData
from teaching.policy import Action, Resource, authorize
from teaching.services.tasks import TasksService

MAX_COMMENT_LENGTH = 2000


class CommentsRepoProtocol(Protocol):
    def list_comments(self, task_id: int) -> List[CommentData]:
        ...

    def get_comment(self, comment_id: int) -> Optional[CommentData]:
        ...

    def create_comment(self, task_id: int, author_id: int, content: str) -> CommentData:
        ...

    def delete_comment(self, comment_id: int) -> bool:
        ...


@dataclass
class CommentsService:
    repo: CommentsRepoProtocol
    tasks: TasksService

    def list_comments(self, identity: Identity, task_id: int) -> List[CommentData]:
        self.tasks.require_readable(identity, task_id)
        return self.repo.list_comments(task_id)

    def add_comment(self, identity: Identity, task_id: int, *, content: object) -> CommentData:
        self.tasks.require_readable(identity, task_id)
        if not isinstance(content, str) or not content.strip() or len(content.strip()) > MAX_COMMENT_LENGTH:
            raise InvalidInput("invalid_content")
        return self.repo.create_comment(task_id, identity.id, content.strip())

    def delete_comment(self, identity: Identity, task_id: int, comment_id: int) -> None:
        comment = self.repo.get_comment(comment_id)
        if comment is None or comment.task_id != task_id:
            raise NotFound("comment_not_found")
        authorize(identity, Action.DELETE_COMMENT, Resource(owner_id=comment.author_id))
        self.repo.delete_comment(comment_id)
