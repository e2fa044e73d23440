"""Manual comments on timeline events."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from loguru import logger

from licitagraph.exceptions import NotFoundError
from licitagraph.storage.repository import DocumentRepository
from licitagraph.storage.schemas import TimelineComment, TimelineEvent


class TimelineCommentService:
    """CRUD for timeline comments; keeps each event's ``comments_count`` in sync."""

    def __init__(self, repository: DocumentRepository) -> None:
        self.repository = repository

    def create_comment(self, timeline_event_id: str, content: str, author: str = "anonymous") -> TimelineComment:
        event = self._require_event(timeline_event_id)
        text = _clean_content(content)
        with self.repository.document_transaction(event.document_id):
            comment = self.repository.save_comment(
                TimelineComment(
                    timeline_event_id=event.id,
                    document_id=event.document_id,
                    content=text,
                    author=author.strip() or "anonymous",
                )
            )
            self._sync_count(event)
        logger.debug("Created timeline comment", comment_id=comment.id, event_id=event.id)
        return comment

    def update_comment(self, comment_id: str, content: str) -> TimelineComment:
        comment = self._require_comment(comment_id)
        text = _clean_content(content)
        with self.repository.document_transaction(comment.document_id):
            comment.content = text
            comment.updated_at = datetime.now()
            return self.repository.save_comment(comment)

    def delete_comment(self, comment_id: str) -> bool:
        """Delete a comment; returns False when it did not exist."""
        comment = self.repository.get_comment(comment_id)
        if comment is None:
            return False
        with self.repository.document_transaction(comment.document_id):
            deleted = self.repository.delete_comment(comment_id)
            event = self.repository.get_event(comment.timeline_event_id)
            if event is not None:
                self._sync_count(event)
        return deleted

    def get_comment(self, comment_id: str) -> Optional[TimelineComment]:
        return self.repository.get_comment(comment_id)

    def get_comments_by_event(self, timeline_event_id: str) -> List[TimelineComment]:
        return self.repository.list_comments(event_id=timeline_event_id)

    def get_comments_by_document(self, document_id: str) -> List[TimelineComment]:
        return self.repository.list_comments(document_id=document_id)

    def clear_event_comments(self, timeline_event_id: str) -> int:
        event = self._require_event(timeline_event_id)
        with self.repository.document_transaction(event.document_id):
            comments = self.repository.list_comments(event_id=event.id)
            for comment in comments:
                self.repository.delete_comment(comment.id)
            self._sync_count(event)
        return len(comments)

    def _sync_count(self, event: TimelineEvent) -> None:
        count = len(self.repository.list_comments(event_id=event.id))
        if event.comments_count != count:
            event.comments_count = count
            self.repository.save_event(event)

    def _require_event(self, event_id: str) -> TimelineEvent:
        event = self.repository.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Timeline event not found: {event_id}")
        return event

    def _require_comment(self, comment_id: str) -> TimelineComment:
        comment = self.repository.get_comment(comment_id)
        if comment is None:
            raise NotFoundError(f"Comment not found: {comment_id}")
        return comment


def _clean_content(content: str) -> str:
    text = (content or "").strip()
    if not text:
        raise ValueError("Comment content must not be empty")
    return text
