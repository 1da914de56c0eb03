"""Completion records: submission by players, single review by staff."""

import logging
from datetime import datetime
from urllib.parse import urlparse

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from models import RECORD_STATUSES, Level, Record
from ranking import as_id

log = logging.getLogger(__name__)


def is_video_url(value) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class RecordService:
    def __init__(self, session):
        self.session = session

    def list_records(self, status=None, user_id=None) -> list:
        stmt = select(Record)
        if status is not None:
            if status not in RECORD_STATUSES:
                raise ValidationError(f"status must be one of {', '.join(RECORD_STATUSES)}")
            stmt = stmt.where(Record.status == status)
        if user_id is not None:
            stmt = stmt.where(Record.user_id == user_id)
        return list(self.session.scalars(stmt.order_by(Record.submitted_at.desc(), Record.id.desc())))

    def get_record(self, record_id) -> Record:
        record = self.session.get(Record, as_id(record_id, "record id"))
        if record is None:
            raise NotFoundError(f"Record {record_id} not found", record_id=record_id)
        return record

    def submit(self, user, level_id, video_url) -> Record:
        level = self.session.get(Level, as_id(level_id, "level id"))
        if level is None:
            raise NotFoundError(f"Level {level_id} not found", level_id=level_id)
        if not is_video_url(video_url):
            raise ValidationError("video_url must be a valid http(s) URL", field="video_url")

        open_record = self._open_record(user.id, level.id)
        if open_record is not None:
            raise ConflictError(
                f"{user.name} already has a pending or approved record on {level.name}",
                record_id=open_record,
            )

        record = Record(user_id=user.id, level_id=level.id, video_url=video_url.strip(), status="pending")
        self.session.add(record)
        try:
            self.session.commit()
        except IntegrityError:
            # uq_record_open: a concurrent submit got there first
            self.session.rollback()
            raise ConflictError(
                f"{user.name} already has a pending or approved record on this level",
                level_id=level_id,
            ) from None
        log.info("Record %s submitted by user %s for level %s", record.id, user.id, level.id)
        return record

    def _open_record(self, user_id: int, level_id: int):
        return self.session.scalar(
            select(Record.id).where(
                Record.user_id == user_id,
                Record.level_id == level_id,
                Record.status.in_(("pending", "approved")),
            )
        )

    def approve(self, record_id, reviewer) -> Record:
        """pending → approved, and one more completion on the level."""
        return self._review(record_id, reviewer, "approved")

    def reject(self, record_id, reviewer) -> Record:
        return self._review(record_id, reviewer, "rejected")

    def _review(self, record_id, reviewer, status: str) -> Record:
        if not getattr(reviewer, "can_review", False):
            raise ForbiddenError("Only admins and moderators can review records")
        record = self.get_record(record_id)
        if record.status != "pending":
            raise ConflictError(f"Record {record.id} was already {record.status}", status=record.status)

        try:
            # Conditional on status so two concurrent reviews cannot both win.
            result = self.session.execute(
                update(Record)
                .where(Record.id == record.id, Record.status == "pending")
                .values(status=status, reviewed_at=datetime.utcnow(), reviewed_by=reviewer.id)
            )
            if result.rowcount != 1:
                raise ConflictError(f"Record {record.id} was reviewed concurrently")
            if status == "approved":
                self.session.execute(
                    update(Level)
                    .where(Level.id == record.level_id)
                    .values(completion_count=Level.completion_count + 1)
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        log.info("Record %s %s by user %s", record.id, status, reviewer.id)
        return record
