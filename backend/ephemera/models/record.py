# ephemera/models/record.py

import enum
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, DateTime, Float, Integer, String, Text

from ephemera.models.base import Base


class RecordKind(str, enum.Enum):
    EVENT = "event"
    MESSAGE = "message"


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Record(Base):
    __tablename__ = "records"
    # Ids must never come back after a delete, pending deletions refer to them
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), nullable=False, index=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    # Seconds after created_at; NULL means the record never self-destructs
    self_destruct_after = Column(Float, nullable=True)

    __mapper_args__ = {"polymorphic_on": kind, "with_polymorphic": "*"}

    @property
    def expires_at(self):
        if self.self_destruct_after is None:
            return None
        try:
            return as_utc(self.created_at) + timedelta(seconds=self.self_destruct_after)
        except OverflowError:
            # Rows written before intervals were capped
            return datetime.max.replace(tzinfo=timezone.utc)

    def to_dict(self) -> dict:
        expires_at = self.expires_at
        return {
            "id": self.id,
            "kind": self.kind,
            "created_at": as_utc(self.created_at).isoformat(),
            "self_destruct_after": self.self_destruct_after,
            "expires_at": expires_at.isoformat() if expires_at else None,
        }

    def __repr__(self):
        return f"<{type(self).__name__} id={self.id} expires_at={self.expires_at}>"


class Event(Record):
    __mapper_args__ = {"polymorphic_identity": RecordKind.EVENT.value}

    name = Column(String(255))
    # Kept as entered, the calendar UI owns the format
    date = Column(String(64))

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(name=self.name, date=self.date)
        return data


class Message(Record):
    __mapper_args__ = {"polymorphic_identity": RecordKind.MESSAGE.value}

    sender = Column(String(100), index=True, default="anonymous")
    receiver = Column(String(100), index=True)
    content = Column(Text)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            sender=self.sender,
            receiver=self.receiver,
            content=self.content,
            timestamp=data["created_at"],
        )
        return data


RECORD_TYPES = {
    RecordKind.EVENT: Event,
    RecordKind.MESSAGE: Message,
}
