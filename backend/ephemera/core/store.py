from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ephemera.core.errors import StorageError
from ephemera.infra.database import db_session
from ephemera.models.record import RECORD_TYPES, Message, Record, RecordKind


class RecordStore:
    """
    Durable storage for events and messages.

    Every call is its own transaction. The store never deletes anything on
    its own; timing belongs to the scheduler.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, action: str):
        try:
            with db_session(self._session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            raise StorageError(f"Could not {action}: {e}") from e

    def insert(
        self,
        kind: RecordKind,
        payload: dict,
        self_destruct_after: Optional[timedelta] = None
    ) -> Record:
        """Store a new record and return it with its fresh id"""
        model = RECORD_TYPES[RecordKind(kind)]
        record = model(
            created_at=datetime.now(timezone.utc),
            self_destruct_after=(
                self_destruct_after.total_seconds()
                if self_destruct_after is not None else None
            ),
            **payload
        )

        with self._session(f"insert {model.__name__.lower()}") as session:
            session.add(record)
            session.flush()

        return record

    def get(self, record_id: int) -> Optional[Record]:
        with self._session(f"read record {record_id}") as session:
            return session.get(Record, record_id)

    def delete_if_exists(self, record_id: int, kind: Optional[RecordKind] = None) -> bool:
        """Remove the record if it is still there; True only for the call that removed it"""
        table = Record.__table__
        statement = delete(table).where(table.c.id == record_id)
        if kind is not None:
            statement = statement.where(table.c.kind == RecordKind(kind).value)

        with self._session(f"delete record {record_id}") as session:
            result = session.execute(statement)
            return result.rowcount > 0

    def list_expiring(self) -> List[Tuple[int, datetime]]:
        with self._session("list expiring records") as session:
            records = session.scalars(
                select(Record)
                .where(Record.self_destruct_after.is_not(None))
                .order_by(Record.id)
            ).all()

            return [(r.id, r.expires_at) for r in records]

    def query_by_participant(self, identity: str) -> List[Message]:
        with self._session(f"query messages for {identity}") as session:
            return list(session.scalars(
                select(Message)
                .where(or_(Message.sender == identity, Message.receiver == identity))
                .order_by(Message.created_at, Message.id)
            ).all())

    def list_all(self, kind: Optional[RecordKind] = None) -> List[Record]:
        query = select(Record).order_by(Record.id)
        if kind is not None:
            query = select(RECORD_TYPES[RecordKind(kind)]).order_by(Record.id)

        with self._session("list records") as session:
            return list(session.scalars(query).all())

    def count(self) -> int:
        with self._session("count records") as session:
            return session.scalar(select(func.count()).select_from(Record))
