"""Record store: the narrow CRUD surface the core talks to.

``RecordStore`` is the interface; ``SqlRecordStore`` implements it on a
SQLAlchemy session. Records cross the boundary as plain dicts, the way a remote
REST store would hand them back, and every failure surfaces as ``StoreError``
carrying the store's own message.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import String, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dealdesk.models import Base, Contact, Deal, PortfolioPosition, Touchpoint, WeeklyReview

log = logging.getLogger(__name__)

# OverflowError comes straight from the DBAPI for integers wider than the column
STORE_ERRORS = (SQLAlchemyError, OverflowError)

TABLES: dict[str, type[Base]] = {
    "deals": Deal,
    "portfolio": PortfolioPosition,
    "weekly_reviews": WeeklyReview,
    "contacts": Contact,
    "touchpoints": Touchpoint,
}


class StoreError(Exception):
    """A store round trip failed. ``str(exc)`` is the store's message."""


@dataclass
class RecordQuery:
    table: str
    eq: dict[str, Any] = field(default_factory=dict)
    neq: dict[str, Any] = field(default_factory=dict)
    # column equals value OR column is null
    eq_or_null: dict[str, Any] = field(default_factory=dict)
    # column value is one of the listed values
    in_: dict[str, list[Any]] = field(default_factory=dict)
    # case-insensitive substring match per column
    contains: dict[str, str] = field(default_factory=dict)
    # case-insensitive substring match on any of search_fields
    search: str | None = None
    search_fields: tuple[str, ...] = ()
    order_by: str | None = None
    descending: bool = False
    limit: int | None = None


class RecordStore(Protocol):
    async def fetch_page(
        self, query: RecordQuery, page: int, page_size: int,
    ) -> tuple[list[dict[str, Any]], int]: ...

    async def fetch_all(self, query: RecordQuery) -> list[dict[str, Any]]: ...

    async def fetch_one(self, query: RecordQuery) -> dict[str, Any] | None: ...

    async def insert(self, table: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, record_id: int, payload: dict[str, Any], *, user_id: str,
    ) -> dict[str, Any]: ...

    async def delete(self, table: str, record_id: int, *, user_id: str) -> None: ...

def to_record(obj: Base) -> dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in obj.__mapper__.column_attrs}


class SqlRecordStore:
    """``RecordStore`` backed by a SQLAlchemy session (caller owns the session)."""

    def __init__(self, session: Session):
        self.session = session

    # -- helpers ----------------------------------------------------------

    def _model(self, table: str) -> type[Base]:
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f'relation "{table}" does not exist') from None

    def _column(self, model: type[Base], name: str):
        col = model.__table__.columns.get(name)
        if col is None:
            raise StoreError(f'column {model.__tablename__}.{name} does not exist')
        return getattr(model, name)

    def _select(self, query: RecordQuery):
        model = self._model(query.table)
        stmt = select(model)
        for name, value in query.eq.items():
            stmt = stmt.where(self._column(model, name) == value)
        for name, value in query.neq.items():
            stmt = stmt.where(self._column(model, name) != value)
        for name, values in query.in_.items():
            stmt = stmt.where(self._column(model, name).in_(list(values)))
        for name, value in query.eq_or_null.items():
            col = self._column(model, name)
            stmt = stmt.where(or_(col == value, col.is_(None)))
        for name, needle in query.contains.items():
            stmt = stmt.where(self._column(model, name).ilike(f"%{needle}%"))
        if query.search and query.search_fields:
            stmt = stmt.where(or_(*(
                self._column(model, f).ilike(f"%{query.search}%") for f in query.search_fields
            )))
        return model, stmt

    def _ordered(self, model, stmt, query: RecordQuery):
        if query.order_by:
            col = self._column(model, query.order_by)
            key = func.lower(col) if isinstance(col.type, String) else col
            # Postgres default: nulls sort as the largest value.
            key = key.desc().nulls_first() if query.descending else key.asc().nulls_last()
            stmt = stmt.order_by(key, model.id.asc())
        else:
            stmt = stmt.order_by(model.id.asc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        return stmt

    def _fail(self, action: str, table: str, exc: Exception) -> StoreError:
        self.session.rollback()
        log.warning("Store %s on %s failed: %s", action, table, exc)
        return StoreError(str(getattr(exc, "orig", None) or exc))

    # -- RecordStore ------------------------------------------------------

    async def fetch_page(
        self, query: RecordQuery, page: int, page_size: int,
    ) -> tuple[list[dict[str, Any]], int]:
        model, stmt = self._select(query)
        try:
            total = self.session.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()
            stmt = self._ordered(model, stmt, query)
            stmt = stmt.offset((page - 1) * page_size).limit(page_size)
            rows = self.session.execute(stmt).scalars().all()
        except STORE_ERRORS as exc:
            raise self._fail("fetch_page", query.table, exc) from exc
        return [to_record(r) for r in rows], total

    async def fetch_all(self, query: RecordQuery) -> list[dict[str, Any]]:
        model, stmt = self._select(query)
        try:
            rows = self.session.execute(self._ordered(model, stmt, query)).scalars().all()
        except STORE_ERRORS as exc:
            raise self._fail("fetch_all", query.table, exc) from exc
        return [to_record(r) for r in rows]

    async def fetch_one(self, query: RecordQuery) -> dict[str, Any] | None:
        model, stmt = self._select(query)
        try:
            row = self.session.execute(self._ordered(model, stmt, query).limit(1)).scalars().first()
        except STORE_ERRORS as exc:
            raise self._fail("fetch_one", query.table, exc) from exc
        return to_record(row) if row is not None else None

    async def insert(self, table: str, payload: dict[str, Any]) -> dict[str, Any]:
        model = self._model(table)
        for name in payload:
            self._column(model, name)
        obj = model(**payload)
        try:
            self.session.add(obj)
            self.session.commit()
            self.session.refresh(obj)
        except STORE_ERRORS as exc:
            raise self._fail("insert", table, exc) from exc
        return to_record(obj)

    async def update(
        self, table: str, record_id: int, payload: dict[str, Any], *, user_id: str,
    ) -> dict[str, Any]:
        model = self._model(table)
        for name in payload:
            self._column(model, name)
        try:
            obj = self.session.execute(
                select(model).where(model.id == record_id, model.user_id == user_id)
            ).scalars().first()
            if obj is None:
                raise StoreError(f"{table} row {record_id} not found")
            for name, value in payload.items():
                setattr(obj, name, value)
            self.session.commit()
            self.session.refresh(obj)
        except STORE_ERRORS as exc:
            raise self._fail("update", table, exc) from exc
        return to_record(obj)

    async def delete(self, table: str, record_id: int, *, user_id: str) -> None:
        model = self._model(table)
        try:
            obj = self.session.execute(
                select(model).where(model.id == record_id, model.user_id == user_id)
            ).scalars().first()
            if obj is None:
                raise StoreError(f"{table} row {record_id} not found")
            self.session.delete(obj)
            self.session.commit()
        except STORE_ERRORS as exc:
            raise self._fail("delete", table, exc) from exc
