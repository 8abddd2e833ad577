"""Weekly review journal: one record per user per Sunday-started week."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, timedelta
from typing import Any

from dealdesk.actions import Identity
from dealdesk.store import RecordQuery, RecordStore, StoreError

log = logging.getLogger(__name__)

TEXT_FIELDS = ("goal_progress_notes", "wins", "losses", "reflections", "next_week_priorities")
REVIEW_FIELDS = ("week_start_date", "failure_condition_met", *TEXT_FIELDS)
PAST_REVIEWS_LIMIT = 10


def week_start(day: date) -> date:
    """The Sunday on or before *day*."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def as_date(value: date | str) -> date:
    return value if isinstance(value, date) else date.fromisoformat(value)


def empty_review(start: date) -> dict[str, Any]:
    return {
        "id": None,
        "week_start_date": start,
        "failure_condition_met": False,
        **{f: "" for f in TEXT_FIELDS},
    }


def _normalized(record: Mapping[str, Any]) -> dict[str, Any]:
    out = {"id": record.get("id"), "week_start_date": as_date(record["week_start_date"])}
    out["failure_condition_met"] = bool(record.get("failure_condition_met"))
    out.update({f: record.get(f) or "" for f in TEXT_FIELDS})
    return out


def _week_query(identity: Identity, start: date) -> RecordQuery:
    return RecordQuery(
        table="weekly_reviews",
        eq={"user_id": identity.user_id, "week_start_date": start},
    )


async def load_review(store: RecordStore, identity: Identity, start: date | str) -> dict[str, Any]:
    """Review for exactly *start*; an empty default when none exists yet."""
    start = as_date(start)
    try:
        record = await store.fetch_one(_week_query(identity, start))
    except StoreError as exc:
        log.warning("Weekly review fetch failed: %s", exc)
        return empty_review(start)
    if record is None:
        return empty_review(start)
    return _normalized(record)


async def past_reviews(
    store: RecordStore, identity: Identity, current: date | str, limit: int = PAST_REVIEWS_LIMIT,
) -> list[dict[str, Any]]:
    """Most recent reviews other than the *current* week, newest first; empty on read failure."""
    try:
        records = await store.fetch_all(RecordQuery(
            table="weekly_reviews",
            eq={"user_id": identity.user_id},
            neq={"week_start_date": as_date(current)},
            order_by="week_start_date",
            descending=True,
            limit=limit,
        ))
    except StoreError as exc:
        log.warning("Past reviews fetch failed: %s", exc)
        return []
    return [_normalized(r) for r in records]


async def save_review(store: RecordStore, identity: Identity, review: Mapping[str, Any]) -> dict[str, Any]:
    """Insert or update the review for its week.

    The date is snapped to its Sunday, and a review without an id is still
    matched against the stored week first, so a week never gets a second
    record.
    """
    start = week_start(as_date(review["week_start_date"]))
    payload = {
        "week_start_date": start,
        "failure_condition_met": bool(review.get("failure_condition_met")),
        **{f: review.get(f) or "" for f in TEXT_FIELDS},
    }
    review_id = review.get("id")
    if review_id is None:
        existing = await store.fetch_one(_week_query(identity, start))
        review_id = existing["id"] if existing else None
    if review_id is None:
        record = await store.insert("weekly_reviews", {"user_id": identity.user_id, **payload})
        log.info("Created weekly review for %s", start.isoformat())
    else:
        record = await store.update("weekly_reviews", review_id, payload, user_id=identity.user_id)
    return _normalized(record)
