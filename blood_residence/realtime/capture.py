"""
Change capture from SQLAlchemy sessions.

Rows of watched tables that are inserted or updated through the unit of
work are collected at flush time and handed to the realtime hub once the
transaction commits. Rolled back transactions publish nothing.

Bulk UPDATE statements bypass the unit of work; callers record those
changes themselves with `record_change`.

Sessions created with capture disabled record nothing: when the database
change feed (`listener.py`) is the source, it already sees these writes.
"""

import logging
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from .hub import ChangeEvent, ChangeKind, RealtimeHub, get_hub

logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({
    "notifications",
    "contracts",
    "direct_messages",
    "telegram_connections",
    "support_tickets",
})

PENDING_KEY = "realtime_pending_changes"
HUB_KEY = "realtime_hub"
CAPTURE_KEY = "realtime_capture"


def _sync_session(session: Any) -> Session:
    return getattr(session, "sync_session", session)


def _table_name(obj: Any) -> str | None:
    table = getattr(obj, "__table__", None)
    return table.name if table is not None else None


def row_image(obj: Any) -> dict[str, Any]:
    """Current column values of an ORM instance, without triggering loads."""
    state = inspect(obj)
    return {
        attr.key: state.dict.get(attr.key)
        for attr in state.mapper.column_attrs
    }


def old_row_image(obj: Any) -> dict[str, Any]:
    """Column values as they were before the pending flush."""
    state = inspect(obj)
    old = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            old[attr.key] = history.deleted[0]
        else:
            old[attr.key] = state.dict.get(attr.key)
    return old


def capture_enabled(session: Any) -> bool:
    return _sync_session(session).info.get(CAPTURE_KEY, True)


def record_change(session: Any, change: ChangeEvent) -> None:
    """Queue a change for publication when the session commits."""
    if not capture_enabled(session):
        return
    _sync_session(session).info.setdefault(PENDING_KEY, []).append(change)


def pending_changes(session: Any) -> list[ChangeEvent]:
    return list(_sync_session(session).info.get(PENDING_KEY, []))


@event.listens_for(Session, "after_flush")
def _collect_changes(session: Session, flush_context) -> None:
    if not capture_enabled(session):
        return
    # Pre-flush state and attribute history are still visible here
    for obj in session.new:
        table = _table_name(obj)
        if table in WATCHED_TABLES:
            record_change(session, ChangeEvent(
                table=table,
                event=ChangeKind.INSERT,
                new=row_image(obj),
            ))

    for obj in session.dirty:
        table = _table_name(obj)
        if table in WATCHED_TABLES and session.is_modified(obj, include_collections=False):
            record_change(session, ChangeEvent(
                table=table,
                event=ChangeKind.UPDATE,
                new=row_image(obj),
                old=old_row_image(obj),
            ))


@event.listens_for(Session, "after_commit")
def _publish_changes(session: Session) -> None:
    changes = session.info.pop(PENDING_KEY, [])
    if not changes:
        return
    hub: RealtimeHub = session.info.get(HUB_KEY) or get_hub()
    logger.debug(f"Publishing {len(changes)} realtime changes")
    hub.publish_soon(changes)


@event.listens_for(Session, "after_rollback")
def _discard_changes(session: Session) -> None:
    discarded = session.info.pop(PENDING_KEY, [])
    if discarded:
        logger.debug(f"Discarded {len(discarded)} realtime changes after rollback")
