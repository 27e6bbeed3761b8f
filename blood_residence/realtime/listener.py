"""
Database change feed over PostgreSQL LISTEN/NOTIFY.

Row triggers on the watched tables call `pg_notify` with the new (and, for
updates, old) row image. PostgreSQL delivers notifications only when the
writing transaction commits, so every committed write reaches the hub no
matter which process or worker made it.

Notifications are capped at 8000 bytes. Rows that do not fit are sent as
`{"table", "event", "id", "truncated": true}` and re-read by id; the old
image of such an update is lost.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from .capture import WATCHED_TABLES
from .hub import ChangeEvent, ChangeKind, RealtimeHub

logger = logging.getLogger(__name__)

CHANNEL = "realtime_changes"
MAX_PAYLOAD_BYTES = 7900

_timestamp = TypeAdapter(datetime)

NOTIFY_FUNCTION_SQL = f"""
CREATE OR REPLACE FUNCTION realtime_notify_change() RETURNS trigger AS $$
DECLARE
    payload jsonb;
BEGIN
    payload := jsonb_build_object(
        'table', TG_TABLE_NAME,
        'event', TG_OP,
        'new', to_jsonb(NEW),
        'old', CASE WHEN TG_OP = 'UPDATE' THEN to_jsonb(OLD) ELSE '{{}}'::jsonb END,
        'commit_timestamp', now()
    );
    IF octet_length(payload::text) > {MAX_PAYLOAD_BYTES} THEN
        payload := jsonb_build_object(
            'table', TG_TABLE_NAME,
            'event', TG_OP,
            'id', NEW.id,
            'truncated', true,
            'commit_timestamp', now()
        );
    END IF;
    PERFORM pg_notify('{CHANNEL}', payload::text);
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

TRIGGER_SQL_TEMPLATE = """
DROP TRIGGER IF EXISTS realtime_notify_{table} ON {table};
CREATE TRIGGER realtime_notify_{table}
    AFTER INSERT OR UPDATE ON {table}
    FOR EACH ROW EXECUTE FUNCTION realtime_notify_change();
"""


def change_trigger_sql(tables=WATCHED_TABLES) -> str:
    """Idempotent DDL installing the notify function and one trigger per table."""
    triggers = "".join(TRIGGER_SQL_TEMPLATE.format(table=table) for table in sorted(tables))
    return NOTIFY_FUNCTION_SQL + triggers


class ListenConnection(Protocol):
    """The subset of `asyncpg.Connection` the listener needs."""

    async def add_listener(self, channel: str, callback: Callable) -> None: ...

    async def remove_listener(self, channel: str, callback: Callable) -> None: ...

    def add_termination_listener(self, callback: Callable) -> None: ...

    def remove_termination_listener(self, callback: Callable) -> None: ...

    async def execute(self, query: str, *args: Any) -> str: ...

    async def fetchval(self, query: str, *args: Any) -> Any: ...

    async def close(self) -> None: ...


Connector = Callable[[], Awaitable[ListenConnection]]


def parse_notification(payload: str) -> dict | None:
    """Decode a trigger payload; None for anything not from a watched table."""
    try:
        data = json.loads(payload)
    except ValueError:
        logger.warning(f"Ignoring malformed change notification: {payload[:200]}")
        return None
    if not isinstance(data, dict):
        return None
    if data.get("table") not in WATCHED_TABLES:
        return None
    if data.get("event") not in (ChangeKind.INSERT.value, ChangeKind.UPDATE.value):
        return None
    return data


def event_from_notification(data: dict, new: dict | None = None) -> ChangeEvent:
    event = ChangeEvent(
        table=data["table"],
        event=ChangeKind(data["event"]),
        new=new if new is not None else (data.get("new") or {}),
        old=data.get("old") or {},
    )
    if data.get("commit_timestamp"):
        try:
            event.commit_timestamp = _timestamp.validate_python(data["commit_timestamp"])
        except ValidationError:
            pass
    return event


class PostgresChangeListener:
    """Feeds a RealtimeHub from the database's change notifications.

    Holds one dedicated connection outside the pool. A lost connection is
    re-established after `reconnect_delay` seconds; changes committed in
    between are not replayed.
    """

    def __init__(
        self,
        hub: RealtimeHub,
        connect: Connector,
        channel: str = CHANNEL,
        install_triggers: bool = False,
        reconnect_delay: float = 5.0,
    ):
        self.hub = hub
        self.connect = connect
        self.channel = channel
        self.install_triggers = install_triggers
        self.reconnect_delay = reconnect_delay
        self._connection: ListenConnection | None = None
        self._lost: asyncio.Event | None = None
        self._supervisor: asyncio.Task | None = None
        self._stopping = False

    @property
    def listening(self) -> bool:
        return self._connection is not None

    async def start(self) -> None:
        self._stopping = False
        self._lost = asyncio.Event()
        await self._listen()
        if self.install_triggers:
            try:
                await self._connection.execute(change_trigger_sql())
            except Exception:
                await self.stop()
                raise
            logger.info(f"Change triggers installed on {len(WATCHED_TABLES)} tables")
        self._supervisor = asyncio.get_running_loop().create_task(self._supervise())

    async def stop(self) -> None:
        self._stopping = True
        if self._supervisor is not None:
            self._supervisor.cancel()
            await asyncio.gather(self._supervisor, return_exceptions=True)
            self._supervisor = None

        connection, self._connection = self._connection, None
        if connection is None:
            return
        connection.remove_termination_listener(self._on_terminated)
        try:
            await connection.remove_listener(self.channel, self._on_notify)
        finally:
            await connection.close()
        logger.info(f"Stopped listening on {self.channel}")

    async def _listen(self) -> None:
        connection = await self.connect()
        connection.add_termination_listener(self._on_terminated)
        await connection.add_listener(self.channel, self._on_notify)
        self._connection = connection
        logger.info(f"Listening for database changes on {self.channel}")

    def _on_terminated(self, connection: ListenConnection) -> None:
        if connection is not self._connection:
            return
        logger.error(f"Database change listener lost its connection on {self.channel}")
        self._connection = None
        if self._lost is not None:
            self._lost.set()

    async def _supervise(self) -> None:
        while not self._stopping:
            await self._lost.wait()
            self._lost.clear()
            while not self._stopping and self._connection is None:
                await asyncio.sleep(self.reconnect_delay)
                try:
                    await self._listen()
                except Exception as e:
                    logger.error(f"Reconnecting the change listener failed: {e}")

    async def _fetch_row(self, connection: ListenConnection, table: str, row_id: Any) -> dict | None:
        # table is one of WATCHED_TABLES, checked by parse_notification
        raw = await connection.fetchval(f"SELECT to_jsonb(t) FROM {table} t WHERE id = $1", row_id)
        if raw is None:
            return None
        return json.loads(raw) if isinstance(raw, str) else dict(raw)

    async def _on_notify(
        self,
        connection: ListenConnection,
        pid: int,
        channel: str,
        payload: str,
    ) -> None:
        data = parse_notification(payload)
        if data is None:
            return

        new = None
        if data.get("truncated"):
            try:
                new = await self._fetch_row(connection, data["table"], data.get("id"))
            except Exception as e:
                logger.error(f"Could not re-read {data['table']} row {data.get('id')}: {e}")
                return
            if new is None:
                return

        await self.hub.publish(event_from_notification(data, new))
