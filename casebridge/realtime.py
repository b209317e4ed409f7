"""
Realtime Change Feed
====================

Pushes row-change events to WebSocket subscribers so portals can refetch.

Channels:
- matter:{id}           client-visible changes on a matter, projected to client fields
- matter:{id}:internal  every change on a matter and its children, full rows (staff only)
- user:{id}             notifications for one account
- firm:{id}             firm-wide changes (intake queue, staff, invitations)

Services call queue_change(db, ...) while they work; the changes are
published only after the session commits, and dropped on rollback.
Delivery is best effort: each subscriber has a bounded queue and changes
that do not fit are dropped with a warning.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from sqlalchemy import event, inspect as sa_inspect
from sqlalchemy.orm import Session

from .config import get_settings

logger = logging.getLogger(__name__)

PENDING_KEY = "casebridge_pending_changes"


def _primitive(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def serialize_row(obj) -> Dict[str, Any]:
    """Column values of an ORM object as JSON-friendly primitives."""
    return {attr.key: _primitive(getattr(obj, attr.key)) for attr in sa_inspect(obj).mapper.column_attrs}


@dataclass(eq=False)
class Subscriber:
    """One connection's inbox; may listen on several channels."""
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    channels: Set[str] = field(default_factory=set)
    dropped: int = 0

    def deliver(self, message: Dict[str, Any]) -> None:
        # Runs on the subscriber's loop
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"[realtime] subscriber queue full, dropped change on {message.get('channel')}")


class ChangeFeed:
    """Channel -> subscribers registry with thread-safe publishing."""

    def __init__(self):
        self._channels: Dict[str, Set[Subscriber]] = {}

    def create_subscriber(self, maxsize: Optional[int] = None) -> Subscriber:
        size = maxsize if maxsize is not None else get_settings().realtime_queue_size
        return Subscriber(loop=asyncio.get_running_loop(), queue=asyncio.Queue(maxsize=size))

    def subscribe(self, subscriber: Subscriber, channel: str) -> None:
        self._channels.setdefault(channel, set()).add(subscriber)
        subscriber.channels.add(channel)
        logger.debug(f"[realtime] subscribed to {channel}")

    def unsubscribe(self, subscriber: Subscriber, channel: str) -> None:
        subscribers = self._channels.get(channel)
        if subscribers is not None:
            subscribers.discard(subscriber)
            if not subscribers:
                del self._channels[channel]
        subscriber.channels.discard(channel)

    def remove(self, subscriber: Subscriber) -> None:
        for channel in list(subscriber.channels):
            self.unsubscribe(subscriber, channel)

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    def publish(self, channel: str, table: str, event_name: str, record: Optional[Dict[str, Any]] = None) -> int:
        """
        Publish a change to every subscriber of a channel.

        Safe to call from any thread. Returns the number of subscribers the
        change was scheduled for.
        """
        message = {
            "type": "change",
            "channel": channel,
            "table": table,
            "event": event_name,
            "record": record or {},
            "at": datetime.utcnow().isoformat(),
        }
        subscribers = list(self._channels.get(channel, ()))
        for subscriber in subscribers:
            try:
                subscriber.loop.call_soon_threadsafe(subscriber.deliver, message)
            except RuntimeError:
                # Loop already closed; the connection is gone
                self.remove(subscriber)
        return len(subscribers)


change_feed = ChangeFeed()


# =============================================================================
# TRANSACTION-BOUND PUBLISHING
# =============================================================================

def queue_change(db: Session, channel: str, table: str, event_name: str, record: Optional[Dict[str, Any]] = None) -> None:
    """Schedule a change to be published when `db` commits."""
    db.info.setdefault(PENDING_KEY, []).append((channel, table, event_name, record))


def queue_row_change(db: Session, channel: str, obj, event_name: str = "UPDATE") -> None:
    queue_change(db, channel, obj.__tablename__, event_name, serialize_row(obj))


# =============================================================================
# MATTER CHANNELS
# =============================================================================

INTERNAL_SUFFIX = ":internal"

# Columns a client subscriber may see, per table. Tables not listed here
# (case_comments, case_statements, ...) never reach the client channel.
CLIENT_FIELDS: Dict[str, tuple] = {
    "matters": (
        "id", "title", "description", "category", "jurisdiction", "status", "lifecycle_state",
        "current_stage_id", "deadline", "closed_at", "created_at",
    ),
    "matter_tasks": ("id", "matter_id", "title", "description", "status", "due_date", "completed_at"),
    "matter_updates": ("id", "matter_id", "author_role", "title", "content", "is_final", "created_at"),
    "case_documents": ("id", "matter_id", "update_id", "file_name", "file_size", "file_type", "created_at"),
    "court_reports": ("id", "matter_id", "content", "close_case", "is_first_report", "created_at"),
    "court_report_attachments": ("id", "report_id", "file_name", "file_size", "file_type", "created_at"),
    "case_messages": ("id", "matter_id", "sender_id", "sender_role", "message_body", "created_at"),
    "case_meetings": (
        "id", "matter_id", "client_id", "lawyer_user_id", "meeting_type", "proposed_start",
        "client_note", "status", "response_note", "created_at",
    ),
}


def matter_channel(matter_id: str) -> str:
    return f"matter:{matter_id}"


def internal_matter_channel(matter_id: str) -> str:
    return f"matter:{matter_id}{INTERNAL_SUFFIX}"


def client_projection(table: str, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    fields = CLIENT_FIELDS.get(table)
    if fields is None:
        return None
    return {key: record[key] for key in fields if key in record}


def queue_matter_change(
    db: Session,
    matter_id: str,
    obj,
    event_name: str = "UPDATE",
    client_visible: bool = False,
    client_record: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Publish a matter row: the full row to staff, and, when the row is
    client visible, its client projection (or `client_record`) to the client
    channel.
    """
    record = serialize_row(obj)
    table = obj.__tablename__
    queue_change(db, internal_matter_channel(matter_id), table, event_name, record)
    if not client_visible:
        return
    if client_record is None:
        client_record = client_projection(table, record)
    else:
        client_record = {key: _primitive(value) for key, value in client_record.items()}
    if client_record is not None:
        queue_change(db, matter_channel(matter_id), table, event_name, client_record)


def queue_matter_delete(db: Session, matter_id: str, table: str, row_id: str, client_visible: bool = False) -> None:
    queue_change(db, internal_matter_channel(matter_id), table, "DELETE", {"id": row_id})
    if client_visible and table in CLIENT_FIELDS:
        queue_change(db, matter_channel(matter_id), table, "DELETE", {"id": row_id})


@event.listens_for(Session, "after_commit")
def _publish_after_commit(session: Session) -> None:
    pending = session.info.pop(PENDING_KEY, None)
    if not pending:
        return
    for channel, table, event_name, record in pending:
        change_feed.publish(channel, table, event_name, record)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(PENDING_KEY, None)


# =============================================================================
# CHANNEL AUTHORIZATION
# =============================================================================

def authorize_channel(db: Session, auth, channel: str) -> bool:
    """Whether `auth` may listen on `channel`."""
    kind, _, resource_id = channel.partition(":")
    if not resource_id:
        return False

    if kind == "user":
        return resource_id == auth.user_id

    if kind == "firm":
        return bool(auth.is_staff and auth.firm_id == resource_id)

    if kind == "matter":
        from .db.models import Matter
        from . import rbac

        internal = resource_id.endswith(INTERNAL_SUFFIX)
        if internal:
            resource_id = resource_id[:-len(INTERNAL_SUFFIX)]
        matter = db.query(Matter).filter(Matter.id == resource_id).first()
        if not matter:
            return False
        if auth.is_client:
            return not internal and matter.client_id == auth.user_id
        return rbac.can_view_matter(auth, matter)

    return False


# =============================================================================
# WEBSOCKET SESSION
# =============================================================================

async def serve_websocket(websocket, auth) -> None:
    """
    Drive one authenticated WebSocket connection.

    Incoming: {"action": "subscribe"|"unsubscribe"|"ping", "channel": "..."}
    Outgoing: {"type": "connected"|"subscribed"|"unsubscribed"|"pong"|"error"|"change", ...}

    Replies to the client's own frames are sent directly; only changes go
    through the bounded queue.
    """
    from fastapi import WebSocketDisconnect
    from .db.session import get_db_session

    subscriber = change_feed.create_subscriber()
    send_lock = asyncio.Lock()

    async def send(message: Dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(message)

    await send({"type": "connected", "user_id": auth.user_id})
    logger.info(f"[WS] Connected: user={auth.email}")

    async def pump():
        while True:
            message = await subscriber.queue.get()
            await send(message)

    sender = asyncio.create_task(pump())
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await send({"type": "error", "detail": "Invalid JSON"})
                continue
            action = data.get("action") if isinstance(data, dict) else None
            channel = data.get("channel") if isinstance(data, dict) else None

            if action == "ping":
                await send({"type": "pong"})
            elif action == "subscribe" and channel:
                with get_db_session() as db:
                    allowed = authorize_channel(db, auth, channel)
                if allowed:
                    change_feed.subscribe(subscriber, channel)
                    await send({"type": "subscribed", "channel": channel})
                else:
                    logger.warning(f"[WS] {auth.user_id} denied channel {channel}")
                    await send({"type": "error", "channel": channel, "detail": "Not allowed"})
            elif action == "unsubscribe" and channel:
                change_feed.unsubscribe(subscriber, channel)
                await send({"type": "unsubscribed", "channel": channel})
            else:
                await send({"type": "error", "detail": "Unknown action"})
    except WebSocketDisconnect:
        logger.info(f"[WS] Disconnected: user={auth.email}")
    finally:
        sender.cancel()
        change_feed.remove(subscriber)
