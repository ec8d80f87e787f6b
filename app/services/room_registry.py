"""
Presence tracking and event fan-out for idea collaboration rooms.

A room is keyed by idea id and exists only while it has members.  Every
connection gets one ``Peer`` with a bounded outbox and a sender task, so a
broadcast never waits on a slow socket and each member receives events in
the order they were broadcast.

Usage
-----
    registry = RoomRegistry()
    registry.join_room(idea_id, websocket, RoomUser("u1", "Ada", None))
    registry.broadcast_message(idea_id, message_dict)
    registry.active_members(idea_id)
    registry.disconnect(websocket)
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, List, Optional, Protocol

from app.config import settings

logger = logging.getLogger(__name__)


EVENT_NEW_MESSAGE = "new_message"
EVENT_USER_JOINED = "user_joined"
EVENT_USER_LEFT = "user_left"


class Connection(Protocol):
    """Anything that can push JSON to a client (e.g. a Starlette WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


@dataclasses.dataclass(frozen=True)
class RoomUser:
    """Display identity attached to a connection."""

    user_id: str
    user_name: Optional[str] = None
    user_image: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "userImage": self.user_image,
        }


# ---------------------------------------------------------------------------
# Peer: one outbox + sender task per connection
# ---------------------------------------------------------------------------

class Peer:
    """Serialises outbound events for a single connection."""

    def __init__(self, connection: Connection, outbox_size: int) -> None:
        self.connection = connection
        self.user: Optional[RoomUser] = None
        self.rooms: set = set()
        # One extra slot so the close sentinel always fits
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size + 1)
        self._capacity = outbox_size
        self.dropped = 0
        self._closed = False
        self._broken = False
        self._task = asyncio.create_task(self._run())

    def deliver(self, event: str, payload: Any) -> bool:
        """Queue an event without suspending.  Returns False if it was dropped."""
        if self._closed or self._broken:
            return False
        if self.outbox.qsize() >= self._capacity:
            self.dropped += 1
            logger.warning(
                "Outbox full, dropping %r for %s (%d dropped)",
                event, self._label(), self.dropped,
            )
            return False
        self.outbox.put_nowait({"event": event, "data": payload})
        return True

    async def _run(self) -> None:
        while True:
            envelope = await self.outbox.get()
            try:
                if envelope is None:
                    return
                if not self._broken:
                    await self.connection.send_json(envelope)
            except Exception as exc:
                # The transport's disconnect path will remove this peer
                logger.info("Send to %s failed (%s); stopping delivery", self._label(), exc)
                self._broken = True
            finally:
                self.outbox.task_done()

    async def drain(self) -> None:
        """Wait until everything queued so far has been written (or discarded)."""
        await self.outbox.join()

    def close(self) -> None:
        """Stop accepting events; the sender exits once the backlog is written."""
        if self._closed:
            return
        self._closed = True
        self.outbox.put_nowait(None)

    def abort(self) -> asyncio.Task:
        """Stop immediately, discarding anything still queued."""
        self._closed = True
        self._task.cancel()
        return self._task

    def _label(self) -> str:
        return f"user={self.user.user_id}" if self.user else f"peer@{id(self.connection):x}"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class RoomRegistry:
    """
    Membership and fan-out for collaboration rooms.

    Membership changes (join, leave, disconnect) complete without yielding
    to the event loop, so each one is a critical section for its room even
    under concurrent joins and leaves from different connections.
    """

    def __init__(self, outbox_size: Optional[int] = None) -> None:
        self._outbox_size = outbox_size or settings.PEER_OUTBOX_SIZE
        # Keyed by id(connection): transports need not be hashable
        self._rooms: Dict[int, Dict[int, Peer]] = {}
        self._peers: Dict[int, Peer] = {}

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def join_room(
        self,
        idea_id: int,
        connection: Connection,
        user: Optional[RoomUser] = None,
    ) -> bool:
        """
        Register *connection* in the room for *idea_id*.

        Emits ``user_joined`` to every other member.  Re-joining with the
        same connection only re-emits.  Returns True when the connection was
        not a member before.
        """
        self.attach(connection, user)
        peer = self._peers[id(connection)]

        members = self._rooms.setdefault(idea_id, {})
        is_new = id(connection) not in members
        members[id(connection)] = peer
        peer.rooms.add(idea_id)

        self._emit_to_others(idea_id, connection, EVENT_USER_JOINED, self._presence_payload(idea_id, peer))
        if is_new:
            logger.info(
                "Room %d: %s joined (%d connection(s))", idea_id, peer._label(), len(members)
            )
        return is_new

    def leave_room(self, idea_id: int, connection: Connection) -> bool:
        """
        Remove *connection* from the room for *idea_id*.

        Safe for non-members (returns False).  Emits ``user_left`` to the
        remaining members and drops the room once it is empty.
        """
        members = self._rooms.get(idea_id)
        if not members or id(connection) not in members:
            return False

        peer = members.pop(id(connection))
        peer.rooms.discard(idea_id)

        if members:
            self._emit_to_others(idea_id, connection, EVENT_USER_LEFT, self._presence_payload(idea_id, peer))
        else:
            del self._rooms[idea_id]

        logger.info("Room %d: %s left (%d connection(s))", idea_id, peer._label(), len(members))
        return True

    def attach(self, connection: Connection, user: Optional[RoomUser] = None) -> None:
        """Register a connection before it joins any room (its outbox starts now)."""
        peer = self._peers.get(id(connection))
        if peer is None:
            peer = Peer(connection, self._outbox_size)
            self._peers[id(connection)] = peer
        if user is not None:
            peer.user = user

    def disconnect(self, connection: Connection) -> List[int]:
        """
        Transport-level disconnect: leave every room the connection is in
        (same side effects as ``leave_room``) and stop its outbox.
        """
        peer = self._peers.get(id(connection))
        if peer is None:
            return []
        left = sorted(peer.rooms)
        for idea_id in left:
            self.leave_room(idea_id, connection)
        self._peers.pop(id(connection), None)
        peer.close()
        return left

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def broadcast(self, idea_id: int, event: str, payload: Any) -> int:
        """
        Queue *event* for every member of the room.  Never suspends.

        The caller must have persisted anything it broadcasts.  Returns the
        number of members the event was queued for.
        """
        delivered = 0
        for peer in list(self._rooms.get(idea_id, {}).values()):
            if peer.deliver(event, payload):
                delivered += 1
        return delivered

    def broadcast_message(self, idea_id: int, message: Dict[str, Any]) -> int:
        """Broadcast an already-persisted chat message as ``new_message``."""
        return self.broadcast(idea_id, EVENT_NEW_MESSAGE, message)

    def send_to(self, connection: Connection, event: str, payload: Any) -> bool:
        """Queue an event for one connection (through its outbox, so ordering holds)."""
        peer = self._peers.get(id(connection))
        if peer is None:
            return False
        return peer.deliver(event, payload)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def active_members(self, idea_id: int) -> List[RoomUser]:
        """Identified members of the room, one entry per user, in join order."""
        seen: Dict[str, RoomUser] = {}
        for peer in self._rooms.get(idea_id, {}).values():
            if peer.user is not None and peer.user.user_id not in seen:
                seen[peer.user.user_id] = peer.user
        return list(seen.values())

    def connection_count(self, idea_id: int) -> int:
        return len(self._rooms.get(idea_id, {}))

    def room_ids(self) -> List[int]:
        return sorted(self._rooms)

    def rooms_of(self, connection: Connection) -> List[int]:
        peer = self._peers.get(id(connection))
        return sorted(peer.rooms) if peer else []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Wait until every queued event has been written."""
        await asyncio.gather(*(peer.drain() for peer in list(self._peers.values())))

    async def close(self) -> None:
        """Stop all peers and forget every room (process shutdown)."""
        tasks = [peer.abort() for peer in list(self._peers.values())]
        await asyncio.gather(*tasks, return_exceptions=True)
        self._peers.clear()
        self._rooms.clear()
        logger.info("Room registry closed")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit_to_others(self, idea_id: int, sender: Connection, event: str, payload: Any) -> None:
        for key, peer in list(self._rooms.get(idea_id, {}).items()):
            if key != id(sender):
                peer.deliver(event, payload)

    @staticmethod
    def _presence_payload(idea_id: int, peer: Peer) -> Dict[str, Any]:
        return {"ideaId": idea_id, "userId": peer.user.user_id if peer.user else None}
