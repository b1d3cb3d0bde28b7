"""Room Router: project id -> connections interested in that project.

Rooms are created lazily on the first join and dropped when the last member
leaves; an empty room is simply absent. Membership is the only state here
and this class is the only place that mutates it.
"""

import threading
from collections import defaultdict

import structlog

from realtime.errors import InvalidIdentifierError

logger = structlog.get_logger(__name__)


def _require_identifier(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidIdentifierError(f"Invalid {name}: {value!r}")
    return value


class RoomRouter:
    """Tracks which connections have joined which project rooms.

    Joins are trusted: a client only asks to join a project it has already
    loaded through the authorized REST API, so no access check happens here.

    Thread Safety:
        Both indexes are updated under one threading.Lock, and reads return
        copies, so ``members_of`` always reflects every join, leave and
        disconnect that completed before it was called.

    Attributes:
        _rooms: project_id -> connection ids in that room.
        _memberships: connection_id -> project ids it has joined.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[str]] = {}
        self._memberships: dict[str, set[str]] = defaultdict(set)
        self._lock = threading.Lock()

    def join(self, connection_id: str, project_id: str) -> None:
        """Add a connection to a project's room. Joining twice is a no-op.

        Raises:
            InvalidIdentifierError: If either identifier is empty or not a string.
        """
        _require_identifier(connection_id, "connection_id")
        _require_identifier(project_id, "project_id")

        with self._lock:
            members = self._rooms.setdefault(project_id, set())
            already_member = connection_id in members
            members.add(connection_id)
            self._memberships[connection_id].add(project_id)
            room_size = len(members)

        if already_member:
            logger.debug("room_join_noop", connection_id=connection_id, project_id=project_id)
            return
        logger.info(
            "room_joined",
            connection_id=connection_id,
            project_id=project_id,
            room_size=room_size,
        )

    def leave(self, connection_id: str, project_id: str) -> None:
        """Remove a connection from a project's room. Non-members are a no-op.

        Raises:
            InvalidIdentifierError: If either identifier is empty or not a string.
        """
        _require_identifier(connection_id, "connection_id")
        _require_identifier(project_id, "project_id")

        with self._lock:
            removed = self._remove_locked(connection_id, project_id)
            joined = self._memberships.get(connection_id)
            if joined is not None and not joined:
                del self._memberships[connection_id]

        if removed:
            logger.info("room_left", connection_id=connection_id, project_id=project_id)
        else:
            logger.debug("room_leave_noop", connection_id=connection_id, project_id=project_id)

    def disconnect(self, connection_id: str) -> list[str]:
        """Remove a connection from every room it belongs to.

        Must be called on every termination path of a connection.

        Returns:
            The project ids the connection was removed from.
        """
        with self._lock:
            project_ids = sorted(self._memberships.pop(connection_id, set()))
            for project_id in project_ids:
                self._remove_locked(connection_id, project_id)

        logger.info(
            "room_connection_disconnected",
            connection_id=connection_id,
            rooms_left=len(project_ids),
        )
        return project_ids

    def members_of(self, project_id: str) -> set[str]:
        """Return a snapshot of the connection ids currently in a room."""
        with self._lock:
            return set(self._rooms.get(project_id, ()))

    def rooms_of(self, connection_id: str) -> set[str]:
        """Return a snapshot of the project ids a connection has joined."""
        with self._lock:
            return set(self._memberships.get(connection_id, ()))

    def active_rooms(self) -> list[str]:
        """Return the project ids of every non-empty room."""
        with self._lock:
            return list(self._rooms.keys())

    def room_count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def _remove_locked(self, connection_id: str, project_id: str) -> bool:
        """Drop one membership. Caller must hold ``_lock``."""
        members = self._rooms.get(project_id)
        if members is None or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            del self._rooms[project_id]
            logger.debug("room_emptied", project_id=project_id)
        joined = self._memberships.get(connection_id)
        if joined is not None:
            joined.discard(project_id)
        return True
