"""Connection membership guard.

A connection is the authorization boundary for sessions and messages: only
its mentor and mentee may read or change anything scoped to it. Every
session and message operation resolves access through this module first.
"""
from __future__ import annotations

from dataclasses import dataclass

from rest_framework.exceptions import NotFound, PermissionDenied

from .models import Connection


AUTHORIZED = "authorized"
FORBIDDEN = "forbidden"
NOT_FOUND = "not_found"


@dataclass
class ConnectionAccess:
    outcome: str
    connection: Connection | None = None

    @property
    def authorized(self) -> bool:
        return self.outcome == AUTHORIZED


def authorize_connection_access(connection_id, user_id, *, lock=False) -> ConnectionAccess:
    queryset = Connection.objects.all()
    if lock:
        queryset = queryset.select_for_update()
    connection = queryset.filter(id=connection_id).first()
    if connection is None:
        return ConnectionAccess(NOT_FOUND)
    if not connection.is_party(user_id):
        return ConnectionAccess(FORBIDDEN)
    return ConnectionAccess(AUTHORIZED, connection)


def require_connection_access(connection_id, user_id, *, lock=False) -> Connection:
    access = authorize_connection_access(connection_id, user_id, lock=lock)
    if access.outcome == NOT_FOUND:
        raise NotFound("Connection not found.")
    if access.outcome == FORBIDDEN:
        raise PermissionDenied("You are not a member of this connection.")
    return access.connection
