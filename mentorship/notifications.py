"""Best-effort notification delivery.

Notifications are side effects of connection and session changes. They are
written after the primary change has committed, inside their own savepoint,
and a failed write is logged and dropped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction

from .models import Notification, SessionStatus


logger = logging.getLogger(__name__)

TYPE_MENTEE_REQUEST = "MENTEE_REQUEST"
TYPE_REQUEST_SENT = "REQUEST_SENT"
TYPE_REQUEST_ACCEPTED = "REQUEST_ACCEPTED"
TYPE_CONNECTION_MADE = "CONNECTION_MADE"
TYPE_REQUEST_REJECTED = "REQUEST_REJECTED"
TYPE_NEW_SESSION = "NEW_SESSION"
TYPE_SESSION_REQUEST = "SESSION_REQUEST"
TYPE_SESSION_UPDATE = "SESSION_UPDATE"
TYPE_SESSION_FEEDBACK = "SESSION_FEEDBACK"
TYPE_NEW_MESSAGE = "NEW_MESSAGE"

SESSION_STATUS_TEMPLATES = {
    SessionStatus.SCHEDULED: (
        "Session Approved",
        'Your session request "{title}" has been approved.',
    ),
    SessionStatus.COMPLETED: (
        "Session Completed",
        'Session "{title}" has been marked as complete.',
    ),
    SessionStatus.DECLINED: (
        "Session Declined",
        'Unfortunately, your session request "{title}" has been declined.',
    ),
    SessionStatus.CANCELLED: (
        "Session Cancelled",
        'Session "{title}" has been cancelled.',
    ),
}


@dataclass
class NotificationEvent:
    recipient_id: int
    title: str
    message: str
    type: str
    entity_id: str = ""


def notify(recipient_id, title, message, notification_type, entity_id=None):
    return emit(
        NotificationEvent(
            recipient_id=recipient_id,
            title=title,
            message=message,
            type=notification_type,
            entity_id="" if entity_id is None else str(entity_id),
        )
    )


def emit(event: NotificationEvent):
    try:
        with transaction.atomic():
            return Notification.objects.create(
                user_id=event.recipient_id,
                title=event.title,
                message=event.message,
                type=event.type,
                entity_id=event.entity_id,
            )
    except Exception:
        logger.exception(
            "Failed to persist %s notification for user %s (entity %s)",
            event.type,
            event.recipient_id,
            event.entity_id or "-",
        )
        return None


def emit_all(events):
    return [emit(event) for event in events]


def session_status_event(session, recipient_id, new_status) -> NotificationEvent:
    title, template = SESSION_STATUS_TEMPLATES.get(
        new_status,
        ("Session Update", 'Session "{title}" status has been updated to {status}.'),
    )
    return NotificationEvent(
        recipient_id=recipient_id,
        title=title,
        message=template.format(title=session.title, status=str(new_status).lower()),
        type=TYPE_SESSION_UPDATE,
        entity_id=str(session.id),
    )
