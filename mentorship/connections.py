"""Mentor/mentee connection lifecycle.

PENDING -> ACCEPTED and PENDING -> REJECTED are the only decisions, made once
by the mentor. A rejected pair may be requested again, which reopens the same
row as PENDING (one row per mentor/mentee pair).
"""
import logging

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from .directory import get_user
from .exceptions import Conflict, InvalidTransition
from .models import Connection, ConnectionStatus
from .notifications import (
    TYPE_CONNECTION_MADE,
    TYPE_MENTEE_REQUEST,
    TYPE_REQUEST_ACCEPTED,
    TYPE_REQUEST_REJECTED,
    TYPE_REQUEST_SENT,
    NotificationEvent,
    emit_all,
)
from .permissions import ROLE_MENTEE, ROLE_MENTOR, normalize_role


logger = logging.getLogger(__name__)

DECISION_ACTIONS = {
    "accept": ConnectionStatus.ACCEPTED,
    "reject": ConnectionStatus.REJECTED,
}


def parse_connection_status(value, field_name="status"):
    normalized = str(value or "").strip().upper()
    if normalized not in ConnectionStatus.values:
        raise ValidationError(
            {field_name: [f"Must be one of {', '.join(ConnectionStatus.values)}."]}
        )
    return ConnectionStatus(normalized)


def parse_decision(status=None, action=None):
    if status:
        decision = parse_connection_status(status)
    elif action:
        decision = DECISION_ACTIONS.get(str(action).strip().lower())
        if decision is None:
            raise ValidationError({"action": ["Must be accept or reject."]})
    else:
        raise ValidationError({"status": ["This field is required."]})
    if decision == ConnectionStatus.PENDING:
        raise ValidationError({"status": ["Decision must be ACCEPTED or REJECTED."]})
    return decision


def _request_events(connection, mentee, mentor):
    return [
        NotificationEvent(
            recipient_id=mentor.id,
            title="New Connection Request",
            message=f"New connection request from {mentee.name}",
            type=TYPE_MENTEE_REQUEST,
            entity_id=str(connection.id),
        ),
        NotificationEvent(
            recipient_id=mentee.id,
            title="Connection Request Sent",
            message=f"Your connection request has been sent to {mentor.name}",
            type=TYPE_REQUEST_SENT,
            entity_id=str(connection.id),
        ),
    ]


def _decision_events(connection):
    if connection.status == ConnectionStatus.ACCEPTED:
        return [
            NotificationEvent(
                recipient_id=connection.mentee_id,
                title="Request Accepted",
                message="Your connection request has been accepted",
                type=TYPE_REQUEST_ACCEPTED,
                entity_id=str(connection.id),
            ),
            NotificationEvent(
                recipient_id=connection.mentor_id,
                title="Connection Made",
                message="You have accepted a new connection",
                type=TYPE_CONNECTION_MADE,
                entity_id=str(connection.id),
            ),
        ]
    return [
        NotificationEvent(
            recipient_id=connection.mentee_id,
            title="Request Rejected",
            message="Your connection request has been declined",
            type=TYPE_REQUEST_REJECTED,
            entity_id=str(connection.id),
        ),
    ]


def _already_exists(connection):
    return Conflict(
        "Connection already exists.",
        code="connection_exists",
        details={"status": connection.status, "connection_id": connection.id},
    )


def request_connection(mentee_id, mentor_id, message=""):
    if str(mentee_id) == str(mentor_id):
        raise ValidationError({"mentor": ["You cannot connect with yourself."]})

    mentee = get_user(mentee_id)
    mentor = get_user(mentor_id)
    if mentor.role != ROLE_MENTOR:
        raise ValidationError({"mentor": ["Selected user is not a mentor."]})
    if not mentor.approved:
        # Unapproved mentors are hidden from the directory.
        raise NotFound(f"User {mentor_id} not found.")
    if mentee.role != ROLE_MENTEE:
        raise ValidationError({"mentee": ["Only mentees can request a connection."]})

    with transaction.atomic():
        existing = (
            Connection.objects.select_for_update()
            .filter(mentor_id=mentor.id, mentee_id=mentee.id)
            .first()
        )
        if existing is None:
            try:
                with transaction.atomic():
                    connection = Connection.objects.create(
                        mentor_id=mentor.id,
                        mentee_id=mentee.id,
                        status=ConnectionStatus.PENDING,
                        message=message or "",
                    )
            except IntegrityError:
                raise _already_exists(
                    Connection.objects.get(mentor_id=mentor.id, mentee_id=mentee.id)
                ) from None
        elif existing.status == ConnectionStatus.REJECTED:
            reopened = Connection.objects.filter(
                id=existing.id, status=ConnectionStatus.REJECTED
            ).update(
                status=ConnectionStatus.PENDING,
                message=message or "",
                updated_at=timezone.now(),
            )
            existing.refresh_from_db()
            if not reopened:
                raise _already_exists(existing)
            connection = existing
        else:
            raise _already_exists(existing)

    logger.info(
        "Connection %s requested by mentee %s for mentor %s",
        connection.id,
        mentee.id,
        mentor.id,
    )
    emit_all(_request_events(connection, mentee, mentor))
    return connection


def decide_connection(connection_id, acting_user_id, decision):
    decision = parse_decision(status=decision)
    connection = Connection.objects.filter(id=connection_id).first()
    if connection is None:
        raise NotFound("Connection not found.")
    if connection.mentor_id != acting_user_id:
        raise PermissionDenied("Only the mentor of this connection can respond to the request.")

    updated = Connection.objects.filter(
        id=connection.id, status=ConnectionStatus.PENDING
    ).update(status=decision, updated_at=timezone.now())
    connection.refresh_from_db()
    if not updated:
        raise InvalidTransition(
            f"Connection has already been {connection.status.lower()}.",
            details={"status": connection.status},
        )

    logger.info("Connection %s %s by mentor %s", connection.id, decision.lower(), acting_user_id)
    emit_all(_decision_events(connection))
    return connection


def list_connections(user_id, role=None, status=None):
    queryset = Connection.objects.select_related("mentor__userprofile", "mentee__userprofile")
    if role:
        normalized_role = normalize_role(role)
        if normalized_role not in {ROLE_MENTOR, ROLE_MENTEE}:
            raise ValidationError({"role": ["Must be MENTOR or MENTEE."]})
        if normalized_role == ROLE_MENTOR:
            queryset = queryset.filter(mentor_id=user_id)
        else:
            queryset = queryset.filter(mentee_id=user_id)
    else:
        queryset = queryset.filter(Q(mentor_id=user_id) | Q(mentee_id=user_id))
    if status:
        queryset = queryset.filter(status=parse_connection_status(status))
    return queryset.order_by("-created_at", "-id")
