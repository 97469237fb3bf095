"""Session proposals, status transitions and list bucketing.

Sessions belong to one accepted connection. Intervals are compared with
inclusive bounds, so a session ending at 11:00 conflicts with one starting
at 11:00. Cancelled and declined sessions no longer hold their slot.

    PENDING   -> SCHEDULED | DECLINED     (mentor only)
    SCHEDULED -> COMPLETED | CANCELLED    (either party)
"""
from __future__ import annotations

import logging
from datetime import datetime, time

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from .access import require_connection_access
from .directory import display_name
from .exceptions import Conflict, InvalidTransition
from .models import ConnectionStatus, Session, SessionStatus
from .notifications import (
    TYPE_NEW_SESSION,
    TYPE_SESSION_FEEDBACK,
    TYPE_SESSION_REQUEST,
    NotificationEvent,
    emit,
    session_status_event,
)
from .permissions import ROLE_MENTEE, ROLE_MENTOR, normalize_role


logger = logging.getLogger(__name__)
User = get_user_model()

ALLOWED_TRANSITIONS = {
    SessionStatus.PENDING: {SessionStatus.SCHEDULED, SessionStatus.DECLINED},
    SessionStatus.SCHEDULED: {SessionStatus.COMPLETED, SessionStatus.CANCELLED},
}
MENTOR_ONLY_TRANSITIONS = {
    (SessionStatus.PENDING, SessionStatus.SCHEDULED),
    (SessionStatus.PENDING, SessionStatus.DECLINED),
}
RELEASED_STATUSES = {SessionStatus.CANCELLED, SessionStatus.DECLINED}

BUCKET_UPCOMING = "upcoming"
BUCKET_PAST = "past"
BUCKET_PENDING = "pending"
BUCKET_CANCELLED = "cancelled"
BUCKETS = (BUCKET_UPCOMING, BUCKET_PAST, BUCKET_PENDING, BUCKET_CANCELLED)


def intervals_overlap(a_start, a_end, b_start, b_end) -> bool:
    return a_start <= b_end and a_end >= b_start


def session_bucket(status, start_time, end_time, now) -> str:
    if status == SessionStatus.PENDING:
        return BUCKET_PENDING
    if status in RELEASED_STATUSES:
        return BUCKET_CANCELLED
    if status == SessionStatus.COMPLETED:
        return BUCKET_PAST
    if end_time < now:
        return BUCKET_PAST
    return BUCKET_UPCOMING


def parse_session_status(value, field_name="status"):
    normalized = str(value or "").strip().upper()
    if normalized not in SessionStatus.values:
        raise ValidationError(
            {field_name: [f"Must be one of {', '.join(SessionStatus.values)}."]}
        )
    return SessionStatus(normalized)


def parse_bucket(value):
    bucket = str(value or "").strip().lower()
    if bucket not in BUCKETS:
        raise ValidationError({"bucket": [f"Must be one of {', '.join(BUCKETS)}."]})
    return bucket


def parse_date_bound(value, *, field_name, end_of_day=False):
    """Accept an ISO datetime or a bare date; bare end dates cover the whole day."""
    if value in (None, ""):
        return None
    raw = str(value).strip()
    parsed = parse_datetime(raw)
    if parsed is None:
        day = parse_date(raw)
        if day is None:
            raise ValidationError({field_name: ["Enter a valid date or datetime."]})
        parsed = datetime.combine(day, time.max if end_of_day else time.min)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_default_timezone())
    return parsed


def mentor_wide_conflicts_enabled() -> bool:
    return bool(getattr(settings, "MENTORBRIDGE_MENTOR_WIDE_CONFLICTS", False))


def overlapping_sessions(connection, start_time, end_time, *, mentor_wide=False):
    queryset = Session.objects.exclude(status__in=RELEASED_STATUSES)
    if mentor_wide:
        queryset = queryset.filter(connection__mentor_id=connection.mentor_id)
    else:
        queryset = queryset.filter(connection_id=connection.id)
    return queryset.filter(start_time__lte=end_time, end_time__gte=start_time)


def _proposal_event(session, connection, acting_user_id):
    if acting_user_id == connection.mentor_id:
        return NotificationEvent(
            recipient_id=connection.mentee_id,
            title="New Session Scheduled",
            message=f"New session scheduled: {session.title}",
            type=TYPE_NEW_SESSION,
            entity_id=str(session.id),
        )
    requester = User.objects.filter(id=acting_user_id).first()
    requester_name = display_name(requester) if requester else "Your mentee"
    return NotificationEvent(
        recipient_id=connection.mentor_id,
        title="New Session Request",
        message=f"{requester_name} requested a session: {session.title}",
        type=TYPE_SESSION_REQUEST,
        entity_id=str(session.id),
    )


def propose_session(connection_id, acting_user_id, title, start_time, end_time, description=""):
    if not str(title or "").strip():
        raise ValidationError({"title": ["This field is required."]})
    if start_time >= end_time:
        raise ValidationError({"end_time": ["end_time must be after start_time."]})

    mentor_wide = mentor_wide_conflicts_enabled()
    with transaction.atomic():
        connection = require_connection_access(connection_id, acting_user_id, lock=True)
        if connection.status != ConnectionStatus.ACCEPTED:
            raise PermissionDenied("Sessions can only be scheduled on accepted connections.")
        if mentor_wide:
            # Serializes proposals across all of the mentor's connections.
            list(User.objects.select_for_update().filter(id=connection.mentor_id))
        if overlapping_sessions(connection, start_time, end_time, mentor_wide=mentor_wide).exists():
            raise Conflict("Time slot is already booked", code="slot_taken")

        is_mentor = acting_user_id == connection.mentor_id
        session = Session.objects.create(
            connection=connection,
            created_by_id=acting_user_id,
            title=title.strip(),
            description=description or "",
            start_time=start_time,
            end_time=end_time,
            status=SessionStatus.SCHEDULED if is_mentor else SessionStatus.PENDING,
        )

    logger.info(
        "Session %s proposed on connection %s by user %s (%s)",
        session.id,
        connection.id,
        acting_user_id,
        session.status,
    )
    emit(_proposal_event(session, connection, acting_user_id))
    return session


def _load_session(session_id):
    session = Session.objects.select_related("connection").filter(id=session_id).first()
    if session is None:
        raise NotFound("Session not found.")
    return session


def get_session(session_id, user_id):
    session = _load_session(session_id)
    require_connection_access(session.connection_id, user_id)
    return session


def transition_session(session_id, acting_user_id, new_status, notes=None):
    new_status = parse_session_status(new_status)
    session = _load_session(session_id)
    connection = require_connection_access(session.connection_id, acting_user_id)

    current = SessionStatus(session.status)
    if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(
            f"Cannot change a {current.lower()} session to {new_status.lower()}.",
            details={"status": current},
        )
    if (current, new_status) in MENTOR_ONLY_TRANSITIONS and acting_user_id != connection.mentor_id:
        raise PermissionDenied("Only the mentor can approve or decline session requests.")

    changes = {"status": new_status, "updated_at": timezone.now()}
    if notes is not None and new_status == SessionStatus.COMPLETED:
        changes["notes"] = notes
    updated = Session.objects.filter(id=session.id, status=current).update(**changes)
    session.refresh_from_db()
    if not updated:
        raise InvalidTransition(
            f"Session is already {session.status.lower()}.",
            details={"status": session.status},
        )

    logger.info(
        "Session %s moved %s -> %s by user %s", session.id, current, new_status, acting_user_id
    )
    emit(session_status_event(session, connection.counterpart_id(acting_user_id), new_status))
    return session


def add_session_feedback(session_id, acting_user_id, feedback):
    session = _load_session(session_id)
    connection = require_connection_access(session.connection_id, acting_user_id)
    if acting_user_id != connection.mentor_id:
        raise PermissionDenied("Only the mentor can leave session feedback.")
    if session.status != SessionStatus.COMPLETED:
        raise Conflict(
            "Feedback can only be added to completed sessions.",
            details={"status": session.status},
        )
    session.feedback = feedback or ""
    session.save(update_fields=["feedback", "updated_at"])
    emit(
        NotificationEvent(
            recipient_id=connection.mentee_id,
            title="New Session Feedback",
            message="Your mentor has provided feedback for your session.",
            type=TYPE_SESSION_FEEDBACK,
            entity_id=str(session.id),
        )
    )
    return session


def list_sessions(
    user_id,
    role=None,
    connection_id=None,
    start_date=None,
    end_date=None,
    status=None,
    bucket=None,
    now=None,
):
    queryset = Session.objects.select_related(
        "connection__mentor__userprofile",
        "connection__mentee__userprofile",
    )
    if connection_id:
        require_connection_access(connection_id, user_id)
        queryset = queryset.filter(connection_id=connection_id)

    if role:
        normalized_role = normalize_role(role)
        if normalized_role not in {ROLE_MENTOR, ROLE_MENTEE}:
            raise ValidationError({"role": ["Must be MENTOR or MENTEE."]})
        if normalized_role == ROLE_MENTOR:
            queryset = queryset.filter(connection__mentor_id=user_id)
        else:
            queryset = queryset.filter(connection__mentee_id=user_id)
    else:
        queryset = queryset.filter(
            Q(connection__mentor_id=user_id) | Q(connection__mentee_id=user_id)
        )

    if start_date:
        queryset = queryset.filter(start_time__gte=start_date)
    if end_date:
        queryset = queryset.filter(start_time__lte=end_date)
    if status:
        queryset = queryset.filter(status=parse_session_status(status))

    sessions = list(queryset.order_by("start_time", "id"))
    if bucket:
        bucket = parse_bucket(bucket)
        now = now or timezone.now()
        sessions = [
            item
            for item in sessions
            if session_bucket(item.status, item.start_time, item.end_time, now) == bucket
        ]
    return sessions


def group_sessions_by_bucket(sessions, now):
    grouped = {name: [] for name in BUCKETS}
    for item in sessions:
        grouped[session_bucket(item.status, item.start_time, item.end_time, now)].append(item)
    return grouped
