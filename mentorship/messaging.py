import logging

from django.db import transaction
from django.db.models import Count, OuterRef, Q, Subquery
from rest_framework.exceptions import NotFound, ValidationError

from .access import require_connection_access
from .directory import display_name
from .models import Connection, ConnectionStatus, Message
from .notifications import TYPE_NEW_MESSAGE, notify


logger = logging.getLogger(__name__)


def send_message(connection_id, sender, content):
    content = str(content or "").strip()
    if not content:
        raise ValidationError({"content": ["Message cannot be empty."]})
    connection = require_connection_access(connection_id, sender.id)
    message = Message.objects.create(
        connection=connection,
        sender_id=sender.id,
        recipient_id=connection.counterpart_id(sender.id),
        content=content,
    )
    notify(
        message.recipient_id,
        "New Message",
        f"New message from {display_name(sender)}",
        TYPE_NEW_MESSAGE,
        entity_id=connection.id,
    )
    return message


def read_thread(connection_id, user_id):
    connection = require_connection_access(connection_id, user_id)
    with transaction.atomic():
        messages = list(
            Message.objects.filter(connection=connection)
            .select_related("sender", "recipient")
            .order_by("created_at", "id")
        )
        marked = Message.objects.filter(
            connection=connection, recipient_id=user_id, read=False
        ).update(read=True)
    if marked:
        logger.debug("Marked %s messages read on connection %s for user %s", marked, connection.id, user_id)
    return messages


def unread_message_count(user_id):
    return Message.objects.filter(recipient_id=user_id, read=False).count()


def list_threads(user_id):
    """Accepted connections of the user as message threads.

    Threads that have messages come first, most recent activity first; the
    rest follow by connection update time. ``unread_count`` counts unread
    messages sent by the counterpart.
    """
    latest = Message.objects.filter(connection=OuterRef("pk")).order_by("-created_at", "-id")
    threads = list(
        Connection.objects.filter(
            Q(mentor_id=user_id) | Q(mentee_id=user_id),
            status=ConnectionStatus.ACCEPTED,
        )
        .select_related("mentor__userprofile", "mentee__userprofile")
        .annotate(
            unread_count=Count(
                "messages",
                filter=Q(messages__read=False) & ~Q(messages__sender_id=user_id),
            ),
            last_message_id=Subquery(latest.values("id")[:1]),
            last_message_at=Subquery(latest.values("created_at")[:1]),
        )
    )
    last_messages = Message.objects.select_related("sender").in_bulk(
        [item.last_message_id for item in threads if item.last_message_id]
    )
    for item in threads:
        item.last_message = last_messages.get(item.last_message_id)
        item.thread_updated_at = item.last_message_at or item.updated_at
    threads.sort(key=lambda item: item.thread_updated_at, reverse=True)
    threads.sort(key=lambda item: item.last_message is None)
    return threads


def open_thread(user_id, counterpart_id):
    connection = (
        Connection.objects.filter(status=ConnectionStatus.ACCEPTED)
        .filter(
            Q(mentor_id=user_id, mentee_id=counterpart_id)
            | Q(mentor_id=counterpart_id, mentee_id=user_id)
        )
        .first()
    )
    if connection is None:
        raise NotFound("No accepted connection found with this user.")
    return connection
