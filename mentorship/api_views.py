from django.contrib.auth import get_user_model
from django.db.models import Q
from django.utils import timezone
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from .access import require_connection_access
from .connections import decide_connection, list_connections, request_connection
from .messaging import list_threads, open_thread, read_thread, send_message, unread_message_count
from .models import Notification, SessionStatus
from .permissions import ROLE_MENTEE, ROLE_MENTOR, IsMenteeOrAdminRole, user_role
from .scheduling import (
    add_session_feedback,
    get_session,
    group_sessions_by_bucket,
    list_sessions,
    parse_date_bound,
    propose_session,
    transition_session,
)
from .serializers import (
    ConnectionDecisionSerializer,
    ConnectionRequestSerializer,
    ConnectionSerializer,
    MentorDirectorySerializer,
    MessageCreateSerializer,
    MessageSerializer,
    NotificationSerializer,
    SessionFeedbackSerializer,
    SessionProposalSerializer,
    SessionSerializer,
    SessionStatusSerializer,
    ThreadOpenSerializer,
    ThreadSerializer,
)


User = get_user_model()
TRUE_VALUES = {"1", "true", "True", "yes"}


def _int_param(value, field_name):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError({field_name: ["A valid integer is required."]}) from None


class MentorViewSet(viewsets.ReadOnlyModelViewSet):
    lookup_value_regex = r"\d+"
    queryset = (
        User.objects.filter(userprofile__role=ROLE_MENTOR, userprofile__is_approved=True)
        .select_related("userprofile")
        .order_by("first_name", "last_name", "id")
    )
    serializer_class = MentorDirectorySerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        term = (self.request.query_params.get("q") or "").strip()
        if term:
            # JSON list contents are searched as text so skills match on any backend.
            queryset = queryset.filter(
                Q(first_name__icontains=term)
                | Q(last_name__icontains=term)
                | Q(userprofile__bio__icontains=term)
                | Q(userprofile__skills__icontains=term)
            )
        return queryset


class ConnectionViewSet(viewsets.GenericViewSet):
    serializer_class = ConnectionSerializer
    lookup_value_regex = r"\d+"
    http_method_names = ["get", "post", "put", "patch", "head", "options"]

    def get_permissions(self):
        if self.action == "create":
            return [IsMenteeOrAdminRole()]
        return super().get_permissions()

    def get_serializer_class(self):
        if self.action == "create":
            return ConnectionRequestSerializer
        if self.action in {"update", "partial_update"}:
            return ConnectionDecisionSerializer
        return ConnectionSerializer

    def list(self, request):
        connections = list_connections(
            request.user.id,
            role=request.query_params.get("role"),
            status=request.query_params.get("status"),
        )
        return Response(ConnectionSerializer(connections, many=True, context={"request": request}).data)

    def create(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        if user_role(request.user) == ROLE_MENTEE:
            mentee_id = request.user.id
        else:
            mentee_id = data.get("mentee")
            if not mentee_id:
                raise ValidationError({"mentee": ["This field is required."]})
        connection = request_connection(mentee_id, data["mentor"], data.get("message", ""))
        return Response(ConnectionSerializer(connection, context={"request": request}).data)

    def retrieve(self, request, pk=None):
        connection = require_connection_access(pk, request.user.id)
        return Response(ConnectionSerializer(connection, context={"request": request}).data)

    def update(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        connection = decide_connection(pk, request.user.id, serializer.validated_data["decision"])
        return Response(ConnectionSerializer(connection, context={"request": request}).data)

    def partial_update(self, request, pk=None):
        return self.update(request, pk=pk)


class SessionViewSet(viewsets.GenericViewSet):
    serializer_class = SessionSerializer
    lookup_value_regex = r"\d+"

    def get_serializer_class(self):
        if self.action == "create":
            return SessionProposalSerializer
        if self.action in {"set_status", "update"}:
            return SessionStatusSerializer
        if self.action == "feedback":
            return SessionFeedbackSerializer
        return SessionSerializer

    def _render(self, sessions, now=None, many=False):
        context = {"request": self.request, "now": now or timezone.now()}
        return SessionSerializer(sessions, many=many, context=context).data

    def _filtered_sessions(self, request, now, bucket=None):
        params = request.query_params
        return list_sessions(
            request.user.id,
            role=params.get("role"),
            connection_id=_int_param(
                params.get("connection_id") or params.get("connectionId"), "connection_id"
            ),
            start_date=parse_date_bound(
                params.get("start_date") or params.get("startDate"), field_name="start_date"
            ),
            end_date=parse_date_bound(
                params.get("end_date") or params.get("endDate"),
                field_name="end_date",
                end_of_day=True,
            ),
            status=params.get("status"),
            bucket=bucket,
            now=now,
        )

    def list(self, request):
        now = timezone.now()
        sessions = self._filtered_sessions(request, now, bucket=request.query_params.get("bucket"))
        return Response(self._render(sessions, now=now, many=True))

    @action(detail=False, methods=["get"], url_path="buckets")
    def buckets(self, request):
        now = timezone.now()
        grouped = group_sessions_by_bucket(self._filtered_sessions(request, now), now)
        return Response(
            {name: self._render(items, now=now, many=True) for name, items in grouped.items()}
        )

    def create(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        session = propose_session(
            data["connection"],
            request.user.id,
            data["title"],
            data["start_time"],
            data["end_time"],
            description=data.get("description", ""),
        )
        return Response(self._render(session))

    def retrieve(self, request, pk=None):
        return Response(self._render(get_session(pk, request.user.id)))

    def destroy(self, request, pk=None):
        session = transition_session(pk, request.user.id, SessionStatus.CANCELLED)
        return Response(self._render(session))

    def update(self, request, pk=None):
        return self.set_status(request, pk=pk)

    @action(detail=True, methods=["patch", "put"], url_path="status")
    def set_status(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session = transition_session(
            pk,
            request.user.id,
            serializer.validated_data["status"],
            notes=serializer.validated_data.get("notes"),
        )
        return Response(self._render(session))

    @action(detail=True, methods=["patch"], url_path="feedback")
    def feedback(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session = add_session_feedback(pk, request.user.id, serializer.validated_data["feedback"])
        return Response(self._render(session))


class NotificationViewSet(
    mixins.ListModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = NotificationSerializer
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        queryset = Notification.objects.filter(user=self.request.user).order_by("-created_at", "-id")
        if self.action == "list" and self.request.query_params.get("unread") in TRUE_VALUES:
            queryset = queryset.filter(read=False)
        return queryset

    @action(detail=False, methods=["get"], url_path="unread-count")
    def unread_count(self, request):
        return Response({"count": self.get_queryset().filter(read=False).count()})

    @action(detail=True, methods=["post"], url_path="read")
    def mark_read(self, request, pk=None):
        notification = self.get_object()
        if not notification.read:
            notification.read = True
            notification.save(update_fields=["read"])
        return Response(self.get_serializer(notification).data)

    @action(detail=False, methods=["post"], url_path="read-all")
    def mark_all_read(self, request):
        updated = self.get_queryset().filter(read=False).update(read=True)
        return Response({"updated": updated})

    @action(detail=False, methods=["delete"], url_path="clear")
    def clear(self, request):
        deleted, _ = self.get_queryset().delete()
        return Response({"deleted": deleted})


class MessageViewSet(viewsets.GenericViewSet):
    serializer_class = MessageSerializer

    def get_serializer_class(self):
        if self.action == "create":
            return MessageCreateSerializer
        if self.action == "threads":
            return ThreadOpenSerializer if self.request.method == "POST" else ThreadSerializer
        return MessageSerializer

    def list(self, request):
        connection_id = _int_param(
            request.query_params.get("connection_id") or request.query_params.get("connectionId"),
            "connection_id",
        )
        if not connection_id:
            raise ValidationError({"connection_id": ["Connection ID is required."]})
        messages = read_thread(connection_id, request.user.id)
        return Response(MessageSerializer(messages, many=True).data)

    def create(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = send_message(
            serializer.validated_data["connection"],
            request.user,
            serializer.validated_data["content"],
        )
        return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="unread-count")
    def unread_count(self, request):
        return Response({"count": unread_message_count(request.user.id)})

    @action(detail=False, methods=["get", "post"], url_path="threads")
    def threads(self, request):
        if request.method == "POST":
            serializer = self.get_serializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            connection = open_thread(request.user.id, serializer.validated_data["counterpart"])
            return Response({"thread_id": connection.id})
        threads = list_threads(request.user.id)
        return Response(ThreadSerializer(threads, many=True, context={"request": request}).data)
