from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework import serializers

from .connections import parse_decision
from .directory import display_name, summarize_profile, user_card
from .models import Connection, Message, Notification, Session
from .scheduling import session_bucket


User = get_user_model()


def _request_user_id(serializer):
    request = serializer.context.get("request")
    user = getattr(request, "user", None)
    return getattr(user, "id", None)


class MentorDirectorySerializer(serializers.ModelSerializer):
    name = serializers.SerializerMethodField()
    profile = serializers.SerializerMethodField()
    is_approved = serializers.BooleanField(source="userprofile.is_approved", read_only=True)

    class Meta:
        model = User
        fields = ["id", "name", "email", "is_approved", "profile"]

    def get_name(self, obj):
        return display_name(obj)

    def get_profile(self, obj):
        return summarize_profile(getattr(obj, "userprofile", None)).as_dict()


class ConnectionSerializer(serializers.ModelSerializer):
    mentor_detail = serializers.SerializerMethodField()
    mentee_detail = serializers.SerializerMethodField()
    counterpart = serializers.SerializerMethodField()

    class Meta:
        model = Connection
        fields = [
            "id",
            "mentor",
            "mentee",
            "status",
            "message",
            "created_at",
            "updated_at",
            "mentor_detail",
            "mentee_detail",
            "counterpart",
        ]
        read_only_fields = fields

    def get_mentor_detail(self, obj):
        return user_card(obj.mentor)

    def get_mentee_detail(self, obj):
        return user_card(obj.mentee)

    def get_counterpart(self, obj):
        user_id = _request_user_id(self)
        if user_id == obj.mentor_id:
            return user_card(obj.mentee)
        if user_id == obj.mentee_id:
            return user_card(obj.mentor)
        return None


class ConnectionRequestSerializer(serializers.Serializer):
    mentor = serializers.IntegerField(min_value=1)
    mentee = serializers.IntegerField(min_value=1, required=False)
    message = serializers.CharField(required=False, allow_blank=True, default="")


class ConnectionDecisionSerializer(serializers.Serializer):
    status = serializers.CharField(required=False)
    action = serializers.CharField(required=False)

    def validate(self, attrs):
        attrs["decision"] = parse_decision(
            status=attrs.get("status"),
            action=attrs.get("action"),
        )
        return attrs


class SessionSerializer(serializers.ModelSerializer):
    mentor = serializers.IntegerField(source="connection.mentor_id", read_only=True)
    mentee = serializers.IntegerField(source="connection.mentee_id", read_only=True)
    bucket = serializers.SerializerMethodField()
    counterpart = serializers.SerializerMethodField()

    class Meta:
        model = Session
        fields = [
            "id",
            "connection",
            "mentor",
            "mentee",
            "created_by",
            "title",
            "description",
            "start_time",
            "end_time",
            "status",
            "notes",
            "feedback",
            "bucket",
            "counterpart",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_bucket(self, obj):
        now = self.context.get("now") or timezone.now()
        return session_bucket(obj.status, obj.start_time, obj.end_time, now)

    def get_counterpart(self, obj):
        user_id = _request_user_id(self)
        connection = obj.connection
        if user_id == connection.mentor_id:
            return user_card(connection.mentee)
        if user_id == connection.mentee_id:
            return user_card(connection.mentor)
        return None


class SessionProposalSerializer(serializers.Serializer):
    connection = serializers.IntegerField(min_value=1)
    title = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField()

    def validate(self, attrs):
        if attrs["start_time"] >= attrs["end_time"]:
            raise serializers.ValidationError(
                {"end_time": "end_time must be after start_time."}
            )
        return attrs


class SessionStatusSerializer(serializers.Serializer):
    status = serializers.CharField()
    notes = serializers.CharField(required=False, allow_blank=True)


class SessionFeedbackSerializer(serializers.Serializer):
    feedback = serializers.CharField(allow_blank=True)


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id", "title", "message", "type", "entity_id", "read", "created_at"]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    sender_name = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = ["id", "connection", "sender", "sender_name", "recipient", "content", "read", "created_at"]
        read_only_fields = fields

    def get_sender_name(self, obj):
        return display_name(obj.sender)


class MessageCreateSerializer(serializers.Serializer):
    connection = serializers.IntegerField(min_value=1)
    content = serializers.CharField(max_length=5000)


class ThreadSerializer(serializers.Serializer):
    connection = serializers.IntegerField(source="id", read_only=True)
    counterpart = serializers.SerializerMethodField()
    last_message = MessageSerializer(read_only=True, allow_null=True)
    unread_count = serializers.IntegerField(read_only=True)
    updated_at = serializers.DateTimeField(source="thread_updated_at", read_only=True)

    def get_counterpart(self, obj):
        user_id = _request_user_id(self)
        return user_card(obj.mentee if user_id == obj.mentor_id else obj.mentor)


class ThreadOpenSerializer(serializers.Serializer):
    counterpart = serializers.IntegerField(min_value=1)
