from django.contrib.auth import get_user_model
from rest_framework import exceptions, serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.views import TokenObtainPairView

from .directory import user_card
from .permissions import user_role


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Issues a bearer token pair for an email/password login.

    The access token carries the caller's role and email so clients can route
    to the mentor or mentee views without a second request. Users without an
    application role cannot log in.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields.pop(self.username_field, None)
        self.fields["email"] = serializers.EmailField(write_only=True)

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = user_role(user)
        token["email"] = user.email
        return token

    def validate(self, attrs):
        user_model = get_user_model()
        user = user_model.objects.filter(email__iexact=attrs.get("email", "").strip()).first()
        attrs[self.username_field] = getattr(user, user_model.USERNAME_FIELD, "") if user else ""

        data = super().validate(attrs)
        if user_role(self.user) is None:
            raise exceptions.AuthenticationFailed(
                self.error_messages["no_active_account"],
                "no_active_account",
            )
        data["user"] = user_card(self.user)
        return data


class EmailTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailTokenObtainPairSerializer
