from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api_views import (
    ConnectionViewSet,
    MentorViewSet,
    MessageViewSet,
    NotificationViewSet,
    SessionViewSet,
)

router = DefaultRouter()
router.register(r"mentors", MentorViewSet, basename="mentor")
router.register(r"connections", ConnectionViewSet, basename="connection")
router.register(r"sessions", SessionViewSet, basename="session")
router.register(r"notifications", NotificationViewSet, basename="notification")
router.register(r"messages", MessageViewSet, basename="message")


urlpatterns = [
    path("", include(router.urls)),
]
