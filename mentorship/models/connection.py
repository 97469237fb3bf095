from django.conf import settings
from django.db import models


class ConnectionStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    ACCEPTED = "ACCEPTED", "Accepted"
    REJECTED = "REJECTED", "Rejected"


class Connection(models.Model):
    mentor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="mentor_connections"
    )
    mentee = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="mentee_connections"
    )
    status = models.CharField(
        max_length=20, choices=ConnectionStatus.choices, default=ConnectionStatus.PENDING
    )
    message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(fields=["mentor", "mentee"], name="unique_mentor_mentee_connection"),
        ]
        indexes = [
            models.Index(fields=["mentor", "status"], name="connection_mentor_status_idx"),
            models.Index(fields=["mentee", "status"], name="connection_mentee_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Connection {self.id} ({self.mentee_id} -> {self.mentor_id}, {self.status})"

    def is_party(self, user_id) -> bool:
        return user_id in {self.mentor_id, self.mentee_id}

    def counterpart_id(self, user_id):
        return self.mentee_id if user_id == self.mentor_id else self.mentor_id
