import json
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import AccessToken

from mentorship.models import (
    Connection,
    ConnectionStatus,
    Message,
    Notification,
    Session,
    SessionStatus,
    UserProfile,
)
from mentorship.tests import make_user


class AuthenticationTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.password = "MentorPass123!"
        cls.mentor = make_user("login_mentor", "mentor")
        cls.mentor.set_password(cls.password)
        cls.mentor.save()

    def test_requests_without_credentials_are_unauthorized(self):
        response = self.client.get("/api/connections/")

        self.assertEqual(response.status_code, 401)
        self.assertIn("error", response.data)

    def test_login_returns_tokens_with_role_claim(self):
        response = self.client.post(
            "/api/login/",
            {"email": "LOGIN_MENTOR@test.com", "password": self.password},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        token = AccessToken(response.data["access"])
        self.assertEqual(token["role"], "mentor")
        self.assertEqual(token["email"], self.mentor.email)
        self.assertEqual(response.data["user"]["id"], self.mentor.id)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
        self.assertEqual(self.client.get("/api/connections/").status_code, 200)

    def test_login_rejects_bad_password(self):
        response = self.client.post(
            "/api/login/",
            {"email": self.mentor.email, "password": "wrong"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.data["error"], "No active account found with the given credentials")

    def test_login_rejects_user_without_role(self):
        User = get_user_model()
        User.objects.create_user(username="roleless", email="roleless@test.com", password=self.password)

        response = self.client.post(
            "/api/login/",
            {"email": "roleless@test.com", "password": self.password},
            format="json",
        )

        self.assertEqual(response.status_code, 401)

    def test_user_without_role_is_forbidden(self):
        User = get_user_model()
        user = User.objects.create_user(username="norole", email="norole@test.com", password="x")
        self.client.force_authenticate(user=user)

        response = self.client.get("/api/connections/")

        self.assertEqual(response.status_code, 403)


class ConnectionApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("api_mentor", "mentor")
        cls.mentee = make_user("api_mentee", "mentee")
        cls.outsider = make_user("api_outsider", "mentee")

    def _request(self):
        self.client.force_authenticate(user=self.mentee)
        return self.client.post(
            "/api/connections/",
            {"mentor": self.mentor.id, "message": "Hello"},
            format="json",
        )

    def test_mentee_requests_connection(self):
        response = self._request()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], ConnectionStatus.PENDING)
        self.assertEqual(response.data["mentee"], self.mentee.id)
        self.assertEqual(response.data["counterpart"]["id"], self.mentor.id)

    def test_duplicate_request_returns_conflict_body(self):
        self._request()
        response = self._request()

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"], "Connection already exists.")
        self.assertEqual(response.data["details"]["status"], ConnectionStatus.PENDING)

    def test_mentor_cannot_request(self):
        self.client.force_authenticate(user=self.mentor)

        response = self.client.post("/api/connections/", {"mentor": self.mentor.id}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_request_for_unknown_mentor_is_not_found(self):
        self.client.force_authenticate(user=self.mentee)

        response = self.client.post("/api/connections/", {"mentor": 999999}, format="json")

        self.assertEqual(response.status_code, 404)

    def test_mentor_decides_with_status_or_action(self):
        connection_id = self._request().data["id"]
        self.client.force_authenticate(user=self.mentor)

        response = self.client.put(
            f"/api/connections/{connection_id}/", {"status": "accepted"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], ConnectionStatus.ACCEPTED)

        again = self.client.patch(
            f"/api/connections/{connection_id}/", {"action": "reject"}, format="json"
        )
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data["details"]["status"], ConnectionStatus.ACCEPTED)

    def test_decision_errors(self):
        connection_id = self._request().data["id"]

        self.client.force_authenticate(user=self.mentee)
        forbidden = self.client.put(f"/api/connections/{connection_id}/", {"status": "ACCEPTED"}, format="json")
        self.assertEqual(forbidden.status_code, 403)

        self.client.force_authenticate(user=self.mentor)
        missing = self.client.put("/api/connections/999999/", {"status": "ACCEPTED"}, format="json")
        self.assertEqual(missing.status_code, 404)
        invalid = self.client.put(f"/api/connections/{connection_id}/", {}, format="json")
        self.assertEqual(invalid.status_code, 400)
        self.assertIn("status", invalid.data["details"])

    def test_list_and_retrieve_are_scoped_to_members(self):
        connection_id = self._request().data["id"]

        listed = self.client.get("/api/connections/", {"role": "MENTEE", "status": "PENDING"})
        self.assertEqual([item["id"] for item in listed.data], [connection_id])

        self.client.force_authenticate(user=self.outsider)
        self.assertEqual(self.client.get("/api/connections/").data, [])
        self.assertEqual(self.client.get(f"/api/connections/{connection_id}/").status_code, 403)

    def test_unexpected_errors_return_generic_body(self):
        self.client.force_authenticate(user=self.mentee)

        with patch("mentorship.api_views.list_connections", side_effect=RuntimeError("boom")):
            response = self.client.get("/api/connections/")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data, {"error": "Internal server error."})


class SessionApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("api_sched_mentor", "mentor")
        cls.mentee = make_user("api_sched_mentee", "mentee")
        cls.outsider = make_user("api_sched_outsider", "mentee")
        cls.connection = Connection.objects.create(
            mentor=cls.mentor, mentee=cls.mentee, status=ConnectionStatus.ACCEPTED
        )

    def _propose(self, user, start="2024-01-10T10:00:00Z", end="2024-01-10T11:00:00Z"):
        self.client.force_authenticate(user=user)
        return self.client.post(
            "/api/sessions/",
            {"connection": self.connection.id, "title": "Kickoff", "start_time": start, "end_time": end},
            format="json",
        )

    def test_propose_and_conflict(self):
        created = self._propose(self.mentor)
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.data["status"], SessionStatus.SCHEDULED)
        self.assertEqual(created.data["bucket"], "past")
        self.assertEqual(created.data["mentee"], self.mentee.id)

        clash = self._propose(self.mentee, start="2024-01-10T10:30:00Z", end="2024-01-10T11:30:00Z")
        self.assertEqual(clash.status_code, 400)
        self.assertEqual(clash.data["error"], "Time slot is already booked")

    def test_invalid_interval_and_outsider(self):
        backwards = self._propose(self.mentor, start="2024-01-10T11:00:00Z", end="2024-01-10T10:00:00Z")
        self.assertEqual(backwards.status_code, 400)
        self.assertIn("end_time", backwards.data["details"])

        self.assertEqual(self._propose(self.outsider).status_code, 403)

    def test_approval_flow_and_buckets(self):
        session_id = self._propose(self.mentee).data["id"]

        self.client.force_authenticate(user=self.mentee)
        denied = self.client.patch(f"/api/sessions/{session_id}/status/", {"status": "SCHEDULED"}, format="json")
        self.assertEqual(denied.status_code, 403)
        premature = self.client.patch(f"/api/sessions/{session_id}/status/", {"status": "COMPLETED"}, format="json")
        self.assertEqual(premature.status_code, 400)
        self.assertEqual(premature.data["details"]["status"], SessionStatus.PENDING)

        self.client.force_authenticate(user=self.mentor)
        approved = self.client.patch(f"/api/sessions/{session_id}/status/", {"status": "scheduled"}, format="json")
        self.assertEqual(approved.data["status"], SessionStatus.SCHEDULED)
        completed = self.client.put(
            f"/api/sessions/{session_id}/", {"status": "COMPLETED", "notes": "Set goals"}, format="json"
        )
        self.assertEqual(completed.status_code, 200)
        self.assertEqual(completed.data["notes"], "Set goals")

        self.client.force_authenticate(user=self.mentee)
        past = self.client.get("/api/sessions/", {"role": "MENTEE", "bucket": "past"})
        self.assertEqual([item["id"] for item in past.data], [session_id])
        buckets = self.client.get("/api/sessions/buckets/")
        self.assertEqual(set(buckets.data), {"upcoming", "past", "pending", "cancelled"})
        self.assertEqual([item["id"] for item in buckets.data["past"]], [session_id])

    def test_cancel_with_delete(self):
        session_id = self._propose(self.mentor).data["id"]
        self.client.force_authenticate(user=self.mentee)

        response = self.client.delete(f"/api/sessions/{session_id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], SessionStatus.CANCELLED)
        self.assertEqual(response.data["bucket"], "cancelled")

    def test_feedback_endpoint(self):
        session_id = self._propose(self.mentor).data["id"]
        Session.objects.filter(id=session_id).update(status=SessionStatus.COMPLETED)

        response = self.client.patch(f"/api/sessions/{session_id}/feedback/", {"feedback": "Great"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["feedback"], "Great")

    def test_retrieve_and_filter_validation(self):
        session_id = self._propose(self.mentor).data["id"]

        self.assertEqual(self.client.get(f"/api/sessions/{session_id}/").status_code, 200)
        self.assertEqual(self.client.get("/api/sessions/999999/").status_code, 404)
        self.assertEqual(self.client.get("/api/sessions/", {"connection_id": "abc"}).status_code, 400)
        self.assertEqual(self.client.get("/api/sessions/", {"start_date": "soon"}).status_code, 400)
        in_range = self.client.get("/api/sessions/", {"startDate": "2024-01-10", "endDate": "2024-01-10"})
        self.assertEqual([item["id"] for item in in_range.data], [session_id])

        self.client.force_authenticate(user=self.outsider)
        self.assertEqual(self.client.get(f"/api/sessions/{session_id}/").status_code, 403)


class NotificationApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user("inbox_user", "mentee")
        cls.other = make_user("inbox_other", "mentor")
        cls.first = Notification.objects.create(user=cls.user, title="One", message="m", type="NEW_SESSION")
        cls.second = Notification.objects.create(user=cls.user, title="Two", message="m", type="SESSION_UPDATE")
        cls.foreign = Notification.objects.create(user=cls.other, title="Theirs", message="m", type="NEW_MESSAGE")

    def setUp(self):
        self.client.force_authenticate(user=self.user)

    def test_list_and_unread_count(self):
        listed = self.client.get("/api/notifications/")
        self.assertEqual({item["id"] for item in listed.data}, {self.first.id, self.second.id})
        self.assertEqual(self.client.get("/api/notifications/unread-count/").data, {"count": 2})

        self.client.post(f"/api/notifications/{self.first.id}/read/")

        unread = self.client.get("/api/notifications/", {"unread": "true"})
        self.assertEqual([item["id"] for item in unread.data], [self.second.id])

    def test_read_all_and_clear(self):
        self.assertEqual(self.client.post("/api/notifications/read-all/").data, {"updated": 2})
        self.assertEqual(self.client.delete("/api/notifications/clear/").data, {"deleted": 2})
        self.assertTrue(Notification.objects.filter(id=self.foreign.id).exists())

    def test_other_users_notifications_are_hidden(self):
        self.assertEqual(self.client.post(f"/api/notifications/{self.foreign.id}/read/").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/notifications/{self.foreign.id}/").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/notifications/{self.first.id}/").status_code, 204)


class MessageApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("chat_mentor", "mentor")
        cls.mentee = make_user("chat_mentee", "mentee")
        cls.connection = Connection.objects.create(
            mentor=cls.mentor, mentee=cls.mentee, status=ConnectionStatus.ACCEPTED
        )

    def test_send_and_read_thread(self):
        self.client.force_authenticate(user=self.mentor)
        sent = self.client.post(
            "/api/messages/", {"connection": self.connection.id, "content": "Welcome"}, format="json"
        )
        self.assertEqual(sent.status_code, 201)
        self.assertEqual(sent.data["recipient"], self.mentee.id)

        self.client.force_authenticate(user=self.mentee)
        self.assertEqual(self.client.get("/api/messages/unread-count/").data, {"count": 1})
        thread = self.client.get("/api/messages/", {"connection_id": self.connection.id})
        self.assertEqual([item["content"] for item in thread.data], ["Welcome"])
        self.assertFalse(Message.objects.filter(read=False).exists())

    def test_thread_list_and_open(self):
        Message.objects.create(
            connection=self.connection, sender=self.mentee, recipient=self.mentor, content="Hi"
        )
        self.client.force_authenticate(user=self.mentor)

        listed = self.client.get("/api/messages/threads/")
        self.assertEqual(listed.status_code, 200)
        self.assertEqual(len(listed.data), 1)
        self.assertEqual(listed.data[0]["connection"], self.connection.id)
        self.assertEqual(listed.data[0]["counterpart"]["id"], self.mentee.id)
        self.assertEqual(listed.data[0]["last_message"]["content"], "Hi")
        self.assertEqual(listed.data[0]["unread_count"], 1)

        opened = self.client.post("/api/messages/threads/", {"counterpart": self.mentee.id}, format="json")
        self.assertEqual(opened.data, {"thread_id": self.connection.id})
        missing = self.client.post("/api/messages/threads/", {"counterpart": 999999}, format="json")
        self.assertEqual(missing.status_code, 404)

    def test_thread_requires_connection_id(self):
        self.client.force_authenticate(user=self.mentee)

        response = self.client.get("/api/messages/")

        self.assertEqual(response.status_code, 400)
        self.assertIn("connection_id", response.data["details"])


class MentorDirectoryApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.approved = make_user("dir_approved", "mentor", first_name="Asha")
        UserProfile.objects.filter(user=cls.approved).update(bio="Backend engineer", skills=["Python"])
        cls.unapproved = make_user("dir_unapproved", "mentor", approved=False)
        cls.mentee = make_user("dir_mentee", "mentee")

    def setUp(self):
        self.client.force_authenticate(user=self.mentee)

    def test_only_approved_mentors_are_listed(self):
        response = self.client.get("/api/mentors/")

        self.assertEqual([item["id"] for item in response.data], [self.approved.id])
        self.assertEqual(response.data[0]["profile"]["bio"], "Backend engineer")
        self.assertEqual(self.client.get(f"/api/mentors/{self.unapproved.id}/").status_code, 404)

    def test_search(self):
        self.assertEqual(len(self.client.get("/api/mentors/", {"q": "backend"}).data), 1)
        self.assertEqual(len(self.client.get("/api/mentors/", {"q": "asha"}).data), 1)
        self.assertEqual(self.client.get("/api/mentors/", {"q": "gardening"}).data, [])


class SchemaTests(APITestCase):
    def test_schema_is_public_and_tagged(self):
        response = self.client.get("/api/schema/")

        self.assertEqual(response.status_code, 200)
        schema = json.loads(response.content)
        self.assertIn("Sessions", [tag["name"] for tag in schema["tags"]])
        operation = schema["paths"]["/api/sessions/"]["get"]
        self.assertEqual(operation["tags"], ["Sessions"])
        self.assertEqual(operation["security"], [{"HTTPBearer": []}])
        self.assertNotIn("security", schema["paths"]["/api/login/"]["post"])


class AdminTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        User = get_user_model()
        cls.superuser = User.objects.create_superuser(
            username="root", email="root@test.com", password="RootPass123!"
        )
        cls.pending_mentor = make_user("admin_pending", "mentor", approved=False)

    def setUp(self):
        self.client.force_login(self.superuser)

    def test_changelists_render(self):
        for url in (
            "/admin/mentorship/connection/",
            "/admin/mentorship/session/",
            "/admin/mentorship/notification/",
            "/admin/mentorship/message/",
            "/admin/auth/user/",
        ):
            self.assertEqual(self.client.get(url).status_code, 200, url)

    def test_approve_mentors_action(self):
        response = self.client.post(
            "/admin/auth/user/",
            {"action": "approve_mentors", "_selected_action": [self.pending_mentor.id]},
        )

        self.assertEqual(response.status_code, 302)
        self.pending_mentor.userprofile.refresh_from_db()
        self.assertTrue(self.pending_mentor.userprofile.is_approved)


class SeedDataCommandTests(TestCase):
    def test_seed_data_is_repeatable(self):
        out = StringIO()
        call_command("seed_data", count=4, stdout=out)
        call_command("seed_data", count=4, stdout=out)

        User = get_user_model()
        self.assertEqual(User.objects.filter(email__endswith="@mentorbridge.local").count(), 8)
        self.assertEqual(Connection.objects.count(), 4)
        self.assertIn("Seed data created successfully", out.getvalue())
        for session in Session.objects.select_related("connection"):
            self.assertEqual(session.connection.status, ConnectionStatus.ACCEPTED)
