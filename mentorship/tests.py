import threading
import time
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError, connection as db_connection
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from mentorship.access import FORBIDDEN, NOT_FOUND, authorize_connection_access
from mentorship.connections import decide_connection, list_connections, request_connection
from mentorship.directory import get_profile, get_user
from mentorship.exceptions import Conflict, InvalidTransition
from mentorship.messaging import (
    list_threads,
    open_thread,
    read_thread,
    send_message,
    unread_message_count,
)
from mentorship.models import (
    Connection,
    ConnectionStatus,
    Message,
    Notification,
    Session,
    SessionStatus,
    UserProfile,
)
from mentorship import scheduling
from mentorship.scheduling import (
    BUCKET_CANCELLED,
    BUCKET_PAST,
    BUCKET_PENDING,
    BUCKET_UPCOMING,
    add_session_feedback,
    group_sessions_by_bucket,
    intervals_overlap,
    list_sessions,
    parse_date_bound,
    propose_session,
    session_bucket,
    transition_session,
)


def make_user(username, role, approved=True, **extra):
    User = get_user_model()
    user = User.objects.create_user(
        username=username,
        email=f"{username}@test.com",
        password="Pass123!",
        **extra,
    )
    UserProfile.objects.create(user=user, role=role, is_approved=approved)
    return user


def at(day, hour, minute=0):
    return datetime(2024, 1, day, hour, minute, tzinfo=dt_timezone.utc)


def notification_types(user):
    return sorted(Notification.objects.filter(user=user).values_list("type", flat=True))


class ConnectionServiceTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("mentor_a", "mentor", first_name="Asha", last_name="Rao")
        cls.other_mentor = make_user("mentor_b", "mentor")
        cls.mentee = make_user("mentee_a", "mentee", first_name="Ravi", last_name="Kumar")

    def test_request_creates_pending_connection_and_notifies_both_parties(self):
        connection = request_connection(self.mentee.id, self.mentor.id, "Hi there")

        self.assertEqual(connection.status, ConnectionStatus.PENDING)
        self.assertEqual(connection.message, "Hi there")
        self.assertEqual(notification_types(self.mentor), ["MENTEE_REQUEST"])
        self.assertEqual(notification_types(self.mentee), ["REQUEST_SENT"])
        mentor_note = Notification.objects.get(user=self.mentor)
        self.assertEqual(mentor_note.entity_id, str(connection.id))
        self.assertIn("Ravi Kumar", mentor_note.message)

    def test_duplicate_request_is_a_conflict(self):
        request_connection(self.mentee.id, self.mentor.id)

        with self.assertRaises(Conflict) as ctx:
            request_connection(self.mentee.id, self.mentor.id)

        self.assertEqual(ctx.exception.details["status"], ConnectionStatus.PENDING)
        self.assertEqual(Connection.objects.count(), 1)

    def test_request_requires_mentor_and_mentee_roles(self):
        other_mentee = make_user("mentee_b", "mentee")
        with self.assertRaises(ValidationError):
            request_connection(self.mentee.id, other_mentee.id)
        with self.assertRaises(ValidationError):
            request_connection(self.other_mentor.id, self.mentor.id)
        with self.assertRaises(ValidationError):
            request_connection(self.mentee.id, self.mentee.id)

    def test_request_to_missing_user_is_not_found(self):
        with self.assertRaises(NotFound):
            request_connection(self.mentee.id, 999999)

    def test_unapproved_mentor_cannot_be_requested(self):
        hidden = make_user("mentor_hidden", "mentor", approved=False)

        with self.assertRaises(NotFound):
            request_connection(self.mentee.id, hidden.id)

        self.assertFalse(Connection.objects.exists())
        self.assertEqual(notification_types(hidden), [])

    def test_mentor_accepts_request(self):
        connection = request_connection(self.mentee.id, self.mentor.id)

        decided = decide_connection(connection.id, self.mentor.id, "accepted")

        self.assertEqual(decided.status, ConnectionStatus.ACCEPTED)
        self.assertIn("REQUEST_ACCEPTED", notification_types(self.mentee))
        self.assertIn("CONNECTION_MADE", notification_types(self.mentor))

    def test_decision_is_made_only_once(self):
        connection = request_connection(self.mentee.id, self.mentor.id)
        decide_connection(connection.id, self.mentor.id, ConnectionStatus.ACCEPTED)

        with self.assertRaises(InvalidTransition) as ctx:
            decide_connection(connection.id, self.mentor.id, ConnectionStatus.REJECTED)

        self.assertEqual(ctx.exception.details["status"], ConnectionStatus.ACCEPTED)
        connection.refresh_from_db()
        self.assertEqual(connection.status, ConnectionStatus.ACCEPTED)

    def test_only_the_mentor_can_decide(self):
        connection = request_connection(self.mentee.id, self.mentor.id)

        with self.assertRaises(PermissionDenied):
            decide_connection(connection.id, self.mentee.id, ConnectionStatus.ACCEPTED)
        with self.assertRaises(PermissionDenied):
            decide_connection(connection.id, self.other_mentor.id, ConnectionStatus.ACCEPTED)
        with self.assertRaises(NotFound):
            decide_connection(999999, self.mentor.id, ConnectionStatus.ACCEPTED)

    def test_pending_is_not_a_decision(self):
        connection = request_connection(self.mentee.id, self.mentor.id)

        with self.assertRaises(ValidationError):
            decide_connection(connection.id, self.mentor.id, "PENDING")

    def test_rejected_pair_can_request_again(self):
        connection = request_connection(self.mentee.id, self.mentor.id)
        decide_connection(connection.id, self.mentor.id, ConnectionStatus.REJECTED)
        self.assertIn("REQUEST_REJECTED", notification_types(self.mentee))

        reopened = request_connection(self.mentee.id, self.mentor.id, "Second try")

        self.assertEqual(reopened.id, connection.id)
        self.assertEqual(reopened.status, ConnectionStatus.PENDING)
        self.assertEqual(reopened.message, "Second try")
        self.assertEqual(Connection.objects.count(), 1)

    def test_accepted_pair_cannot_request_again(self):
        connection = request_connection(self.mentee.id, self.mentor.id)
        decide_connection(connection.id, self.mentor.id, ConnectionStatus.ACCEPTED)

        with self.assertRaises(Conflict):
            request_connection(self.mentee.id, self.mentor.id)

    def test_list_connections_filters_by_role_and_status(self):
        first = request_connection(self.mentee.id, self.mentor.id)
        second = request_connection(self.mentee.id, self.other_mentor.id)
        decide_connection(first.id, self.mentor.id, ConnectionStatus.ACCEPTED)

        as_mentee = list_connections(self.mentee.id, role="MENTEE")
        self.assertEqual({item.id for item in as_mentee}, {first.id, second.id})
        self.assertEqual(list(list_connections(self.mentee.id, role="mentor")), [])
        accepted = list_connections(self.mentee.id, status="accepted")
        self.assertEqual([item.id for item in accepted], [first.id])
        self.assertEqual([item.id for item in list_connections(self.mentor.id)], [first.id])

        with self.assertRaises(ValidationError):
            list_connections(self.mentee.id, status="ARCHIVED")


class DirectoryTests(TestCase):
    def test_get_user_and_profile(self):
        mentor = make_user("dir_mentor", "mentor", first_name="Asha", last_name="Rao")
        UserProfile.objects.filter(user=mentor).update(skills=["Python"], location="Chennai")

        found = get_user(mentor.id)
        self.assertEqual((found.role, found.approved, found.name), ("mentor", True, "Asha Rao"))
        profile = get_profile(mentor.id)
        self.assertEqual(profile.skills, ["Python"])
        self.assertEqual(profile.location, "Chennai")

    def test_unknown_user(self):
        with self.assertRaises(NotFound):
            get_user(999999)
        self.assertEqual(get_profile(999999).skills, [])


class ConnectionAccessTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("guard_mentor", "mentor")
        cls.mentee = make_user("guard_mentee", "mentee")
        cls.outsider = make_user("guard_outsider", "mentee")
        cls.connection = Connection.objects.create(mentor=cls.mentor, mentee=cls.mentee)

    def test_members_are_authorized(self):
        for user in (self.mentor, self.mentee):
            access = authorize_connection_access(self.connection.id, user.id)
            self.assertTrue(access.authorized)
            self.assertEqual(access.connection, self.connection)

    def test_outsider_and_missing_connection(self):
        self.assertEqual(authorize_connection_access(self.connection.id, self.outsider.id).outcome, FORBIDDEN)
        self.assertEqual(authorize_connection_access(999999, self.mentor.id).outcome, NOT_FOUND)


class SessionProposalTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("sched_mentor", "mentor")
        cls.mentee = make_user("sched_mentee", "mentee", first_name="Ravi")
        cls.second_mentee = make_user("sched_mentee_two", "mentee")
        cls.outsider = make_user("sched_outsider", "mentee")
        cls.connection = Connection.objects.create(
            mentor=cls.mentor, mentee=cls.mentee, status=ConnectionStatus.ACCEPTED
        )
        cls.second_connection = Connection.objects.create(
            mentor=cls.mentor, mentee=cls.second_mentee, status=ConnectionStatus.ACCEPTED
        )

    def test_mentor_proposal_is_scheduled_and_notifies_mentee(self):
        session = propose_session(self.connection.id, self.mentor.id, "Kickoff", at(10, 10), at(10, 11))

        self.assertEqual(session.status, SessionStatus.SCHEDULED)
        self.assertEqual(session.created_by_id, self.mentor.id)
        self.assertEqual(notification_types(self.mentee), ["NEW_SESSION"])

    def test_mentee_proposal_waits_for_mentor(self):
        session = propose_session(self.connection.id, self.mentee.id, "Review", at(10, 10), at(10, 11))

        self.assertEqual(session.status, SessionStatus.PENDING)
        self.assertEqual(notification_types(self.mentor), ["SESSION_REQUEST"])
        self.assertIn("Ravi", Notification.objects.get(user=self.mentor).message)

    def test_only_members_of_accepted_connections_can_propose(self):
        with self.assertRaises(PermissionDenied):
            propose_session(self.connection.id, self.outsider.id, "Sneaky", at(10, 10), at(10, 11))

        pending = Connection.objects.create(mentor=self.mentor, mentee=self.outsider)
        with self.assertRaises(PermissionDenied):
            propose_session(pending.id, self.outsider.id, "Early", at(10, 10), at(10, 11))
        with self.assertRaises(NotFound):
            propose_session(999999, self.mentor.id, "Ghost", at(10, 10), at(10, 11))

    def test_interval_must_be_positive(self):
        with self.assertRaises(ValidationError):
            propose_session(self.connection.id, self.mentor.id, "Zero", at(10, 10), at(10, 10))
        with self.assertRaises(ValidationError):
            propose_session(self.connection.id, self.mentor.id, "Backwards", at(10, 11), at(10, 10))
        self.assertFalse(Session.objects.exists())

    def test_overlapping_slot_is_rejected(self):
        propose_session(self.connection.id, self.mentor.id, "First", at(10, 10), at(10, 11))

        with self.assertRaises(Conflict) as ctx:
            propose_session(self.connection.id, self.mentee.id, "Second", at(10, 10, 30), at(10, 11, 30))

        self.assertEqual(str(ctx.exception.detail), "Time slot is already booked")
        self.assertEqual(Session.objects.count(), 1)

    def test_touching_slots_conflict(self):
        propose_session(self.connection.id, self.mentor.id, "First", at(10, 10), at(10, 11))

        with self.assertRaises(Conflict):
            propose_session(self.connection.id, self.mentor.id, "Back to back", at(10, 11), at(10, 12))

    def test_disjoint_slots_are_accepted(self):
        propose_session(self.connection.id, self.mentor.id, "First", at(10, 10), at(10, 11))
        propose_session(self.connection.id, self.mentor.id, "Later", at(10, 11, 1), at(10, 12))

        self.assertEqual(Session.objects.count(), 2)

    def test_cancelled_and_declined_sessions_release_their_slot(self):
        scheduled = propose_session(self.connection.id, self.mentor.id, "First", at(10, 10), at(10, 11))
        transition_session(scheduled.id, self.mentee.id, SessionStatus.CANCELLED)
        requested = propose_session(self.connection.id, self.mentee.id, "Retry", at(10, 10), at(10, 11))
        transition_session(requested.id, self.mentor.id, SessionStatus.DECLINED)

        rebooked = propose_session(self.connection.id, self.mentor.id, "Again", at(10, 10), at(10, 11))

        self.assertEqual(rebooked.status, SessionStatus.SCHEDULED)

    def test_conflicts_are_scoped_to_the_connection_by_default(self):
        propose_session(self.connection.id, self.mentor.id, "First", at(10, 10), at(10, 11))

        other = propose_session(self.second_connection.id, self.mentor.id, "Other", at(10, 10), at(10, 11))

        self.assertEqual(other.status, SessionStatus.SCHEDULED)

    @override_settings(MENTORBRIDGE_MENTOR_WIDE_CONFLICTS=True)
    def test_mentor_wide_conflicts_span_connections(self):
        propose_session(self.connection.id, self.mentor.id, "First", at(10, 10), at(10, 11))

        with self.assertRaises(Conflict):
            propose_session(self.second_connection.id, self.second_mentee.id, "Other", at(10, 10, 30), at(10, 12))

    def test_failed_notification_does_not_undo_the_proposal(self):
        with patch.object(Notification.objects, "create", side_effect=DatabaseError("store down")):
            with self.assertLogs("mentorship.notifications", level="ERROR") as logs:
                session = propose_session(self.connection.id, self.mentor.id, "Kickoff", at(10, 10), at(10, 11))

        self.assertTrue(Session.objects.filter(id=session.id).exists())
        self.assertFalse(Notification.objects.exists())
        self.assertIn("NEW_SESSION", logs.output[0])


class SessionTransitionTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("flow_mentor", "mentor")
        cls.mentee = make_user("flow_mentee", "mentee")
        cls.outsider = make_user("flow_outsider", "mentor")
        cls.connection = Connection.objects.create(
            mentor=cls.mentor, mentee=cls.mentee, status=ConnectionStatus.ACCEPTED
        )

    def _session(self, status, start=None, end=None):
        return Session.objects.create(
            connection=self.connection,
            created_by=self.mentee,
            title="Chat",
            start_time=start or at(10, 10),
            end_time=end or at(10, 11),
            status=status,
        )

    def test_mentor_approves_request(self):
        session = self._session(SessionStatus.PENDING)

        updated = transition_session(session.id, self.mentor.id, "scheduled")

        self.assertEqual(updated.status, SessionStatus.SCHEDULED)
        note = Notification.objects.get(user=self.mentee)
        self.assertEqual(note.type, "SESSION_UPDATE")
        self.assertEqual(note.title, "Session Approved")
        self.assertEqual(note.entity_id, str(session.id))

    def test_mentee_cannot_approve_or_decline(self):
        session = self._session(SessionStatus.PENDING)

        for target in (SessionStatus.SCHEDULED, SessionStatus.DECLINED):
            with self.assertRaises(PermissionDenied):
                transition_session(session.id, self.mentee.id, target)

        session.refresh_from_db()
        self.assertEqual(session.status, SessionStatus.PENDING)

    def test_pending_session_cannot_be_completed(self):
        session = self._session(SessionStatus.PENDING)

        with self.assertRaises(InvalidTransition) as ctx:
            transition_session(session.id, self.mentor.id, SessionStatus.COMPLETED)

        self.assertEqual(ctx.exception.details["status"], SessionStatus.PENDING)

    def test_terminal_states_are_final(self):
        for status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.DECLINED):
            session = self._session(status, start=at(12, 10), end=at(12, 11))
            with self.assertRaises(InvalidTransition):
                transition_session(session.id, self.mentor.id, SessionStatus.SCHEDULED)
            session.delete()

    def test_either_party_can_cancel_or_complete(self):
        first = self._session(SessionStatus.SCHEDULED)
        second = self._session(SessionStatus.SCHEDULED, start=at(11, 10), end=at(11, 11))

        self.assertEqual(
            transition_session(first.id, self.mentee.id, SessionStatus.CANCELLED).status,
            SessionStatus.CANCELLED,
        )
        completed = transition_session(second.id, self.mentee.id, SessionStatus.COMPLETED, notes="Went well")
        self.assertEqual(completed.status, SessionStatus.COMPLETED)
        self.assertEqual(completed.notes, "Went well")
        self.assertEqual(Notification.objects.filter(user=self.mentor).count(), 2)

    def test_notes_are_only_recorded_on_completion(self):
        session = self._session(SessionStatus.SCHEDULED)

        cancelled = transition_session(session.id, self.mentor.id, SessionStatus.CANCELLED, notes="ignored")

        self.assertEqual(cancelled.notes, "")

    def test_outsider_and_unknown_status(self):
        session = self._session(SessionStatus.SCHEDULED)

        with self.assertRaises(PermissionDenied):
            transition_session(session.id, self.outsider.id, SessionStatus.CANCELLED)
        with self.assertRaises(ValidationError):
            transition_session(session.id, self.mentor.id, "RESCHEDULED")
        with self.assertRaises(NotFound):
            transition_session(999999, self.mentor.id, SessionStatus.CANCELLED)

    def test_feedback_requires_mentor_and_completed_session(self):
        session = self._session(SessionStatus.SCHEDULED)
        with self.assertRaises(Conflict):
            add_session_feedback(session.id, self.mentor.id, "Great progress")

        transition_session(session.id, self.mentor.id, SessionStatus.COMPLETED)
        with self.assertRaises(PermissionDenied):
            add_session_feedback(session.id, self.mentee.id, "Self review")

        updated = add_session_feedback(session.id, self.mentor.id, "Great progress")
        self.assertEqual(updated.feedback, "Great progress")
        self.assertIn("SESSION_FEEDBACK", notification_types(self.mentee))


class SessionListingTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("list_mentor", "mentor")
        cls.mentee = make_user("list_mentee", "mentee")
        cls.connection = Connection.objects.create(
            mentor=cls.mentor, mentee=cls.mentee, status=ConnectionStatus.ACCEPTED
        )
        cls.now = at(15, 12)

        def create(title, status, start, end):
            return Session.objects.create(
                connection=cls.connection,
                created_by=cls.mentor,
                title=title,
                start_time=start,
                end_time=end,
                status=status,
            )

        cls.pending = create("pending", SessionStatus.PENDING, at(20, 10), at(20, 11))
        cls.cancelled = create("cancelled", SessionStatus.CANCELLED, at(16, 10), at(16, 11))
        cls.declined = create("declined", SessionStatus.DECLINED, at(17, 10), at(17, 11))
        cls.completed = create("completed", SessionStatus.COMPLETED, at(5, 10), at(5, 11))
        cls.elapsed = create("elapsed", SessionStatus.SCHEDULED, at(14, 10), at(14, 11))
        cls.in_progress = create("in progress", SessionStatus.SCHEDULED, at(15, 11), at(15, 13))
        cls.upcoming = create("upcoming", SessionStatus.SCHEDULED, at(18, 10), at(18, 11))

    def test_intervals_overlap_is_inclusive(self):
        self.assertTrue(intervals_overlap(at(1, 10), at(1, 11), at(1, 11), at(1, 12)))
        self.assertTrue(intervals_overlap(at(1, 10), at(1, 12), at(1, 10, 30), at(1, 11)))
        self.assertFalse(intervals_overlap(at(1, 10), at(1, 11), at(1, 11, 1), at(1, 12)))

    def test_session_bucket_rules(self):
        self.assertEqual(session_bucket(SessionStatus.PENDING, at(1, 1), at(1, 2), self.now), BUCKET_PENDING)
        self.assertEqual(session_bucket(SessionStatus.DECLINED, at(20, 1), at(20, 2), self.now), BUCKET_CANCELLED)
        self.assertEqual(session_bucket(SessionStatus.COMPLETED, at(20, 1), at(20, 2), self.now), BUCKET_PAST)
        self.assertEqual(session_bucket(SessionStatus.SCHEDULED, at(1, 1), at(1, 2), self.now), BUCKET_PAST)
        self.assertEqual(session_bucket(SessionStatus.SCHEDULED, at(15, 11), at(15, 13), self.now), BUCKET_UPCOMING)

    def test_list_by_bucket(self):
        def titles(bucket):
            return [item.title for item in list_sessions(self.mentee.id, bucket=bucket, now=self.now)]

        self.assertEqual(titles("upcoming"), ["in progress", "upcoming"])
        self.assertEqual(titles("past"), ["completed", "elapsed"])
        self.assertEqual(titles("pending"), ["pending"])
        self.assertEqual(titles("cancelled"), ["cancelled", "declined"])
        with self.assertRaises(ValidationError):
            titles("someday")

    def test_group_sessions_by_bucket_places_each_session_once(self):
        sessions = list_sessions(self.mentor.id, role="mentor", now=self.now)
        grouped = group_sessions_by_bucket(sessions, self.now)

        self.assertEqual(sum(len(items) for items in grouped.values()), 7)
        self.assertEqual([item.title for item in grouped["upcoming"]], ["in progress", "upcoming"])

    def test_role_date_and_status_filters(self):
        self.assertEqual(list_sessions(self.mentor.id, role="mentee"), [])
        in_window = list_sessions(
            self.mentee.id,
            start_date=parse_date_bound("2024-01-16", field_name="start_date"),
            end_date=parse_date_bound("2024-01-18", field_name="end_date", end_of_day=True),
        )
        self.assertEqual([item.title for item in in_window], ["cancelled", "declined", "upcoming"])
        scheduled = list_sessions(self.mentee.id, status="scheduled")
        self.assertEqual(len(scheduled), 3)
        with self.assertRaises(ValidationError):
            parse_date_bound("next week", field_name="start_date")

    def test_connection_filter_is_guarded(self):
        outsider = make_user("list_outsider", "mentee")
        with self.assertRaises(PermissionDenied):
            list_sessions(outsider.id, connection_id=self.connection.id)
        self.assertEqual(len(list_sessions(self.mentor.id, connection_id=self.connection.id)), 7)


class MessagingTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("msg_mentor", "mentor", first_name="Asha")
        cls.mentee = make_user("msg_mentee", "mentee")
        cls.outsider = make_user("msg_outsider", "mentee")
        cls.connection = Connection.objects.create(
            mentor=cls.mentor, mentee=cls.mentee, status=ConnectionStatus.ACCEPTED
        )

    def test_message_goes_to_the_counterpart(self):
        message = send_message(self.connection.id, self.mentor, "  Welcome aboard  ")

        self.assertEqual(message.recipient_id, self.mentee.id)
        self.assertEqual(message.content, "Welcome aboard")
        note = Notification.objects.get(user=self.mentee)
        self.assertEqual(note.type, "NEW_MESSAGE")
        self.assertEqual(note.entity_id, str(self.connection.id))
        self.assertIn("Asha", note.message)

    def test_reading_a_thread_marks_only_received_messages(self):
        send_message(self.connection.id, self.mentor, "Hello")
        send_message(self.connection.id, self.mentee, "Hi")
        self.assertEqual(unread_message_count(self.mentee.id), 1)

        thread = read_thread(self.connection.id, self.mentee.id)

        self.assertEqual([item.content for item in thread], ["Hello", "Hi"])
        self.assertEqual(unread_message_count(self.mentee.id), 0)
        self.assertEqual(unread_message_count(self.mentor.id), 1)

    def test_outsiders_and_empty_messages_are_rejected(self):
        with self.assertRaises(PermissionDenied):
            send_message(self.connection.id, self.outsider, "Hey")
        with self.assertRaises(PermissionDenied):
            read_thread(self.connection.id, self.outsider.id)
        with self.assertRaises(ValidationError):
            send_message(self.connection.id, self.mentor, "   ")
        self.assertFalse(Message.objects.exists())


class ThreadListingTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.mentor = make_user("thread_mentor", "mentor")
        cls.quiet_mentee = make_user("thread_quiet", "mentee")
        cls.old_mentee = make_user("thread_old", "mentee")
        cls.recent_mentee = make_user("thread_recent", "mentee")
        cls.pending_mentee = make_user("thread_pending", "mentee")

        def accepted(mentee):
            return Connection.objects.create(
                mentor=cls.mentor, mentee=mentee, status=ConnectionStatus.ACCEPTED
            )

        cls.quiet = accepted(cls.quiet_mentee)
        cls.old = accepted(cls.old_mentee)
        cls.recent = accepted(cls.recent_mentee)
        Connection.objects.create(mentor=cls.mentor, mentee=cls.pending_mentee)

        def message(connection, sender, recipient, content, when, read=False):
            created = Message.objects.create(
                connection=connection, sender=sender, recipient=recipient, content=content, read=read
            )
            Message.objects.filter(id=created.id).update(created_at=when)

        message(cls.old, cls.old_mentee, cls.mentor, "Old question", at(1, 9))
        message(cls.old, cls.old_mentee, cls.mentor, "Follow up", at(1, 10))
        message(cls.old, cls.mentor, cls.old_mentee, "Answer", at(1, 11))
        message(cls.recent, cls.recent_mentee, cls.mentor, "Seen", at(5, 9), read=True)
        message(cls.recent, cls.recent_mentee, cls.mentor, "Latest", at(5, 10))

    def test_threads_with_messages_come_first_by_recency(self):
        threads = list_threads(self.mentor.id)

        self.assertEqual([item.id for item in threads], [self.recent.id, self.old.id, self.quiet.id])
        self.assertEqual(threads[0].last_message.content, "Latest")
        self.assertEqual(threads[0].thread_updated_at, at(5, 10))
        self.assertIsNone(threads[2].last_message)
        self.assertEqual(threads[2].thread_updated_at, threads[2].updated_at)

    def test_unread_counts_exclude_own_messages(self):
        counts = {item.id: item.unread_count for item in list_threads(self.mentor.id)}
        self.assertEqual(counts, {self.recent.id: 1, self.old.id: 2, self.quiet.id: 0})

        mentee_view = list_threads(self.old_mentee.id)
        self.assertEqual([(item.id, item.unread_count) for item in mentee_view], [(self.old.id, 1)])

    def test_open_thread_needs_accepted_connection(self):
        self.assertEqual(open_thread(self.mentor.id, self.quiet_mentee.id).id, self.quiet.id)
        self.assertEqual(open_thread(self.old_mentee.id, self.mentor.id).id, self.old.id)
        with self.assertRaises(NotFound):
            open_thread(self.mentor.id, self.pending_mentee.id)


class MentorshipScenarioTests(TestCase):
    def test_request_accept_propose_approve_complete(self):
        mentor = make_user("scenario_mentor", "mentor")
        mentee = make_user("scenario_mentee", "mentee")

        connection = request_connection(mentee.id, mentor.id)
        decide_connection(connection.id, mentor.id, ConnectionStatus.ACCEPTED)
        session = propose_session(connection.id, mentee.id, "Career chat", at(10, 10), at(10, 11))
        self.assertEqual(session.status, SessionStatus.PENDING)
        transition_session(session.id, mentor.id, SessionStatus.SCHEDULED)
        transition_session(session.id, mentor.id, SessionStatus.COMPLETED)

        past = list_sessions(mentee.id, role="MENTEE", bucket="past")

        self.assertEqual([item.id for item in past], [session.id])
        self.assertEqual(past[0].status, SessionStatus.COMPLETED)


class ConcurrentProposalTests(TransactionTestCase):
    def test_only_one_of_two_overlapping_proposals_wins(self):
        mentor = make_user("race_mentor", "mentor")
        mentee = make_user("race_mentee", "mentee")
        connection = Connection.objects.create(
            mentor=mentor, mentee=mentee, status=ConnectionStatus.ACCEPTED
        )
        barrier = threading.Barrier(2)
        outcomes = []
        check_overlap = scheduling.overlapping_sessions

        def slow_overlap_check(*args, **kwargs):
            # Widen the window between the overlap check and the insert.
            queryset = check_overlap(*args, **kwargs)
            time.sleep(0.2)
            return queryset

        def propose(user_id, start):
            try:
                barrier.wait(timeout=5)
                propose_session(connection.id, user_id, "Race", start, start + timedelta(hours=1))
                outcomes.append("created")
            except Conflict:
                outcomes.append("conflict")
            except Exception as exc:
                outcomes.append(type(exc).__name__)
            finally:
                db_connection.close()

        threads = [
            threading.Thread(target=propose, args=(mentor.id, at(10, 10))),
            threading.Thread(target=propose, args=(mentee.id, at(10, 10, 30))),
        ]
        with patch.object(scheduling, "overlapping_sessions", side_effect=slow_overlap_check):
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(sorted(outcomes), ["conflict", "created"])
        self.assertEqual(Session.objects.filter(connection=connection).count(), 1)
