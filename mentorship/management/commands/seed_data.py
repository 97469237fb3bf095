import random
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from mentorship.connections import decide_connection, request_connection
from mentorship.models import ConnectionStatus, SessionStatus, UserProfile
from mentorship.permissions import ROLE_MENTEE, ROLE_MENTOR
from mentorship.scheduling import propose_session, transition_session

SEED_DOMAIN = "mentorbridge.local"
SEED_PASSWORD = "password123"


class Command(BaseCommand):
    help = "Seed sample mentors, mentees, connections, and sessions."

    def add_arguments(self, parser):
        parser.add_argument(
            "--count",
            type=int,
            default=10,
            help="Number of mentees and mentors to create (default: 10).",
        )

    def handle(self, *args, **options):
        count = options["count"]
        User = get_user_model()
        random.seed(42)

        # Profiles, connections, sessions and messages cascade from the user rows.
        User.objects.filter(email__endswith=f"@{SEED_DOMAIN}").delete()

        first_names = ["Priya", "Rahul", "Ananya", "Karthik", "Meera", "Arjun", "Nila", "Vikram"]
        last_names = ["Sharma", "Iyer", "Patel", "Rao", "Menon", "Gupta", "Nair", "Singh"]
        skills = ["Python", "Career Chat", "System Design", "Interviewing", "Data Science", "Leadership"]
        cities = ["Chennai", "Bengaluru", "Hyderabad", "Mumbai", "Delhi"]

        def create_user(role, index, **profile):
            email = f"{role}{index}@{SEED_DOMAIN}"
            user = User.objects.create_user(
                username=email,
                email=email,
                password=SEED_PASSWORD,
                first_name=random.choice(first_names),
                last_name=random.choice(last_names),
            )
            UserProfile.objects.create(
                user=user,
                role=role,
                location=random.choice(cities),
                **profile,
            )
            return user

        with transaction.atomic():
            mentors = [
                create_user(
                    ROLE_MENTOR,
                    i + 1,
                    is_approved=i % 4 != 3,
                    bio="Happy to help with career growth and study habits.",
                    skills=random.sample(skills, k=random.randint(1, 3)),
                )
                for i in range(count)
            ]
            mentees = [create_user(ROLE_MENTEE, i + 1) for i in range(count)]

        # Requests can only target mentors visible in the directory.
        approved_mentors = [
            mentor for mentor in mentors if UserProfile.objects.get(user=mentor).is_approved
        ]

        start_of_day = timezone.now().replace(hour=9, minute=0, second=0, microsecond=0)
        sessions_created = 0
        for index, mentee in enumerate(mentees):
            if not approved_mentors:
                break
            mentor = approved_mentors[index % len(approved_mentors)]
            connection = request_connection(
                mentee.id, mentor.id, "Looking for guidance and support."
            )
            outcome = random.choice(
                [ConnectionStatus.ACCEPTED, ConnectionStatus.ACCEPTED, ConnectionStatus.REJECTED, None]
            )
            if outcome is None:
                continue
            decide_connection(connection.id, mentor.id, outcome)
            if outcome != ConnectionStatus.ACCEPTED:
                continue

            # One finished session, one upcoming, one awaiting approval.
            past_start = start_of_day - timedelta(days=7, hours=index)
            past = propose_session(
                connection.id, mentor.id, "Kickoff", past_start, past_start + timedelta(hours=1)
            )
            transition_session(past.id, mentor.id, SessionStatus.COMPLETED, notes="Set goals.")

            upcoming_start = start_of_day + timedelta(days=3, hours=index)
            propose_session(
                connection.id,
                mentor.id,
                "Weekly check-in",
                upcoming_start,
                upcoming_start + timedelta(hours=1),
            )
            requested_start = upcoming_start + timedelta(days=7)
            propose_session(
                connection.id,
                mentee.id,
                "Mock interview",
                requested_start,
                requested_start + timedelta(minutes=45),
                description="Practice a system design round.",
            )
            sessions_created += 3

        self.stdout.write(
            self.style.SUCCESS(
                f"Seed data created successfully: {len(mentors)} mentors, "
                f"{len(mentees)} mentees, {sessions_created} sessions."
            )
        )
