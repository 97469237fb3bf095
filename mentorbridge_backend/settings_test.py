import os
from pathlib import Path

os.environ.setdefault("USE_SQLITE_FOR_TESTS", "1")

from .settings import *  # noqa: F401,F403


DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "test_db.sqlite3",
        "OPTIONS": {"transaction_mode": "IMMEDIATE"},
        "TEST": {"NAME": BASE_DIR / "test_db_test.sqlite3"},
    }
}

PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

ALLOWED_HOSTS = [*ALLOWED_HOSTS, "testserver"]

STATIC_ROOT = BASE_DIR / "staticfiles_test"
Path(STATIC_ROOT).mkdir(parents=True, exist_ok=True)

LOGGING["loggers"]["mentorship"]["level"] = "CRITICAL"
