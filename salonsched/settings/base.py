# salonsched/settings/base.py
"""
Salon scheduling – shared Django settings.

Environment-specific values **must** come from the environment (.env or real env
vars). Do not hard-code credentials or hostnames in this file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from decouple import config
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Paths & dotenv
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent.parent

load_dotenv(BASE_DIR / ".env")


# ---------------------------------------------------------------------------
# Tiny helper – read env with "required" flag
# ---------------------------------------------------------------------------
def env(key: str, default: Optional[str] = None, *, required: bool = False) -> str:
    val = os.getenv(key, default)
    if required and (val is None or val == ""):
        raise RuntimeError(f"The environment variable {key} is required but not set.")
    return val


# ---------------------------------------------------------------------------
# Core toggles
# ---------------------------------------------------------------------------
SECRET_KEY = config("SECRET_KEY", default="django-insecure-fallback-key-change-me-in-env")
DEBUG = config("DEBUG", default=False, cast=bool)
ALLOWED_HOSTS = config(
    "ALLOWED_HOSTS", default="127.0.0.1,localhost", cast=lambda v: [s.strip() for s in v.split(",")]
)

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
    }
}

# ---------------------------------------------------------------------------
# Application definition
# ---------------------------------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "rest_framework",
    "apps.bookingapp.apps.BookingAppConfig",
]

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------
CELERY_BROKER_URL = env("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", "redis://redis:6379/0")
CELERY_TASK_ALWAYS_EAGER = config("CELERY_TASK_ALWAYS_EAGER", default=False, cast=bool)
CELERY_TASK_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]

# ---------------------------------------------------------------------------
# Cache (also backs the per-resource timeline locks)
# ---------------------------------------------------------------------------
CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": env("REDIS_URL", "redis://redis:6379/1"),
        "OPTIONS": {"CLIENT_CLASS": "django_redis.client.DefaultClient"},
    }
}

# ---------------------------------------------------------------------------
# I18N / time zone
# ---------------------------------------------------------------------------
LANGUAGE_CODE = "en"
TIME_ZONE = env("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

# ---------------------------------------------------------------------------
# Buffer time policy
# ---------------------------------------------------------------------------
# Initial buffer policy, in the same shape the admin settings screen edits.
BUFFER_TIME_SETTINGS = {
    "globalBeforeMinutes": config("BUFFER_GLOBAL_BEFORE_MINUTES", default=0, cast=int),
    "globalAfterMinutes": config("BUFFER_GLOBAL_AFTER_MINUTES", default=0, cast=int),
    "serviceBuffers": {},
    "staffBuffers": {},
    "locationBuffers": {},
    "specialRules": {
        "timeBasedBuffers": [],
        "dayBasedBuffers": {},
    },
    "enforcement": {
        "enabled": config("BUFFER_ENFORCEMENT_ENABLED", default=False, cast=bool),
        "strictMode": config("BUFFER_STRICT_MODE", default=False, cast=bool),
        "allowOverride": config("BUFFER_ALLOW_OVERRIDE", default=True, cast=bool),
        "warnOnViolation": config("BUFFER_WARN_ON_VIOLATION", default=True, cast=bool),
    },
}

SCHEDULING_POLICY = {
    "LOCK_EXPIRES": config("SCHEDULING_LOCK_EXPIRES", default=30, cast=int),
    "LOCK_TIMEOUT": config("SCHEDULING_LOCK_TIMEOUT", default=5, cast=float),
    "LOCK_POLL_INTERVAL": config("SCHEDULING_LOCK_POLL_INTERVAL", default=0.05, cast=float),
    "AUDIT_ASYNC": config("SCHEDULING_AUDIT_ASYNC", default=True, cast=bool),
}

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_DIR = Path(env("LOG_DIR", str(BASE_DIR / "logs")))
LOG_DIR.mkdir(exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {"format": "{levelname} {message}", "style": "{"},
        "audit": {"format": "{asctime} {message}", "style": "{"},
    },
    "handlers": {
        "console": {
            "level": "DEBUG" if DEBUG else "INFO",
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
        "file": {
            "level": "INFO",
            "class": "logging.FileHandler",
            "filename": LOG_DIR / "salonsched.log",
            "formatter": "verbose",
        },
        "audit_file": {
            "level": "INFO",
            "class": "logging.FileHandler",
            "filename": LOG_DIR / "audit.log",
            "formatter": "audit",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": True,
        },
        "apps": {
            "handlers": ["console", "file"],
            "level": "DEBUG" if DEBUG else "INFO",
            "propagate": False,
        },
        "algorithms": {
            "handlers": ["console", "file"],
            "level": "DEBUG" if DEBUG else "INFO",
            "propagate": False,
        },
        "utils": {
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": False,
        },
        "salonsched": {
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": False,
        },
        "salonsched.audit": {
            "handlers": ["audit_file"],
            "level": "INFO",
            "propagate": False,
        },
    },
}
