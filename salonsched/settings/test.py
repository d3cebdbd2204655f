"""
Test settings for the salon scheduling service.

These settings override the base settings for test environments.
"""

from .base import *  # noqa

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Timeline locks need a working cache; keep it in-process
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "salonsched-tests",
    }
}

USE_I18N = False
TIME_ZONE = "UTC"

# Run Celery tasks synchronously in tests
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

BUFFER_TIME_SETTINGS = {
    "globalBeforeMinutes": 0,
    "globalAfterMinutes": 0,
    "enforcement": {
        "enabled": False,
        "strictMode": False,
        "allowOverride": True,
        "warnOnViolation": True,
    },
}

SCHEDULING_POLICY = {
    "LOCK_EXPIRES": 30,
    "LOCK_TIMEOUT": 2,
    "LOCK_POLL_INTERVAL": 0.01,
    "AUDIT_ASYNC": True,
}

# Keep loggers alive so tests can assert on them, but print nothing
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "null": {
            "class": "logging.NullHandler",
        },
    },
    "loggers": {
        "": {
            "handlers": ["null"],
            "level": "DEBUG",
        },
    },
}
