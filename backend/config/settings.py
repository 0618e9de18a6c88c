from __future__ import annotations

import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return [item.strip() for item in raw.split(",") if item.strip()]


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = _env_bool("DEBUG", False)
ALLOWED_HOSTS = _env_list("ALLOWED_HOSTS", ["localhost", "127.0.0.1"])

IS_TESTING = "test" in sys.argv[1:2] or "pytest" in sys.modules

INSTALLED_APPS = [
    "daphne",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "channels",
    "scheduler",
    "missions",
    "triggers",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"
ASGI_APPLICATION = "config.asgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

if os.environ.get("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ["POSTGRES_DB"],
            "USER": os.environ.get("POSTGRES_USER", "postgres"),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", ""),
            "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.environ.get("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_RENDERER_CLASSES": ["config.renderers.EnvelopeJSONRenderer"],
    "EXCEPTION_HANDLER": "config.exception_handler.custom_exception_handler",
}

CHANNEL_LAYERS = {
    "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"},
}

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "standard"},
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}

# Periodic task runner
SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", True)
SCHEDULER_TASK_OVERRIDES: dict[str, dict] = {}

MISSION_QUEUE = {
    "DEFAULT_PRIORITY": _env_int("MISSION_QUEUE_DEFAULT_PRIORITY", 5),
    "DEFAULT_MAX_CONCURRENT_ROBOTS": _env_int("MISSION_QUEUE_DEFAULT_MAX_CONCURRENT_ROBOTS", 10),
    "DEFAULT_MAX_CONSECUTIVE_OPPORTUNISTIC": _env_int("MISSION_QUEUE_DEFAULT_MAX_CONSECUTIVE_OPPORTUNISTIC", 1),
    "PROCESS_INTERVAL_SECONDS": _env_int("MISSION_QUEUE_PROCESS_INTERVAL_SECONDS", 5),
    "RECONCILE_INTERVAL_SECONDS": _env_int("MISSION_QUEUE_RECONCILE_INTERVAL_SECONDS", 10),
    "RECONCILE_STALE_GRACE_SECONDS": _env_int("MISSION_QUEUE_RECONCILE_STALE_GRACE_SECONDS", 300),
    "RECONCILE_MAX_WORKERS": _env_int("MISSION_QUEUE_RECONCILE_MAX_WORKERS", 8),
    "DISPATCH_MAX_WORKERS": _env_int("MISSION_QUEUE_DISPATCH_MAX_WORKERS", 8),
    "MISSION_CODE_PREFIX": os.environ.get("MISSION_QUEUE_MISSION_CODE_PREFIX", "mission"),
}

AMR_CONTROLLER = {
    "BASE_URL": os.environ.get("AMR_CONTROLLER_BASE_URL", ""),
    "ORG_ID": os.environ.get("AMR_CONTROLLER_ORG_ID", ""),
    "API_TOKEN": os.environ.get("AMR_CONTROLLER_API_TOKEN", ""),
    "TIMEOUT_SECONDS": _env_float("AMR_CONTROLLER_TIMEOUT_SECONDS", 10.0),
    "SUBMIT_PATH": "/api/amr/submitMission",
    "CANCEL_PATH": "/api/amr/missionCancel",
    "JOB_QUERY_PATH": "/api/amr/jobQuery",
    "ROBOT_QUERY_PATH": "/api/amr/robotQuery",
    "WAITING_QUERY_PATH": "/api/amr/waitingForResume",
    "OPERATION_FEEDBACK_PATH": "/api/amr/operationFeedback",
    # Vendor job status code -> missions.models.RemoteStatus value.
    "STATUS_CODES": {
        10: "created",
        20: "executing",
        25: "waiting",
        28: "cancelling",
        30: "complete",
        31: "cancelled",
        35: "manual_complete",
        50: "warning",
        60: "startup_error",
    },
}

MISSION_TRIGGERS = {
    "TICK_INTERVAL_SECONDS": _env_int("MISSION_TRIGGERS_TICK_INTERVAL_SECONDS", 30),
    "MAX_DUE_PER_TICK": _env_int("MISSION_TRIGGERS_MAX_DUE_PER_TICK", 50),
    "DEFAULT_TIMEZONE": os.environ.get("MISSION_TRIGGERS_DEFAULT_TIMEZONE", "UTC"),
    "CLAIM_TIMEOUT_SECONDS": _env_int("MISSION_TRIGGERS_CLAIM_TIMEOUT_SECONDS", 300),
}
