# ventbox/config/settings.py
import os
from datetime import timedelta
from pathlib import Path

import dj_database_url
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # backend/
load_dotenv(BASE_DIR / ".env")

REDIS_HOST = os.environ.get("REDIS_HOST", "127.0.0.1")
REDIS_PORT = int(os.environ.get("REDIS_PORT", "6379"))
REDIS_DB = int(os.environ.get("REDIS_DB", "0"))
REDIS_SOCKET_TIMEOUT = float(os.environ.get("REDIS_SOCKET_TIMEOUT", "2"))


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "")
DEBUG = os.environ.get("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = [
    h.strip()
    for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "").split(",")
    if h.strip()
]
CORS_ALLOW_ALL_ORIGINS = True
CORS_ALLOW_CREDENTIALS = True

DATABASES = {
    "default": dj_database_url.config(
        default=os.environ.get("DATABASE_URL", f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
        conn_max_age=600,
    )
}

INSTALLED_APPS = [
    # django 기본 apps...
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # third party
    "rest_framework",
    "channels",
    "corsheaders",
    # local apps
    "ventbox.common",
    "ventbox.users",
    "ventbox.authentication",
    "ventbox.queues",
    "ventbox.matches",
    "ventbox.calls",
]

ASGI_APPLICATION = "ventbox.config.asgi.application"

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {
            "hosts": [(REDIS_HOST, REDIS_PORT)],
        },
    }
}

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.IsAuthenticated",),
    "EXCEPTION_HANDLER": "ventbox.common.exceptions.custom_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(days=7),
    "SIGNING_KEY": os.environ.get("JWT_SECRET", SECRET_KEY),
}

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

ROOT_URLCONF = "ventbox.config.urls"

APPEND_SLASH = False
USE_TZ = True
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
AUTH_USER_MODEL = "users.Participant"

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "ventbox": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# ---- matching / queue ----
MATCH_NO_MATCH_TIMEOUT_SECONDS = int(os.environ.get("MATCH_NO_MATCH_TIMEOUT_SECONDS", "300"))  # 5분
MATCH_RETRY_DELAY_SECONDS = float(os.environ.get("MATCH_RETRY_DELAY_SECONDS", "2"))
QUEUE_CANDIDATE_WINDOW = int(os.environ.get("QUEUE_CANDIDATE_WINDOW", "10"))
QUEUE_STALE_TTL_SECONDS = int(os.environ.get("QUEUE_STALE_TTL_SECONDS", "600"))  # 10분
QUEUE_STALE_SWEEP_SECONDS = int(os.environ.get("QUEUE_STALE_SWEEP_SECONDS", "180"))
QUEUE_STATS_REFRESH_SECONDS = int(os.environ.get("QUEUE_STATS_REFRESH_SECONDS", "30"))

# ---- voice transport ----
VOICE_TOKEN_URL = os.environ.get("VOICE_TOKEN_URL", "")
VOICE_TOKEN_TIMEOUT_SECONDS = float(os.environ.get("VOICE_TOKEN_TIMEOUT_SECONDS", "10"))
VOICE_JOIN_ATTEMPTS = int(os.environ.get("VOICE_JOIN_ATTEMPTS", "2"))
VOICE_TRANSPORT_CLASS = os.environ.get("VOICE_TRANSPORT_CLASS") or None
