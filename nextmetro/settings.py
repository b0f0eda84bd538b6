"""
Django settings for the nextmetro project.

Every value can be overridden from the environment.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    value = os.environ.get(name, "").strip()
    return int(value) if value else default


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "django-insecure-nextmetro-dev-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h.strip() for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.staticfiles",
    "departures",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "nextmetro.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
            ],
        },
    },
]

WSGI_APPLICATION = "nextmetro.wsgi.application"

# No database: the schedule lives in memory
DATABASES = {}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

STATIC_URL = "static/"

# GTFS feed and route
GTFS_ZIP_URL = os.environ.get("GTFS_ZIP_URL", "https://www.stm.info/sites/default/files/gtfs/gtfs_stm.zip")
TRANSIT_ROUTE_ID = os.environ.get("TRANSIT_ROUTE_ID", "4")
TRANSIT_DIRECTION_ID = os.environ.get("TRANSIT_DIRECTION_ID", "0") or None
TRANSIT_HEADSIGN = os.environ.get("TRANSIT_HEADSIGN") or None
TRANSIT_STOP_ID = os.environ.get("TRANSIT_STOP_ID") or None
TRANSIT_TIMEZONE = os.environ.get("TRANSIT_TIMEZONE", "America/Toronto")
SCHEDULE_SOURCE = os.environ.get("SCHEDULE_SOURCE", "frequencies")
FEED_REFRESH_SECONDS = _env_int("FEED_REFRESH_SECONDS", 6 * 3600)
FEED_TIMEOUT_SECONDS = _env_int("FEED_TIMEOUT_SECONDS", 30)
DEDUPE_TOLERANCE_SECONDS = _env_int("DEDUPE_TOLERANCE_SECONDS", 10)
DEPARTURE_COUNT = _env_int("DEPARTURE_COUNT", 2)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "departures": {
            "handlers": ["console"],
            "level": os.environ.get("LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
