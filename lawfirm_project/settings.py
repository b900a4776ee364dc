"""Django settings for the law firm billing ledger."""
from pathlib import Path
import os

import dj_database_url


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-key")


def _get_bool_env(name, default):
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.lower() in {"1", "true", "yes", "on"}


def _get_list_env(name):
    raw_value = os.getenv(name, "")
    return [part.strip() for part in raw_value.replace(";", ",").split(",") if part.strip()]


DEBUG = _get_bool_env("DJANGO_DEBUG", True)

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"] + _get_list_env("DJANGO_ALLOWED_HOSTS")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Project apps
    "ledger",
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

ROOT_URLCONF = "lawfirm_project.urls"

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
    }
]

WSGI_APPLICATION = "lawfirm_project.wsgi.application"

default_db = "sqlite:///" + str((BASE_DIR / "db.sqlite3").resolve())
database_url = os.getenv("DATABASE_URL", default_db)
DATABASES = {"default": dj_database_url.parse(database_url)}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "ledger": {
            "handlers": ["console"],
            "level": os.getenv("DJANGO_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

# Billing ledger
LEDGER_DEFAULT_CURRENCY = os.getenv("LEDGER_DEFAULT_CURRENCY", "USD")
LEDGER_DEFAULT_VAT_RATE = os.getenv("LEDGER_DEFAULT_VAT_RATE", "0")
LEDGER_PAYMENT_TERMS_DAYS = int(os.getenv("LEDGER_PAYMENT_TERMS_DAYS", "30"))
LEDGER_INVOICE_PREFIX = os.getenv("LEDGER_INVOICE_PREFIX", "INV")
LEDGER_CONCURRENCY_RETRIES = int(os.getenv("LEDGER_CONCURRENCY_RETRIES", "3"))
