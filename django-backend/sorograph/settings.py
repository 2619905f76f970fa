"""
Django settings for SoroGraph project.
"""
import os
import sys
from pathlib import Path

import environ
from django.core.exceptions import ImproperlyConfigured
from stellar_sdk import Network

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Environment variables
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, ["localhost", "127.0.0.1"]),
    EXPLORER_RPC_ENABLED=(bool, True),
)
environ.Env.read_env(BASE_DIR / ".env")

REQUIRED_ENV_VARS = [
    'SECRET_KEY',
]

_running_tests = 'test' in sys.argv or os.environ.get('DJANGO_SETTINGS_MODULE', '').endswith('_test')
if not _running_tests:
    for var in REQUIRED_ENV_VARS:
        if not os.environ.get(var):
            raise ImproperlyConfigured(f"Required environment variable '{var}' is not set.")

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env("SECRET_KEY", default="django-insecure-change-this-in-production")

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env("DEBUG")

ALLOWED_HOSTS = env("ALLOWED_HOSTS")

# Application definition
INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.staticfiles",
    # Third-party
    "rest_framework",
    "drf_spectacular",
    "corsheaders",
    "strawberry.django",
    # Local apps
    "sorograph.explorer",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "sorograph.middleware.RequestIdMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "sorograph.urls"

ASGI_APPLICATION = "sorograph.asgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
            ],
        },
    },
]

# Database (nothing is persisted; Django still wants a default alias)
DATABASES = {
    "default": env.db(
        "DATABASE_URL",
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
    ),
}

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# Static files
STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Cache (used for rate limiting)
CACHES = {
    "default": env.cache("CACHE_URL", default="locmemcache://"),
}

# Rate limiting configuration (via environment variables)
RATE_LIMIT_ANON = env("RATE_LIMIT_ANON", default="60/minute")

# REST Framework
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "anon": RATE_LIMIT_ANON,
    },
}

# Spectacular Settings
SPECTACULAR_SETTINGS = {
    "TITLE": "SoroGraph API",
    "DESCRIPTION": "Decode Stellar transactions and Soroban contract invocations into operation graphs.",
    "VERSION": "1.0.0",
}

# CORS
CORS_ALLOW_ALL_ORIGINS = DEBUG
CORS_ALLOWED_ORIGINS = env.list("CORS_ALLOWED_ORIGINS", default=[])

# Stellar / Soroban Configuration
STELLAR_NETWORKS = {
    "testnet": {
        "HORIZON_URL": env("HORIZON_TESTNET_URL", default="https://horizon-testnet.stellar.org"),
        "RPC_URL": env("SOROBAN_RPC_TESTNET_URL", default="https://soroban-testnet.stellar.org"),
        "PASSPHRASE": Network.TESTNET_NETWORK_PASSPHRASE,
    },
    "mainnet": {
        "HORIZON_URL": env("HORIZON_MAINNET_URL", default="https://horizon.stellar.org"),
        # Public RPC for mainnet is provider-specific; empty disables it.
        "RPC_URL": env("SOROBAN_RPC_MAINNET_URL", default=""),
        "PASSPHRASE": Network.PUBLIC_NETWORK_PASSPHRASE,
    },
}
STELLAR_DEFAULT_NETWORK = env("STELLAR_DEFAULT_NETWORK", default="testnet")

# Explorer display and fetch options
EXPLORER_OPERATIONS_LIMIT = env.int("EXPLORER_OPERATIONS_LIMIT", default=200)
EXPLORER_MAP_DISPLAY_LIMIT = env.int("EXPLORER_MAP_DISPLAY_LIMIT", default=10)
EXPLORER_BYTES_FORMAT = env("EXPLORER_BYTES_FORMAT", default="hex")
EXPLORER_RPC_ENABLED = env("EXPLORER_RPC_ENABLED")

# Logging: set LOG_FORMAT=json for structured JSON logs (no PII in messages or extra).
LOG_FORMAT = env("LOG_FORMAT", default="")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
        },
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json" if LOG_FORMAT == "json" else "default",
            "filters": ["log_context"],
        },
    },
    "filters": {
        "log_context": {
            "()": "sorograph.log_context.LogContextFilter",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": env("LOG_LEVEL", default="INFO"),
    },
}

# Sentry (optional): init only when SENTRY_DSN is set.
SENTRY_DSN = env("SENTRY_DSN", default="")
if SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[DjangoIntegration()],
        traces_sample_rate=env.float("SENTRY_TRACES_SAMPLE_RATE", default=0.1),
        send_default_pii=False,
        environment=env("SENTRY_ENVIRONMENT", default="production"),
    )
