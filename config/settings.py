import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me")
DEBUG = env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = [host.strip() for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if host.strip()]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "channels",
    "marketplace.apps.MarketplaceConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "marketplace.middleware.ErrorLoggingMiddleware",
]

ROOT_URLCONF = "config.urls"

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

WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

DATABASES = {
    "default": {
        "ENGINE": os.environ.get("DATABASE_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get("DATABASE_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.environ.get("DATABASE_USER", ""),
        "PASSWORD": os.environ.get("DATABASE_PASSWORD", ""),
        "HOST": os.environ.get("DATABASE_HOST", ""),
        "PORT": os.environ.get("DATABASE_PORT", ""),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "tradeboard",
    }
}

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.IsAuthenticated",),
    "EXCEPTION_HANDLER": "marketplace.middleware.api_exception_handler",
}

LANGUAGE_CODE = "en-gb"
TIME_ZONE = "Europe/London"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
DEFAULT_FROM_EMAIL = os.environ.get("DEFAULT_FROM_EMAIL", "no-reply@tradeboard.local")
EMAIL_TIMEOUT = env_int("EMAIL_TIMEOUT_SECONDS", 10)
SITE_URL = os.environ.get("SITE_URL", "http://localhost:8000")

# Quotes
BASIC_TIER_MONTHLY_QUOTES = env_int("BASIC_TIER_MONTHLY_QUOTES", 5)
BASIC_TIER_QUOTE_TEMPLATES = env_int("BASIC_TIER_QUOTE_TEMPLATES", 5)

# Geocoding (postcodes.io)
GEOCODER_BASE_URL = os.environ.get("GEOCODER_BASE_URL", "https://api.postcodes.io")
GEOCODER_CACHE_SECONDS = env_int("GEOCODER_CACHE_SECONDS", 30 * 24 * 60 * 60)
GEOCODER_TIMEOUT_SECONDS = env_int("GEOCODER_TIMEOUT_SECONDS", 8)

# Search index (Algolia-compatible REST API)
SEARCH_INDEX_APP_ID = os.environ.get("SEARCH_INDEX_APP_ID", "")
SEARCH_INDEX_API_KEY = os.environ.get("SEARCH_INDEX_API_KEY", "")
SEARCH_INDEX_JOBS = os.environ.get("SEARCH_INDEX_JOBS", "jobs")
SEARCH_INDEX_PROVIDERS = os.environ.get("SEARCH_INDEX_PROVIDERS", "plumbers")
SEARCH_INDEX_TIMEOUT_SECONDS = env_int("SEARCH_INDEX_TIMEOUT_SECONDS", 5)
SEARCH_DEFAULT_PAGE_SIZE = env_int("SEARCH_DEFAULT_PAGE_SIZE", 6)
REINDEX_LOCK_TTL_SECONDS = env_int("REINDEX_LOCK_TTL_SECONDS", 600)

# Matching
MATCHING_METRO_SLUG = os.environ.get("MATCHING_METRO_SLUG", "london")

# Notifications
NOTIFICATION_UNREAD_CACHE_SECONDS = env_int("NOTIFICATION_UNREAD_CACHE_SECONDS", 6)
NOTIFICATION_RETENTION_DAYS = env_int("NOTIFICATION_RETENTION_DAYS", 60)

ERROR_LOGGING_ENABLED = env_bool("ERROR_LOGGING_ENABLED", True)
ERROR_LOG_TRACEBACK_MAX_CHARS = env_int("ERROR_LOG_TRACEBACK_MAX_CHARS", 12000)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "marketplace": {
            "handlers": ["console"],
            "level": os.environ.get("MARKETPLACE_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
