"""
Minimal Django settings for Sphinx documentation generation.

This settings file lets Sphinx autodoc import ldapauth, which reads
``LDAP_SERVERS`` from Django settings, without running a Django application.
"""

from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = "django-insecure-docs-only-key-for-sphinx"  # noqa: S105

DEBUG = True

ALLOWED_HOSTS: list[str] = []

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

USE_TZ = True

# LDAP configuration (minimal for docs)
LDAP_SERVERS = {
    "default": {
        "host": "localhost",
        "port": 389,
        "tls_verify": "never",
        "user": "cn=admin,dc=example,dc=com",
        "password": "password",
        "basedn": "dc=example,dc=com",
        "user_filter": "(uid=%s)",
        "attributes": ["mail"],
    }
}

# Disable logging for docs
LOGGING = {
    "version": 1,
    "disable_existing_loggers": True,
    "handlers": {
        "null": {
            "class": "logging.NullHandler",
        },
    },
    "root": {
        "handlers": ["null"],
    },
}
