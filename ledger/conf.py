"""Accessors for the credits configuration held in Django settings."""

from django.conf import settings


def credit_config():
    """Return the active ``CREDIT_CONFIG`` dict (re-read on every call)."""
    return settings.CREDIT_CONFIG


def credit_packages():
    return settings.CREDIT_PACKAGES
