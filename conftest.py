"""
Pytest configuration for the entire test suite.

This file configures test database to use SQLite for faster tests.
"""
import django
from django.conf import settings


def pytest_configure():
    """Force SQLite for tests (no database server dependency)."""
    settings.DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',  # In-memory database for speed
        }
    }

    django.setup()
