"""
MediStock — Test Settings

In-memory SQLite, local-memory cache and eager Celery. Activated by:
  DJANGO_SETTINGS_MODULE=config.settings.test

@file config/settings/test.py
"""

from .base import *  # noqa: F401, F403

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    },
    # Second alias for ledgers built with an explicit `using`.
    'other': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    },
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
    },
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

REST_FRAMEWORK['DEFAULT_THROTTLE_CLASSES'] = []  # noqa: F405
REST_FRAMEWORK['DEFAULT_RENDERER_CLASSES'] = (  # noqa: F405
    'core.renderers.StandardJSONRenderer',
)

INVENTORY_DISPENSING_GRANULARITY = 'UNIT'

LOGGING['loggers']['medistock']['level'] = 'WARNING'  # noqa: F405
LOGGING['loggers']['medistock']['propagate'] = True  # noqa: F405
