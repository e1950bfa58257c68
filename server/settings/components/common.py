"""Core Django settings."""

from server.settings.components import config

SECRET_KEY = config('DJANGO_SECRET_KEY', default='filemanager-insecure-key')

DEBUG = config('DJANGO_DEBUG', cast=bool, default=False)

ALLOWED_HOSTS: list[str] = []

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'server.apps.filemanager',
]

# The engine keeps no database state; an in-memory database satisfies
# Django's checks and the test runner.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    },
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

USE_TZ = True
TIME_ZONE = 'UTC'
