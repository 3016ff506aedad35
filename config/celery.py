"""
MediStock — Celery Application

Discovers ``tasks.py`` in every installed app. Periodic schedules are
stored through django-celery-beat.

@file config/celery.py
"""

import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.development')

app = Celery('medistock')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
