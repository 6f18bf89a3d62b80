"""Celery application for background credits work (purchase expiry sweeps)."""

import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'credits_ledger.settings')

app = Celery('credits_ledger')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
