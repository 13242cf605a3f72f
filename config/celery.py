"""
Celery application for out-of-band stock notifications and reports.
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('stockledger')

# All Celery settings live in Django settings under the CELERY_ prefix.
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
