"""
Django settings for the stock ledger service.

Every value can be overridden from the environment (or a local .env file).
"""
import os
import sys
from pathlib import Path

import dj_database_url
from celery.schedules import crontab
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

TESTING = 'pytest' in sys.modules or 'test' in sys.argv[1:2]


def _env_bool(name, default='0'):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


def _split_env(name, default=''):
    raw = os.getenv(name, default)
    return [x.strip() for x in raw.replace(',', ' ').split() if x.strip()]


# =============================================================================
# Core
# =============================================================================

DEBUG = _env_bool('DEBUG')
SECRET_KEY = os.getenv('SECRET_KEY', '')
if not SECRET_KEY:
    if DEBUG or TESTING:
        SECRET_KEY = 'insecure-development-key'
    else:
        raise RuntimeError('SECRET_KEY is not configured.')

ALLOWED_HOSTS = _split_env('ALLOWED_HOSTS', 'localhost 127.0.0.1 testserver')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'inventory',
    'transactions',
    'notifications',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# =============================================================================
# Database
# =============================================================================

DATABASES = {
    'default': dj_database_url.config(
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=int(os.getenv('DB_CONN_MAX_AGE', '60')),
    )
}

if DATABASES['default']['ENGINE'] == 'django.db.backends.sqlite3':
    # SQLite ignores SELECT ... FOR UPDATE; IMMEDIATE transactions take the
    # write lock up front so stock mutations still serialize.
    DATABASES['default'].setdefault('OPTIONS', {}).update({
        'timeout': int(os.getenv('SQLITE_TIMEOUT', '20')),
        'transaction_mode': 'IMMEDIATE',
    })
    # File-backed test database so worker threads share it without
    # SQLite's shared-cache table locks.
    DATABASES['default']['TEST'] = {'NAME': str(BASE_DIR / 'test_db.sqlite3')}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Bounded wait for the balance row lock (PostgreSQL lock_timeout).
STOCK_LOCK_TIMEOUT_MS = int(os.getenv('STOCK_LOCK_TIMEOUT_MS', '5000'))

# =============================================================================
# Internationalization / static
# =============================================================================

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# =============================================================================
# Django REST Framework
# =============================================================================

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': ['rest_framework.renderers.JSONRenderer'],
    'DEFAULT_PAGINATION_CLASS': 'core.pagination.EnvelopePagination',
    'PAGE_SIZE': int(os.getenv('API_PAGE_SIZE', '10')),
    'EXCEPTION_HANDLER': 'core.exceptions.api_exception_handler',
}

# =============================================================================
# Redis / Celery
# =============================================================================

REDIS_URL = os.getenv('REDIS_URL', 'redis://127.0.0.1:6379/0')

CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', REDIS_URL)
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_ALWAYS_EAGER = _env_bool('CELERY_TASK_ALWAYS_EAGER', '1' if TESTING else '0')
CELERY_TASK_EAGER_PROPAGATES = False
CELERY_TASK_ROUTES = {
    'notifications.tasks.*': {'queue': 'notifications'},
    'transactions.tasks.*': {'queue': 'reports'},
}
CELERY_BEAT_SCHEDULE = {
    'daily-movement-report': {
        'task': 'transactions.tasks.generate_daily_movement_report',
        'schedule': crontab(minute=15, hour=0),
    },
}

# =============================================================================
# Notifications
# =============================================================================

NOTIFICATIONS_ALERT_ROLES = _split_env('NOTIFICATIONS_ALERT_ROLES', 'admin manager')
NOTIFICATIONS_QUEUE_SIZE = int(os.getenv('NOTIFICATIONS_QUEUE_SIZE', '100'))
NOTIFICATIONS_KEEPALIVE_SECONDS = float(os.getenv('NOTIFICATIONS_KEEPALIVE_SECONDS', '15'))
NOTIFICATIONS_REDIS_RELAY_ENABLED = _env_bool('NOTIFICATIONS_REDIS_RELAY_ENABLED')
NOTIFICATIONS_REDIS_CHANNEL_PREFIX = os.getenv('NOTIFICATIONS_REDIS_CHANNEL_PREFIX', 'stockledger')

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG' if DEBUG else 'INFO')
LOG_FILE = os.getenv('LOG_FILE', '')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '[{levelname}] {asctime} {name} {process:d} {thread:d}: {message}',
            'style': '{',
        },
        'simple': {'format': '[{levelname}] {name}: {message}', 'style': '{'},
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple' if DEBUG else 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django.db.backends': {
            'level': os.getenv('DB_LOG_LEVEL', 'WARNING'),
            'handlers': ['console'],
            'propagate': False,
        },
    },
}

if LOG_FILE:
    LOGGING['handlers']['file'] = {
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': LOG_FILE,
        'maxBytes': 10 * 1024 * 1024,
        'backupCount': 5,
        'formatter': 'verbose',
    }
    LOGGING['root']['handlers'].append('file')
