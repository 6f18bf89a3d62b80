"""
Django settings for credits_ledger project.

Credits Ledger Service
An append-only credits ledger with per-account serialized balance mutation,
verified credit purchases and time-tiered refunds.
"""

import os
from pathlib import Path
from urllib.parse import urlparse

from celery.schedules import crontab

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get('SECRET_KEY', 'django-insecure-credits-ledger-dev-only-change-me')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.environ.get('DEBUG', 'True') == 'True'

ALLOWED_HOSTS = os.environ.get('ALLOWED_HOSTS', '*').split(',')

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    # Our apps
    'ledger',
    'read_models',
    'events',
    'purchases',
    'refunds',
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

ROOT_URLCONF = 'credits_ledger.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'credits_ledger.wsgi.application'

# Database
# PostgreSQL in production: row-level locks (SELECT ... FOR UPDATE) serialize
# balance mutation per account.
DATABASE_URL = os.environ.get('DATABASE_URL', '')

if DATABASE_URL.startswith(('postgresql://', 'postgres://')):
    db_url = urlparse(DATABASE_URL)
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': db_url.path[1:],
            'USER': db_url.username,
            'PASSWORD': db_url.password,
            'HOST': db_url.hostname,
            'PORT': db_url.port or '5432',
            'CONN_MAX_AGE': 600,
            'OPTIONS': {
                'connect_timeout': 10,
            },
        }
    }
else:
    # Fallback to SQLite for local development and tests
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

# Celery Configuration
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = 'UTC'
CELERY_TASK_ACKS_LATE = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_TASK_REJECT_ON_WORKER_LOST = True
CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_TASK_ALWAYS_EAGER', 'False') == 'True'
CELERY_BEAT_SCHEDULE = {
    'expire-stale-purchases': {
        'task': 'purchases.tasks.expire_stale_purchases',
        'schedule': crontab(minute='*/5'),
    },
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# REST Framework configuration
REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.AllowAny',
    ],
    'UNAUTHENTICATED_USER': None,
    'EXCEPTION_HANDLER': 'credits_ledger.exception_handler.credits_exception_handler',
}

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        app: {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        }
        for app in ('ledger', 'read_models', 'events', 'purchases', 'refunds', 'credits_ledger')
    },
}


def _env_int(name, default):
    return int(os.environ.get(name, default))


# Credits business configuration - every ledger invariant bound lives here
CREDIT_CONFIG = {
    'CURRENCY': os.environ.get('CREDITS_CURRENCY', 'INR'),
    'PRICE_PER_CREDIT': _env_int('CREDITS_PRICE_PER_CREDIT', 50),
    'MIN_PURCHASE': _env_int('CREDITS_MIN_PURCHASE', 1),
    'MAX_SINGLE_PURCHASE': _env_int('CREDITS_MAX_SINGLE_PURCHASE', 100),
    'MAX_BALANCE': _env_int('CREDITS_MAX_BALANCE', 1000),
    'FULL_REFUND_MINUTES': _env_int('CREDITS_FULL_REFUND_MINUTES', 30),
    'PARTIAL_REFUND_HOURS': _env_int('CREDITS_PARTIAL_REFUND_HOURS', 24),
    'PARTIAL_REFUND_PERCENT': _env_int('CREDITS_PARTIAL_REFUND_PERCENT', 50),
    'PURCHASE_EXPIRY_MINUTES': _env_int('CREDITS_PURCHASE_EXPIRY_MINUTES', 30),
    'ADMIN_REASON_MIN_LENGTH': _env_int('CREDITS_ADMIN_REASON_MIN_LENGTH', 10),
    'SIGNUP_BONUS_CREDITS': _env_int('CREDITS_SIGNUP_BONUS', 5),
    'LOCK_TIMEOUT_MS': _env_int('CREDITS_LOCK_TIMEOUT_MS', 5000),
    'LOCK_RETRY_ATTEMPTS': _env_int('CREDITS_LOCK_RETRY_ATTEMPTS', 3),
    'LOCK_RETRY_BACKOFF': float(os.environ.get('CREDITS_LOCK_RETRY_BACKOFF', '0.05')),
}

CREDIT_PACKAGES = [
    {'id': 1, 'name': 'Starter', 'credits': 5, 'price': 250},
    {'id': 2, 'name': 'Basic', 'credits': 10, 'price': 450},
    {'id': 3, 'name': 'Pro', 'credits': 25, 'price': 1000},
    {'id': 4, 'name': 'Business', 'credits': 50, 'price': 1750},
]

# Shared secret for payment-completion signatures (HMAC-SHA256)
PAYMENT_GATEWAY_SECRET = os.environ.get('PAYMENT_GATEWAY_SECRET', '')
