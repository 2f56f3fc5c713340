"""
Django settings for vocab_site.

Secrets, debug mode and the database location come from the environment.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'insecure-development-key-change-me')

DEBUG = os.environ.get('DJANGO_DEBUG', 'False').lower() in ('true', '1', 'yes')

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'vocab.apps.VocabConfig',
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

ROOT_URLCONF = 'vocab_site.urls'

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

WSGI_APPLICATION = 'vocab_site.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('DJANGO_DB_PATH', BASE_DIR / 'db.sqlite3'),
        # Seconds a writer waits for the lock before "database is locked"
        'OPTIONS': {'timeout': int(os.environ.get('DJANGO_DB_TIMEOUT', 20))},
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LOGIN_URL = '/admin/login/'

# Learning engine tunables
VOCAB_DUE_REVIEW_LIMIT = int(os.environ.get('VOCAB_DUE_REVIEW_LIMIT', 20))
VOCAB_MAX_UPDATE_ATTEMPTS = int(os.environ.get('VOCAB_MAX_UPDATE_ATTEMPTS', 3))
VOCAB_DEFAULT_PLAN_DAYS = int(os.environ.get('VOCAB_DEFAULT_PLAN_DAYS', 30))
VOCAB_ANALYSIS_WINDOW_DAYS = int(os.environ.get('VOCAB_ANALYSIS_WINDOW_DAYS', 30))
VOCAB_COMPLETION_WINDOW_DAYS = int(os.environ.get('VOCAB_COMPLETION_WINDOW_DAYS', 7))

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name}: {message}',
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
        'vocab': {
            'handlers': ['console'],
            'level': os.environ.get('VOCAB_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
