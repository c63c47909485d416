"""
Django settings for the Support Desk automation service.

Uses PostgreSQL in production (SQLite for local dev) and django-rest-framework
for the webhook + admin API layer. Every tunable reads from the environment
with a safe default; auto-send stays off unless explicitly enabled.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-secret-key-change-in-production')

DEBUG = os.environ.get('DEBUG', 'True').lower() in ('true', '1', 'yes')

ALLOWED_HOSTS = os.environ.get('ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')

# Application definition
INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'rest_framework',
    'corsheaders',
    'django_q',
    'triage',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
]

# Don't redirect to add trailing slashes; webhook senders post to exact URLs
APPEND_SLASH = False

ROOT_URLCONF = 'support_desk.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
    },
]

WSGI_APPLICATION = 'support_desk.wsgi.application'

# Database: PostgreSQL in production, SQLite for local dev
DB_ENGINE = os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3')

if DB_ENGINE == 'django.db.backends.sqlite3':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': os.environ.get('DB_NAME', 'support_desk'),
            'USER': os.environ.get('DB_USER', 'postgres'),
            'PASSWORD': os.environ.get('DB_PASSWORD', 'postgres'),
            'HOST': os.environ.get('DB_HOST', 'localhost'),
            'PORT': os.environ.get('DB_PORT', '5432'),
        }
    }

# CORS: the admin UI runs as a separate dev server
CORS_ALLOW_ALL_ORIGINS = DEBUG
CORS_ALLOWED_ORIGINS = [
    'http://localhost:5173',
    'http://localhost:3000',
    'http://127.0.0.1:5173',
]

# DRF
REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_PAGINATION_CLASS': None,
    'UNAUTHENTICATED_USER': None,
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
}

# LLM collaborators
LLM_PROVIDER = os.environ.get('LLM_PROVIDER', 'mock')  # "openai" or "mock"
OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY', '')
OPENAI_MODEL = os.environ.get('OPENAI_MODEL', 'gpt-4o-mini')
CLASSIFIER_TIMEOUT_SECONDS = float(os.environ.get('CLASSIFIER_TIMEOUT_SECONDS', '15'))
DRAFTER_TIMEOUT_SECONDS = float(os.environ.get('DRAFTER_TIMEOUT_SECONDS', '30'))
KB_SEARCH_LIMIT = int(os.environ.get('KB_SEARCH_LIMIT', '3'))

# Auto-send policy (runtime overrides live in the agent_settings table)
AUTO_SEND_ENABLED = os.environ.get('AUTO_SEND_ENABLED', 'False').lower() in ('true', '1', 'yes')
AUTO_SEND_CONFIDENCE_THRESHOLD = float(os.environ.get('AUTO_SEND_CONFIDENCE_THRESHOLD', '0.85'))
AUTO_SEND_ORDER_CONFIDENCE_THRESHOLD = float(os.environ.get('AUTO_SEND_ORDER_CONFIDENCE_THRESHOLD', '0.95'))

# Policy gate
AGENT_SIGNOFF_NAME = os.environ.get('AGENT_SIGNOFF_NAME', 'Lina')
POLICY_COMPETITOR_NAMES = [
    name.strip()
    for name in os.environ.get('POLICY_COMPETITOR_NAMES', '').split(',')
    if name.strip()
]

# Mailbox the messaging provider sends from; replies from any other
# support address on a thread count as human intervention.
SUPPORT_MAILBOX = os.environ.get('SUPPORT_MAILBOX', 'support@example.com')

# Thread handling timing
STALE_HANDOFF_HOURS = int(os.environ.get('STALE_HANDOFF_HOURS', '48'))
DUPLICATE_RUN_WINDOW_SECONDS = int(os.environ.get('DUPLICATE_RUN_WINDOW_SECONDS', '30'))

# django-q2: lightweight task queue using the ORM broker (no Redis needed)
Q_CLUSTER = {
    'name': 'support-desk',
    'workers': 2,
    'timeout': 120,
    'retry': 180,
    'orm': 'default',
    'bulk': 10,
    'catch_up': False,
}

# All datetimes are timezone-aware UTC
USE_TZ = True
TIME_ZONE = 'UTC'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
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
        'level': 'INFO',
    },
    'loggers': {
        'triage': {
            'handlers': ['console'],
            'level': os.environ.get('TRIAGE_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
