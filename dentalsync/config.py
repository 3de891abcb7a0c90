import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration"""
    SECRET_KEY = os.getenv('SECRET_KEY') or 'dev-secret-key-change-in-production'
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY') or SECRET_KEY
    # EventSource clients cannot set headers; the change stream accepts ?jwt=
    JWT_TOKEN_LOCATION = ['headers', 'query_string']

    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///dentalsync.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Celery Configuration
    CELERY_BROKER_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    CELERY_RESULT_BACKEND = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    CELERY_ACCEPT_CONTENT = ['json']
    CELERY_TASK_SERIALIZER = 'json'
    CELERY_RESULT_SERIALIZER = 'json'
    CELERY_TIMEZONE = 'UTC'
    CELERY_ENABLE_UTC = True
    CELERY_TASK_ALWAYS_EAGER = False
    # Nightly backfill (hour, minute) in CELERY_TIMEZONE
    CHART_MAINTENANCE_HOUR = int(os.getenv('CHART_MAINTENANCE_HOUR', '2'))
    CHART_MAINTENANCE_MINUTE = int(os.getenv('CHART_MAINTENANCE_MINUTE', '30'))

    # Reconciliation
    # When False, clinical events are reconciled inline in the request instead of via Celery
    RECONCILE_ASYNC = os.getenv('RECONCILE_ASYNC', 'true').lower() == 'true'
    BACKFILL_TIME_BUDGET = float(os.getenv('BACKFILL_TIME_BUDGET', '0'))  # seconds, 0 = unlimited
    # Optional replacement for the default StatusRuleTable
    STATUS_RULE_TABLE = None

    # Change notifications
    CHANGE_RELAY_URL = os.getenv('CHANGE_RELAY_URL')  # e.g. redis://localhost:6379/1
    CHANGE_CHANNEL_PREFIX = os.getenv('CHANGE_CHANNEL_PREFIX', 'chart-changes:')
    CHANGE_RELAY_LISTEN = os.getenv('CHANGE_RELAY_LISTEN', 'true').lower() == 'true'
    SUBSCRIBER_QUEUE_SIZE = int(os.getenv('SUBSCRIBER_QUEUE_SIZE', '256'))
    SSE_HEARTBEAT_SECONDS = float(os.getenv('SSE_HEARTBEAT_SECONDS', '15'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'logs/app.log')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Database connection pool for production
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 3600,
        'pool_size': 20,
        'max_overflow': 40,
        'connect_args': {
            'connect_timeout': 10,
            'options': '-c statement_timeout=30000'
        }
    }

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'WARNING')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///:memory:')
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    RECONCILE_ASYNC = False
    CELERY_TASK_ALWAYS_EAGER = True
    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'
    CHANGE_RELAY_URL = None
    SUBSCRIBER_QUEUE_SIZE = 8
    SSE_HEARTBEAT_SECONDS = 0.05


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get configuration based on FLASK_ENV"""
    env = os.getenv('FLASK_ENV', 'development')
    return config.get(env, config['default'])
