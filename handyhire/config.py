"""Application configuration loaded from the environment."""

import os


def _env_bool(name, default='false'):
    return os.getenv(name, default).lower() in ('true', '1', 'yes')


def _database_url():
    url = os.getenv('DATABASE_URL', 'sqlite:///handyhire.db')
    # Handle Render's postgres:// vs postgresql:// issue
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    return url


class Config:
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    JWT_ACCESS_TOKEN_EXPIRES = int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES', 2592000))

    # Header-based secret for trusted internal callers (auto-complete, ops)
    ADMIN_SECRET = os.getenv('ADMIN_SECRET')
    ADMIN_EMAILS = [e.strip() for e in os.getenv('ADMIN_EMAILS', '').split(',') if e.strip()]

    # Payments
    STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.getenv('STRIPE_WEBHOOK_SECRET')
    STRIPE_TIMEOUT_SECONDS = int(os.getenv('STRIPE_TIMEOUT_SECONDS', 10))
    DEFAULT_CURRENCY = os.getenv('DEFAULT_CURRENCY', 'EUR')
    PLATFORM_FEE_PERCENT = float(os.getenv('PLATFORM_FEE_PERCENT', '10.0'))

    # Escrow: 14400 minutes = 10 days
    ESCROW_PERIOD_MINUTES = int(os.getenv('ESCROW_PERIOD_MINUTES', 14400))

    # Completion scheduler
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', 'true')
    ESCROW_SWEEP_INTERVAL_SECONDS = int(os.getenv('ESCROW_SWEEP_INTERVAL_SECONDS', 300))
    SCHEDULER_LEASE_SECONDS = int(os.getenv('SCHEDULER_LEASE_SECONDS', 120))

    ENV_NAME = 'base'


class DevelopmentConfig(Config):
    DEBUG = True
    ENV_NAME = 'development'


class TestingConfig(Config):
    TESTING = True
    ENV_NAME = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    JWT_SECRET_KEY = 'test-secret-key-for-testing'
    ADMIN_SECRET = 'test-admin-secret'
    ADMIN_EMAILS = ['ops@handyhire.test']
    STRIPE_WEBHOOK_SECRET = 'whsec_test_secret'
    ESCROW_PERIOD_MINUTES = 60
    SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    ENV_NAME = 'production'


_CONFIGS = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(config_name):
    """Return the config class for a name, defaulting to development."""
    return _CONFIGS.get(config_name or 'development', DevelopmentConfig)
