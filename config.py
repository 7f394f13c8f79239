"""
Configuration for Portfolio Tracker.
Values come from environment variables; create_app() loads Config and then
applies any overrides passed by the caller (tests use this).
"""

import logging
import os
import sys
from datetime import timedelta


def normalize_database_url(database_url):
    """Rewrite Heroku/Render style postgres URLs for SQLAlchemy + psycopg."""
    # SQLAlchemy requires postgresql+psycopg://
    if database_url.startswith('postgres://'):
        return database_url.replace('postgres://', 'postgresql+psycopg://', 1)
    if database_url.startswith('postgresql://'):
        return database_url.replace('postgresql://', 'postgresql+psycopg://', 1)
    return database_url


class Config:
    """Default settings, read from the environment at import time."""

    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.environ.get('DATABASE_URL', 'sqlite:///portfolio_tracker.db')
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'dev-secret-key-change-in-production')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.environ.get('JWT_EXPIRES_HOURS', 24)))
    BCRYPT_ROUNDS = int(os.environ.get('BCRYPT_ROUNDS', 12))

    # Quote provider
    PRICE_CACHE_TTL = float(os.environ.get('PRICE_CACHE_TTL', 60))
    PRICE_LOOKUP_TIMEOUT = float(os.environ.get('PRICE_LOOKUP_TIMEOUT', 5))
    PRICE_LOOKUP_WORKERS = int(os.environ.get('PRICE_LOOKUP_WORKERS', 4))

    # Uploads and OCR
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_FILE_SIZE', 10 * 1024 * 1024))
    OCR_LANGUAGES = [lang.strip() for lang in os.environ.get('OCR_LANGUAGES', 'en').split(',') if lang.strip()]
    OCR_GPU = os.environ.get('OCR_GPU', '').lower() in ('1', 'true', 'yes')

    # Optional newline-separated ticker list replacing the built-in allow-list
    SYMBOLS_FILE = os.environ.get('SYMBOLS_FILE')

    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', 'admin@portfolio.com')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


def setup_logging(level='INFO'):
    """Configure the portfolio_tracker logger with a single stream handler."""
    root_logger = logging.getLogger('portfolio_tracker')
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
        root_logger.addHandler(handler)

    return root_logger
