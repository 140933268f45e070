"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database - DATABASE_URL or DB_* variables (Docker style)
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME', 'cassa')
        DB_USER = os.getenv('DB_USER', 'cassa')
        DB_PASSWORD = os.getenv('DB_PASSWORD', 'cassa')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Order backend: 'sql' (local database) or 'http' (remote order service)
    ORDER_BACKEND = os.getenv('ORDER_BACKEND', 'sql')
    ORDER_API_URL = os.getenv('ORDER_API_URL', 'http://localhost:3003')
    ORDER_API_TOKEN = os.getenv('ORDER_API_TOKEN')
    COLLABORATOR_TIMEOUT = float(os.getenv('COLLABORATOR_TIMEOUT', '10'))

    # Terminal
    DEFAULT_WAREHOUSE_ID = int(os.getenv('DEFAULT_WAREHOUSE_ID', '1'))
    DEFAULT_TERMINAL_ID = os.getenv('DEFAULT_TERMINAL_ID', 'cassa-1')
    FROZEN_ORDERS_LIMIT = int(os.getenv('FROZEN_ORDERS_LIMIT', '3'))

    # Vouchers and returns
    VOUCHER_VALIDITY_DAYS = int(os.getenv('VOUCHER_VALIDITY_DAYS', '365'))
    RETURN_PAYMENT_METHOD_ID = int(os.getenv('RETURN_PAYMENT_METHOD_ID', '6'))


class TestingConfig(Config):
    """Configuration for the test suite (in-memory SQLite)."""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ECHO = False
    ORDER_BACKEND = 'sql'
    LOG_LEVEL = 'DEBUG'
