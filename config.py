#!/usr/bin/env python3
"""
Application configuration management.
"""

import os
from dataclasses import dataclass
from typing import Optional

@dataclass
class Config:
    """Application configuration."""

    # Database settings
    DATABASE_PATH: str = os.getenv('DATABASE_PATH', 'data/spj.db')
    DATABASE_POOL_SIZE: int = int(os.getenv('DATABASE_POOL_SIZE', '5'))
    DATABASE_MAX_OVERFLOW: int = int(os.getenv('DATABASE_MAX_OVERFLOW', '10'))
    DATABASE_TIMEOUT: int = int(os.getenv('DATABASE_TIMEOUT', '30'))

    # Rate limiting settings
    RATE_LIMIT_ENABLED: bool = os.getenv('RATE_LIMIT_ENABLED', 'true').lower() == 'true'
    RATE_LIMIT_DEFAULT: str = os.getenv('RATE_LIMIT_DEFAULT', '500 per day, 100 per hour')
    RATE_LIMIT_SUBMIT: str = os.getenv('RATE_LIMIT_SUBMIT', '30 per hour')
    RATE_LIMIT_LOGIN: str = os.getenv('RATE_LIMIT_LOGIN', '10 per minute')
    RATE_LIMIT_STORAGE_URL: str = os.getenv('RATE_LIMIT_STORAGE_URL', 'memory://')

    # Security settings
    SECRET_KEY: str = os.getenv('SECRET_KEY', os.urandom(24).hex())
    SESSION_COOKIE_SECURE: bool = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY: bool = True
    SESSION_COOKIE_SAMESITE: str = 'Lax'
    SESSION_LIFETIME_MINUTES: int = int(os.getenv('SESSION_LIFETIME_MINUTES', '60'))
    MAX_CONTENT_LENGTH: int = int(os.getenv('MAX_CONTENT_LENGTH', str(2 * 1024 * 1024)))  # 2MB

    # Users file: JSON object of username -> {display_name, role, password_hash}
    USERS_FILE: Optional[str] = os.getenv('USERS_FILE', None)

    # Anonymous submissions through the public form link (?mode=public)
    PUBLIC_SUBMISSION_ENABLED: bool = os.getenv('PUBLIC_SUBMISSION_ENABLED', 'true').lower() == 'true'

    # Logging settings
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    LOG_FILE: Optional[str] = os.getenv('LOG_FILE', None)

    # API settings
    API_VERSION: str = 'v1'
    API_PREFIX: str = '/api'

    # Claim settings
    SPJ_ID_PREFIX: str = os.getenv('SPJ_ID_PREFIX', 'SPJ')
    DEFAULT_UNIT_ORGANISASI: str = os.getenv('DEFAULT_UNIT_ORGANISASI', 'Balai K3 Samarinda')
    EXPORT_SHEET_TITLE: str = os.getenv('EXPORT_SHEET_TITLE', 'Data SPJ')

    @classmethod
    def from_env(cls):
        """Create config from environment variables."""
        instance = cls()
        return instance

    def validate(self):
        """Validate configuration settings."""
        errors = []

        # Check required paths exist
        if self.DATABASE_PATH != ':memory:' and not os.path.exists(os.path.dirname(self.DATABASE_PATH) or '.'):
            try:
                os.makedirs(os.path.dirname(self.DATABASE_PATH), exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory: {e}")

        if self.USERS_FILE and not os.path.exists(self.USERS_FILE):
            errors.append(f"Users file does not exist: {self.USERS_FILE}")

        # Validate numeric ranges
        if self.DATABASE_POOL_SIZE < 1:
            errors.append(f"DATABASE_POOL_SIZE must be at least 1, got {self.DATABASE_POOL_SIZE}")

        if self.DATABASE_MAX_OVERFLOW < 0:
            errors.append(f"DATABASE_MAX_OVERFLOW cannot be negative, got {self.DATABASE_MAX_OVERFLOW}")

        if self.SESSION_LIFETIME_MINUTES < 1:
            errors.append(f"SESSION_LIFETIME_MINUTES must be at least 1, got {self.SESSION_LIFETIME_MINUTES}")

        if not self.SPJ_ID_PREFIX or '/' in self.SPJ_ID_PREFIX:
            errors.append(f"SPJ_ID_PREFIX must be non-empty and contain no '/', got {self.SPJ_ID_PREFIX!r}")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

# Development config override
@dataclass
class DevelopmentConfig(Config):
    """Development-specific configuration."""
    LOG_LEVEL: str = 'DEBUG'
    RATE_LIMIT_ENABLED: bool = False
    SESSION_COOKIE_SECURE: bool = False

# Production config override
@dataclass
class ProductionConfig(Config):
    """Production-specific configuration."""
    LOG_LEVEL: str = 'WARNING'
    RATE_LIMIT_ENABLED: bool = True
    SESSION_COOKIE_SECURE: bool = True

    def __post_init__(self):
        # Require certain settings in production
        if not os.getenv('SECRET_KEY'):
            raise ValueError("SECRET_KEY must be explicitly set in production")
        if not self.USERS_FILE:
            raise ValueError("USERS_FILE must be set in production; demo accounts are disabled")

# Testing config override
@dataclass
class TestingConfig(Config):
    """Testing-specific configuration."""
    # not a pytest test class
    __test__ = False

    DATABASE_PATH: str = ':memory:'
    DATABASE_POOL_SIZE: int = 1
    DATABASE_MAX_OVERFLOW: int = 0
    RATE_LIMIT_ENABLED: bool = False
    LOG_LEVEL: str = 'ERROR'
    SECRET_KEY: str = 'testing-secret-key'

def get_config(env: str = None) -> Config:
    """
    Get configuration based on environment.

    Args:
        env: Environment name (development, production, testing)

    Returns:
        Config instance
    """
    if env is None:
        env = os.getenv('FLASK_ENV', 'development')

    configs = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'testing': TestingConfig
    }

    config_class = configs.get(env, Config)
    instance = config_class.from_env()
    instance.ENV = env
    return instance
