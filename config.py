# QR Rollcall Attendance System Configuration

import os
from datetime import timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        # Left as text so validate_config reports it
        return value


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'rollcall-secret-key-change-me'

    # Database Configuration
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance.db'

    # Public origin students' devices reach; embedded in every QR code
    PUBLIC_ORIGIN = os.environ.get('PUBLIC_ORIGIN') or 'http://localhost:5000'

    # Rotation Configuration
    QR_ROTATION_INTERVAL_SECONDS = _env_int('QR_ROTATION_INTERVAL', 10)

    # QR Code Configuration
    QR_CODE_BOX_SIZE = 10
    QR_CODE_BORDER = 4
    QR_CODE_FILL_COLOR = 'black'
    QR_CODE_BACK_COLOR = 'white'

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Notification Configuration
    NOTIFICATIONS_HISTORY_SIZE = 100
    NOTIFICATIONS_SUBSCRIBER_QUEUE_SIZE = 1000
    LIVE_FEED_HEARTBEAT_SECONDS = 15

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = os.environ.get('DEBUG', 'False').lower() in ['true', 'on', '1']
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        Path(cls.DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)

        app.config.update({
            'SECRET_KEY': cls.SECRET_KEY,
            'PERMANENT_SESSION_LIFETIME': cls.PERMANENT_SESSION_LIFETIME,
            'SESSION_COOKIE_SECURE': cls.SESSION_COOKIE_SECURE,
            'SESSION_COOKIE_HTTPONLY': cls.SESSION_COOKIE_HTTPONLY,
            'SESSION_COOKIE_SAMESITE': cls.SESSION_COOKIE_SAMESITE,
            'TESTING': cls.TESTING,
        })


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_dev.db'

    # More verbose logging
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    SECRET_KEY = 'rollcall-testing'
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_test.db'
    PUBLIC_ORIGIN = 'http://testserver'

    # Tests drive rotation by hand
    QR_ROTATION_INTERVAL_SECONDS = None

    LIVE_FEED_HEARTBEAT_SECONDS = 1


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    SESSION_COOKIE_SECURE = True  # Requires HTTPS

    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_prod.db'

    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)
        cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

        import logging
        from logging.handlers import RotatingFileHandler

        if not app.debug:
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('QR Rollcall startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration based on name or the FLASK_ENV environment variable"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(config_class):
    """Validate configuration settings"""
    errors = []

    interval = config_class.QR_ROTATION_INTERVAL_SECONDS
    if interval is not None:
        if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
            errors.append(f"QR_ROTATION_INTERVAL_SECONDS must be a positive integer, got {interval!r}")

    if not config_class.PUBLIC_ORIGIN.startswith(('http://', 'https://')):
        errors.append(f"PUBLIC_ORIGIN must be an http(s) URL, got {config_class.PUBLIC_ORIGIN!r}")

    if not config_class.SECRET_KEY:
        errors.append("SECRET_KEY is required")

    return errors
