"""Application-wide configuration loader.

Every setting is read from the environment once at import time and exposed
through the module-level ``settings`` singleton that other modules import.
"""

import os


class Settings:
    """Settings helper that gracefully falls back to sane defaults.

    Rationale
    ---------
    When docker-compose injects an environment variable whose value is empty
    (e.g. ``S3_ENDPOINT=""``) ``os.getenv("S3_ENDPOINT", default)`` returns an
    empty string *not* ``None``.  That empty string then overrides the useful
    in-code default and boto3 / SQLAlchemy fail with confusing parsing errors.

    To avoid similar problems for every setting we use the idiom

        os.getenv(KEY) or DEFAULT

    so that *falsy* values ("", None) are replaced by the specified DEFAULT.
    """

    def __init__(self) -> None:
        # Database
        self.DATABASE_URL: str = os.getenv('DATABASE_URL') or 'sqlite:///./audiobox.db'
        self.DB_ECHO: bool = (os.getenv('DB_ECHO') or '0').lower() in ('1', 'true', 'yes')

        # Object storage
        self.STORAGE_BACKEND: str = (os.getenv('STORAGE_BACKEND') or 'local').lower()
        self.AUDIO_BUCKET: str = os.getenv('AUDIO_BUCKET') or 'audio-files'
        self.S3_ENDPOINT: str = os.getenv('S3_ENDPOINT') or ''
        self.S3_REGION: str = os.getenv('S3_REGION') or 'us-east-1'
        self.S3_ACCESS_KEY: str = os.getenv('S3_ACCESS_KEY') or ''
        self.S3_SECRET_KEY: str = os.getenv('S3_SECRET_KEY') or ''
        self.SIGNING_SECRET: str = os.getenv('SIGNING_SECRET') or 'dev-signing-secret'
        self.SIGNED_URL_TTL_SECONDS: int = int(os.getenv('SIGNED_URL_TTL_SECONDS') or '3600')
        self.PUBLIC_BASE_URL: str = (os.getenv('PUBLIC_BASE_URL') or '').rstrip('/')

        # Uploads
        self.MAX_UPLOAD_SIZE_MB: int = int(os.getenv('MAX_UPLOAD_SIZE_MB') or '50')
        self.PROBE_TIMEOUT_SECONDS: float = float(os.getenv('PROBE_TIMEOUT_SECONDS') or '10')
        self.FFPROBE_PATH: str = os.getenv('FFPROBE_PATH') or 'ffprobe'

        # Authentication
        self.JWT_SECRET_KEY: str = os.getenv('JWT_SECRET_KEY') or 'dev-jwt-secret'
        self.ACCESS_TOKEN_TTL_SECONDS: int = int(os.getenv('ACCESS_TOKEN_TTL_SECONDS') or str(7 * 24 * 3600))
        self.RECOVERY_TOKEN_TTL_SECONDS: int = int(os.getenv('RECOVERY_TOKEN_TTL_SECONDS') or '3600')
        self.GOOGLE_CLIENT_ID: str = os.getenv('GOOGLE_CLIENT_ID') or ''

        # Logging
        self.LOG_DIR: str = os.getenv('LOG_DIR') or 'backend/logs'
        self.LOG_LEVEL: str = (os.getenv('LOG_LEVEL') or 'INFO').upper()

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024


settings = Settings()
