import datetime
import logging
import os
import re
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, ValidationError, ConfigDict
from pydantic_settings import BaseSettings

from .constants import (
    DEFAULT_UPLOAD_DIR,
    MAX_IMAGE_DIMENSION,
    MAX_IMAGE_DPI,
    MAX_UPLOAD_BYTES,
    THUMBNAIL_SIZE,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_ignore_empty=False,
        case_sensitive=False  # Make env vars case-insensitive
    )

    logging_level: str = "INFO"
    timezone: str = "UTC"

    database_url: str = "sqlite:////data/photos.db"
    upload_dir: str = DEFAULT_UPLOAD_DIR

    # Sessions and API tokens
    jwt_secret: str | None = None
    jwt_expiry_days: int = 30
    session_expiry_seconds: int = 86400
    session_cookie_name: str = "photoclub_session"
    session_cleanup_interval: str = "15min"
    cookie_secure: bool = False  # Set to True when served over HTTPS

    # Media pipeline limits
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    max_image_dimension: int = MAX_IMAGE_DIMENSION
    max_image_dpi: int = MAX_IMAGE_DPI
    thumbnail_size: int = THUMBNAIL_SIZE

    cors_origins: str = "*"

    @field_validator("session_cleanup_interval")
    @classmethod
    def validate_intervals(cls, v, info):
        if v is None or (isinstance(v, str) and v.strip() == ""):
            raise ValueError(f"{info.field_name} cannot be None or empty string")
        try:
            parse_interval(str(v))
            return v
        except Exception as exc:
            raise ValueError(f"Invalid interval: {exc}") from exc

    @field_validator("jwt_expiry_days")
    @classmethod
    def validate_jwt_expiry(cls, v):
        if int(v) < 1:
            raise ValueError("jwt_expiry_days must be >= 1")
        if int(v) > 365:
            raise ValueError("jwt_expiry_days must be <= 365")
        return int(v)

    @field_validator("session_expiry_seconds")
    @classmethod
    def validate_session_expiry(cls, v):
        if int(v) < 60:
            raise ValueError("session_expiry_seconds must be >= 60")
        return int(v)

    @field_validator("max_upload_bytes", "max_image_dimension", "max_image_dpi")
    @classmethod
    def validate_positive_limits(cls, v, info):
        if int(v) < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return int(v)

    @field_validator("thumbnail_size")
    @classmethod
    def validate_thumbnail_size(cls, v):
        if int(v) < 16:
            raise ValueError("thumbnail_size must be >= 16")
        if int(v) > 2048:
            raise ValueError("thumbnail_size must be <= 2048")
        return int(v)

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _prefer_docker_secret(cls, v, info):
        """
        Prefer Docker secrets mounted at /run/secrets/<NAME> over environment variables.
        Tries secret files with the field name upper-cased and as-is.
        """
        secret = None
        try:
            candidates = [info.field_name.upper(), info.field_name]
            for name in candidates:
                path = f"/run/secrets/{name}"
                if os.path.isfile(path):
                    with open(path, "r", encoding="utf-8") as f:
                        data = f.read().strip()
                    if data:
                        secret = data
                        break
        except Exception:
            secret = None
        if secret:
            logger.debug("Using docker secret for %s", info.field_name)
            return secret
        return v

    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def load_settings() -> Settings:
    try:
        settings = Settings()
        return settings
    except ValidationError as e:
        logger.error("Configuration error:")
        for err in e.errors():
            logger.error(" - %s: %s", err.get('loc'), err.get('msg'))
        sys.exit(1)


class LocalISOFormatter(logging.Formatter):
    def __init__(self, fmt=None, datefmt=None, tz_name: str | None = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._tz = None
        self._tz_name = tz_name
        if tz_name:
            try:
                self._tz = ZoneInfo(tz_name)
            except ZoneInfoNotFoundError:
                self._tz = None

    def formatTime(self, record, datefmt=None):
        if self._tz is not None:
            dt = datetime.datetime.fromtimestamp(record.created, tz=self._tz)
        else:
            dt = datetime.datetime.fromtimestamp(record.created).astimezone()
        return dt.isoformat(timespec='milliseconds')


def configure_logging(settings: Settings | None = None):
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        tzname = getattr(settings, 'timezone', None) if settings is not None else None
        formatter = LocalISOFormatter('%(asctime)s %(levelname)s %(name)s %(message)s', tz_name=tzname)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    if settings is not None:
        lvl = str(getattr(settings, 'logging_level', 'INFO')).strip().upper()
        numeric = getattr(logging, lvl, None)
        if not isinstance(numeric, int):
            root.setLevel(logging.INFO)
        else:
            root.setLevel(numeric)
    else:
        root.setLevel(logging.INFO)

    logger.info("Logging configured; root level=%s", logging.getLevelName(root.level))

    noisy = ['httpx', 'httpcore', 'multipart', 'PIL']
    for n in noisy:
        logging.getLogger(n).setLevel(logging.WARNING)

    for logger_name in ['uvicorn', 'uvicorn.error']:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    # SQL echo only when explicitly debugging
    if root.level <= logging.DEBUG:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.INFO)
    else:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)


def parse_interval(interval: str) -> int:
    if not interval:
        raise ValueError("Empty interval")
    s = str(interval).strip().lower()

    m = re.fullmatch(r"([+-]?\d+)\s*(s|sec|secs|second|seconds|m|min|mins|minute|minutes|h|hr|hrs|hour|hours)?", s)
    if not m:
        raise ValueError(f"Invalid interval '{interval}'")
    raw_num = m.group(1)
    num = int(raw_num)
    unit = m.group(2) or "s"

    if raw_num.startswith('-') or num < 0:
        raise ValueError("Interval must be non-negative")
    if num == 0:
        raise ValueError("Interval must be positive")

    if unit.startswith("s"):
        return num
    if unit.startswith("m"):
        return num * 60
    if unit.startswith("h"):
        return num * 3600
    return num
