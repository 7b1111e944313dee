import io
import builtins
import os
import logging

import pytest
from pydantic import ValidationError

import photoclub.config as config
from photoclub.config import Settings


from tests._helpers import make_fake_open


def test_jwt_expiry_days_zero_raises():
    with pytest.raises(ValidationError):
        Settings(jwt_expiry_days=0)


def test_jwt_expiry_days_string_is_int():
    s = Settings(jwt_expiry_days="7")
    assert isinstance(s.jwt_expiry_days, int)
    assert s.jwt_expiry_days == 7


def test_jwt_expiry_days_too_large_raises():
    with pytest.raises(ValidationError):
        Settings(jwt_expiry_days=1000)


def test_jwt_expiry_days_non_numeric_raises():
    with pytest.raises(ValidationError):
        Settings(jwt_expiry_days="abc")


def test_session_expiry_below_minute_rejected():
    with pytest.raises(ValidationError):
        Settings(session_expiry_seconds=30)


def test_session_cleanup_interval_invalid_rejected():
    with pytest.raises(ValidationError):
        Settings(session_cleanup_interval="5d")


def test_session_cleanup_interval_rejects_empty_and_none():
    with pytest.raises(ValidationError):
        Settings(session_cleanup_interval="")
    with pytest.raises(ValidationError):
        Settings(session_cleanup_interval=None)


def test_session_cleanup_interval_rejects_whitespace_string():
    with pytest.raises(ValidationError):
        Settings(session_cleanup_interval="   ")


def test_session_cleanup_interval_parses_valid_string():
    s = Settings(session_cleanup_interval="10m")
    assert s.session_cleanup_interval == "10m"


@pytest.mark.parametrize("field", ["max_upload_bytes", "max_image_dimension", "max_image_dpi"])
def test_media_limits_must_be_positive(field):
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


@pytest.mark.parametrize("size", [8, 4096])
def test_thumbnail_size_out_of_range_rejected(size):
    with pytest.raises(ValidationError):
        Settings(thumbnail_size=size)


def test_thumbnail_size_string_is_int():
    s = Settings(thumbnail_size="200")
    assert s.thumbnail_size == 200


def test_cors_origin_list_splits_and_trims():
    s = Settings(cors_origins=" https://a.example , https://b.example,, ")
    assert s.cors_origin_list() == ["https://a.example", "https://b.example"]


def test_jwt_secret_prefers_secret_over_env(monkeypatch):
    secret_path = "/run/secrets/jwt_secret"
    monkeypatch.setattr(os.path, "isfile", lambda p: os.path.normpath(p) == os.path.normpath(secret_path))
    monkeypatch.setattr(builtins, "open", make_fake_open(secret_path, "super-secret\n"))

    s = Settings(jwt_secret="env-secret")
    assert s.jwt_secret == "super-secret"


def test_load_settings_exits_on_validation_error(monkeypatch, caplog):
    monkeypatch.setenv('JWT_EXPIRY_DAYS', '0')

    caplog.set_level(logging.ERROR)
    with pytest.raises(SystemExit):
        config.load_settings()
    assert any('Configuration error' in r.message for r in caplog.records)


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv('UPLOAD_DIR', '/tmp/photoclub-uploads')
    monkeypatch.setenv('COOKIE_SECURE', 'true')
    s = config.load_settings()
    assert s.upload_dir == '/tmp/photoclub-uploads'
    assert s.cookie_secure is True


def test_secret_read_unicode_error_fallback(monkeypatch):
    secret_path = "/run/secrets/jwt_secret"
    monkeypatch.setattr(os.path, "isfile", lambda p: os.path.normpath(p) == os.path.normpath(secret_path))

    class BadReader:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def read(self):
            raise UnicodeDecodeError("utf-8", b"", 0, 1, "invalid")

    real_open = builtins.open

    def fake_open(path, mode='r', encoding=None, *args, **kwargs):
        if os.path.normpath(path) == os.path.normpath(secret_path):
            return BadReader()
        return real_open(path, mode, encoding=encoding, *args, **kwargs)

    monkeypatch.setattr(builtins, "open", fake_open)
    s = Settings(jwt_secret="env-value")
    assert s.jwt_secret == "env-value"


def test_upper_secret_empty_prefers_lower(monkeypatch):
    upper_path = "/run/secrets/JWT_SECRET"
    lower_path = "/run/secrets/jwt_secret"
    real_open = builtins.open

    def isfile(p):
        return os.path.normpath(p) in (os.path.normpath(upper_path), os.path.normpath(lower_path))

    def fake_open(path, mode='r', encoding=None, *args, **kwargs):
        norm = os.path.normpath(path)
        if norm == os.path.normpath(upper_path):
            return io.StringIO("   \n")
        if norm == os.path.normpath(lower_path):
            return io.StringIO("lower-secret")
        return real_open(path, mode, encoding=encoding, *args, **kwargs)

    monkeypatch.setattr(os.path, "isfile", isfile)
    monkeypatch.setattr(builtins, "open", fake_open)

    s = Settings(jwt_secret="env-value")
    assert s.jwt_secret == "lower-secret"


def test_local_iso_formatter_uses_timezone():
    fmt = config.LocalISOFormatter(tz_name='UTC')
    record = logging.LogRecord(name="test", level=logging.INFO, pathname=__file__, lineno=1, msg="x", args=(), exc_info=None)
    record.created = 0.0
    s = fmt.formatTime(record)
    assert s.startswith('1970-01-01T00:00:00.')
    assert s.endswith('+00:00')
