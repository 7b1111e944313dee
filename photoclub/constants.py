"""Global constants for roles, limits and upload handling."""
import math
from urllib.parse import unquote

ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"

# Sort rank used when listing club members
ROLE_RANK = {ROLE_OWNER: 1, ROLE_ADMIN: 2, ROLE_MEMBER: 3}

ANONYMOUS_USER_ID = "anonymous"
ANONYMOUS_USERNAME = "Anonymous"

CONTEST_UPCOMING = "upcoming"
CONTEST_ACTIVE = "active"
CONTEST_ENDED = "ended"
CONTEST_STATUSES = (CONTEST_UPCOMING, CONTEST_ACTIVE, CONTEST_ENDED)
DEFAULT_CONTEST_CATEGORY = "General"
DEFAULT_CONTEST_MAX_ENTRIES = 3

MAX_CLUB_NAME_LENGTH = 100
MAX_COMMENT_LENGTH = 500
MIN_PASSWORD_LENGTH = 6
# bcrypt only accepts this many bytes of input
MAX_PASSWORD_BYTES = 72
MAX_FILENAME_LENGTH = 255

DEFAULT_UPLOAD_DIR = "/data/uploads"
UPLOADS_URL_PREFIX = "/uploads"
THUMBNAIL_PREFIX = "thumb_"

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_IMAGE_DIMENSION = 2048
MAX_IMAGE_DPI = 72
THUMBNAIL_SIZE = 400
ORIGINAL_JPEG_QUALITY = 90
THUMBNAIL_JPEG_QUALITY = 75

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100
DEFAULT_OFFSET = 0


def clamp_limit(limit: int) -> int:
    """Keep pagination limits within [1, MAX_LIST_LIMIT]."""
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIST_LIMIT
    return max(1, min(value, MAX_LIST_LIMIT))


def clamp_offset(offset: int) -> int:
    try:
        value = int(offset)
    except (TypeError, ValueError):
        return DEFAULT_OFFSET
    return max(0, value)


def days_until(seconds: float) -> int:
    """Whole days left, rounded up, for a positive number of seconds."""
    return math.ceil(seconds / 86400)


def sanitize_filename(filename: str) -> str:
    """Sanitize an uploaded filename before storing it as `original_name`.

    Decodes URL-encoded characters, strips any directory components and
    leading dots, and removes characters that are unsafe in file names.
    """
    filename = unquote(filename)

    sanitized = filename.split('/')[-1].split('\\')[-1]
    sanitized = sanitized.lstrip('.' + '/\\')

    if len(sanitized) > MAX_FILENAME_LENGTH:
        raise ValueError(f"Invalid filename: exceeds maximum length of {MAX_FILENAME_LENGTH}")

    dangerous_chars = set('<>:"|?*\x00\x01\x02\x03\x04\x05\x06\x07\x08\x09\x0a\x0b\x0c\x0d\x0e\x0f')
    sanitized = ''.join(c for c in sanitized if c not in dangerous_chars)

    if not sanitized:
        raise ValueError("Invalid filename: empty after sanitization")

    return sanitized
