import urllib.parse

import pytest

from photoclub.constants import (
    DEFAULT_LIST_LIMIT,
    MAX_FILENAME_LENGTH,
    MAX_LIST_LIMIT,
    clamp_limit,
    clamp_offset,
    days_until,
    sanitize_filename,
)


@pytest.mark.parametrize("value,expected", [
    (20, 20),
    (0, 1),
    (-5, 1),
    (MAX_LIST_LIMIT + 1, MAX_LIST_LIMIT),
    ("7", 7),
    ("abc", DEFAULT_LIST_LIMIT),
    (None, DEFAULT_LIST_LIMIT),
])
def test_clamp_limit(value, expected):
    assert clamp_limit(value) == expected


@pytest.mark.parametrize("value,expected", [
    (0, 0),
    (15, 15),
    (-3, 0),
    ("4", 4),
    ("x", 0),
])
def test_clamp_offset(value, expected):
    assert clamp_offset(value) == expected


@pytest.mark.parametrize("seconds,expected", [
    (1, 1),
    (86400, 1),
    (86401, 2),
    (5 * 86400 - 10, 5),
])
def test_days_until_rounds_up(seconds, expected):
    assert days_until(seconds) == expected


def test_sanitize_basic_removes_path_and_backslashes():
    assert sanitize_filename("/tmp/subdir/photo.jpg") == "photo.jpg"
    assert sanitize_filename(r"C:\path\to\picture.png") == "picture.png"


def test_sanitize_decode_url_and_preserve_unicode():
    encoded = urllib.parse.quote("młody obraz.jpg")
    assert sanitize_filename(encoded) == "młody obraz.jpg"


def test_sanitize_remove_traversal_parts():
    assert sanitize_filename("../../etc/passwd") == "passwd"
    assert sanitize_filename("..\\..\\secret.txt") == "secret.txt"


def test_sanitize_strips_leading_dots_and_slashes():
    assert sanitize_filename(".hiddenfile") == "hiddenfile"
    assert sanitize_filename("...weird.txt") == "weird.txt"
    assert sanitize_filename("/././foo.jpg") == "foo.jpg"


def test_sanitize_removes_dangerous_chars_and_nulls():
    out = sanitize_filename("fi<le>\x00name?.jpg")
    assert "<" not in out and ">" not in out and "?" not in out and "\x00" not in out


def test_sanitize_rejects_empty_after_sanitization():
    with pytest.raises(ValueError):
        sanitize_filename("...\\/..")


def test_sanitize_rejects_too_long():
    with pytest.raises(ValueError):
        sanitize_filename("a" * (MAX_FILENAME_LENGTH + 1))


def test_edge_case_percent_encoded_traversal():
    # %2e%2e%2f => ../
    assert sanitize_filename("%2e%2e%2fetc%2fshadow") == "shadow"


def test_sanitize_keep_spaces_and_utf8():
    s = "my zdjęcie 2024 🌟.png"
    assert sanitize_filename(s) == s
