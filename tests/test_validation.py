"""Tests for file policy validation."""

import pytest

from directupload.core.constants import GIB
from directupload.models.upload import FileDescriptor
from directupload.server.errors import UploadError, UploadErrorType
from directupload.server.route import route
from directupload.server.validation import (
    create_slug,
    default_object_key,
    is_file_type_allowed,
    validate_files,
)


def _file(name="a.jpg", size=100, type="image/jpeg") -> FileDescriptor:
    return FileDescriptor(name=name, size=size, type=type)


@pytest.mark.parametrize(
    "file_type,allowed,expected",
    [
        ("image/png", ["image/png"], True),
        ("image/png", ["image/*"], True),
        ("image/svg+xml", ["image/*"], True),
        ("video/mp4", ["image/*"], False),
        ("application/pdf", ["image/*", "application/pdf"], True),
        ("application/pdfx", ["application/pdf"], False),
        ("anything/at-all", [], True),
    ],
)
def test_is_file_type_allowed(file_type, allowed, expected):
    """Test exact and wildcard MIME matching."""
    assert is_file_type_allowed(file_type, allowed) is expected


@pytest.mark.parametrize(
    "name,slug",
    [
        ("a.jpg", "a.jpg"),
        ("My Photo (1).JPG", "my-photo-1.jpg"),
        ("../../etc/passwd", "etc-passwd"),
        ("Résumé.pdf", "resume.pdf"),
        ("???", "file"),
    ],
)
def test_create_slug(name, slug):
    """Test that names become key-safe slugs."""
    assert create_slug(name) == slug


def test_default_object_keys_are_unique():
    """Test that default keys differ only by their random prefix."""
    first = default_object_key("a.jpg")
    second = default_object_key("a.jpg")

    assert first != second
    assert first.endswith("-a.jpg")
    assert second.endswith("-a.jpg")


def test_single_file_route_rejects_multiple_files():
    """Test the single-file contract."""
    with pytest.raises(UploadError) as exc_info:
        validate_files([_file(), _file(name="b.jpg")], route())

    assert exc_info.value.type is UploadErrorType.TOO_MANY_FILES
    assert exc_info.value.message == "Multiple files are not allowed."


def test_single_file_check_comes_before_file_checks():
    """Test that the count is checked before any file is inspected."""
    with pytest.raises(UploadError) as exc_info:
        validate_files([_file(size=10 * GIB), _file(type="video/mp4")], route(file_types=["image/*"]))

    assert exc_info.value.type is UploadErrorType.TOO_MANY_FILES


def test_multi_file_route_max_files():
    """Test the file count limit of multi-file routes."""
    policy = route(multiple_files=True, max_files=2)

    validate_files([_file(), _file()], policy)
    with pytest.raises(UploadError) as exc_info:
        validate_files([_file(), _file(), _file()], policy)

    assert exc_info.value.message == "Too many files."


def test_max_file_size_boundary():
    """Test that the limit itself is allowed and one byte more is not."""
    policy = route(max_file_size=1000)

    validate_files([_file(size=1000)], policy)
    with pytest.raises(UploadError) as exc_info:
        validate_files([_file(size=1001)], policy)

    assert exc_info.value.type is UploadErrorType.FILE_TOO_LARGE
    assert exc_info.value.message == "One or more files are too large."


def test_single_part_ceiling_has_its_own_message():
    """Test the 5 GiB message on non-multipart routes."""
    with pytest.raises(UploadError) as exc_info:
        validate_files([_file(size=5 * GIB + 1)], route(max_file_size=10 * GIB))

    assert exc_info.value.type is UploadErrorType.FILE_TOO_LARGE
    assert "5GB" in exc_info.value.message


def test_multipart_route_allows_large_files():
    """Test that the single-part ceiling does not apply to multipart routes."""
    validate_files([_file(size=6 * GIB)], route(multipart=True, max_file_size=10 * GIB))


def test_invalid_file_type():
    """Test the allow-list check."""
    with pytest.raises(UploadError) as exc_info:
        validate_files([_file(type="video/mp4")], route(file_types=["image/*"]))

    assert exc_info.value.type is UploadErrorType.INVALID_FILE_TYPE


def test_route_declaration_errors():
    """Test inconsistent route declarations."""
    with pytest.raises(ValueError):
        route(multipart=True, upload_method="post")
    with pytest.raises(ValueError):
        route(max_files=3)
    with pytest.raises(ValueError):
        route(upload_method="patch")


def test_route_defaults():
    """Test library defaults applied by route()."""
    single = route()
    multi = route(multiple_files=True)
    multipart = route(multipart=True)

    assert single.max_files == 1
    assert single.max_file_size == 5 * 1024 * 1024
    assert single.signed_url_expires_in == 120
    assert multi.max_files == 3
    assert multipart.multipart.part_size == 50 * 1024 * 1024
    assert multipart.multipart.part_signed_url_expires_in == 1500
    assert multipart.multipart.complete_signed_url_expires_in == 1800
