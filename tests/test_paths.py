from __future__ import annotations

from unittest import mock

import pytest

from mediagate.core.errors import AccessDenied, InvalidPath
from mediagate.core.paths import Operation, resolve_path


def test_empty_path_redirects_to_personal_root():
    resolved = resolve_path("42", False, "")
    assert resolved.directory == "user_42"
    assert resolved.redirected is True


def test_relative_path_is_prefixed_with_personal_root():
    resolved = resolve_path("42", False, "photos/2024", filename="a.heic")
    assert resolved.directory == "user_42/photos/2024"
    assert resolved.relative == "user_42/photos/2024/a.heic"
    assert resolved.redirected is False


def test_own_root_is_allowed_as_is():
    resolved = resolve_path("42", False, "user_42/docs")
    assert resolved.directory == "user_42/docs"


def test_other_user_root_is_denied():
    with pytest.raises(AccessDenied):
        resolve_path("42", False, "user_7/docs", operation=Operation.write)


def test_prefix_collision_is_not_treated_as_own_root():
    with pytest.raises(AccessDenied):
        resolve_path("4", False, "user_42")


def test_privileged_identity_addresses_whole_tree():
    resolved = resolve_path("1", True, "user_7/docs", filename="report.pdf")
    assert resolved.relative == "user_7/docs/report.pdf"


def test_backslashes_and_dot_segments_are_normalised():
    resolved = resolve_path("42", False, "photos\\2024/./raw//")
    assert resolved.directory == "user_42/photos/2024/raw"


@pytest.mark.parametrize(
    "path,filename",
    [
        ("../etc", None),
        ("photos/../../etc", None),
        ("photos\\..\\..", None),
        ("photos", "../secret"),
        ("photos", "a/b"),
        ("photos", ".."),
        ("pho\x00tos", None),
    ],
)
def test_traversal_is_rejected(path, filename):
    with pytest.raises(InvalidPath):
        resolve_path("42", False, path, filename=filename)


def test_traversal_is_rejected_before_access_check():
    with pytest.raises(InvalidPath):
        resolve_path("42", False, "user_7/../user_42")


def test_resolution_touches_no_filesystem():
    with mock.patch("os.stat", side_effect=AssertionError("filesystem call")), mock.patch(
        "os.listdir", side_effect=AssertionError("filesystem call")
    ):
        with pytest.raises(AccessDenied):
            resolve_path("42", False, "user_7")
        with pytest.raises(InvalidPath):
            resolve_path("42", False, "../x")
        assert resolve_path("42", False, "a").directory == "user_42/a"
