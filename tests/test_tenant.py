"""Tests for docweave.tenant."""

from __future__ import annotations

import hashlib

import pytest

from docweave.tenant import (
    compute_path_hash,
    extract_project_name,
    generate_tenant_key,
    is_valid_tenant_key,
    parse_tenant_key,
    tenant_key_for_path,
)


class TestComputePathHash:
    def test_sixteen_lowercase_hex(self) -> None:
        value = compute_path_hash("/home/user/proj")
        assert len(value) == 16
        assert value == hashlib.sha256(b"/home/user/proj").hexdigest()[:16]

    def test_separator_and_trailing_slash_insensitive(self) -> None:
        """Backslashes and trailing slashes do not change the hash."""
        assert compute_path_hash("C:\\work\\proj\\") == compute_path_hash("C:/work/proj")

    def test_blank_path_rejected(self) -> None:
        with pytest.raises(ValueError, match="absolute_path"):
            compute_path_hash("  ")


class TestTenantKey:
    def test_generate_and_parse_roundtrip(self) -> None:
        key = generate_tenant_key("proj", "main", "abcdef0123456789")
        assert key == "proj:main:abcdef0123456789"
        assert parse_tenant_key(key) == ("proj", "main", "abcdef0123456789")

    def test_generate_rejects_blank_component(self) -> None:
        with pytest.raises(ValueError, match="branch_name"):
            generate_tenant_key("proj", "", "abc")

    @pytest.mark.parametrize("key", ["", "a:b", "a:b:c:d", "a::c"])
    def test_parse_rejects_malformed(self, key: str) -> None:
        with pytest.raises(ValueError, match="Invalid tenant key"):
            parse_tenant_key(key)

    def test_is_valid(self) -> None:
        assert is_valid_tenant_key("a:b:c") is True
        assert is_valid_tenant_key("a:b") is False
        assert is_valid_tenant_key(None) is False

    def test_for_path_uses_last_segment(self) -> None:
        key = tenant_key_for_path("/srv/repos/handbook/", "dev")
        project, branch, path_hash = parse_tenant_key(key)
        assert project == "handbook"
        assert branch == "dev"
        assert path_hash == compute_path_hash("/srv/repos/handbook")

    def test_extract_project_name_rejects_root(self) -> None:
        with pytest.raises(ValueError, match="project name"):
            extract_project_name("/")
