"""Tenant keys: isolate one logical working copy (project, branch, path) from another."""

from __future__ import annotations

import hashlib

KEY_SEPARATOR = ":"

# Number of hex characters kept from the SHA-256 digest.
PATH_HASH_LENGTH = 16


def _normalize(path: str) -> str:
    return path.replace("\\", "/").rstrip("/")


def compute_path_hash(absolute_path: str) -> str:
    """Hash an absolute repository path, ignoring separator style and trailing slashes."""
    if not absolute_path or not absolute_path.strip():
        msg = "absolute_path must be a non-empty string"
        raise ValueError(msg)
    digest = hashlib.sha256(_normalize(absolute_path).encode("utf-8")).hexdigest()
    return digest[:PATH_HASH_LENGTH].lower()


def generate_tenant_key(project_name: str, branch_name: str, path_hash: str) -> str:
    """Join the three tenant components into ``project:branch:hash``."""
    for label, value in (
        ("project_name", project_name),
        ("branch_name", branch_name),
        ("path_hash", path_hash),
    ):
        if not value or not value.strip():
            msg = f"{label} must be a non-empty string"
            raise ValueError(msg)
    return KEY_SEPARATOR.join((project_name, branch_name, path_hash))


def extract_project_name(project_path: str) -> str:
    """Return the last segment of *project_path*."""
    normalized = _normalize(project_path)
    name = normalized.rsplit("/", 1)[-1]
    if not name.strip():
        msg = f"Could not extract project name from path: {project_path}"
        raise ValueError(msg)
    return name


def tenant_key_for_path(project_path: str, branch_name: str) -> str:
    """Build a tenant key from a project path and branch."""
    return generate_tenant_key(
        extract_project_name(project_path),
        branch_name,
        compute_path_hash(project_path),
    )


def parse_tenant_key(tenant_key: str) -> tuple[str, str, str]:
    """Split a tenant key into ``(project, branch, path_hash)``.

    Raises
    ------
    ValueError
        If the key does not have exactly three non-empty parts.
    """
    parts = tenant_key.split(KEY_SEPARATOR) if tenant_key else []
    if len(parts) != 3 or not all(p.strip() for p in parts):
        msg = (
            "Invalid tenant key format. Expected "
            f"'project{KEY_SEPARATOR}branch{KEY_SEPARATOR}path_hash', got: {tenant_key!r}"
        )
        raise ValueError(msg)
    return parts[0], parts[1], parts[2]


def is_valid_tenant_key(tenant_key: str | None) -> bool:
    if not tenant_key:
        return False
    try:
        parse_tenant_key(tenant_key)
    except ValueError:
        return False
    return True
