"""
Handle generation and validation.

Handles are opaque identifiers. Blob handles are restricted to uppercase hex
and digits so that a derived-size handle (``blob_handle + size_id`` with a
lowercase size id) can never collide with another original blob handle.
"""

from __future__ import annotations

import re
import uuid

from socialmod.errors import InvalidInputError

MAX_HANDLE_LENGTH = 128

_BLOB_HANDLE_PATTERN = re.compile(r"^[0-9A-Z]{8,64}$")


def new_handle() -> str:
    """Return a fresh handle: 32 uppercase hex characters."""
    return uuid.uuid4().hex.upper()


def validate_handle(value: str | None, name: str = "handle") -> str:
    """Return ``value`` unchanged if it is a usable handle.

    Raises:
        InvalidInputError: If the handle is blank, contains whitespace, or
            exceeds ``MAX_HANDLE_LENGTH`` characters.
    """
    if not isinstance(value, str) or not value:
        raise InvalidInputError(f"{name} must be a non-empty string")
    if len(value) > MAX_HANDLE_LENGTH:
        raise InvalidInputError(f"{name} exceeds {MAX_HANDLE_LENGTH} characters")
    if any(ch.isspace() for ch in value):
        raise InvalidInputError(f"{name} must not contain whitespace")
    return value


def validate_blob_handle(value: str | None, name: str = "blob_handle") -> str:
    """Validate a handle that names an original blob (uppercase hex/digits only)."""
    validate_handle(value, name)
    if not _BLOB_HANDLE_PATTERN.match(value):
        raise InvalidInputError(f"{name} must match {_BLOB_HANDLE_PATTERN.pattern}: {value!r}")
    return value
