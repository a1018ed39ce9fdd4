"""Path validation and canonicalization.

Stored paths are absolute (``/`` first), use ``/`` separators (``\\`` is
accepted on input), never contain ``//`` and never end in ``/`` except for
the root itself.  Nothing here touches the database.
"""

from __future__ import annotations

import os
import re

from .exceptions import InvalidPathError

__all__ = [
    "MAX_PATH_LENGTH",
    "validate_path",
    "normalize_path",
    "normalize_file_path",
    "normalize_prefix",
]

MAX_PATH_LENGTH = 4096

# Characters Windows refuses in file names
_FORBIDDEN = re.compile(r'[<>:"|?*]')
_ALLOWED_CONTROL = {"\t", "\n", "\r"}
_MULTI_SLASH = re.compile(r"/{2,}")


def validate_path(path: str | os.PathLike[str]) -> str:
    """Check *path* for cross-platform safety and return it as a ``str``.

    Raises:
        InvalidPathError: If the path is empty, too long, or contains
            control characters or any of ``< > : " | ? *``.
    """
    if isinstance(path, os.PathLike):
        path = os.fspath(path)
    if not isinstance(path, str):
        raise InvalidPathError(f"Path must be a string, got {type(path).__name__}")
    if not path.strip():
        raise InvalidPathError("Path cannot be empty")
    if len(path) > MAX_PATH_LENGTH:
        raise InvalidPathError(f"Path is too long (maximum {MAX_PATH_LENGTH} characters)")
    for ch in path:
        if ord(ch) < 32 and ch not in _ALLOWED_CONTROL:
            raise InvalidPathError(f"Path contains control character 0x{ord(ch):02X}")
    if _FORBIDDEN.search(path):
        raise InvalidPathError('Path contains characters invalid on Windows: < > : " | ? *')
    return path


def _canonical(path: str) -> str:
    path = path.replace("\\", "/")
    if not path.startswith("/"):
        path = "/" + path
    return _MULTI_SLASH.sub("/", path)


def _check_length(path: str) -> str:
    if len(path) > MAX_PATH_LENGTH:
        raise InvalidPathError(f"Path is too long (maximum {MAX_PATH_LENGTH} characters)")
    return path


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Validate and canonicalize *path*.

    >>> normalize_path("docs\\\\guide//intro.md/")
    '/docs/guide/intro.md'
    >>> normalize_path("/")
    '/'
    """
    normalized = _canonical(validate_path(path))
    if len(normalized) > 1 and normalized.endswith("/"):
        normalized = normalized[:-1]
    return _check_length(normalized)


def normalize_file_path(path: str | os.PathLike[str]) -> str:
    """Like :func:`normalize_path` but rejects the root ``/``."""
    normalized = normalize_path(path)
    if normalized == "/":
        raise InvalidPathError("Root '/' is not a valid file path")
    return normalized


def normalize_prefix(prefix: str | os.PathLike[str]) -> str:
    """Canonicalize a prefix for literal ``startswith`` matching.

    An explicit trailing ``/`` (or ``\\``) is kept so that ``"/docs/"``
    does not match ``/docs-old/readme``.
    """
    prefix = validate_path(prefix)
    trailing = prefix.endswith(("/", "\\"))
    normalized = _canonical(prefix)
    if trailing and not normalized.endswith("/"):
        normalized += "/"
    return _check_length(normalized)
