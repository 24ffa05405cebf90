"""
Input hygiene for keys, scope names, batch limits and config paths.

Keys arrive from generator output, ground-truth lists and operator flags; all
of them go through ``validate_key`` (or the non-raising ``is_valid_key``)
before they can reach a batch file.
"""

import math
import re

# lower-case alphanumerics, single -, _ or . separators
KEY_PATTERN = re.compile(r"^[a-z0-9]+(?:[-_.][a-z0-9]+)*$")

MAX_KEY_LENGTH = 255
MAX_LIMIT = 100_000
PATH_MAX = 4096


class ValidationError(ValueError):
    """Raised when an input value fails a hygiene check."""


def _require_text(value, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} must be a non-empty string")
    return value.strip()


def validate_key(key: str, field_name: str = "key") -> str:
    """
    Canonicalise and check a record key.

    Returns the trimmed, lower-cased key, so ``" Shop_2024 "`` comes back as
    ``"shop_2024"``. Keys with spaces, punctuation or doubled/edge separators
    raise ``ValidationError``.

    Examples:
        >>> validate_key("ACME-pro")
        'acme-pro'
    """
    canonical = _require_text(key, field_name).lower()

    if len(canonical) > MAX_KEY_LENGTH:
        raise ValidationError(f"{field_name} is longer than {MAX_KEY_LENGTH} characters")
    if KEY_PATTERN.match(canonical) is None:
        raise ValidationError(
            f"{field_name} {canonical!r} is not a slug "
            "(lower-case alphanumerics joined by '-', '_' or '.')"
        )
    return canonical


def is_valid_key(key: str) -> bool:
    try:
        validate_key(key)
    except ValidationError:
        return False
    return True


def validate_scope(scope: str, known_scopes: list[str] | set[str], field_name: str = "scope") -> str:
    scope = _require_text(scope, field_name)
    if scope not in known_scopes:
        raise ValidationError(f"{field_name} '{scope}' is not one of: {', '.join(sorted(known_scopes))}")
    return scope


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = MAX_LIMIT) -> int:
    """
    Check a ``--limit`` value: a real int (bools excluded) in ``1..max_limit``.

    Examples:
        >>> validate_limit(250)
        250
    """
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")
    if not 0 < limit <= max_limit:
        raise ValidationError(f"{field_name} must be between 1 and {max_limit}, got {limit}")
    return limit


def validate_file_path(file_path: str, field_name: str = "file_path") -> str:
    """
    Check a path given on the command line and return it stripped.

    ``..`` segments, NUL bytes and over-long paths are refused; existence is
    left to the caller, which maps a missing file to its own exit code.
    """
    file_path = _require_text(file_path, field_name)

    if ".." in file_path.replace("\\", "/").split("/"):
        raise ValidationError(f"{field_name} must not contain '..' segments")
    if "\x00" in file_path:
        raise ValidationError(f"{field_name} contains a NUL byte")
    if len(file_path) > PATH_MAX:
        raise ValidationError(f"{field_name} is longer than {PATH_MAX} characters")
    return file_path


def validate_sleep(seconds: float, field_name: str = "sleep") -> float:
    """
    Check a pause between cycles: a finite, non-negative number of seconds.

    Examples:
        >>> validate_sleep(30)
        30.0
    """
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise ValidationError(f"{field_name} must be a number, got {type(seconds).__name__}")
    if not math.isfinite(seconds) or seconds < 0:
        raise ValidationError(f"{field_name} must be a non-negative number of seconds, got {seconds}")
    return float(seconds)
