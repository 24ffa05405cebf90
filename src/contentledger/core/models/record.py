"""
Ledger record models.

A record is a tagged union, validated once at the ledger-read boundary:
a payload carrying a non-empty ``error`` is always a FailureRecord, no matter
which file it was found in.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

# Field names accepted as the record key, in lookup order after the configured one
KEY_ALIASES = ("key", "slug")


class RecordParseError(ValueError):
    """Raised when a ledger line cannot be turned into a record."""

    def __init__(self, reason: str, line_no: int | None = None):
        self.reason = reason
        self.line_no = line_no
        where = f"line {line_no}: " if line_no is not None else ""
        super().__init__(f"{where}{reason}")


def canonical_key(value: Any) -> str:
    """Trim and lower-case a key so 'ABC ' and 'abc' collapse together."""
    if value is None:
        return ""
    return str(value).strip().lower()


class BaseRecord(BaseModel):
    """
    Fields shared by success and failure records.

    Attributes:
        key: Canonical record key (e.g. URL slug)
        payload: Original JSON object, key field rewritten to the canonical key
        line_no: 1-based line number in the file it was read from
    """

    key: str = Field(..., min_length=1)
    payload: dict[str, Any]
    line_no: int | None = None

    @field_validator("key", mode="before")
    @classmethod
    def normalise_key(cls, v):
        return canonical_key(v)

    def to_line(self) -> str:
        """Serialise the payload as one compact, byte-stable JSON line."""
        return json.dumps(self.payload, ensure_ascii=False, separators=(",", ":"))

    @property
    def is_failure(self) -> bool:
        return False


class SuccessRecord(BaseRecord):
    """Canonical good output for a key."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "kind": "success",
                "key": "acme-pro",
                "payload": {
                    "key": "acme-pro",
                    "aboutcontent": "<p>Acme Pro is ...</p>",
                    "faqcontent": [{"q": "Is there a code?", "a": "Yes"}],
                    "generatedAt": "2025-11-04T18:09:24Z",
                },
                "line_no": 12,
            }
        }
    )

    kind: Literal["success"] = "success"


class FailureRecord(BaseRecord):
    """A generation attempt that failed; belongs to the reject population."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "kind": "failure",
                "key": "acme-pro",
                "error": "Evidence fetch failed: fetch failed",
                "error_code": "NETWORK_FETCH_FAIL",
                "payload": {"key": "acme-pro", "error": "Evidence fetch failed: fetch failed"},
            }
        }
    )

    kind: Literal["failure"] = "failure"
    error: str = Field(..., min_length=1)
    error_code: str | None = None

    @property
    def is_failure(self) -> bool:
        return True


LedgerRecord = Annotated[Union[SuccessRecord, FailureRecord], Field(discriminator="kind")]

_record_adapter: TypeAdapter = TypeAdapter(LedgerRecord)


def _find_key_field(obj: dict[str, Any], key_field: str) -> str | None:
    for name in (key_field, *KEY_ALIASES):
        if canonical_key(obj.get(name)):
            return name
    return None


def record_from_payload(
    obj: Any,
    key_field: str = "key",
    line_no: int | None = None,
) -> SuccessRecord | FailureRecord:
    """
    Build a typed record from a decoded JSON value.

    Args:
        obj: Decoded JSON value (must be an object)
        key_field: Preferred key field name; ``key`` and ``slug`` are fallbacks
        line_no: Source line number, kept for diagnostics and scan order

    Returns:
        SuccessRecord or FailureRecord

    Raises:
        RecordParseError: If the value is not an object or carries no key
    """
    if not isinstance(obj, dict):
        raise RecordParseError(f"expected a JSON object, got {type(obj).__name__}", line_no)

    field = _find_key_field(obj, key_field)
    if field is None:
        raise RecordParseError(f"missing '{key_field}'", line_no)

    key = canonical_key(obj[field])
    payload = dict(obj)
    payload[field] = key

    error = obj.get("error")
    data: dict[str, Any] = {"key": key, "payload": payload, "line_no": line_no}
    if error:
        data["kind"] = "failure"
        data["error"] = error if isinstance(error, str) else json.dumps(error, sort_keys=True)
        code = obj.get("errorCode")
        data["error_code"] = str(code) if code else None
    else:
        data["kind"] = "success"

    return _record_adapter.validate_python(data)


def parse_line(
    line: str,
    key_field: str = "key",
    line_no: int | None = None,
) -> SuccessRecord | FailureRecord:
    """
    Parse one JSONL line into a record.

    Raises:
        RecordParseError: On invalid JSON or a payload without a key
    """
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise RecordParseError(f"invalid JSON ({e.msg})", line_no) from e
    return record_from_payload(obj, key_field=key_field, line_no=line_no)


def failure_stub(record: FailureRecord, key_field: str = "key") -> FailureRecord:
    """Reduce a failure to the minimal ``{key, error}`` reject shape."""
    payload: dict[str, Any] = {key_field: record.key, "error": record.error}
    if record.error_code:
        payload["errorCode"] = record.error_code
    return FailureRecord(
        key=record.key,
        error=record.error,
        error_code=record.error_code,
        payload=payload,
        line_no=record.line_no,
    )
