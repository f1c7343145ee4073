"""
Eventarc payload parsing.

The body of an event is arbitrary JSON; it is wrapped in `JsonValue` so every
lookup is an explicit, typed outcome instead of an isinstance check scattered
through the handler.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union


class JsonKind(str, Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    SEQUENCE = "sequence"
    MAPPING = "mapping"


class PayloadError(ValueError):
    """Raised when a body cannot be parsed or lacks a required field."""

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


@dataclass(frozen=True)
class JsonValue:
    """
    One JSON node. `value` holds the raw decoded data; children are wrapped
    only when an accessor reaches them, so nesting depth is bounded by the
    JSON decoder alone.
    """

    kind: JsonKind
    value: Any

    @classmethod
    def wrap(cls, raw: Any) -> "JsonValue":
        # bool is a subclass of int; check it first.
        if raw is None:
            return cls(JsonKind.NULL, None)
        if isinstance(raw, bool):
            return cls(JsonKind.BOOL, raw)
        if isinstance(raw, (int, float)):
            return cls(JsonKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(JsonKind.STRING, raw)
        if isinstance(raw, Mapping):
            return cls(JsonKind.MAPPING, raw)
        if isinstance(raw, (list, tuple)):
            return cls(JsonKind.SEQUENCE, raw)
        raise TypeError(f"not a JSON value: {type(raw).__name__}")

    def as_str(self) -> Optional[str]:
        return self.value if self.kind is JsonKind.STRING else None

    def as_number(self) -> Optional[Union[int, float]]:
        return self.value if self.kind is JsonKind.NUMBER else None

    def as_bool(self) -> Optional[bool]:
        return self.value if self.kind is JsonKind.BOOL else None

    def as_mapping(self) -> Optional[Mapping[str, "JsonValue"]]:
        if self.kind is not JsonKind.MAPPING:
            return None
        return {str(k): JsonValue.wrap(v) for k, v in self.value.items()}

    def as_sequence(self) -> Optional[tuple["JsonValue", ...]]:
        if self.kind is not JsonKind.SEQUENCE:
            return None
        return tuple(JsonValue.wrap(v) for v in self.value)

    def get(self, key: str) -> Optional["JsonValue"]:
        if self.kind is not JsonKind.MAPPING or key not in self.value:
            return None
        return JsonValue.wrap(self.value[key])

    def unwrap(self) -> Any:
        return self.value


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant: {name}")


def parse_payload(body: bytes) -> JsonValue:
    """
    Decode a request body into a JSON object.

    Raises `PayloadError("invalid_json")` for undecodable or malformed input and
    `PayloadError("payload_not_object")` when the top level is not an object.
    """
    try:
        raw = json.loads(body.decode("utf-8"), parse_constant=_reject_constant)
        payload = JsonValue.wrap(raw)
    except (ValueError, RecursionError) as e:
        raise PayloadError("invalid_json", str(e)) from e

    if payload.kind is not JsonKind.MAPPING:
        raise PayloadError("payload_not_object", payload.kind.value)
    return payload


def extract_crypto_key_name(payload: JsonValue) -> str:
    """
    Return `protoPayload.resourceName` from an audit-log shaped event.

    The value is not validated beyond being a string.
    """
    proto_payload = payload.get("protoPayload")
    if proto_payload is None:
        raise PayloadError("missing_protoPayload")
    if proto_payload.as_mapping() is None:
        raise PayloadError("protoPayload_not_object", proto_payload.kind.value)

    resource_name = proto_payload.get("resourceName")
    if resource_name is None:
        raise PayloadError("missing_resourceName")
    name = resource_name.as_str()
    if name is None:
        raise PayloadError("resourceName_not_string", resource_name.kind.value)
    return name
