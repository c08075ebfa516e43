"""Decoding of object payloads that may arrive in three encodings.

Some agents cannot send nested objects reliably, so the meta and step
tools accept a payload as a structured object, as JSON text in
``<field>_json``, or as base64-encoded JSON text in ``<field>_base64``.
The stages are tried in that order and the first one present wins.
Empty strings count as absent.
"""

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias


@dataclass(frozen=True)
class Decoded:
    value: dict[str, Any]


@dataclass(frozen=True)
class Missing:
    """No stage supplied a payload."""


@dataclass(frozen=True)
class Failed:
    code: str
    message: str


DecodeOutcome: TypeAlias = Decoded | Missing | Failed


def _parse_object(text: str, code: str, label: str) -> DecodeOutcome:
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        return Failed(code, f"invalid {label}: {e}")
    if not isinstance(value, dict):
        return Failed(code, f"invalid {label}: expected a JSON object")
    return Decoded(value)


def _text_arg(args: Mapping[str, Any], key: str) -> str | Failed:
    value = args.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        return Failed("invalid_args", f"{key} must be a string")
    return value


def decode_object_payload(
    args: Mapping[str, Any], field: str, type_code: str = "invalid_args"
) -> DecodeOutcome:
    """Decode ``field`` from its object, JSON or base64 form.

    Args:
        args: Tool-call arguments.
        field: Payload name, e.g. "meta" or "step".
        type_code: Error code when the object form has the wrong type.

    Returns:
        Decoded with the payload, Missing if no form was supplied, or
        Failed with invalid_<field>_json when the JSON text is bad,
        or invalid_<field>_base64 when the base64 or UTF-8 step fails.
    """
    obj = args.get(field)
    if isinstance(obj, dict):
        return Decoded(obj)
    if obj is not None:
        return Failed(type_code, f"{field} must be an object")

    json_key = f"{field}_json"
    json_text = _text_arg(args, json_key)
    if isinstance(json_text, Failed):
        return json_text
    if json_text:
        return _parse_object(json_text, f"invalid_{field}_json", json_key)

    b64_key = f"{field}_base64"
    b64_text = _text_arg(args, b64_key)
    if isinstance(b64_text, Failed):
        return b64_text
    if b64_text:
        code = f"invalid_{field}_base64"
        try:
            # Line breaks from wrapped encoders are ignored
            unwrapped = b64_text.replace("\r", "").replace("\n", "")
            raw = base64.b64decode(unwrapped, validate=True)
        except (binascii.Error, ValueError) as e:
            return Failed(code, f"invalid {b64_key}: {e}")
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            return Failed(code, f"invalid {b64_key}: {e}")
        return _parse_object(text, f"invalid_{field}_json", b64_key)

    return Missing()
