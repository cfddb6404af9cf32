# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Validation of a tool call's raw argument text against the tool's JSON schema.

``validate_arguments`` never raises: every problem becomes a failed
``ParsedArguments`` with a reason the model can act on. Only the subset of JSON
schema that pydantic and typical MCP servers emit is understood: ``type``
(single or list), ``properties``, ``required``, ``additionalProperties: false``,
``enum``, ``const``, ``items``, ``anyOf``/``oneOf``/``allOf`` and local
``$ref`` into ``$defs``/``definitions``.
"""

import json
import logging

from typing import Any

from ..types.error_types import ParseError, ValidationError
from ..types.tool_types import ParsedArguments

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

PARSE = ParseError.kind
INVALID = ValidationError.kind


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _matches_type(value: Any, expected: str) -> bool:
    kind = _json_kind(value)
    if expected == "number":
        return kind in ("integer", "number")
    if expected == "integer" and kind == "number":
        return float(value).is_integer()
    return kind == expected


def required_fields(schema: dict[str, Any] | None) -> list[str]:
    if not schema:
        return []
    return list(schema.get("required") or [])


class _SchemaChecker:
    def __init__(self, root: dict[str, Any]):
        self.root = root
        self.defs = {**(root.get("definitions") or {}), **(root.get("$defs") or {})}

    def resolve(self, schema: dict[str, Any]) -> dict[str, Any]:
        seen = set()
        while "$ref" in schema:
            ref = schema["$ref"]
            if ref in seen or not ref.startswith("#/"):
                break
            seen.add(ref)
            name = ref.rsplit("/", 1)[-1]
            target = self.defs.get(name)
            if target is None:
                break
            schema = {**target, **{k: v for k, v in schema.items() if k != "$ref"}}
        if "allOf" in schema and len(schema["allOf"]) == 1:
            schema = {**self.resolve(schema["allOf"][0]), **{k: v for k, v in schema.items() if k != "allOf"}}
        return schema

    def check(self, value: Any, schema: dict[str, Any], where: str) -> str | None:
        """Return a reason string for the first problem found, else None."""
        schema = self.resolve(schema or {})

        alternatives = schema.get("anyOf") or schema.get("oneOf")
        if alternatives:
            reasons = []
            for alt in alternatives:
                reason = self.check(value, alt, where)
                if reason is None:
                    return None
                reasons.append(reason)
            return self._type_reason(value, alternatives, where) or reasons[0]

        if "const" in schema and value != schema["const"]:
            return f"Argument '{where}' must be {schema['const']!r}, got {value!r}"

        if "enum" in schema and value not in schema["enum"]:
            allowed = ", ".join(repr(v) for v in schema["enum"])
            return f"Argument '{where}' must be one of [{allowed}], got {value!r}"

        expected = schema.get("type")
        if expected is not None:
            options = expected if isinstance(expected, list) else [expected]
            if not any(_matches_type(value, t) for t in options):
                return (
                    f"Argument '{where}' must be of type {' or '.join(options)}, "
                    f"got {_json_kind(value)}"
                )

        if isinstance(value, dict):
            return self.check_object(value, schema, where)
        if isinstance(value, list) and isinstance(schema.get("items"), dict):
            for i, item in enumerate(value):
                reason = self.check(item, schema["items"], f"{where}[{i}]")
                if reason:
                    return reason
        return None

    def _type_reason(self, value: Any, alternatives: list, where: str) -> str | None:
        types = []
        for alt in alternatives:
            alt = self.resolve(alt)
            t = alt.get("type")
            if t is None:
                return None
            types.extend(t if isinstance(t, list) else [t])
        if any(_matches_type(value, t) for t in types):
            return None
        return f"Argument '{where}' must be of type {' or '.join(types)}, got {_json_kind(value)}"

    def check_object(self, value: dict, schema: dict[str, Any], where: str) -> str | None:
        prefix = f"{where}." if where else ""
        properties = schema.get("properties") or {}

        missing = [name for name in schema.get("required") or [] if name not in value]
        if missing:
            names = ", ".join(f"{prefix}{m}" for m in missing)
            return f"Missing required argument(s): {names}"

        if schema.get("additionalProperties") is False:
            unexpected = [k for k in value if k not in properties]
            if unexpected:
                names = ", ".join(f"{prefix}{u}" for u in unexpected)
                return f"Unexpected argument(s): {names}"

        for name, prop_schema in properties.items():
            if name not in value:
                continue
            reason = self.check(value[name], prop_schema, f"{prefix}{name}")
            if reason:
                return reason
        return None


def validate_arguments(
    raw_arguments: str | None, schema: dict[str, Any] | None, tool_name: str = "Tool"
) -> ParsedArguments:
    """Parse and type-check ``raw_arguments`` against ``schema``."""
    schema = schema or {"type": "object", "properties": {}}

    if raw_arguments is None or not raw_arguments.strip():
        if required_fields(schema):
            return ParsedArguments.failure(
                f"{tool_name} called with empty arguments, but requires: "
                + ", ".join(required_fields(schema)),
                PARSE,
            )
        return ParsedArguments.success({})

    try:
        value = json.loads(raw_arguments)
    except json.JSONDecodeError as e:
        return ParsedArguments.failure(
            f"Failed to parse {tool_name} arguments: not valid JSON "
            f"({e.msg} at line {e.lineno} column {e.colno})",
            PARSE,
        )

    if not isinstance(value, dict):
        return ParsedArguments.failure(
            f"{tool_name} arguments must be a JSON object, got {_json_kind(value)}",
            PARSE,
        )

    checker = _SchemaChecker(schema)
    reason = checker.check_object(value, checker.resolve(schema), "")
    if reason:
        return ParsedArguments.failure(f"Invalid {tool_name} arguments: {reason}", INVALID)
    return ParsedArguments.success(value)
