"""
Plan ingestion - the only boundary where generator output is trusted to have a shape.

Accepts:
- Plan instances (returned unchanged)
- dicts shaped like {"entries": [{path, content, encoding, kind, type?}], "summary": str}
- raw generator text embedding one JSON object

Anything else is a PlanFormatError, raised before backup/publish.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, List, Union

from pydantic import ValidationError as PydanticValidationError

from siteplan.errors import PlanFormatError
from siteplan.models import BinaryEntry, Plan, TextEntry, WireEntry, WirePlan

logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> dict:
    """Pull the JSON object out of generator text (first '{' to last '}')."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise PlanFormatError("Generator output did not contain a JSON object")

    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise PlanFormatError(f"Failed to parse JSON from generator output: {e}")

    if not isinstance(data, dict):
        raise PlanFormatError("Generator output JSON is not an object")
    return data


def parse_plan(raw: Union[Plan, dict, str, bytes]) -> Plan:
    """
    Normalize generator output into a typed Plan.

    Args:
        raw: Plan, mapping or raw generator text

    Returns:
        Plan with decoded TextEntry/BinaryEntry values

    Raises:
        PlanFormatError: If the shape or an entry's encoding is invalid
    """
    if isinstance(raw, Plan):
        return raw

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PlanFormatError(f"Generator output is not UTF-8: {e}")

    if isinstance(raw, str):
        raw = extract_json_object(raw)

    if not isinstance(raw, dict):
        raise PlanFormatError(f"Unsupported plan type: {type(raw).__name__}")

    try:
        wire = WirePlan.model_validate(raw)
    except PydanticValidationError as e:
        raise PlanFormatError(f"Invalid plan shape: {_summarize_errors(e)}")

    entries = [_decode_entry(index, item) for index, item in enumerate(wire.entries)]
    logger.debug(f"Parsed plan with {len(entries)} entries")
    return Plan(entries=entries, summary=wire.summary)


def _decode_entry(index: int, wire: WireEntry) -> Union[TextEntry, BinaryEntry]:
    if wire.encoding == "base64":
        try:
            # Generators wrap long base64 lines
            payload = base64.b64decode("".join(wire.content.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise PlanFormatError(
                f"Entry {wire.path} is not valid base64: {e}",
                path=wire.path,
                entry_index=index,
            )
    else:
        payload = wire.content.encode("utf-8")

    if wire.kind == "binary":
        return BinaryEntry(path=wire.path, data=payload, declared_type=wire.declared_type)

    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise PlanFormatError(
            f"Text entry {wire.path} is not UTF-8: {e}",
            path=wire.path,
            entry_index=index,
        )
    return TextEntry(path=wire.path, content=text, declared_type=wire.declared_type)


def _summarize_errors(error: PydanticValidationError) -> str:
    parts: List[str] = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def plan_to_wire(plan: Plan) -> dict[str, Any]:
    """Inverse of parse_plan (binary payloads base64-encoded); used for fixtures and replays."""
    entries = []
    for entry in plan.entries:
        if isinstance(entry, BinaryEntry):
            content = base64.b64encode(entry.data).decode("ascii")
            encoding = "base64"
        else:
            content = entry.content
            encoding = "utf-8"
        item = {"path": entry.path, "content": content, "encoding": encoding, "kind": entry.kind}
        if entry.declared_type:
            item["type"] = entry.declared_type
        entries.append(item)
    return {"entries": entries, "summary": plan.summary}
