"""Fallible parsing of structured generator output.

Generators are asked for JSON but routinely wrap it in prose or code fences,
or return nothing usable. Call sites get a ``ParseOk`` or a ``ParseErr`` and
must pick their documented fallback on the error branch.
"""
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union
import json
import re

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


@dataclass(frozen=True)
class ParseOk(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ParseErr:
    reason: str
    raw: str = ""

    @property
    def ok(self) -> bool:
        return False


ParseResult = Union[ParseOk[T], ParseErr]


def extract_json_object(text: str, source: str = "generator") -> "ParseResult[dict]":
    """Pull the outermost ``{...}`` span out of free text and decode it"""

    match = _OBJECT_PATTERN.search(text or "")
    if not match:
        logger.debug("No JSON object in output", source=source)
        return ParseErr("no JSON object found", raw=text or "")

    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.warning("Malformed JSON object in output", source=source, error=str(e))
        return ParseErr(f"malformed JSON: {e.msg}", raw=match.group(0))

    if not isinstance(value, dict):
        return ParseErr("JSON value is not an object", raw=match.group(0))
    return ParseOk(value)


def extract_json_array(text: str, source: str = "generator") -> "ParseResult[list]":
    """Pull the outermost ``[...]`` span out of free text and decode it"""

    match = _ARRAY_PATTERN.search(text or "")
    if not match:
        logger.debug("No JSON array in output", source=source)
        return ParseErr("no JSON array found", raw=text or "")

    try:
        value: Any = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.warning("Malformed JSON array in output", source=source, error=str(e))
        return ParseErr(f"malformed JSON: {e.msg}", raw=match.group(0))

    if not isinstance(value, list):
        return ParseErr("JSON value is not an array", raw=match.group(0))
    return ParseOk(value)
