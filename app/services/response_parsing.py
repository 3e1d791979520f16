"""
Strict parsing of model output.

Model text is never trusted past this boundary: callers get either a
validated pydantic object (ParsedOk) or a ParseFailed with the reason.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from app.core.exceptions import GenerationParseError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class ParsedOk(Generic[T]):
    content: T


@dataclass(frozen=True)
class ParseFailed:
    reason: str
    raw: str


ParseResult = Union[ParsedOk[T], ParseFailed]


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Pull the first JSON object out of a model response, tolerating markdown fences."""
    clean = (text or "").strip()
    if clean.startswith("```json"):
        clean = clean[7:]
    if clean.startswith("```"):
        clean = clean[3:]
    if clean.endswith("```"):
        clean = clean[:-3]

    match = _JSON_OBJECT.search(clean)
    if not match:
        return None
    try:
        value = json.loads(match.group())
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def parse_model_output(text: str, schema: Type[T]) -> ParseResult:
    data = extract_json_object(text)
    if data is None:
        return ParseFailed(reason="no JSON object found", raw=text)
    try:
        return ParsedOk(schema.model_validate(data))
    except ValidationError as e:
        return ParseFailed(reason=f"schema validation failed: {e.error_count()} error(s)", raw=text)


async def complete_and_parse(
    call: Callable[[List[Dict[str, str]]], Awaitable[Any]],
    messages: List[Dict[str, str]],
    schema: Type[T],
    strict_retry: str,
    label: str,
    failure_message: Optional[str] = None,
) -> Tuple[T, Any, List[Dict[str, str]], bool]:
    """
    Run one model call and parse it into ``schema``.

    An unparsable answer gets exactly one retry with ``strict_retry`` appended;
    a second failure raises GenerationParseError. Returns the parsed content,
    the last completion, the messages sent and whether a retry happened.
    """
    completion = await call(messages)
    result = parse_model_output(completion.text, schema)
    if not isinstance(result, ParseFailed):
        return result.content, completion, messages, False

    logger.warning(f"{label} output unparsable ({result.reason}); retrying with strict instruction")
    messages = messages + [
        {"role": "assistant", "content": completion.text},
        {"role": "user", "content": strict_retry},
    ]
    completion = await call(messages)
    result = parse_model_output(completion.text, schema)
    if isinstance(result, ParseFailed):
        logger.error(f"{label} output unparsable after retry: {result.reason}")
        details = {
            "reason": result.reason,
            "prompt": json.dumps(messages),
            "raw_output": result.raw,
        }
        if failure_message:
            raise GenerationParseError(failure_message, details=details)
        raise GenerationParseError(details=details)
    return result.content, completion, messages, True
