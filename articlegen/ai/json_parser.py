"""Lenient JSON parsing helpers for LLM outputs."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*\n?(.*?)\n?```\s*$", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"'})


def strip_json_fences(raw: str) -> str:
  """Remove a surrounding markdown code fence if the model added one."""
  text = raw.strip()
  match = _FENCE_RE.match(text)
  if match:
    return match.group(1).strip()
  return text


def parse_json_with_fallback(raw: str) -> Any:
  """Parse JSON strictly first, then retry with a few narrow recovery passes."""
  text = strip_json_fences(raw)
  last_error: json.JSONDecodeError | None = None

  # Prefer strict parsing so valid JSON is preserved without mutation.
  try:
    return json.loads(text)
  except json.JSONDecodeError as exc:
    last_error = exc

  # Ignore chatter before or after the payload.
  candidate = extract_json_block(text)
  if candidate is None:
    raise last_error

  passes: list[Callable[[str], str]] = [
    lambda value: value,
    _strip_trailing_commas,
    lambda value: _strip_trailing_commas(value).translate(_SMART_QUOTES),
  ]
  for repair in passes:
    repaired = repair(candidate)
    try:
      # Long markdown bodies often carry raw newlines inside strings.
      return json.loads(repaired, strict=False)
    except json.JSONDecodeError as exc:
      last_error = exc

  raise last_error


def extract_json_block(raw: str) -> str | None:
  """Locate the first balanced JSON object or array, honoring string escapes."""
  start_index: int | None = None
  depth = 0
  in_string = False
  escape = False

  for index, char in enumerate(raw):
    if start_index is None:
      if char in "{[":
        start_index = index
        depth = 1
      continue

    if in_string:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      continue

    if char == '"':
      in_string = True
    elif char in "{[":
      depth += 1
    elif char in "}]":
      depth -= 1
      if depth == 0:
        return raw[start_index : index + 1]

  return None


def _strip_trailing_commas(raw: str) -> str:
  # Keep the transform narrow so only obvious comma violations are altered.
  return _TRAILING_COMMA_RE.sub(r"\1", raw)
