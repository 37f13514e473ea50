"""Deterministic text measurements over markdown article bodies.

Why:
  - SEO, QA and final assembly all need the same notion of "words", "sentences"
    and "headings"; computing them in one place keeps scores comparable across
    iterations of the revision loop.

How:
  - Markdown emphasis, links and inline code are stripped before counting.
  - Reading level uses the Flesch-Kincaid grade formula with a vowel-group
    syllable approximation, clamped to 0..20.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_HEADING_MARK_RE = re.compile(r"#{1,6}\s")
_BOLD_RE = re.compile(r"\*\*|__")
_ITALIC_RE = re.compile(r"[*_]")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_INLINE_CODE_RE = re.compile(r"`[^`]+`")
_NON_WORD_RE = re.compile(r"[^\w\s'-]")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_HEADING_LINE_RE = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\n+")
_VOWEL_GROUP_RE = re.compile(r"[aeiouy]+")

EMOJI_RE = re.compile("[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF\u2600-\u26FF\u2700-\u27BF]")
EM_DASH = "\u2014"

SLUG_MAX_CHARS = 100
EXCERPT_MAX_CHARS = 160


@dataclass(frozen=True)
class HeadingInfo:
  level: int
  text: str


def strip_markdown(content: str) -> str:
  """Remove heading marks, emphasis, links and inline code."""
  text = _HEADING_MARK_RE.sub("", content)
  text = _BOLD_RE.sub("", text)
  text = _ITALIC_RE.sub("", text)
  text = _LINK_RE.sub(r"\1", text)
  return _INLINE_CODE_RE.sub("", text)


def get_words(content: str) -> list[str]:
  plain = _NON_WORD_RE.sub(" ", strip_markdown(content))
  return plain.split()


def get_sentences(content: str) -> list[str]:
  return [part for part in _SENTENCE_SPLIT_RE.split(strip_markdown(content)) if part.strip()]


def get_paragraphs(content: str) -> list[str]:
  return [part for part in _PARAGRAPH_SPLIT_RE.split(content) if part.strip()]


def extract_headings(content: str) -> list[HeadingInfo]:
  return [HeadingInfo(level=len(match.group(1)), text=match.group(2).strip()) for match in _HEADING_LINE_RE.finditer(content)]


def count_syllables(word: str) -> int:
  """Approximate syllables by vowel groups with silent-e and -le adjustments."""
  cleaned = re.sub(r"[^a-z]", "", word.lower())
  if len(cleaned) <= 3:
    return 1
  count = len(_VOWEL_GROUP_RE.findall(cleaned)) or 1
  if cleaned.endswith("e"):
    count -= 1
  if cleaned.endswith("le") and cleaned[-3] not in "aeiouy":
    count += 1
  return max(1, count)


def flesch_kincaid_grade(content: str) -> float:
  words = get_words(content)
  sentences = get_sentences(content)
  if not words or not sentences:
    return 0.0
  syllables = sum(count_syllables(word) for word in words)
  grade = 0.39 * (len(words) / len(sentences)) + 11.8 * (syllables / len(words)) - 15.59
  return max(0.0, min(20.0, grade))


def keyword_density(content: str, keyword: str) -> tuple[float, str]:
  """Return (percentage rounded to 2dp, analysis sentence) for a keyword in content."""
  plain = strip_markdown(content).lower()
  words = plain.split()
  needle = keyword.strip().lower()

  if not needle:
    count = 0
  elif len(needle.split()) == 1:
    count = sum(1 for word in words if needle in word)
  else:
    count = plain.count(needle)

  percentage = round((count / len(words)) * 100, 2) if words else 0.0
  if percentage < 0.5:
    analysis = "Keyword density is too low. Consider adding more natural mentions of the keyword."
  elif percentage > 2.5:
    analysis = "Keyword density is too high. This may appear as keyword stuffing. Consider reducing usage."
  else:
    analysis = "Keyword density is within the optimal range (0.5-2.5%)."
  return percentage, analysis


def generate_slug(title: str) -> str:
  slug = re.sub(r"[^a-z0-9\s-]", "", title.lower())
  slug = re.sub(r"\s+", "-", slug)
  slug = re.sub(r"-+", "-", slug).strip("-")
  return slug[:SLUG_MAX_CHARS]


def generate_excerpt(content: str, max_length: int = EXCERPT_MAX_CHARS) -> str:
  """Plain-text excerpt cut at a word boundary with a trailing ellipsis."""
  plain = re.sub(r"\n+", " ", strip_markdown(content)).strip()
  if len(plain) <= max_length:
    return plain
  truncated = plain[: max_length - 3]
  last_space = truncated.rfind(" ")
  if last_space > 0:
    truncated = truncated[:last_space]
  return f"{truncated}..."


def truncate_with_ellipsis(value: str, max_length: int) -> str:
  if len(value) <= max_length:
    return value
  return f"{value[: max_length - 3]}..."
