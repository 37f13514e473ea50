"""Prompt helpers shared by agents."""

from __future__ import annotations

import math
from datetime import date
from functools import lru_cache
from pathlib import Path

from articlegen.ai.pipeline.contracts import ResearchOutput, SEOOutput, WriterInput, WriterOutput
from articlegen.ai.utils.text_metrics import HeadingInfo

QA_CONTENT_PREVIEW_CHARS = 2000
TARGET_READING_LEVEL = 7


@lru_cache(maxsize=8)
def load_system_prompt(name: str) -> str:
  """Load a bundled system prompt by file stem."""
  path = Path(__file__).parents[1] / "prompts" / f"{name}.md"
  return path.read_text(encoding="utf-8").strip()


def _bullets(items: list[str]) -> list[str]:
  return [f"- {item}" for item in items]


def _research_sections(research: ResearchOutput | None, *, include_competitors: bool) -> list[str]:
  if research is None:
    return []
  lines: list[str] = []
  data = research.keyword_data
  if data.search_volume or data.difficulty is not None or data.intent:
    lines.append("## Keyword Research Data")
    if data.search_volume:
      lines.append(f"- Monthly search volume: {data.search_volume}")
    if data.difficulty is not None:
      lines.append(f"- Keyword difficulty: {data.difficulty}/100")
    if data.intent:
      lines.append(f"- Search intent: {data.intent}")
    lines.append("")
  if research.related_keywords:
    lines += ["## Related Keywords to Include Naturally", ", ".join(research.related_keywords[:10]), ""]
  if research.paa_questions:
    lines += ["## Questions to Answer (People Also Ask)", *_bullets(research.paa_questions[:8]), ""]
  if research.content_gaps:
    lines += ["## Content Gaps to Address", *_bullets(research.content_gaps[:5]), ""]
  if include_competitors and research.competitors:
    lines += ["## Top Competitor Titles (for reference, do not copy)", *_bullets([c.title for c in research.competitors[:5]]), ""]
  return lines


def render_writer_prompt(input_data: WriterInput, *, today: date | None = None) -> str:
  """Build the generation or revision prompt for the writer."""
  today = today or date.today()
  target = input_data.target_word_count
  lines = [
    "## CURRENT DATE",
    f"Today is {today.strftime('%A, %B %d, %Y')}. All content must be written for {today.year}.",
    "",
  ]

  if input_data.is_revision and input_data.previous_article is not None:
    previous = input_data.previous_article
    lines += [
      "## REVISION REQUEST",
      "Your previous article did not pass quality assurance. Revise it using the feedback below.",
      "",
      "### QA Feedback",
      input_data.qa_feedback or "",
      "",
      "### Previous Article to Revise",
      f"Title: {previous.title}",
      f"Word Count: {previous.word_count}",
      "",
      "Content:",
      previous.content,
      "",
      "---",
      "",
      "Revise the article above, addressing ALL feedback points while keeping the structure and keyword focus.",
    ]
  else:
    lines.append(f'Write a comprehensive, SEO-optimized article about: "{input_data.keyword}"')

  lines.append(f"Target word count: {target} words (minimum {math.floor(target * 0.9)}, maximum {math.ceil(target * 1.1)})")
  lines.append("")
  if input_data.context:
    lines += ["## Additional Context", input_data.context, ""]
  lines += _research_sections(input_data.research_data, include_competitors=not input_data.is_revision)
  lines += [
    "## IMPORTANT REMINDERS",
    "- Write at a 7th grade reading level",
    "- NO emojis, NO em dashes, NO sensationalization",
    "- Do NOT start the content with an H1 title; begin with the intro paragraph, then use H2s",
    "",
    "## REQUIRED JSON FIELDS (camelCase)",
    '- "title" (max 60 characters), "slug", "content" (markdown), "excerpt" (max 160 characters)',
    '- "wordCount" (number), "headings" (array of {"level": 2-4, "text": "..."})',
    "",
    "Respond ONLY with valid JSON. Do NOT wrap in markdown code blocks.",
  ]
  return "\n".join(lines)


def render_seo_prompt(
  *,
  keyword: str,
  article: WriterOutput,
  headings: list[HeadingInfo],
  heading_issues: list[str],
  heading_suggestions: list[str],
  heading_valid: bool,
  density: tuple[float, str],
  existing_pages: list[tuple[str, str, str | None]],
  research: ResearchOutput | None,
) -> str:
  """Build the meta-tag optimization prompt with pre-computed analysis."""
  lines = [
    f'## Target Keyword: "{keyword}"',
    "",
    "## Article to Optimize",
    f"Title: {article.title}",
    f"Word Count: {article.word_count}",
    f"Excerpt: {article.excerpt}",
    "",
    "## Current Heading Structure",
    *[f"{'  ' * (h.level - 1)}H{h.level}: {h.text}" for h in headings],
    "",
    "## Heading Analysis (Pre-computed)",
    f"Valid: {str(heading_valid).lower()}",
  ]
  if heading_issues:
    lines += ["Issues:", *_bullets(heading_issues)]
  if heading_suggestions:
    lines += ["Suggestions:", *_bullets(heading_suggestions)]
  lines += ["", "## Keyword Density (Pre-computed)", f"Density: {density[0]}%", f"Analysis: {density[1]}", ""]

  if existing_pages:
    lines.append("## Existing Site Pages (for internal linking)")
    for title, path, description in existing_pages[:20]:
      lines.append(f"- {title}: {path}")
      if description:
        lines.append(f"  Description: {description[:100]}")
    lines.append("")

  if research and research.related_keywords:
    lines += ["## Research Context", f"Related Keywords: {', '.join(research.related_keywords[:10])}", ""]

  lines += [
    "## Your Task",
    "1. Create an optimized meta title (HARD LIMIT: 60 characters) containing the keyword",
    "2. Create a compelling meta description (HARD LIMIT: 160 characters) with a call to action",
    "3. Use the pre-computed heading analysis and keyword density in your response",
    "4. Suggest 2-5 internal links from the existing pages list",
    "5. Give an overall optimization score (integer 0-100)",
    "",
    "Respond ONLY with valid JSON using camelCase field names. Do NOT wrap in markdown code blocks.",
  ]
  return "\n".join(lines)


def render_qa_prompt(
  *,
  keyword: str,
  article: WriterOutput,
  iteration: int,
  reading_level: float,
  heading_count: int,
  paragraph_count: int,
  avg_sentence_length: float,
  pre_detected: list[tuple[str, str]],
  seo: SEOOutput | None,
) -> str:
  """Build the quality review prompt with pre-computed metrics and detected issues."""
  lines = [
    f"## QA Review Request (Iteration {iteration})",
    f'Target Keyword: "{keyword}"',
    "",
    "## Article Content",
    f"Title: {article.title}",
    f"Word Count: {article.word_count}",
    "",
    f"### Content Preview (first {QA_CONTENT_PREVIEW_CHARS} chars)",
    article.content[:QA_CONTENT_PREVIEW_CHARS],
  ]
  if len(article.content) > QA_CONTENT_PREVIEW_CHARS:
    lines.append("...[content truncated]...")
  lines += [
    "",
    "## Pre-Computed Metrics",
    f"- Reading Level: {reading_level:.1f} (target: {TARGET_READING_LEVEL})",
    f"- Word Count: {article.word_count}",
    f"- Heading Count: {heading_count}",
    f"- Paragraph Count: {paragraph_count}",
    f"- Avg Sentence Length: {avg_sentence_length:.1f} words",
    "",
  ]
  if pre_detected:
    lines += ["## Pre-Detected Issues (CRITICAL)", *[f"- [{severity.upper()}] {description}" for severity, description in pre_detected], ""]
  if seo is not None:
    lines += [
      "## SEO Analysis",
      f"- Optimization Score: {seo.optimization_score}/100",
      f"- Heading Valid: {str(seo.heading_analysis.is_valid).lower()}",
      f"- Keyword Density: {seo.keyword_density.percentage}%",
      "",
    ]
  lines += [
    "## Your Task",
    "1. Score each dimension (0-100): readability, seo, accuracy, engagement, brandVoice",
    "2. Identify any additional issues not in the pre-detected list",
    "3. Provide actionable feedback for the writer",
    "",
    'Issue severity MUST be exactly one of: "low", "medium", "high", "critical".',
    "Respond ONLY with valid JSON using camelCase field names. Do NOT wrap in markdown code blocks.",
  ]
  return "\n".join(lines)
