"""SEO agent implementation."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from articlegen.ai.agents.base import AgentContext, AgentResult, BaseAgent, camelize_keys
from articlegen.ai.agents.prompts import load_system_prompt, render_seo_prompt
from articlegen.ai.pipeline.contracts import META_DESCRIPTION_MAX_CHARS, META_TITLE_MAX_CHARS, HeadingAnalysis, SEOInput, SEOOutput, WriterOutput
from articlegen.ai.utils.text_metrics import HeadingInfo, extract_headings, keyword_density, truncate_with_ellipsis
from articlegen.jobs.models import AgentType
from articlegen.storage.jobs_repo import PageService

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.5
DEFAULT_MAX_TOKENS = 4000
EXISTING_PAGES_LIMIT = 50


def analyze_heading_structure(headings: list[HeadingInfo]) -> HeadingAnalysis:
  """Check for a single H1, no skipped levels, and enough H2 sections."""
  issues: list[str] = []
  suggestions: list[str] = []

  h1_count = sum(1 for heading in headings if heading.level == 1)
  if h1_count == 0:
    issues.append("Missing H1 heading")
    suggestions.append("Add a single H1 heading at the beginning of the article")
  elif h1_count > 1:
    issues.append(f"Multiple H1 headings found ({h1_count})")
    suggestions.append("Use only one H1 heading per page for SEO best practices")

  previous_level = 0
  for heading in headings:
    if previous_level and heading.level > previous_level + 1:
      issues.append(f"Heading level skip: H{previous_level} to H{heading.level}")
      suggestions.append(f'Consider adding H{previous_level + 1} before "{heading.text}"')
    previous_level = heading.level

  if sum(1 for heading in headings if heading.level == 2) < 3:
    suggestions.append("Consider adding more H2 subheadings to break up content")

  return HeadingAnalysis(is_valid=not issues, issues=issues, suggestions=suggestions)


def build_article_schema(article: WriterOutput, keyword: str, *, publisher_name: str, site_url: str | None = None, now: datetime | None = None) -> dict[str, Any]:
  """Build schema.org Article JSON-LD for the draft."""
  timestamp = (now or datetime.now(UTC)).isoformat()
  organization: dict[str, Any] = {"@type": "Organization", "name": publisher_name}
  schema: dict[str, Any] = {
    "@context": "https://schema.org",
    "@type": "Article",
    "headline": article.title,
    "description": article.excerpt,
    "keywords": keyword,
    "wordCount": article.word_count,
    "datePublished": timestamp,
    "dateModified": timestamp,
    "author": dict(organization),
    "publisher": dict(organization),
  }
  if site_url:
    base = site_url.rstrip("/")
    schema["publisher"]["logo"] = {"@type": "ImageObject", "url": f"{base}/logo.png"}
    schema["mainEntityOfPage"] = {"@type": "WebPage", "@id": f"{base}/{article.slug}"}
  return schema


class SEOAgent(BaseAgent[SEOInput, SEOOutput]):
  """Optimize meta tags and analyze on-page SEO for the current draft."""

  agent_type = AgentType.SEO
  name = "SEO Agent"
  description = "Analyzes and optimizes content for search engines"
  input_model = SEOInput
  output_model = SEOOutput

  def __init__(self, *, page_service: PageService | None = None, publisher_name: str = "Editorial Team", site_url: str | None = None) -> None:
    self._page_service = page_service
    self._publisher_name = publisher_name
    self._site_url = site_url

  async def _existing_pages(self, context: AgentContext) -> list[tuple[str, str, str | None]]:
    if self._page_service is None:
      return []
    try:
      pages = await self._page_service.list_published(limit=EXISTING_PAGES_LIMIT)
    except Exception as exc:
      # Internal links are optional; a listing failure only costs suggestions.
      context.log("warn", "Failed to fetch existing pages for internal linking", {"error": str(exc)})
      logger.warning("Listing published pages failed for job %s: %s", context.job.id, exc)
      return []
    return [(page.title, page.full_path or f"/{page.slug}", page.description) for page in pages]

  async def run(self, input_data: SEOInput, context: AgentContext) -> AgentResult[SEOOutput]:
    provider = context.require_provider()
    persona = context.persona
    article = input_data.article
    keyword = input_data.keyword
    context.log("info", f'Starting SEO Agent for keyword: "{keyword}"')

    context.on_progress("Analyzing heading structure...")
    headings = extract_headings(article.content)
    heading_analysis = analyze_heading_structure(headings)
    context.log("info", f"Found {len(headings)} headings. Valid structure: {heading_analysis.is_valid}")

    context.on_progress("Calculating keyword density...")
    density = keyword_density(article.content, keyword)
    context.log("info", f"Keyword density: {density[0]:.2f}%")

    context.on_progress("Analyzing potential internal links...")
    existing_pages = await self._existing_pages(context)
    context.log("info", f"Found {len(existing_pages)} published pages for internal linking")
    schema_markup = build_article_schema(article, keyword, publisher_name=self._publisher_name, site_url=self._site_url)

    context.on_progress("Optimizing meta tags...")
    prompt = render_seo_prompt(
      keyword=keyword,
      article=article,
      headings=headings,
      heading_issues=heading_analysis.issues,
      heading_suggestions=heading_analysis.suggestions,
      heading_valid=heading_analysis.is_valid,
      density=density,
      existing_pages=existing_pages,
      research=input_data.research_data,
    )
    response = await provider.generate_json(
      prompt=prompt,
      system_prompt=persona.system_prompt or load_system_prompt("seo_system"),
      model=persona.model,
      schema=self.output_schema(),
      temperature=persona.temperature if persona.temperature is not None else DEFAULT_TEMPERATURE,
      max_tokens=persona.max_tokens or DEFAULT_MAX_TOKENS,
    )

    # Computed density and schema replace whatever the model echoed back.
    raw = camelize_keys(response.data)
    raw["keywordDensity"] = {"percentage": density[0], "analysis": density[1]}
    raw["schemaMarkup"] = schema_markup
    raw.setdefault("headingAnalysis", heading_analysis.model_dump(by_alias=True))
    raw["metaTitle"] = self._fit(context, "Meta title", raw.get("metaTitle"), META_TITLE_MAX_CHARS)
    raw["metaDescription"] = self._fit(context, "Meta description", raw.get("metaDescription"), META_DESCRIPTION_MAX_CHARS)

    result = self._validate_output(raw, context, response.usage, response.estimated_cost_usd)
    if result.success and result.output is not None:
      output = result.output
      context.log("info", f'Meta title: "{output.meta_title}" ({len(output.meta_title)} chars)')
      context.log("info", f"Optimization score: {output.optimization_score}/100")
      context.on_progress(f"SEO optimization complete. Score: {output.optimization_score}/100")
    return result

  @staticmethod
  def _fit(context: AgentContext, label: str, value: Any, limit: int) -> Any:
    if isinstance(value, str) and len(value) > limit:
      context.log("warn", f"{label} too long ({len(value)} chars), truncating...")
      return truncate_with_ellipsis(value, limit)
    return value
