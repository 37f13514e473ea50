"""Shared data contracts for the article pipeline."""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from articlegen.jobs.models import AgentType

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5
MAX_ITERATIONS_LIMIT = 10
MIN_PASSING_SCORE = 70
DEFAULT_TARGET_WORD_COUNT = 1500
META_TITLE_MAX_CHARS = 60
META_DESCRIPTION_MAX_CHARS = 160

Severity = Literal["low", "medium", "high", "critical"]


def _is_agent_type(value: Any) -> bool:
  try:
    AgentType(value)
  except ValueError:
    return False
  return True


class CamelModel(BaseModel):
  """Accept snake_case or camelCase keys and emit camelCase when dumped by alias."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobSettings(CamelModel):
  """Per-job settings controlling skips, overrides, and publishing."""

  auto_post: bool = False
  target_word_count: int | None = Field(default=None, ge=0, le=10000)
  max_iterations: int | None = Field(default=None, ge=1, le=MAX_ITERATIONS_LIMIT)
  template: str = "article"
  parent_page_id: str | None = None
  persona_overrides: dict[AgentType, str] = Field(default_factory=dict)
  skip_agents: list[AgentType] = Field(default_factory=list)
  context: str | None = None

  @field_validator("persona_overrides", mode="before")
  @classmethod
  def _drop_unknown_overrides(cls, value: Any) -> Any:
    if not isinstance(value, dict):
      return value
    known: dict[Any, Any] = {}
    for key, persona_id in value.items():
      if _is_agent_type(key):
        known[key] = persona_id
      else:
        logger.warning("Ignoring persona override for unknown agent type %r", key)
    return known

  @field_validator("skip_agents", mode="before")
  @classmethod
  def _drop_unknown_skips(cls, value: Any) -> Any:
    if not isinstance(value, list | tuple):
      return value
    unknown = [item for item in value if not _is_agent_type(item)]
    if unknown:
      logger.warning("Ignoring unknown agent types in skipAgents: %s", unknown)
    return [item for item in value if _is_agent_type(item)]

  def skips(self, agent_type: AgentType) -> bool:
    return agent_type in self.skip_agents


# Research


class KeywordData(CamelModel):
  search_volume: int | None = None
  difficulty: float | None = None
  intent: str | None = None
  cpc: float | None = None


class Competitor(CamelModel):
  url: str
  title: str
  word_count: int | None = None
  headings: list[str] | None = None


class ResearchOutput(CamelModel):
  """Keyword research feeding the writer."""

  keyword: str
  keyword_data: KeywordData = Field(default_factory=KeywordData)
  competitors: list[Competitor] = Field(default_factory=list)
  related_keywords: list[str] = Field(default_factory=list)
  paa_questions: list[str] = Field(default_factory=list)
  recommended_word_count: int = Field(ge=300, le=10000)
  content_gaps: list[str] = Field(default_factory=list)


# Writer


class Heading(CamelModel):
  level: int = Field(ge=1, le=6)
  text: str


class WriterOutput(CamelModel):
  """Article draft produced by the writer."""

  title: str = Field(max_length=META_TITLE_MAX_CHARS)
  slug: str
  content: str
  excerpt: str = Field(max_length=META_DESCRIPTION_MAX_CHARS)
  word_count: int = Field(ge=0)
  headings: list[Heading] = Field(default_factory=list)


# SEO


class HeadingAnalysis(CamelModel):
  is_valid: bool
  issues: list[str] = Field(default_factory=list)
  suggestions: list[str] = Field(default_factory=list)


class KeywordDensity(CamelModel):
  percentage: float
  analysis: str


class InternalLink(CamelModel):
  anchor_text: str
  suggested_path: str
  reason: str | None = None


class SEOOutput(CamelModel):
  """Meta tags and on-page analysis for the current draft."""

  meta_title: str = Field(max_length=META_TITLE_MAX_CHARS)
  meta_description: str = Field(max_length=META_DESCRIPTION_MAX_CHARS)
  heading_analysis: HeadingAnalysis
  keyword_density: KeywordDensity
  schema_markup: dict[str, Any] = Field(default_factory=dict)
  internal_links: list[InternalLink] = Field(default_factory=list)
  optimization_score: int = Field(ge=0, le=100)


# QA


class DimensionScores(CamelModel):
  readability: float = Field(ge=0, le=100)
  seo: float = Field(ge=0, le=100)
  accuracy: float = Field(ge=0, le=100)
  engagement: float = Field(ge=0, le=100)
  brand_voice: float = Field(ge=0, le=100)


class QAIssue(CamelModel):
  issue_id: str | None = None
  category: str
  severity: Severity
  description: str
  suggestion: str
  location: str | None = None


class QAOutput(CamelModel):
  """Quality review with revision guidance."""

  passed: bool
  overall_score: int = Field(ge=0, le=100)
  dimension_scores: DimensionScores
  issues: list[QAIssue] = Field(default_factory=list)
  feedback: str = ""
  fixed_issue_ids: list[str] = Field(default_factory=list)
  persisting_issue_ids: list[str] = Field(default_factory=list)

  @field_validator("overall_score", mode="before")
  @classmethod
  def _round_score(cls, value: Any) -> Any:
    # Models sometimes return fractional scores.
    if isinstance(value, float):
      return round(value)
    return value


# Project manager


class FinalArticle(CamelModel):
  title: str
  slug: str
  content: str
  excerpt: str
  meta_title: str
  meta_description: str
  schema_markup: dict[str, Any] = Field(default_factory=dict)
  template: str = "article"
  status: Literal["draft", "published"] = "draft"
  focus_keyword: str
  word_count: int = 0


class ProjectManagerOutput(CamelModel):
  """Final assembled article plus publish readiness."""

  ready_for_publish: bool
  validation_errors: list[str] = Field(default_factory=list)
  final_article: FinalArticle
  summary: str
  recommendations: list[str] = Field(default_factory=list)


# Agent inputs


class ResearchInput(CamelModel):
  keyword: str = Field(min_length=1)
  target_word_count: int | None = Field(default=None, gt=0)


class WriterInput(CamelModel):
  keyword: str = Field(min_length=1)
  research_data: ResearchOutput | None = None
  target_word_count: int = Field(gt=0)
  qa_feedback: str | None = None
  previous_article: WriterOutput | None = None
  iteration: int = Field(default=1, ge=1)
  context: str | None = None

  @property
  def is_revision(self) -> bool:
    return bool(self.qa_feedback and self.previous_article and self.iteration > 1)


class SEOInput(CamelModel):
  keyword: str = Field(min_length=1)
  article: WriterOutput
  research_data: ResearchOutput | None = None


class QAInput(CamelModel):
  keyword: str = Field(min_length=1)
  article: WriterOutput
  seo_data: SEOOutput | None = None
  iteration: int = Field(ge=1)
  previous_issues: list[QAIssue] = Field(default_factory=list)


class ProjectManagerInput(CamelModel):
  keyword: str = Field(min_length=1)
  article: WriterOutput
  seo_data: SEOOutput | None = None
  qa_data: QAOutput | None = None
  settings: JobSettings
