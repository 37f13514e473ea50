"""Project manager agent: deterministic final assembly, no model call."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from articlegen.ai.agents.base import AgentContext, AgentResult, BaseAgent
from articlegen.ai.pipeline.contracts import META_DESCRIPTION_MAX_CHARS, META_TITLE_MAX_CHARS, MIN_PASSING_SCORE, FinalArticle, ProjectManagerInput, ProjectManagerOutput, QAOutput, SEOOutput, WriterOutput
from articlegen.ai.utils.text_metrics import generate_excerpt, generate_slug
from articlegen.jobs.models import AgentType

MIN_PUBLISHABLE_WORDS = 300
MIN_RECOMMENDED_WORDS = 500


def collect_validation_errors(article: WriterOutput, qa: QAOutput | None) -> list[str]:
  errors: list[str] = []
  if not article.title:
    errors.append("Missing article title")
  if not article.content:
    errors.append("Missing article content")
  if article.word_count < MIN_PUBLISHABLE_WORDS:
    errors.append(f"Article too short: {article.word_count} words (minimum {MIN_PUBLISHABLE_WORDS})")
  if qa is not None and not qa.passed:
    errors.append(f"QA check failed with score {qa.overall_score}/100")
  return errors


def default_schema(article: WriterOutput, keyword: str, publisher_name: str, now: datetime | None = None) -> dict[str, Any]:
  timestamp = (now or datetime.now(UTC)).isoformat()
  return {
    "@context": "https://schema.org",
    "@type": "Article",
    "headline": article.title,
    "description": article.excerpt,
    "keywords": keyword,
    "wordCount": article.word_count,
    "datePublished": timestamp,
    "dateModified": timestamp,
    "author": {"@type": "Organization", "name": publisher_name},
    "publisher": {"@type": "Organization", "name": publisher_name},
  }


def build_summary(article: WriterOutput, seo: SEOOutput | None, qa: QAOutput | None, ready_for_publish: bool) -> str:
  parts = [f'Article "{article.title}" assembled with {article.word_count} words.']
  if seo is not None:
    parts.append(f"SEO optimization score: {seo.optimization_score}/100.")
  if qa is not None:
    parts.append(f"QA score: {qa.overall_score}/100 ({'passed' if qa.passed else 'failed'}).")
  parts.append("Ready for publication." if ready_for_publish else "Requires review before publication.")
  return " ".join(parts)


def build_recommendations(article: WriterOutput, seo: SEOOutput | None, qa: QAOutput | None, validation_errors: list[str]) -> list[str]:
  recommendations: list[str] = []
  if validation_errors:
    recommendations.append("Address validation errors before publishing")

  if seo is not None:
    if seo.optimization_score < MIN_PASSING_SCORE:
      recommendations.append("Consider improving SEO optimization")
    if seo.internal_links:
      recommendations.append(f"Add {len(seo.internal_links)} suggested internal links")
    if not seo.heading_analysis.is_valid:
      recommendations.append("Review heading structure for SEO best practices")

  if qa is not None and not qa.passed:
    recommendations.append("Review QA feedback and revise content")
    critical = sum(1 for issue in qa.issues if issue.severity == "critical")
    if critical:
      recommendations.append(f"Fix {critical} critical issues")

  if article.word_count < MIN_RECOMMENDED_WORDS:
    recommendations.append("Consider expanding article content for better SEO")
  return recommendations


class ProjectManagerAgent(BaseAgent[ProjectManagerInput, ProjectManagerOutput]):
  """Assemble the publishable article from writer, SEO and QA outputs."""

  agent_type = AgentType.PROJECT_MANAGER
  name = "Project Manager Agent"
  description = "Assembles final article and validates for publication"
  input_model = ProjectManagerInput
  output_model = ProjectManagerOutput

  def __init__(self, *, publisher_name: str = "Editorial Team") -> None:
    self._publisher_name = publisher_name

  async def run(self, input_data: ProjectManagerInput, context: AgentContext) -> AgentResult[ProjectManagerOutput]:
    article = input_data.article
    seo = input_data.seo_data
    qa = input_data.qa_data
    settings = input_data.settings
    context.log("info", f'Starting Project Manager Agent for keyword: "{input_data.keyword}"')

    validation_errors = collect_validation_errors(article, qa)
    context.log("debug", f"Validation complete. Errors: {len(validation_errors)}")
    context.on_progress("Validation complete. All checks passed." if not validation_errors else f"Validation complete. Found {len(validation_errors)} issues.")

    # Fall back to computed values wherever an upstream stage left a gap.
    excerpt = article.excerpt or generate_excerpt(article.content)
    final_article = FinalArticle(
      title=article.title,
      slug=article.slug or generate_slug(article.title),
      content=article.content,
      excerpt=excerpt,
      meta_title=(seo.meta_title if seo and seo.meta_title else article.title[:META_TITLE_MAX_CHARS]),
      meta_description=(seo.meta_description if seo and seo.meta_description else excerpt[:META_DESCRIPTION_MAX_CHARS]),
      schema_markup=(seo.schema_markup if seo and seo.schema_markup else default_schema(article, input_data.keyword, self._publisher_name)),
      template=settings.template or "article",
      status="published" if settings.auto_post else "draft",
      focus_keyword=input_data.keyword,
      word_count=article.word_count,
    )

    ready = not validation_errors
    output = ProjectManagerOutput(
      ready_for_publish=ready,
      validation_errors=validation_errors,
      final_article=final_article,
      summary=build_summary(article, seo, qa, ready),
      recommendations=build_recommendations(article, seo, qa, validation_errors),
    )
    context.log("info", f"Ready for publish: {ready}")
    context.log("info", f'Final article: "{final_article.title}" ({final_article.word_count} words)')
    context.on_progress("Article ready for publication." if ready else "Article requires attention.")
    return self._success(output)
