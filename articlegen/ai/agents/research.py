"""Research agent implementation."""

from __future__ import annotations

from collections.abc import Callable

from articlegen.ai.agents.base import AgentContext, AgentResult, BaseAgent
from articlegen.ai.errors import AgentConfigurationError
from articlegen.ai.pipeline.contracts import Competitor, KeywordData, ResearchInput, ResearchOutput
from articlegen.jobs.models import AgentType
from articlegen.services.keyword_research import KeywordResearchService, SerpResult

DEFAULT_COMPETITOR_WORD_COUNT = 1500
MAX_RECOMMENDED_WORD_COUNT = 5000
MIN_RECOMMENDED_WORD_COUNT = 300
_GAP_QUESTION_WORDS = ("how", "what", "why")


def estimate_competitor_word_counts(serp_results: list[SerpResult]) -> list[int]:
  """Estimate article length for the top five results from their SERP description length."""
  return [max(800, min(len(result.description) * 12, 4000)) for result in serp_results[:5]]


def recommend_word_count(estimates: list[int], target_word_count: int | None = None) -> int:
  """Aim roughly 15% above the competitor average unless a target is pinned."""
  if target_word_count:
    return max(MIN_RECOMMENDED_WORD_COUNT, target_word_count)
  average = round(sum(estimates) / len(estimates)) if estimates else DEFAULT_COMPETITOR_WORD_COUNT
  return max(MIN_RECOMMENDED_WORD_COUNT, min(round(average * 1.15), MAX_RECOMMENDED_WORD_COUNT))


def identify_content_gaps(paa_questions: list[str]) -> list[str]:
  gaps = [f"Answer: {question}" for question in paa_questions[:5] if any(word in question.lower() for word in _GAP_QUESTION_WORDS)]
  return gaps[:5]


class ResearchAgent(BaseAgent[ResearchInput, ResearchOutput]):
  """Gather keyword data, SERP competitors and questions for the writer."""

  agent_type = AgentType.RESEARCH
  name = "Research Agent"
  description = "Gathers keyword research, competitor analysis, and SERP data using DataForSEO"
  input_model = ResearchInput
  output_model = ResearchOutput

  def __init__(self, service_factory: Callable[[], KeywordResearchService] | None = None) -> None:
    self._service_factory = service_factory

  def _service(self) -> KeywordResearchService:
    if self._service_factory is None:
      raise AgentConfigurationError("Keyword research is not configured. Set ARTICLEGEN_DATAFORSEO_API_KEY or skip the research agent.")
    return self._service_factory()

  async def run(self, input_data: ResearchInput, context: AgentContext) -> AgentResult[ResearchOutput]:
    keyword = input_data.keyword
    context.log("info", f'Starting research for keyword: "{keyword}"')
    context.on_progress("Starting keyword research...")

    service = self._service()
    context.on_progress("Fetching keyword data from DataForSEO...")
    data = await service.perform_research(keyword, serp_depth=10, related_limit=15, suggestions_limit=15)
    context.log("debug", f"Research data fetched. Cost: ${data.total_cost:.4f}")

    # Estimates only cover the top five results; later competitors carry no word count.
    context.on_progress("Analyzing competitor content...")
    estimates = estimate_competitor_word_counts(data.serp_results)
    for serp, estimate in zip(data.serp_results, estimates):
      context.log("debug", f"Estimated word count for {serp.url}: {estimate}")
    recommended = recommend_word_count(estimates, input_data.target_word_count)

    context.on_progress("Identifying content gaps...")
    competitors = [
      Competitor(url=serp.url, title=serp.title, word_count=estimates[index] if index < len(estimates) else None)
      for index, serp in enumerate(data.serp_results[:10])
    ]
    output = {
      "keyword": keyword,
      "keyword_data": KeywordData(search_volume=data.search_volume, difficulty=data.difficulty, intent=data.intent, cpc=data.cpc),
      "competitors": competitors,
      "related_keywords": [*data.related_keywords[:10], *data.keyword_suggestions[:5]],
      "paa_questions": data.paa_questions[:10],
      "recommended_word_count": recommended,
      "content_gaps": identify_content_gaps(data.paa_questions),
    }

    result = self._validate_output(output, context)
    if result.success and result.output is not None:
      context.log("info", f"Research complete. Recommended word count: {recommended}")
      context.on_progress(f"Research complete. Found {len(competitors)} competitors, {len(result.output.related_keywords)} related keywords.")
    return result
