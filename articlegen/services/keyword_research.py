"""DataForSEO Labs client used by the Research agent."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Final, Protocol

import httpx

from articlegen.ai.errors import ResearchServiceError

logger = logging.getLogger(__name__)

DATAFORSEO_BASE_URL: Final[str] = "https://api.dataforseo.com"
DATAFORSEO_SUCCESS: Final[int] = 20000

ENDPOINT_KEYWORD_OVERVIEW: Final[str] = "/v3/dataforseo_labs/google/keyword_overview/live"
ENDPOINT_SERP: Final[str] = "/v3/serp/google/organic/live/advanced"
ENDPOINT_RELATED_KEYWORDS: Final[str] = "/v3/dataforseo_labs/google/related_keywords/live"
ENDPOINT_KEYWORD_SUGGESTIONS: Final[str] = "/v3/dataforseo_labs/google/keyword_suggestions/live"


@dataclass(frozen=True)
class SerpResult:
  rank: int | None
  url: str
  title: str
  description: str
  domain: str | None = None


@dataclass
class KeywordResearchData:
  """Combined keyword research payload for one keyword."""

  keyword: str
  search_volume: int | None = None
  difficulty: float | None = None
  cpc: float | None = None
  intent: str | None = None
  competition: float | None = None
  serp_results: list[SerpResult] = field(default_factory=list)
  paa_questions: list[str] = field(default_factory=list)
  related_keywords: list[str] = field(default_factory=list)
  keyword_suggestions: list[str] = field(default_factory=list)
  total_cost: float = 0.0


class KeywordResearchService(Protocol):
  """Contract for anything that can research a keyword."""

  async def perform_research(self, keyword: str, *, serp_depth: int = 10, related_limit: int = 15, suggestions_limit: int = 15) -> KeywordResearchData:
    """Return combined keyword data, SERP results, and related terms."""


class DataForSeoLabsClient:
  """Thin async wrapper over the DataForSEO Labs and SERP endpoints."""

  def __init__(self, *, api_key: str | None, location_code: int = 2840, language_code: str = "en", timeout_seconds: float = 60.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    if not api_key:
      raise ValueError("ARTICLEGEN_DATAFORSEO_API_KEY is required for keyword research")
    self._headers = {"Authorization": f"Basic {api_key}", "Content-Type": "application/json"}
    self._location_code = location_code
    self._language_code = language_code
    self._timeout = timeout_seconds
    self._transport = transport

  async def _post(self, client: httpx.AsyncClient, endpoint: str, body: list[dict[str, Any]]) -> dict[str, Any]:
    try:
      response = await client.post(endpoint, json=body)
      response.raise_for_status()
    except httpx.HTTPStatusError as e:
      logger.error("DataForSEO returned %s for %s: %s", e.response.status_code, endpoint, e.response.text[:500])
      raise ResearchServiceError(f"HTTP {e.response.status_code}: {e.response.reason_phrase}", e.response.status_code) from e

    data = response.json()
    status_code = data.get("status_code")
    if status_code != DATAFORSEO_SUCCESS:
      raise ResearchServiceError(f"DataForSEO request failed: {data.get('status_message')}", status_code)
    return data

  @staticmethod
  def _first_result(data: dict[str, Any]) -> dict[str, Any]:
    tasks = data.get("tasks") or []
    results = (tasks[0].get("result") if tasks else None) or []
    return results[0] if results else {}

  @staticmethod
  def _keywords_from_items(items: list[dict[str, Any]]) -> list[str]:
    keywords: list[str] = []
    for item in items:
      keyword = (item.get("keyword_data") or {}).get("keyword") or item.get("keyword")
      if keyword:
        keywords.append(keyword)
    return keywords

  async def perform_research(self, keyword: str, *, serp_depth: int = 10, related_limit: int = 15, suggestions_limit: int = 15) -> KeywordResearchData:
    """Call overview, SERP, related and suggestion endpoints sequentially and combine them."""
    locale = {"location_code": self._location_code, "language_code": self._language_code}
    research = KeywordResearchData(keyword=keyword)
    logger.info("Starting keyword research for %r", keyword)

    async with httpx.AsyncClient(base_url=DATAFORSEO_BASE_URL, headers=self._headers, timeout=self._timeout, transport=self._transport) as client:
      overview = await self._post(client, ENDPOINT_KEYWORD_OVERVIEW, [{"keywords": [keyword], **locale}])
      research.total_cost += float(overview.get("cost") or 0)
      items = self._first_result(overview).get("items") or []
      if items:
        info = items[0].get("keyword_info") or {}
        research.search_volume = info.get("search_volume")
        research.cpc = info.get("cpc")
        research.competition = info.get("competition")
        research.difficulty = (items[0].get("keyword_properties") or {}).get("keyword_difficulty")
        research.intent = (items[0].get("search_intent_info") or {}).get("main_intent")

      serp = await self._post(client, ENDPOINT_SERP, [{"keyword": keyword, "depth": serp_depth, **locale}])
      research.total_cost += float(serp.get("cost") or 0)
      for item in self._first_result(serp).get("items") or []:
        if item.get("type") == "organic" and len(research.serp_results) < serp_depth:
          research.serp_results.append(SerpResult(rank=item.get("rank_group"), url=item.get("url") or "", title=item.get("title") or "", description=item.get("description") or "", domain=item.get("domain")))
        elif item.get("type") == "people_also_ask":
          research.paa_questions.extend(q["title"] for q in item.get("items") or [] if q.get("title"))

      related = await self._post(client, ENDPOINT_RELATED_KEYWORDS, [{"keyword": keyword, "limit": related_limit, **locale}])
      research.total_cost += float(related.get("cost") or 0)
      research.related_keywords = self._keywords_from_items(self._first_result(related).get("items") or [])

      suggestions = await self._post(client, ENDPOINT_KEYWORD_SUGGESTIONS, [{"keyword": keyword, "limit": suggestions_limit, **locale}])
      research.total_cost += float(suggestions.get("cost") or 0)
      research.keyword_suggestions = self._keywords_from_items(self._first_result(suggestions).get("items") or [])

    logger.info("Keyword research complete for %r. Total cost: $%.4f", keyword, research.total_cost)
    return research
