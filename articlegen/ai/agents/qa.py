"""QA agent implementation.

The model scores subjective dimensions; everything else is deterministic:
prohibited-pattern detection, issue ids, fixed/persisting tracking, the
adjusted overall score, and the pass decision.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

from articlegen.ai.agents.base import AgentContext, AgentResult, BaseAgent, camelize_keys
from articlegen.ai.agents.prompts import TARGET_READING_LEVEL, load_system_prompt, render_qa_prompt
from articlegen.ai.pipeline.contracts import MIN_PASSING_SCORE, QAInput, QAIssue, QAOutput
from articlegen.ai.utils.text_metrics import EM_DASH, EMOJI_RE, extract_headings, flesch_kincaid_grade, get_paragraphs, get_sentences, get_words
from articlegen.jobs.models import AgentType

DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 4000

DIMENSION_WEIGHTS: dict[str, float] = {"readability": 0.25, "seo": 0.20, "accuracy": 0.20, "engagement": 0.20, "brand_voice": 0.15}
CRITICAL_PENALTY, CRITICAL_PENALTY_CAP = 15, 45
HIGH_PENALTY, HIGH_PENALTY_CAP = 5, 20
READING_LEVEL_TOLERANCE = 3

SENSATIONAL_WORDS: tuple[str, ...] = (
  "amazing",
  "incredible",
  "unbelievable",
  "shocking",
  "mind-blowing",
  "jaw-dropping",
  "game-changing",
  "revolutionary",
  "unprecedented",
  "you won't believe",
  "secret",
  "hack",
  "insane",
  "crazy",
)


def generate_issue_id(category: str, description: str) -> str:
  """Derive a short id that stays stable across iterations for the same issue."""
  digest = hashlib.sha1(f"{category.lower().strip()}:{description.lower().strip()}".encode()).hexdigest()[:8]
  slug = re.sub(r"[^a-z0-9]", "-", category.lower())[:20]
  return f"{slug}-{digest}"


def detect_prohibited_patterns(content: str, reading_level: float) -> list[QAIssue]:
  issues: list[QAIssue] = []
  emoji_count = len(EMOJI_RE.findall(content))
  if emoji_count:
    issues.append(QAIssue(category="brandVoice", severity="critical", description=f"Found {emoji_count} emoji(s) in content", suggestion="Remove all emojis from the content"))

  dash_count = content.count(EM_DASH)
  if dash_count:
    issues.append(QAIssue(category="brandVoice", severity="high", description=f"Found {dash_count} emdash(es) in content", suggestion="Replace emdashes with regular dashes (-) or commas"))

  lowered = content.lower()
  for word in SENSATIONAL_WORDS:
    if word in lowered:
      issues.append(QAIssue(category="brandVoice", severity="medium", description=f'Sensational word detected: "{word}"', suggestion=f'Remove or replace "{word}" with more measured language'))

  if reading_level > TARGET_READING_LEVEL + 2:
    issues.append(
      QAIssue(
        category="readability",
        severity="medium",
        description=f"Reading level ({reading_level:.1f}) exceeds target ({TARGET_READING_LEVEL})",
        suggestion="Simplify vocabulary and shorten sentences to lower reading level",
      )
    )
  return issues


def deduplicate_issues(issues: Iterable[QAIssue]) -> list[QAIssue]:
  """Keep the first issue per category and description prefix."""
  seen: set[str] = set()
  unique: list[QAIssue] = []
  for issue in issues:
    key = f"{issue.category}:{issue.description[:50]}"
    if key in seen:
      continue
    seen.add(key)
    unique.append(issue)
  return unique


def assign_issue_ids(issues: Iterable[QAIssue]) -> list[QAIssue]:
  return [issue if issue.issue_id else issue.model_copy(update={"issue_id": generate_issue_id(issue.category, issue.description)}) for issue in issues]


def adjusted_score(output: QAOutput, reading_level: float) -> int:
  """Weighted dimension average minus severity and reading-level penalties, clamped to 0..100."""
  scores = output.dimension_scores
  score = sum(getattr(scores, dimension) * weight for dimension, weight in DIMENSION_WEIGHTS.items())
  critical = sum(1 for issue in output.issues if issue.severity == "critical")
  high = sum(1 for issue in output.issues if issue.severity == "high")
  score -= min(critical * CRITICAL_PENALTY, CRITICAL_PENALTY_CAP)
  score -= min(high * HIGH_PENALTY, HIGH_PENALTY_CAP)
  level_diff = abs(reading_level - TARGET_READING_LEVEL)
  if level_diff > READING_LEVEL_TOLERANCE:
    score -= (level_diff - READING_LEVEL_TOLERANCE) * 2
  return max(0, min(100, round(score)))


def failure_reasons(score: int, issues: list[QAIssue]) -> list[str]:
  critical = sum(1 for issue in issues if issue.severity == "critical")
  high = sum(1 for issue in issues if issue.severity == "high")
  reasons: list[str] = []
  if score < MIN_PASSING_SCORE:
    reasons.append(f"score below {MIN_PASSING_SCORE}")
  if critical:
    reasons.append(f"{critical} critical issue(s)")
  if high:
    reasons.append(f"{high} high severity issue(s)")
  return reasons


def _fallback_feedback(issues: list[QAIssue]) -> str:
  return "\n".join(f"- [{issue.severity.upper()}] {issue.description}: {issue.suggestion}" for issue in issues)


class QAAgent(BaseAgent[QAInput, QAOutput]):
  """Score the draft and decide whether it needs another revision."""

  agent_type = AgentType.QA
  name = "QA Agent"
  description = "Performs quality assurance and provides feedback for content revision"
  input_model = QAInput
  output_model = QAOutput

  async def run(self, input_data: QAInput, context: AgentContext) -> AgentResult[QAOutput]:
    provider = context.require_provider()
    persona = context.persona
    article = input_data.article
    context.log("info", f'Starting QA Agent for keyword: "{input_data.keyword}" (iteration {input_data.iteration})')

    # Compute deterministic metrics before asking the model.
    context.on_progress("Analyzing content metrics...")
    content = article.content
    reading_level = flesch_kincaid_grade(content)
    words = get_words(content)
    sentences = get_sentences(content)
    avg_sentence_length = len(words) / len(sentences) if sentences else 0.0
    pre_detected = detect_prohibited_patterns(content, reading_level)
    context.log("info", f"Reading level: {reading_level:.1f} | Word count: {article.word_count}")
    for issue in pre_detected:
      context.log("warn", f"Prohibited pattern: {issue.description}")

    context.on_progress("Assessing content quality...")
    prompt = render_qa_prompt(
      keyword=input_data.keyword,
      article=article,
      iteration=input_data.iteration,
      reading_level=reading_level,
      heading_count=len(extract_headings(content)),
      paragraph_count=len(get_paragraphs(content)),
      avg_sentence_length=avg_sentence_length,
      pre_detected=[(issue.severity, issue.description) for issue in pre_detected],
      seo=input_data.seo_data,
    )
    response = await provider.generate_json(
      prompt=prompt,
      system_prompt=persona.system_prompt or load_system_prompt("qa_system"),
      model=persona.model,
      schema=self.output_schema(),
      temperature=persona.temperature if persona.temperature is not None else DEFAULT_TEMPERATURE,
      max_tokens=persona.max_tokens or DEFAULT_MAX_TOKENS,
    )

    # Pass/fail and the overall score are recomputed below, so the model may omit them.
    raw = camelize_keys(response.data)
    raw.setdefault("passed", False)
    raw.setdefault("overallScore", 0)
    validated = self._validate_output(raw, context, response.usage, response.estimated_cost_usd)
    if not validated.success or validated.output is None:
      return validated

    review = validated.output
    issues = assign_issue_ids(deduplicate_issues([*pre_detected, *review.issues]))
    current_ids = {issue.issue_id for issue in issues}
    previous_ids = [issue.issue_id or generate_issue_id(issue.category, issue.description) for issue in input_data.previous_issues]
    fixed = [issue_id for issue_id in previous_ids if issue_id not in current_ids]
    persisting = [issue_id for issue_id in previous_ids if issue_id in current_ids]
    if previous_ids:
      context.log("info", f"Issue tracking: {len(fixed)} fixed, {len(persisting)} persisting")

    review = review.model_copy(update={"issues": issues, "fixed_issue_ids": fixed, "persisting_issue_ids": persisting})
    score = adjusted_score(review, reading_level)
    reasons = failure_reasons(score, issues)
    passed = not reasons
    feedback = review.feedback or ("" if passed else _fallback_feedback(issues))
    review = review.model_copy(update={"overall_score": score, "passed": passed, "feedback": feedback})

    critical = sum(1 for issue in issues if issue.severity == "critical")
    high = sum(1 for issue in issues if issue.severity == "high")
    context.log("info", f"Overall score: {score}/100 | Passed: {passed}")
    context.log("info", f"Issues found: {len(issues)} ({critical} critical, {high} high)")

    if passed:
      context.on_progress(f"QA PASSED with score {score}/100.")
      return self._success(review, response.usage, estimated_cost_usd=response.estimated_cost_usd)

    context.log("warn", f"QA FAILED: {', '.join(reasons)}")
    context.on_progress(f"QA FAILED: {', '.join(reasons)}. Revision needed.")
    result = self._success(review, response.usage, continue_to_next=False, estimated_cost_usd=response.estimated_cost_usd)
    result.feedback = feedback
    return result
