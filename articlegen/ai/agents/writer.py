"""Writer agent implementation."""

from __future__ import annotations

from articlegen.ai.agents.base import AgentContext, AgentResult, BaseAgent
from articlegen.ai.agents.prompts import load_system_prompt, render_writer_prompt
from articlegen.ai.pipeline.contracts import WriterInput, WriterOutput
from articlegen.jobs.models import AgentType

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 8000


class WriterAgent(BaseAgent[WriterInput, WriterOutput]):
  """Draft the article, or revise the previous draft using QA feedback."""

  agent_type = AgentType.WRITER
  name = "Writer Agent"
  description = "Generates SEO-optimized article content from research data"
  input_model = WriterInput
  output_model = WriterOutput

  async def run(self, input_data: WriterInput, context: AgentContext) -> AgentResult[WriterOutput]:
    provider = context.require_provider()
    persona = context.persona
    revision = input_data.is_revision
    mode = "revision" if revision else "generation"

    context.log("info", f'Starting Writer Agent for keyword: "{input_data.keyword}" (iteration {input_data.iteration}, {mode})')
    context.on_progress("Preparing revision based on QA feedback..." if revision else "Analyzing research data and preparing prompt...")
    prompt = render_writer_prompt(input_data)

    context.log("debug", f"Requesting article {mode} from LLM (model: {persona.model})")
    context.on_progress("Revising article..." if revision else "Generating article content...")
    response = await provider.generate_json(
      prompt=prompt,
      system_prompt=persona.system_prompt or load_system_prompt("writer_system"),
      model=persona.model,
      schema=self.output_schema(),
      temperature=persona.temperature if persona.temperature is not None else DEFAULT_TEMPERATURE,
      max_tokens=persona.max_tokens or DEFAULT_MAX_TOKENS,
    )
    context.log("debug", f"Token usage: {response.usage.total_tokens} total | Cost: ${response.estimated_cost_usd:.4f}")

    result = self._validate_output(response.data, context, response.usage, response.estimated_cost_usd)
    if result.success and result.output is not None:
      article = result.output
      context.log("info", f'Title: "{article.title}" | Word count: {article.word_count}')
      context.on_progress(f'Article generated: "{article.title}" ({article.word_count} words)')
    return result
