from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from articlegen.core.database import Base

# Portable JSON column that uses JSONB on Postgres.
JsonColumn = JSON().with_variant(JSONB(), "postgresql")
_UTC_NOW = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class ArticleJob(Base):
  __tablename__ = "ai_article_jobs"
  __table_args__ = (Index("ix_ai_article_jobs_status_created", "status", "created_at"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  keyword: Mapped[str] = mapped_column(Text, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  settings: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
  max_iterations: Mapped[int | None] = mapped_column(Integer, nullable=True)
  current_iteration: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  current_agent: Mapped[str | None] = mapped_column(String, nullable=True)
  progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  total_tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  final_output: Mapped[dict[str, Any] | None] = mapped_column(JsonColumn, nullable=True)
  page_id: Mapped[str | None] = mapped_column(String, nullable=True)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
  started_at: Mapped[str | None] = mapped_column(String, nullable=True)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)


class ArticleJobStep(Base):
  __tablename__ = "ai_article_job_steps"
  __table_args__ = (Index("ix_ai_article_job_steps_job_created", "job_id", "created_at"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("ai_article_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
  agent_type: Mapped[str] = mapped_column(String, nullable=False)
  persona_id: Mapped[str | None] = mapped_column(String, nullable=True)
  iteration: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  status: Mapped[str] = mapped_column(String, nullable=False)
  input: Mapped[Any] = mapped_column(JsonColumn, nullable=True)
  output: Mapped[Any] = mapped_column(JsonColumn, nullable=True)
  tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  logs: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, nullable=False, default=list)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_detail: Mapped[Any] = mapped_column(JsonColumn, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
  started_at: Mapped[str | None] = mapped_column(String, nullable=True)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)
  duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Persona(Base):
  __tablename__ = "ai_personas"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  agent_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  model: Mapped[str] = mapped_column(String, nullable=False)
  system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
  temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
  max_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
  is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Page(Base):
  __tablename__ = "pages"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  title: Mapped[str] = mapped_column(Text, nullable=False)
  slug: Mapped[str] = mapped_column(String, nullable=False, index=True)
  full_path: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
  parent_id: Mapped[str | None] = mapped_column(ForeignKey("pages.id", ondelete="SET NULL"), nullable=True)
  content: Mapped[str | None] = mapped_column(Text, nullable=True)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  template: Mapped[str] = mapped_column(String, nullable=False, default="article")
  status: Mapped[str] = mapped_column(String, nullable=False, index=True, default="draft")
  meta_title: Mapped[str | None] = mapped_column(String, nullable=True)
  meta_description: Mapped[str | None] = mapped_column(Text, nullable=True)
  focus_keyword: Mapped[str | None] = mapped_column(String, nullable=True)
  metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JsonColumn, nullable=True)
  deleted_at: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
