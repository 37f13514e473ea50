"""Schema package exports."""

from .jobs import ArticleJob, ArticleJobStep, Page, Persona

__all__ = ["ArticleJob", "ArticleJobStep", "Page", "Persona"]
