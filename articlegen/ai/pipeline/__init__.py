"""Pipeline contracts shared by agents and the orchestrator."""

from articlegen.ai.pipeline.contracts import JobSettings, ProjectManagerInput, ProjectManagerOutput, QAInput, QAOutput, ResearchInput, ResearchOutput, SEOInput, SEOOutput, WriterInput, WriterOutput

__all__ = ["JobSettings", "ProjectManagerInput", "ProjectManagerOutput", "QAInput", "QAOutput", "ResearchInput", "ResearchOutput", "SEOInput", "SEOOutput", "WriterInput", "WriterOutput"]
