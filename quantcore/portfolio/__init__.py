"""Portfolio analytics orchestration."""

from .service import AnalysisOrchestrator


__all__ = ["AnalysisOrchestrator"]
