"""Pipeline orchestration components for the VintageVision analysis pipeline."""

from src.pipeline.confidence_tracker import ConfidenceTracker, DiminishingReturnsPolicy
from src.pipeline.consensus import ConsensusPolicy
from src.pipeline.orchestrator import AnalysisPipeline
from src.pipeline.progress_tracker import ProgressTracker
from src.pipeline.retry import RetryPolicy

__all__ = [
    "AnalysisPipeline",
    "ConfidenceTracker",
    "ConsensusPolicy",
    "DiminishingReturnsPolicy",
    "ProgressTracker",
    "RetryPolicy",
]
