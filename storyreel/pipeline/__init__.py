"""
Generation Pipeline

  Story — character template → scene script → per-scene image → per-scene video
  Short — script → image prompts → images → narration → captions → compose
"""

from .orchestrator import GenerationService
from .models import JobKind, JobStatus, PipelineJob, StageStatus

__all__ = [
    "GenerationService",
    "JobKind",
    "JobStatus",
    "PipelineJob",
    "StageStatus",
]
