"""
Hydration: generation tokens and the ordered workspace load pipeline.
"""

from .generations import GenerationToken, GenerationTracker
from .pipeline import HydrationPipeline, HydrationResult, HydrationStatus, HydrationStep

__all__ = [
    "GenerationToken",
    "GenerationTracker",
    "HydrationPipeline",
    "HydrationResult",
    "HydrationStatus",
    "HydrationStep",
]
