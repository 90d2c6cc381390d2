"""Orchestrators that sequence providers, normalization and persistence"""

from orchestrators.edit import EditOrchestrator
from orchestrators.generation import GenerationOrchestrator, validate_prompt
from orchestrators.models_listing import ModelsListing

__all__ = [
    "EditOrchestrator",
    "GenerationOrchestrator",
    "ModelsListing",
    "validate_prompt",
]
