"""
Causal Treatment Engine

Causal inference and treatment optimization for personalized medicine:
per-patient causal models, do-operator effect estimates, counterfactual
what-if scenarios and multi-objective treatment pathway search.
"""

__version__ = "0.1.0"

from .config import EngineConfig
from .pipelines import CausalAnalysisService, ModelKind, ModelRegistry

__all__ = [
    "CausalAnalysisService",
    "EngineConfig",
    "ModelKind",
    "ModelRegistry",
    "__version__",
]
