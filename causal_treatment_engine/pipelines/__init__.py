"""
Service layer for per-patient causal analysis.

This module ties the inference components together behind a single
service with a per-patient model cache:

- CausalAnalysisService: Effect analysis, counterfactuals, pathway
  optimization, personalized models and Bayesian inference
- ModelRegistry: Thread-safe cache keyed by (patient, model kind)

Example Usage:
    from causal_treatment_engine.pipelines import (
        CausalAnalysisService,
        CounterfactualRequest,
    )

    with CausalAnalysisService(history_provider=load_history) as service:
        future = service.submit_counterfactuals(request)
        print(future.result().to_dict())
"""

from .model_registry import ModelKind, ModelRegistry, RegistryEntry
from .causal_analysis import (
    # Requests
    CausalAnalysisRequest,
    CounterfactualRequest,
    TreatmentOptimizationRequest,
    PersonalizedModelRequest,
    BayesianInferenceRequest,
    # Results
    ConfidenceInterval,
    RiskFactor,
    RiskAssessment,
    AnalysisMetadata,
    CausalAnalysisResponse,
    CounterfactualResponse,
    ExpectedOutcomes,
    RiskBenefitAnalysis,
    OptimizationMetadata,
    TreatmentOptimizationResponse,
    ModelMetadata,
    PersonalizedModelResponse,
    BayesianInferenceResponse,
    # Service
    CausalAnalysisService,
    run_causal_analysis,
)

__all__ = [
    # Registry
    "ModelKind",
    "ModelRegistry",
    "RegistryEntry",
    # Requests
    "CausalAnalysisRequest",
    "CounterfactualRequest",
    "TreatmentOptimizationRequest",
    "PersonalizedModelRequest",
    "BayesianInferenceRequest",
    # Results
    "ConfidenceInterval",
    "RiskFactor",
    "RiskAssessment",
    "AnalysisMetadata",
    "CausalAnalysisResponse",
    "CounterfactualResponse",
    "ExpectedOutcomes",
    "RiskBenefitAnalysis",
    "OptimizationMetadata",
    "TreatmentOptimizationResponse",
    "ModelMetadata",
    "PersonalizedModelResponse",
    "BayesianInferenceResponse",
    # Service
    "CausalAnalysisService",
    "run_causal_analysis",
]
