"""
Causal Inference

Per-patient causal reasoning for treatment decisions.

Components:
- CausalGraphModel: DAG of patient variables with the do-operator
- BayesianNetwork: Conjugate belief updating with uncertainty measures
- PersonalizedCausalModel: Patient-specific structure learning
- CounterfactualEngine: What-if treatment scenarios
- TreatmentPathwayOptimizer: Multi-objective treatment pathway search
"""

# Observations
from .observations import Observation

# Causal graph components
from .causal_graph import (
    NodeType,
    EdgeType,
    EffectType,
    CausalNode,
    CausalEdge,
    CausalGraph,
    CausalEffect,
    MediationEffects,
    CausalGraphModel,
    create_default_clinical_graph,
)

# Bayesian network
from .bayesian_network import (
    BetaDistribution,
    NormalDistribution,
    ConditionalProbabilityTable,
    UncertaintyLevel,
    UncertaintyMeasure,
    InferenceResult,
    PredictionWithUncertainty,
    BayesianNetwork,
)

# Structure learning
from .structure_learning import (
    RelationshipDirection,
    CausalModelType,
    StructureLearnerConfig,
    CausalRelationship,
    TreatmentPrediction,
    ModelPerformance,
    CausalModel,
    PersonalizedCausalModel,
)

# Counterfactual reasoning
from .counterfactuals import (
    CounterfactualConfig,
    Scenario,
    ScenarioOutcome,
    CausalContrast,
    WhatIfAnalysis,
    CounterfactualReport,
    CounterfactualEngine,
)

# Pathway optimization
from .pathway_optimizer import (
    TreatmentType,
    OptimizationCriterion,
    Treatment,
    Demographics,
    PatientProfile,
    TreatmentConstraints,
    TreatmentPathway,
    PathwayOptimizationResult,
    PathwayOptimizerConfig,
    TreatmentPathwayOptimizer,
)

__all__ = [
    # Enums
    "NodeType",
    "EdgeType",
    "EffectType",
    "UncertaintyLevel",
    "RelationshipDirection",
    "CausalModelType",
    "TreatmentType",
    "OptimizationCriterion",
    # Data classes
    "Observation",
    "CausalNode",
    "CausalEdge",
    "CausalGraph",
    "CausalEffect",
    "MediationEffects",
    "BetaDistribution",
    "NormalDistribution",
    "ConditionalProbabilityTable",
    "UncertaintyMeasure",
    "InferenceResult",
    "PredictionWithUncertainty",
    "CausalRelationship",
    "TreatmentPrediction",
    "ModelPerformance",
    "CausalModel",
    "Scenario",
    "ScenarioOutcome",
    "CausalContrast",
    "WhatIfAnalysis",
    "CounterfactualReport",
    "Treatment",
    "Demographics",
    "PatientProfile",
    "TreatmentConstraints",
    "TreatmentPathway",
    "PathwayOptimizationResult",
    # Configs
    "StructureLearnerConfig",
    "CounterfactualConfig",
    "PathwayOptimizerConfig",
    # Models and engines
    "CausalGraphModel",
    "BayesianNetwork",
    "PersonalizedCausalModel",
    "CounterfactualEngine",
    "TreatmentPathwayOptimizer",
    # Factory functions
    "create_default_clinical_graph",
]
