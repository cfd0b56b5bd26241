"""
Causal Analysis Service

Orchestrates the causal inference components for individual patients.

This service provides:
- Treatment effect analysis (do-operator) on a learned or default causal graph
- Counterfactual "what-if" scenario generation
- Treatment pathway optimization
- Personalized causal model construction
- Bayesian inference with uncertainty quantification

Models are built lazily per patient and cached in a ModelRegistry. Every
operation can be run synchronously or submitted to a thread pool.

Example Usage:
    from causal_treatment_engine.pipelines import CausalAnalysisService, CausalAnalysisRequest

    service = CausalAnalysisService(history_provider=load_history)
    response = service.perform_causal_analysis(
        CausalAnalysisRequest(
            patient_id="PATIENT_001",
            treatment_variables=["treatment_dosage"],
            outcome_variables=["efficacy"],
        )
    )
    print(response.summary)
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..config import EngineConfig
from ..inference.bayesian_network import (
    BayesianNetwork,
    ConditionalProbabilityTable,
    InferenceResult,
    PredictionWithUncertainty,
)
from ..inference.causal_graph import (
    CausalEffect,
    CausalGraph,
    CausalGraphModel,
    EffectType,
    create_default_clinical_graph,
)
from ..inference.counterfactuals import CounterfactualEngine, CounterfactualReport, Scenario
from ..inference.observations import (
    Observation,
    collect_variables,
    history_fingerprint,
    paired_values,
)
from ..inference.pathway_optimizer import (
    OptimizationCriterion,
    PatientProfile,
    Treatment,
    TreatmentConstraints,
    TreatmentPathway,
    TreatmentPathwayOptimizer,
)
from ..inference.structure_learning import (
    CausalModel,
    CausalModelType,
    ModelPerformance,
    PersonalizedCausalModel,
    pearson,
)
from .model_registry import ModelKind, ModelRegistry

logger = logging.getLogger(__name__)

HistoryProvider = Callable[[str], List[Observation]]

# (cause substring, effect substring) pairs considered plausibly causal
DOMAIN_CAUSAL_PAIRS = [
    ("treatment", "outcome"),
    ("dosage", "efficacy"),
    ("dosage", "side_effects"),
    ("age", "response"),
    ("comorbidities", "response"),
    ("adherence", "outcome"),
    ("lifestyle", "outcome"),
]

ANALYSIS_ASSUMPTIONS = [
    "Stable causal relationships over time",
    "No unmeasured confounding",
    "Sufficient data for reliable estimates",
]

OPTIMIZATION_ASSUMPTIONS = [
    "Causal relationships remain stable",
    "Patient adherence to treatment plan",
    "No unexpected adverse events",
]


def _no_history(patient_id: str) -> List[Observation]:
    return []


def _observations(items: Optional[Sequence[Any]]) -> Optional[List[Observation]]:
    if items is None:
        return None
    return [o if isinstance(o, Observation) else Observation.from_dict(o) for o in items]


# =============================================================================
# Requests
# =============================================================================

@dataclass
class CausalAnalysisRequest:
    """Treatment effect analysis request."""
    patient_id: str
    treatment_variables: List[str]
    outcome_variables: List[str]
    confounding_variables: List[str] = field(default_factory=list)
    historical_data: Optional[List[Observation]] = None

    def __post_init__(self):
        if not self.patient_id:
            raise ValueError("patient_id cannot be empty")
        if not self.treatment_variables or not self.outcome_variables:
            raise ValueError("treatment_variables and outcome_variables cannot be empty")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> CausalAnalysisRequest:
        """Create request from dictionary."""
        return cls(
            patient_id=d.get("patient_id", ""),
            treatment_variables=list(d.get("treatment_variables", [])),
            outcome_variables=list(d.get("outcome_variables", [])),
            confounding_variables=list(d.get("confounding_variables", [])),
            historical_data=_observations(d.get("historical_data")),
        )


@dataclass
class CounterfactualRequest:
    """Counterfactual scenario request."""
    patient_id: str
    factual_scenario: Scenario
    counterfactual_scenarios: List[Scenario]
    intervention_variables: Optional[List[str]] = None
    outcome_variables: Optional[List[str]] = None

    def __post_init__(self):
        if not self.patient_id:
            raise ValueError("patient_id cannot be empty")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> CounterfactualRequest:
        """Create request from dictionary."""
        return cls(
            patient_id=d.get("patient_id", ""),
            factual_scenario=Scenario.from_dict(d.get("factual_scenario", {})),
            counterfactual_scenarios=[
                Scenario.from_dict(s) for s in d.get("counterfactual_scenarios", [])
            ],
            intervention_variables=d.get("intervention_variables"),
            outcome_variables=d.get("outcome_variables"),
        )


@dataclass
class TreatmentOptimizationRequest:
    """Treatment pathway optimization request."""
    patient_id: str
    available_treatments: List[Treatment]
    patient_profile: PatientProfile
    constraints: Optional[TreatmentConstraints] = None
    optimization_criteria: List[OptimizationCriterion] = field(default_factory=lambda: [
        OptimizationCriterion.EFFICACY,
        OptimizationCriterion.SAFETY,
        OptimizationCriterion.COST,
    ])
    time_horizon: int = 30  # days

    def __post_init__(self):
        if not self.patient_id:
            raise ValueError("patient_id cannot be empty")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> TreatmentOptimizationRequest:
        """Create request from dictionary."""
        criteria = d.get("optimization_criteria")
        constraints = d.get("constraints")
        request = cls(
            patient_id=d.get("patient_id", ""),
            available_treatments=[Treatment.from_dict(t) for t in d.get("available_treatments", [])],
            patient_profile=PatientProfile.from_dict(d["patient_profile"]),
            constraints=TreatmentConstraints.from_dict(constraints) if constraints else None,
            time_horizon=int(d.get("time_horizon", 30)),
        )
        if criteria:
            request.optimization_criteria = [OptimizationCriterion(str(c).lower()) for c in criteria]
        return request


@dataclass
class PersonalizedModelRequest:
    """Personalized causal model request."""
    patient_id: str
    patient_data: List[Observation]
    model_type: CausalModelType = CausalModelType.BAYESIAN_NETWORK
    available_treatments: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.patient_id:
            raise ValueError("patient_id cannot be empty")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> PersonalizedModelRequest:
        """Create request from dictionary."""
        return cls(
            patient_id=d.get("patient_id", ""),
            patient_data=_observations(d.get("patient_data", [])),
            model_type=CausalModelType(str(d.get("model_type", "bayesian_network")).lower()),
            available_treatments=list(d.get("available_treatments", [])),
        )


@dataclass
class BayesianInferenceRequest:
    """Bayesian inference request."""
    patient_id: str
    evidence: Dict[str, Any]
    query_variables: List[str]
    variables: Optional[List[str]] = None
    structure: Optional[Dict[str, List[str]]] = None
    conditional_probabilities: Optional[Dict[str, ConditionalProbabilityTable]] = None
    historical_data: Optional[List[Observation]] = None

    def __post_init__(self):
        if not self.patient_id:
            raise ValueError("patient_id cannot be empty")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> BayesianInferenceRequest:
        """Create request from dictionary."""
        cpts = d.get("conditional_probabilities")
        return cls(
            patient_id=d.get("patient_id", ""),
            evidence=dict(d.get("evidence", {})),
            query_variables=list(d.get("query_variables", [])),
            variables=d.get("variables"),
            structure=d.get("structure"),
            conditional_probabilities={
                name: ConditionalProbabilityTable.from_dict({"variable": name, **table})
                for name, table in cpts.items()
            } if cpts else None,
            historical_data=_observations(d.get("historical_data")),
        )


# =============================================================================
# Result Dataclasses
# =============================================================================

@dataclass
class ConfidenceInterval:
    """Confidence interval of an estimate."""
    lower: float
    upper: float
    confidence_level: float = 0.95

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "lower": self.lower,
            "upper": self.upper,
            "confidence_level": self.confidence_level,
        }


@dataclass
class RiskFactor:
    """A negative treatment effect flagged as a risk."""
    factor: str
    impact: float
    probability: float
    description: str

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "factor": self.factor,
            "impact": self.impact,
            "probability": self.probability,
            "description": self.description,
        }


@dataclass
class RiskAssessment:
    """Overall risk derived from estimated effects."""
    overall_risk: float
    risk_factors: List[RiskFactor]
    mitigation_strategies: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "overall_risk": self.overall_risk,
            "risk_factors": [r.to_dict() for r in self.risk_factors],
            "mitigation_strategies": self.mitigation_strategies,
        }


@dataclass
class AnalysisMetadata:
    """Provenance of an analysis."""
    model_version: str
    data_quality_score: float
    assumptions: List[str]
    analysis_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "analysis_id": self.analysis_id,
            "timestamp": self.timestamp,
            "model_version": self.model_version,
            "data_quality_score": self.data_quality_score,
            "assumptions": self.assumptions,
        }


@dataclass
class CausalAnalysisResponse:
    """Results of a treatment effect analysis."""
    patient_id: str
    causal_effects: List[CausalEffect]
    confidence_intervals: Dict[str, ConfidenceInterval]
    causal_graph: CausalGraph
    recommendations: List[str]
    risk_assessment: RiskAssessment
    metadata: AnalysisMetadata

    @property
    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            "=" * 70,
            "CAUSAL ANALYSIS RESULTS",
            "=" * 70,
            f"Patient ID: {self.patient_id}",
            f"Timestamp: {self.metadata.timestamp}",
            f"Data quality: {self.metadata.data_quality_score:.2f}",
            "",
            "CAUSAL GRAPH:",
            f"  Nodes: {len(self.causal_graph.nodes)}",
            f"  Edges: {len(self.causal_graph.edges)}",
            "",
            "CAUSAL EFFECTS:",
        ]
        for effect in self.causal_effects:
            interval = self.confidence_intervals.get(f"{effect.treatment}_{effect.outcome}")
            ci = f" [{interval.lower:.3f}, {interval.upper:.3f}]" if interval else ""
            lines.append(
                f"  - {effect.treatment} -> {effect.outcome}: "
                f"{effect.effect_size:.3f}{ci} (p={effect.p_value})"
            )

        lines.extend([
            "",
            f"OVERALL RISK: {self.risk_assessment.overall_risk:.3f}",
            "",
            "RECOMMENDATIONS:",
        ])
        for recommendation in self.recommendations:
            lines.append(f"  - {recommendation}")

        lines.extend(["", "=" * 70])
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "patient_id": self.patient_id,
            "causal_effects": [e.to_dict() for e in self.causal_effects],
            "confidence_intervals": {
                k: v.to_dict() for k, v in self.confidence_intervals.items()
            },
            "causal_graph": self.causal_graph.to_dict(),
            "recommendations": self.recommendations,
            "risk_assessment": self.risk_assessment.to_dict(),
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class CounterfactualResponse:
    """Counterfactual report for a patient."""
    patient_id: str
    report: CounterfactualReport

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {"patient_id": self.patient_id, **self.report.to_dict()}


@dataclass
class ExpectedOutcomes:
    """Expected outcomes of following a pathway."""
    efficacy_probability: float
    adverse_event_probability: float
    quality_of_life_score: float
    time_to_improvement: Optional[int] = None  # days

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "efficacy_probability": self.efficacy_probability,
            "adverse_event_probability": self.adverse_event_probability,
            "quality_of_life_score": self.quality_of_life_score,
            "time_to_improvement": self.time_to_improvement,
        }


@dataclass
class RiskBenefitAnalysis:
    """Benefit-to-risk comparison of a pathway."""
    benefit_risk_ratio: float
    key_benefits: List[str]
    key_risks: List[str]
    mitigation_strategies: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "benefit_risk_ratio": self.benefit_risk_ratio,
            "key_benefits": self.key_benefits,
            "key_risks": self.key_risks,
            "mitigation_strategies": self.mitigation_strategies,
        }


@dataclass
class OptimizationMetadata:
    """Provenance of a pathway optimization."""
    algorithm: str
    confidence: float
    candidates_evaluated: int
    assumptions: List[str]
    optimization_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "optimization_id": self.optimization_id,
            "timestamp": self.timestamp,
            "algorithm": self.algorithm,
            "confidence": self.confidence,
            "candidates_evaluated": self.candidates_evaluated,
            "assumptions": self.assumptions,
        }


@dataclass
class TreatmentOptimizationResponse:
    """Results of a pathway optimization."""
    patient_id: str
    optimal_pathway: TreatmentPathway
    alternative_pathways: List[TreatmentPathway]
    expected_outcomes: ExpectedOutcomes
    risk_benefit_analysis: RiskBenefitAnalysis
    metadata: OptimizationMetadata

    @property
    def summary(self) -> str:
        """Generate human-readable summary."""
        optimal = self.optimal_pathway
        lines = [
            "=" * 70,
            "TREATMENT PATHWAY OPTIMIZATION",
            "=" * 70,
            f"Patient ID: {self.patient_id}",
            f"Candidates evaluated: {self.metadata.candidates_evaluated}",
            "",
            "OPTIMAL PATHWAY:",
            f"  Sequence: {' -> '.join(optimal.sequence)}",
            f"  Score: {optimal.overall_score:.3f}",
            f"  Efficacy: {optimal.expected_efficacy:.1%}",
            f"  Risk: {optimal.risk_score:.2f}",
            f"  Cost: {optimal.total_cost:.2f}",
            f"  Rationale: {optimal.rationale}",
        ]

        if self.alternative_pathways:
            lines.extend(["", "ALTERNATIVES:"])
            for pathway in self.alternative_pathways:
                lines.append(
                    f"  - {' -> '.join(pathway.sequence)}: score {pathway.overall_score:.3f}"
                )

        lines.extend([
            "",
            f"BENEFIT/RISK RATIO: {self.risk_benefit_analysis.benefit_risk_ratio:.2f}",
            "",
            "=" * 70,
        ])
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "patient_id": self.patient_id,
            "optimal_pathway": self.optimal_pathway.to_dict(),
            "alternative_pathways": [p.to_dict() for p in self.alternative_pathways],
            "expected_outcomes": self.expected_outcomes.to_dict(),
            "risk_benefit_analysis": self.risk_benefit_analysis.to_dict(),
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class ModelMetadata:
    """Provenance of a personalized model."""
    model_id: str
    training_data_size: int
    validation_score: float
    model_version: str
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "model_id": self.model_id,
            "training_data_size": self.training_data_size,
            "validation_score": self.validation_score,
            "model_version": self.model_version,
            "created_at": self.created_at,
        }


@dataclass
class PersonalizedModelResponse:
    """A freshly learned personalized causal model."""
    patient_id: str
    causal_model: CausalModel
    model_performance: ModelPerformance
    personalized_insights: List[str]
    recommendations: List[str]
    metadata: ModelMetadata

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "patient_id": self.patient_id,
            "causal_model": self.causal_model.to_dict(),
            "model_performance": self.model_performance.to_dict(),
            "personalized_insights": self.personalized_insights,
            "recommendations": self.recommendations,
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class BayesianInferenceResponse:
    """Inference results with per-variable predictions."""
    patient_id: str
    inference: InferenceResult
    predictions: Dict[str, PredictionWithUncertainty]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "patient_id": self.patient_id,
            "inference": self.inference.to_dict(),
            "predictions": {k: v.to_dict() for k, v in self.predictions.items()},
        }


# =============================================================================
# Service
# =============================================================================

class CausalAnalysisService:
    """
    Entry point for per-patient causal analysis.

    Args:
        config: Engine configuration
        history_provider: Returns a patient's historical observations
        registry: Model cache; a fresh one is created if omitted
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        history_provider: Optional[HistoryProvider] = None,
        registry: Optional[ModelRegistry] = None,
    ):
        self.config = config or EngineConfig()
        self.history_provider = history_provider or _no_history
        self.registry = registry or ModelRegistry()

        self._executor: Optional[ThreadPoolExecutor] = None

        self._setup_logging()

    def _setup_logging(self) -> None:
        """Configure logging."""
        level = logging.INFO if self.config.verbose else logging.WARNING
        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    @property
    def executor(self) -> ThreadPoolExecutor:
        """Lazy-loaded worker pool."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="causal-engine",
            )
        return self._executor

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def __enter__(self) -> CausalAnalysisService:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def _history(self, patient_id: str) -> List[Observation]:
        return list(self.history_provider(patient_id))

    # =========================================================================
    # Causal graph
    # =========================================================================

    def get_causal_graph(
        self,
        patient_id: str,
        data: Sequence[Observation] = (),
    ) -> CausalGraphModel:
        """
        Cached causal graph, learned from data or the default clinical graph.

        The cached graph is rebuilt when ``data`` differs from the history it
        was learned from.
        """
        fingerprint = history_fingerprint(data)

        def build() -> CausalGraphModel:
            model = self._build_causal_graph(data)
            model.source_fingerprint = fingerprint
            return model

        model = self.registry.get_or_create(patient_id, ModelKind.CAUSAL_GRAPH, build)
        if model.source_fingerprint != fingerprint:
            logger.info(f"History changed for {patient_id}, rebuilding causal graph")
            model = self.registry.refresh(patient_id, ModelKind.CAUSAL_GRAPH, build)
        return model

    def _build_causal_graph(self, data: Sequence[Observation]) -> CausalGraphModel:
        if not data:
            logger.info("No history available, using default clinical graph")
            return create_default_clinical_graph()

        model = CausalGraphModel()
        variables = collect_variables(data)
        for cause in variables:
            for effect in variables:
                if cause == effect or not self._is_potential_causal_pair(cause, effect):
                    continue
                correlation = pearson(*paired_values(data, cause, effect))
                if correlation is None or abs(correlation) <= 0.3:
                    continue
                try:
                    model.add_causal_relationship(cause, effect, abs(correlation))
                except ValueError as e:
                    logger.debug(f"Skipping {cause} -> {effect}: {e}")

        logger.info(
            f"Learned causal graph with {len(model.variables)} variables "
            f"and {len(model.edges)} edges from {len(data)} observations"
        )
        return model

    @staticmethod
    def _is_potential_causal_pair(cause: str, effect: str) -> bool:
        cause, effect = cause.lower(), effect.lower()
        return any(c in cause and e in effect for c, e in DOMAIN_CAUSAL_PAIRS)

    # =========================================================================
    # Causal analysis
    # =========================================================================

    def perform_causal_analysis(self, request: CausalAnalysisRequest) -> CausalAnalysisResponse:
        """Estimate the effect of every treatment on every outcome."""
        logger.info(f"Running causal analysis for patient {request.patient_id}")
        data = (
            request.historical_data if request.historical_data is not None
            else self._history(request.patient_id)
        )

        model = self.get_causal_graph(request.patient_id, data).copy()
        effects = self._calculate_effects(model, request, data)
        risk = self._assess_risk(effects)

        return CausalAnalysisResponse(
            patient_id=request.patient_id,
            causal_effects=effects,
            confidence_intervals=self._confidence_intervals(effects, data),
            causal_graph=model.to_causal_graph(),
            recommendations=self._causal_recommendations(effects, risk),
            risk_assessment=risk,
            metadata=AnalysisMetadata(
                model_version=self.config.model_version,
                data_quality_score=self.data_quality_score(data),
                assumptions=list(ANALYSIS_ASSUMPTIONS),
            ),
        )

    def _calculate_effects(
        self,
        model: CausalGraphModel,
        request: CausalAnalysisRequest,
        data: Sequence[Observation],
    ) -> List[CausalEffect]:
        n = len(data)
        effects = []
        for treatment in request.treatment_variables:
            for outcome in request.outcome_variables:
                try:
                    effect_size = model.apply_do_operator(outcome, treatment, 1.0, data)
                    effects.append(CausalEffect(
                        treatment=treatment,
                        outcome=outcome,
                        effect_size=effect_size,
                        effect_type=EffectType.AVERAGE_TREATMENT_EFFECT,
                        confidence=min(1.0, n / 50.0),
                        p_value=self._p_value(effect_size, n),
                        description=f"Causal effect of {treatment} on {outcome}",
                    ))
                except Exception as e:
                    logger.warning(f"Could not estimate {treatment} -> {outcome}: {e}")
                    effects.append(CausalEffect(
                        treatment=treatment,
                        outcome=outcome,
                        effect_size=0.0,
                        effect_type=EffectType.AVERAGE_TREATMENT_EFFECT,
                        confidence=0.1,
                        p_value=1.0,
                        description=f"Unable to calculate causal effect: {e}",
                    ))
        return effects

    @staticmethod
    def _p_value(effect_size: float, n: int) -> float:
        """Coarse p-value bucket from z = |effect| * sqrt(n)."""
        z_score = abs(effect_size) * np.sqrt(n)
        if z_score > 3.0:
            return 0.001
        if z_score > 2.0:
            return 0.05
        return 0.1

    @staticmethod
    def _confidence_intervals(
        effects: Sequence[CausalEffect],
        data: Sequence[Observation],
    ) -> Dict[str, ConfidenceInterval]:
        margin = 1.96 / np.sqrt(len(data) or 10)
        return {
            f"{effect.treatment}_{effect.outcome}": ConfidenceInterval(
                lower=effect.effect_size - margin,
                upper=effect.effect_size + margin,
            )
            for effect in effects
        }

    @staticmethod
    def _assess_risk(effects: Sequence[CausalEffect]) -> RiskAssessment:
        overall = float(np.mean([e.effect_size for e in effects])) if effects else 0.0
        risk_factors = [
            RiskFactor(
                factor=f"{effect.treatment} on {effect.outcome}",
                impact=abs(effect.effect_size),
                probability=1.0 - effect.confidence,
                description="Negative causal effect with low confidence",
            )
            for effect in effects
            if effect.effect_size < 0
        ]
        return RiskAssessment(
            overall_risk=overall,
            risk_factors=risk_factors,
            mitigation_strategies=[
                "Monitor treatment response closely",
                "Consider alternative treatments",
                "Implement additional safety measures",
            ],
        )

    @staticmethod
    def _causal_recommendations(
        effects: Sequence[CausalEffect],
        risk: RiskAssessment,
    ) -> List[str]:
        recommendations = []

        strong = [e for e in effects if e.effect_size > 0.2 and e.confidence > 0.7]
        if strong:
            best = max(strong, key=lambda e: e.effect_size)
            recommendations.append(f"Consider {best.treatment} for optimal outcomes")

        if risk.overall_risk > 0.5:
            recommendations.append("High-risk profile detected - implement close monitoring")

        recommendations.append("Use causal analysis results to inform treatment decisions")
        recommendations.append("Re-evaluate causal relationships as new data becomes available")
        return recommendations

    @staticmethod
    def data_quality_score(data: Sequence[Observation]) -> float:
        """Mean variable completeness averaged with a sample-size score."""
        if not data:
            return 0.0

        completeness = [
            sum(1 for v in point.variables.values() if v is not None) / len(point.variables)
            if point.variables else 0.0
            for point in data
        ]
        size_score = min(1.0, len(data) / 100.0)
        return float((np.mean(completeness) + size_score) / 2.0)

    # =========================================================================
    # Counterfactuals
    # =========================================================================

    def generate_counterfactuals(self, request: CounterfactualRequest) -> CounterfactualResponse:
        logger.info(
            f"Generating {len(request.counterfactual_scenarios)} counterfactuals "
            f"for patient {request.patient_id}"
        )
        engine = self.registry.get_or_create(
            request.patient_id,
            ModelKind.COUNTERFACTUAL,
            lambda: self._build_counterfactual_engine(request.patient_id),
        )
        report = engine.generate_counterfactuals(
            request.factual_scenario,
            request.counterfactual_scenarios,
            request.outcome_variables,
        )
        return CounterfactualResponse(patient_id=request.patient_id, report=report)

    def _build_counterfactual_engine(self, patient_id: str) -> CounterfactualEngine:
        history = self._history(patient_id)
        return CounterfactualEngine(
            self.get_causal_graph(patient_id, history).copy(),
            history,
            self.config.counterfactual,
        )

    # =========================================================================
    # Pathway optimization
    # =========================================================================

    def optimize_treatment_pathway(
        self,
        request: TreatmentOptimizationRequest,
    ) -> TreatmentOptimizationResponse:
        logger.info(
            f"Optimizing pathway over {len(request.available_treatments)} treatments "
            f"for patient {request.patient_id}"
        )
        optimizer = self._get_pathway_optimizer(request.patient_id, request.patient_profile)

        result = optimizer.optimize_pathway(
            request.available_treatments,
            constraints=request.constraints,
            criteria=request.optimization_criteria,
            time_horizon=request.time_horizon,
        )
        optimal = result.optimal_pathway

        return TreatmentOptimizationResponse(
            patient_id=request.patient_id,
            optimal_pathway=optimal,
            alternative_pathways=result.alternative_pathways,
            expected_outcomes=ExpectedOutcomes(
                efficacy_probability=optimal.expected_efficacy,
                adverse_event_probability=optimal.risk_score,
                quality_of_life_score=optimal.quality_of_life,
                time_to_improvement=optimal.duration,
            ),
            risk_benefit_analysis=self._risk_benefit_analysis(optimal),
            metadata=OptimizationMetadata(
                algorithm="Causal-Aware Multi-Objective Optimization",
                confidence=optimal.overall_score,
                candidates_evaluated=result.candidates_evaluated,
                assumptions=list(OPTIMIZATION_ASSUMPTIONS),
            ),
        )

    def _get_pathway_optimizer(
        self,
        patient_id: str,
        profile: PatientProfile,
    ) -> TreatmentPathwayOptimizer:
        def build() -> TreatmentPathwayOptimizer:
            history = self._history(patient_id)
            return TreatmentPathwayOptimizer(
                self.get_causal_graph(patient_id, history).copy(),
                profile,
                history,
                self.config.pathway_optimizer,
            )

        optimizer = self.registry.get_or_create(patient_id, ModelKind.PATHWAY_OPTIMIZER, build)
        if optimizer.patient_profile != profile:
            logger.info(f"Patient profile changed for {patient_id}, rebuilding optimizer")
            optimizer = self.registry.refresh(patient_id, ModelKind.PATHWAY_OPTIMIZER, build)
        return optimizer

    @staticmethod
    def _risk_benefit_analysis(pathway: TreatmentPathway) -> RiskBenefitAnalysis:
        return RiskBenefitAnalysis(
            benefit_risk_ratio=pathway.expected_efficacy / (pathway.risk_score + 0.1),
            key_benefits=[f"Expected efficacy: {pathway.expected_efficacy * 100:.1f}%"],
            key_risks=[f"Risk score: {pathway.risk_score:.2f}"],
            mitigation_strategies=["Close monitoring", "Regular follow-ups"],
        )

    # =========================================================================
    # Personalized models
    # =========================================================================

    def create_personalized_model(
        self,
        request: PersonalizedModelRequest,
    ) -> PersonalizedModelResponse:
        """Learn a personalized model, replacing any cached one for the patient."""
        model = PersonalizedCausalModel(
            patient_id=request.patient_id,
            observations=request.patient_data,
            model_type=request.model_type,
            config=self.config.structure_learning,
        )
        self.registry.put(request.patient_id, ModelKind.PERSONALIZED, model)

        performance = model.get_model_performance()
        exported = model.to_causal_model()
        treatments = request.available_treatments or [
            name for name in model.variable_statistics
            if "treatment" in name.lower() or "dosage" in name.lower()
        ]

        return PersonalizedModelResponse(
            patient_id=request.patient_id,
            causal_model=exported,
            model_performance=performance,
            personalized_insights=self._personalized_insights(model),
            recommendations=model.generate_personalized_recommendations(treatments),
            metadata=ModelMetadata(
                model_id=exported.model_id,
                training_data_size=len(request.patient_data),
                validation_score=performance.accuracy,
                model_version=self.config.model_version,
            ),
        )

    def get_personalized_model(self, patient_id: str) -> Optional[PersonalizedCausalModel]:
        return self.registry.get(patient_id, ModelKind.PERSONALIZED)

    @staticmethod
    def _personalized_insights(model: PersonalizedCausalModel, top_k: int = 5) -> List[str]:
        strongest = sorted(model.relationships, key=lambda r: r.strength, reverse=True)[:top_k]
        return [
            f"{r.cause} -> {r.effect}: strength {r.strength:.2f} (confidence {r.confidence:.2f})"
            for r in strongest
        ]

    # =========================================================================
    # Bayesian inference
    # =========================================================================

    def perform_bayesian_inference(
        self,
        request: BayesianInferenceRequest,
    ) -> BayesianInferenceResponse:
        data = (
            request.historical_data if request.historical_data is not None
            else self._history(request.patient_id)
        )
        variables = request.variables or list(dict.fromkeys(
            collect_variables(data) + list(request.evidence) + list(request.query_variables)
        ))
        structure = request.structure or {}
        cpts = request.conditional_probabilities or {}

        def build() -> BayesianNetwork:
            return BayesianNetwork(variables, structure, cpts)

        network = self.registry.get_or_create(
            request.patient_id, ModelKind.BAYESIAN_NETWORK, build
        )
        if not self._network_matches(network, variables, structure, cpts):
            network = self.registry.refresh(
                request.patient_id, ModelKind.BAYESIAN_NETWORK, build
            )

        inference = network.perform_inference(request.evidence, request.query_variables, data)
        predictions = {
            variable: network.predict_with_uncertainty(request.evidence, variable, data)
            for variable in request.query_variables
        }
        return BayesianInferenceResponse(
            patient_id=request.patient_id,
            inference=inference,
            predictions=predictions,
        )

    @staticmethod
    def _network_matches(
        network: BayesianNetwork,
        variables: Sequence[str],
        structure: Mapping[str, Sequence[str]],
        cpts: Mapping[str, ConditionalProbabilityTable],
    ) -> bool:
        return (
            network.variables == list(dict.fromkeys(variables))
            and network.structure == {k: list(v) for k, v in structure.items()}
            and network.conditional_probabilities == dict(cpts)
        )

    # =========================================================================
    # Asynchronous dispatch
    # =========================================================================

    def submit_causal_analysis(self, request: CausalAnalysisRequest) -> Future:
        return self.executor.submit(self.perform_causal_analysis, request)

    def submit_counterfactuals(self, request: CounterfactualRequest) -> Future:
        return self.executor.submit(self.generate_counterfactuals, request)

    def submit_pathway_optimization(self, request: TreatmentOptimizationRequest) -> Future:
        return self.executor.submit(self.optimize_treatment_pathway, request)

    def submit_personalized_model(self, request: PersonalizedModelRequest) -> Future:
        return self.executor.submit(self.create_personalized_model, request)

    def submit_bayesian_inference(self, request: BayesianInferenceRequest) -> Future:
        return self.executor.submit(self.perform_bayesian_inference, request)


def run_causal_analysis(
    patient_id: str,
    treatment_variables: List[str],
    outcome_variables: List[str],
    historical_data: Optional[List[Observation]] = None,
    verbose: bool = False,
) -> CausalAnalysisResponse:
    """
    Convenience function to run a causal analysis.

    Args:
        patient_id: Patient identifier
        treatment_variables: Variables to intervene on
        outcome_variables: Variables to measure
        historical_data: Patient history; the default clinical graph is used if empty
        verbose: Enable verbose logging

    Returns:
        CausalAnalysisResponse with effects, graph and recommendations
    """
    config = EngineConfig(verbose=verbose)
    service = CausalAnalysisService(config)
    return service.perform_causal_analysis(
        CausalAnalysisRequest(
            patient_id=patient_id,
            treatment_variables=treatment_variables,
            outcome_variables=outcome_variables,
            historical_data=historical_data or [],
        )
    )
