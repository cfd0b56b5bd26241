"""
Personalized causal structure learning.

Learns patient-specific cause -> effect relationships from that patient's
own history and uses them to predict individual treatment response.

Learning pipeline:
1. Descriptive statistics per numeric variable
2. Pairwise Pearson correlations
3. Candidate edges from correlation strength and a temporal ordering heuristic
4. Strength / confidence scoring
5. Backdoor annotation and pruning of weak relationships
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
import hashlib
import logging

import numpy as np
from scipy import stats

from .causal_graph import CausalGraph, CausalGraphModel
from .observations import Observation, collect_variables, numeric_column, paired_values

logger = logging.getLogger(__name__)

ADVERSE_INDICATORS = ("side_effects", "adverse_reaction", "toxicity")


class RelationshipDirection(Enum):
    """Orientation of a learned relationship."""
    DIRECTED = "directed"
    UNDIRECTED = "undirected"
    BIDIRECTED = "bidirected"


class CausalModelType(Enum):
    """Family of an exported causal model."""
    BAYESIAN_NETWORK = "bayesian_network"
    STRUCTURAL_EQUATION_MODEL = "structural_equation_model"
    DECISION_TREE = "decision_tree"
    GRAPHICAL_MODEL = "graphical_model"


@dataclass
class StructureLearnerConfig:
    """Thresholds for personalized structure learning."""
    min_observations: int = 5
    min_correlation: float = 0.3
    min_paired_samples: int = 3
    confounder_correlation: float = 0.3

    # Scoring
    reliability_sample_size: int = 10  # Observations for full strength
    confidence_sample_size: int = 20  # Paired samples for full base confidence

    # Pruning
    min_confidence: float = 0.2
    min_strength: float = 0.3


@dataclass
class CausalRelationship:
    """A learned cause -> effect relationship."""
    cause: str
    effect: str
    strength: float
    direction: RelationshipDirection
    confidence: float
    evidence: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "cause": self.cause,
            "effect": self.effect,
            "strength": self.strength,
            "direction": self.direction.value,
            "confidence": self.confidence,
            "evidence": list(self.evidence),
        }


@dataclass
class VariableSummary:
    """Descriptive statistics of a numeric variable."""
    count: int
    mean: float
    std: float
    minimum: float
    maximum: float

    @classmethod
    def from_values(cls, values: Sequence[float]) -> "VariableSummary":
        array = np.asarray(values, dtype=float)
        return cls(
            count=len(array),
            mean=float(array.mean()),
            std=float(array.std(ddof=1)) if len(array) > 1 else 0.0,
            minimum=float(array.min()),
            maximum=float(array.max()),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "count": self.count,
            "mean": self.mean,
            "std": self.std,
            "min": self.minimum,
            "max": self.maximum,
        }


@dataclass
class TreatmentPrediction:
    """Predicted individual response to a treatment."""
    treatment: str
    predicted_effect: float
    confidence: float
    contributing_factors: List[str]
    risk_factors: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "treatment": self.treatment,
            "predicted_effect": self.predicted_effect,
            "confidence": self.confidence,
            "contributing_factors": self.contributing_factors,
            "risk_factors": self.risk_factors,
        }


@dataclass
class ModelPerformance:
    """Heuristic quality metrics of a learned model."""
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    calibration_score: Optional[float] = None
    auc: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "calibration_score": self.calibration_score,
            "auc": self.auc,
        }


@dataclass
class CausalModel:
    """Exported personalized causal model."""
    model_id: str
    model_type: CausalModelType
    variables: List[str]
    relationships: List[CausalRelationship]
    parameters: Dict[str, Any]
    structure: CausalGraph

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "model_id": self.model_id,
            "model_type": self.model_type.value,
            "variables": self.variables,
            "relationships": [r.to_dict() for r in self.relationships],
            "parameters": self.parameters,
            "structure": self.structure.to_dict(),
        }


def pearson(xs: Sequence[float], ys: Sequence[float]) -> Optional[float]:
    """Pearson correlation, or None for fewer than 3 pairs or constant input."""
    if len(xs) < 3 or len(xs) != len(ys):
        return None
    if np.ptp(xs) == 0 or np.ptp(ys) == 0:
        return None
    r, _ = stats.pearsonr(xs, ys)
    if np.isnan(r):
        return None
    return float(r)


def _stable_hash(value: Any) -> int:
    return int(hashlib.md5(repr(value).encode("utf-8")).hexdigest()[:8], 16)


class PersonalizedCausalModel:
    """
    Patient-specific causal model learned from individual history.

    Args:
        patient_id: Patient identifier
        observations: The patient's historical observations
        model_type: Exported model family
        config: Learning thresholds

    Raises:
        ValueError: With fewer observations than the configured minimum,
            when no relationship survives pruning, or when the learned
            graph contains a cycle.

    Example:
        model = PersonalizedCausalModel("patient_42", history)
        prediction = model.predict_treatment_response("treatment_dosage", 1.0)
    """

    def __init__(
        self,
        patient_id: str,
        observations: Sequence[Observation],
        model_type: CausalModelType = CausalModelType.BAYESIAN_NETWORK,
        config: Optional[StructureLearnerConfig] = None,
    ):
        self.patient_id = patient_id
        self.observations = list(observations)
        self.model_type = model_type
        self.config = config or StructureLearnerConfig()

        if len(self.observations) < self.config.min_observations:
            raise ValueError(
                f"Insufficient data for personalized causal modeling: "
                f"{len(self.observations)} observations, need {self.config.min_observations}"
            )

        self.graph = CausalGraphModel()
        self.relationships: List[CausalRelationship] = []
        self.variable_statistics: Dict[str, VariableSummary] = {}
        self.correlations: Dict[Tuple[str, str], float] = {}

        self._variables = collect_variables(self.observations)
        self._compute_statistics()
        self._compute_correlations()
        self._learn_structure()
        self._validate()

        logger.info(
            f"Learned {len(self.relationships)} relationships for patient {patient_id} "
            f"from {len(self.observations)} observations"
        )

    # =========================================================================
    # Learning
    # =========================================================================

    def _compute_statistics(self) -> None:
        for variable in self._variables:
            values = numeric_column(self.observations, variable)
            if values:
                self.variable_statistics[variable] = VariableSummary.from_values(values)

    def _compute_correlations(self) -> None:
        for i, first in enumerate(self._variables):
            for second in self._variables[i + 1:]:
                r = pearson(*paired_values(self.observations, first, second))
                if r is not None:
                    self.correlations[(first, second)] = r
                    self.correlations[(second, first)] = r

    def _learn_structure(self) -> None:
        for cause in self._variables:
            for effect in self._variables:
                if cause == effect:
                    continue
                relationship = self._assess_relationship(cause, effect)
                if relationship is not None:
                    self.relationships.append(relationship)
                    try:
                        self.graph.add_causal_relationship(cause, effect, relationship.strength)
                    except ValueError as e:
                        raise ValueError(f"Learned causal graph contains cycles: {e}") from e

        self._refine()

    def _assess_relationship(self, cause: str, effect: str) -> Optional[CausalRelationship]:
        correlation = self.correlations.get((cause, effect))
        if correlation is None or abs(correlation) < self.config.min_correlation:
            return None

        if not self._temporal_order_holds(cause, effect):
            return None

        confounded = self._has_confounder(cause, effect)
        direction = (
            RelationshipDirection.DIRECTED if correlation != 0
            else RelationshipDirection.UNDIRECTED
        )

        return CausalRelationship(
            cause=cause,
            effect=effect,
            strength=self._strength(abs(correlation)),
            direction=direction,
            confidence=self._confidence(cause, effect, abs(correlation)),
            evidence=[
                f"Correlation: {correlation:.3f}",
                "Temporal ordering: true",
                f"Confounder check: {str(confounded).lower()}",
            ],
        )

    def _temporal_order_holds(self, cause: str, effect: str) -> bool:
        """
        Heuristic ordering on stable hashes of recorded values.

        Not a real temporal test; it only gives a deterministic orientation
        to a symmetric correlation.
        """
        cause_times = [
            _stable_hash(point.variables[cause])
            for point in self.observations
            if point.variables.get(cause) is not None
        ]
        effect_times = [
            _stable_hash(point.variables[effect])
            for point in self.observations
            if point.variables.get(effect) is not None
        ]
        if not cause_times or not effect_times:
            return True
        return np.mean(cause_times) <= np.mean(effect_times)

    def _has_confounder(self, cause: str, effect: str) -> bool:
        threshold = self.config.confounder_correlation
        return any(
            abs(self.correlations.get((cause, other), 0.0)) > threshold
            and abs(self.correlations.get((effect, other), 0.0)) > threshold
            for other in self.variable_statistics
            if other not in (cause, effect)
        )

    def _strength(self, correlation_strength: float) -> float:
        reliability = min(1.0, len(self.observations) / self.config.reliability_sample_size)
        return correlation_strength * reliability

    def _confidence(self, cause: str, effect: str, correlation_strength: float) -> float:
        sample_size = sum(
            1 for point in self.observations
            if cause in point.variables and effect in point.variables
        )
        if sample_size < self.config.min_paired_samples:
            return 0.1

        base = min(1.0, sample_size / self.config.confidence_sample_size)
        return min(1.0, base + 0.5 * correlation_strength)

    def _refine(self) -> None:
        """Annotate backdoor adjustment sets, then prune weak relationships."""
        for relationship in self.relationships:
            adjustment_set = self.graph.find_backdoor_adjustment_set(
                relationship.effect, relationship.cause
            )
            if adjustment_set:
                relationship.evidence.append(
                    f"Valid backdoor adjustment set: {', '.join(sorted(adjustment_set))}"
                )

        kept = []
        for relationship in self.relationships:
            if (relationship.confidence < self.config.min_confidence
                    or relationship.strength < self.config.min_strength):
                logger.debug(
                    f"Pruned {relationship.cause} -> {relationship.effect} "
                    f"(strength={relationship.strength:.3f}, confidence={relationship.confidence:.3f})"
                )
                self.graph.remove_causal_relationship(relationship.cause, relationship.effect)
            else:
                kept.append(relationship)
        self.relationships = kept

    def _validate(self) -> None:
        if not self.relationships:
            raise ValueError("No causal relationships could be learned from patient data")
        if not self.graph.is_valid_dag():
            raise ValueError("Learned causal graph contains cycles")

    # =========================================================================
    # Prediction
    # =========================================================================

    def predict_treatment_response(self, treatment: str, dosage: float) -> TreatmentPrediction:
        """Sum of strength * dosage over the treatment's learned effects."""
        relevant = [r for r in self.relationships if r.cause == treatment]

        predicted_effect = 0.0
        confidence = 0.0
        contributing = []
        for relationship in relevant:
            effect = relationship.strength * dosage
            predicted_effect += effect
            confidence += relationship.confidence
            contributing.append(
                f"{relationship.effect}: {effect:.3f} "
                f"(confidence: {relationship.confidence:.2f})"
            )

        return TreatmentPrediction(
            treatment=treatment,
            predicted_effect=predicted_effect,
            confidence=confidence / max(1, len(relevant)),
            contributing_factors=contributing,
            risk_factors=self._identify_risk_factors(treatment, dosage),
        )

    def _identify_risk_factors(self, treatment: str, dosage: float) -> List[str]:
        risk_factors = []

        for (first, second), correlation in self.correlations.items():
            if first == treatment and abs(correlation) > 0.7:
                level = "High" if abs(correlation) > 0.8 else "Medium"
                risk_factors.append(
                    f"{level} risk: Strong correlation with {second} ({correlation:.2f})"
                )

        summary = self.variable_statistics.get(treatment)
        if summary is not None and abs(dosage - summary.mean) > 2 * summary.std:
            risk_factors.append("Dosage significantly outside patient's historical range")

        for indicator in ADVERSE_INDICATORS:
            correlation = self.correlations.get((treatment, indicator))
            if correlation is not None and correlation > 0.5:
                risk_factors.append(
                    f"Potential adverse effects: Correlation with {indicator} ({correlation:.2f})"
                )

        return risk_factors or ["No significant risk factors identified"]

    def generate_personalized_recommendations(self, treatments: Sequence[str]) -> List[str]:
        """Rank available treatments by predicted response at standard dosage."""
        recommendations = []

        for treatment in treatments:
            prediction = self.predict_treatment_response(treatment, 1.0)
            if prediction.predicted_effect > 0.5 and prediction.confidence > 0.7:
                recommendations.append(
                    f"Consider {treatment} - predicted effect: {prediction.predicted_effect:.2f}"
                )
            elif prediction.predicted_effect < 0.2:
                recommendations.append(
                    f"Exercise caution with {treatment} - limited predicted benefit"
                )

        if len(self.relationships) > 5:
            recommendations.append(
                "Patient shows complex causal relationships - consider comprehensive treatment approach"
            )
        if any(abs(r) > 0.8 for r in self.correlations.values()):
            recommendations.append("Strong correlations detected - monitor for potential side effects")

        return recommendations or ["Insufficient data for specific recommendations"]

    # =========================================================================
    # Evaluation and export
    # =========================================================================

    def get_model_performance(self) -> ModelPerformance:
        confidences = np.array([r.confidence for r in self.relationships])
        strengths = np.array([r.strength for r in self.relationships])

        accuracy = float(confidences.mean())
        precision = float(strengths.mean())
        f1 = (
            2 * precision * accuracy / (precision + accuracy)
            if precision + accuracy > 0 else 0.0
        )
        reliable = (strengths > 0.5).astype(float)

        return ModelPerformance(
            accuracy=accuracy,
            precision=precision,
            recall=len(self.relationships) / max(1, 2 * len(self.variable_statistics)),
            f1_score=f1,
            calibration_score=float(1.0 - np.mean(np.abs(confidences - reliable))),
        )

    def to_causal_model(self) -> CausalModel:
        return CausalModel(
            model_id=f"personalized_{self.patient_id}",
            model_type=self.model_type,
            variables=list(self.variable_statistics),
            relationships=list(self.relationships),
            parameters={
                "data_points": len(self.observations),
                "relationships_learned": len(self.relationships),
                "graph_valid": self.graph.is_valid_dag(),
            },
            structure=self.graph.to_causal_graph(),
        )
