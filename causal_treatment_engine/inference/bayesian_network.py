"""
Bayesian network for uncertainty handling in causal relationships.

Each variable carries a conjugate prior (Beta for probabilities and risks,
Normal otherwise) that is updated from historical observations matching
the supplied evidence. Inference returns posteriors, marginal and pairwise
joint probabilities, and per-variable uncertainty measures.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging
import math
import threading

from scipy import special, stats

from .observations import Observation, clamp, is_positive

logger = logging.getLogger(__name__)


@dataclass
class BetaDistribution:
    """Beta(alpha, beta) belief over a probability."""
    alpha: float
    beta: float

    def __post_init__(self):
        if self.alpha <= 0 or self.beta <= 0:
            raise ValueError(
                f"Beta parameters must be positive, got ({self.alpha}, {self.beta})"
            )

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    @property
    def variance(self) -> float:
        total = self.alpha + self.beta
        return (self.alpha * self.beta) / (total ** 2 * (total + 1))

    def entropy(self) -> float:
        """Differential entropy in nats."""
        a, b = self.alpha, self.beta
        return float(
            special.betaln(a, b)
            - (a - 1) * special.digamma(a)
            - (b - 1) * special.digamma(b)
            + (a + b - 2) * special.digamma(a + b)
        )

    def confidence_interval(self, level: float = 0.95) -> Tuple[float, float]:
        tail = (1.0 - level) / 2
        lower, upper = stats.beta.ppf([tail, 1.0 - tail], self.alpha, self.beta)
        return float(lower), float(upper)

    def update(self, likelihood: float, sample_size: int) -> "BetaDistribution":
        """Beta-Binomial update with likelihood * N successes."""
        return BetaDistribution(
            alpha=self.alpha + likelihood * sample_size,
            beta=self.beta + (1.0 - likelihood) * sample_size,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {"type": "beta", "alpha": self.alpha, "beta": self.beta}


@dataclass
class NormalDistribution:
    """Normal(mean, variance) belief over a real-valued quantity."""
    mean: float
    variance: float

    def __post_init__(self):
        if self.variance <= 0:
            raise ValueError(f"Normal variance must be positive, got {self.variance}")

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def entropy(self) -> float:
        """Differential entropy in nats."""
        return 0.5 * math.log(2 * math.pi * math.e * self.variance)

    def confidence_interval(self, level: float = 0.95) -> Tuple[float, float]:
        tail = (1.0 - level) / 2
        lower, upper = stats.norm.ppf([tail, 1.0 - tail], loc=self.mean, scale=self.std)
        return float(lower), float(upper)

    def update(self, likelihood: float, sample_size: int) -> "NormalDistribution":
        """
        Normal-Normal update treating the likelihood as the mean of N
        unit-variance observations.
        """
        precision = 1.0 / self.variance
        new_precision = precision + sample_size
        return NormalDistribution(
            mean=(self.mean * precision + likelihood * sample_size) / new_precision,
            variance=1.0 / new_precision,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {"type": "normal", "mean": self.mean, "variance": self.variance}


ProbabilityDistribution = Union[BetaDistribution, NormalDistribution]


def distribution_from_dict(data: Dict[str, Any]) -> ProbabilityDistribution:
    """Deserialize a distribution written by ``to_dict``."""
    kind = data.get("type")
    if kind == "beta":
        return BetaDistribution(alpha=data["alpha"], beta=data["beta"])
    if kind == "normal":
        return NormalDistribution(mean=data["mean"], variance=data["variance"])
    raise ValueError(f"Unknown distribution type: {kind}")


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class ConditionalProbabilityTable:
    """
    P(variable | parents) keyed by serialized parent assignment.

    Keys look like ``"parent1=value1,parent2=value2"``. A ``"default"`` entry
    is used when no assignment matches, and 0.5 when neither exists.
    """
    variable: str
    parents: List[str]
    probabilities: Dict[str, float] = field(default_factory=dict)

    def assignment_key(self, evidence: Mapping[str, Any]) -> str:
        return ",".join(
            f"{parent}={_format_value(evidence[parent]) if parent in evidence else 'unknown'}"
            for parent in self.parents
        )

    def get_probability(self, evidence: Mapping[str, Any]) -> float:
        key = self.assignment_key(evidence)
        if key in self.probabilities:
            return self.probabilities[key]
        return self.probabilities.get("default", 0.5)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "variable": self.variable,
            "parents": list(self.parents),
            "probabilities": dict(self.probabilities),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConditionalProbabilityTable":
        """Deserialize from dictionary."""
        return cls(
            variable=data["variable"],
            parents=list(data.get("parents", [])),
            probabilities={k: float(v) for k, v in data.get("probabilities", {}).items()},
        )


class UncertaintyLevel(Enum):
    """Coarse uncertainty classification on posterior variance."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_variance(cls, variance: float) -> "UncertaintyLevel":
        if variance < 0.1:
            return cls.LOW
        if variance < 0.5:
            return cls.MEDIUM
        return cls.HIGH


@dataclass
class UncertaintyMeasure:
    """Uncertainty summary of a posterior distribution."""
    variance: float
    entropy: float
    confidence_interval: Tuple[float, float]
    uncertainty_level: UncertaintyLevel

    @classmethod
    def of(cls, distribution: ProbabilityDistribution) -> "UncertaintyMeasure":
        variance = distribution.variance
        return cls(
            variance=variance,
            entropy=distribution.entropy(),
            confidence_interval=distribution.confidence_interval(),
            uncertainty_level=UncertaintyLevel.from_variance(variance),
        )

    @classmethod
    def unknown(cls) -> "UncertaintyMeasure":
        return cls(
            variance=1.0,
            entropy=1.0,
            confidence_interval=(0.0, 1.0),
            uncertainty_level=UncertaintyLevel.HIGH,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "variance": self.variance,
            "entropy": self.entropy,
            "confidence_interval": list(self.confidence_interval),
            "uncertainty_level": self.uncertainty_level.value,
        }


@dataclass
class InferenceResult:
    """Result of a Bayesian inference query."""
    posterior_distributions: Dict[str, ProbabilityDistribution]
    marginal_probabilities: Dict[str, float]
    joint_probabilities: Dict[str, float]
    uncertainties: Dict[str, UncertaintyMeasure]
    evidence_strength: float  # Fraction of observations matching the evidence

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "posterior_distributions": {
                k: v.to_dict() for k, v in self.posterior_distributions.items()
            },
            "marginal_probabilities": self.marginal_probabilities,
            "joint_probabilities": self.joint_probabilities,
            "uncertainties": {k: v.to_dict() for k, v in self.uncertainties.items()},
            "evidence_strength": self.evidence_strength,
        }


@dataclass
class PredictionWithUncertainty:
    """Point prediction with its uncertainty."""
    predicted_value: float
    uncertainty: UncertaintyMeasure
    confidence: float
    prediction_interval: Tuple[float, float]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "predicted_value": self.predicted_value,
            "uncertainty": self.uncertainty.to_dict(),
            "confidence": self.confidence,
            "prediction_interval": list(self.prediction_interval),
        }


def default_prior(variable: str) -> ProbabilityDistribution:
    """Uniform Beta for probabilities and risks, standard Normal otherwise."""
    if "probability" in variable or "risk" in variable:
        return BetaDistribution(1.0, 1.0)
    return NormalDistribution(0.0, 1.0)


class BayesianNetwork:
    """
    Bayesian network over named variables.

    Args:
        variables: Declared variable names
        structure: Parent -> children mapping
        conditional_probabilities: CPTs keyed by variable

    Raises:
        ValueError: If the structure or a CPT references an undeclared
            variable, or the structure contains a cycle.
    """

    def __init__(
        self,
        variables: Sequence[str],
        structure: Optional[Mapping[str, Sequence[str]]] = None,
        conditional_probabilities: Optional[Mapping[str, ConditionalProbabilityTable]] = None,
    ):
        self.variables = list(dict.fromkeys(variables))
        self.structure = {k: list(v) for k, v in (structure or {}).items()}
        self.conditional_probabilities = dict(conditional_probabilities or {})

        self.priors: Dict[str, ProbabilityDistribution] = {
            variable: default_prior(variable) for variable in self.variables
        }
        self.posteriors: Dict[str, ProbabilityDistribution] = {}
        self._lock = threading.RLock()

        self._validate()

    def _validate(self) -> None:
        declared = set(self.variables)

        for parent, children in self.structure.items():
            if parent not in declared:
                raise ValueError(f"Unknown variable in structure: {parent}")
            for child in children:
                if child not in declared:
                    raise ValueError(f"Unknown variable in structure: {child}")

        for variable in self.conditional_probabilities:
            if variable not in declared:
                raise ValueError(f"CPT defined for unknown variable: {variable}")

        visited = set()
        on_stack = set()

        def has_cycle(node: str) -> bool:
            if node in on_stack:
                return True
            if node in visited:
                return False
            visited.add(node)
            on_stack.add(node)
            for child in self.structure.get(node, []):
                if has_cycle(child):
                    return True
            on_stack.remove(node)
            return False

        for variable in self.variables:
            if has_cycle(variable):
                raise ValueError("Bayesian network contains cycles")

    def parents_of(self, variable: str) -> List[str]:
        return [parent for parent, children in self.structure.items() if variable in children]

    # =========================================================================
    # Inference
    # =========================================================================

    def perform_inference(
        self,
        evidence: Mapping[str, Any],
        query_variables: Sequence[str],
        data: Sequence[Observation],
    ) -> InferenceResult:
        """
        Update beliefs from data matching the evidence and answer a query.

        Unknown query variables get a standard Normal posterior and a
        marginal of 0.5.
        """
        with self._lock:
            self._update_beliefs(evidence, data)

            posteriors: Dict[str, ProbabilityDistribution] = {}
            marginals: Dict[str, float] = {}
            for variable in query_variables:
                if variable not in self.priors:
                    logger.warning(f"Query variable {variable} not declared in network")
                posteriors[variable] = (
                    self.posteriors.get(variable)
                    or self.priors.get(variable)
                    or NormalDistribution(0.0, 1.0)
                )
                marginals[variable] = self.marginal_probability(variable, evidence)

            return InferenceResult(
                posterior_distributions=posteriors,
                marginal_probabilities=marginals,
                joint_probabilities=self._joint_probabilities(query_variables, evidence),
                uncertainties={k: UncertaintyMeasure.of(v) for k, v in posteriors.items()},
                evidence_strength=self.evidence_strength(evidence, data),
            )

    def _update_beliefs(self, evidence: Mapping[str, Any], data: Sequence[Observation]) -> None:
        for variable, prior in self.priors.items():
            likelihood = self.likelihood(variable, evidence, data)
            self.posteriors[variable] = prior.update(likelihood, len(data))

    @staticmethod
    def likelihood(
        variable: str,
        evidence: Mapping[str, Any],
        data: Sequence[Observation],
    ) -> float:
        """Proportion of positive values of a variable among matching observations."""
        relevant = [point for point in data if point.matches(evidence)]
        values = [
            point.variables[variable]
            for point in relevant
            if point.variables.get(variable) is not None
        ]
        if not values:
            return 0.5
        return sum(1 for value in values if is_positive(value)) / len(values)

    def marginal_probability(self, variable: str, evidence: Mapping[str, Any]) -> float:
        cpt = self.conditional_probabilities.get(variable)
        if cpt is not None:
            return clamp(cpt.get_probability(evidence))

        posterior = self.posteriors.get(variable)
        if posterior is None:
            return 0.5
        return clamp(posterior.mean)

    def _joint_probabilities(
        self,
        variables: Sequence[str],
        evidence: Mapping[str, Any],
    ) -> Dict[str, float]:
        joints = {}
        for i, first in enumerate(variables):
            for second in variables[i + 1:]:
                joints[f"{first}_{second}"] = self._pairwise_joint(first, second, evidence)
        return joints

    def _pairwise_joint(self, first: str, second: str, evidence: Mapping[str, Any]) -> float:
        p_first = self.marginal_probability(first, evidence)
        p_second = self.marginal_probability(second, evidence)
        independent = p_first * p_second

        first_parents = self.parents_of(first)
        second_parents = self.parents_of(second)
        if second not in first_parents and first not in second_parents:
            return independent

        first_cpt = self.conditional_probabilities.get(first)
        second_cpt = self.conditional_probabilities.get(second)
        if first_cpt is not None and second in first_parents:
            conditional = first_cpt.get_probability({**evidence, second: True})
            return clamp(conditional * p_second)
        if second_cpt is not None and first in second_parents:
            conditional = second_cpt.get_probability({**evidence, first: True})
            return clamp(conditional * p_first)

        return independent * 0.8

    @staticmethod
    def evidence_strength(evidence: Mapping[str, Any], data: Sequence[Observation]) -> float:
        if not data:
            return 0.0
        matching = sum(1 for point in data if point.matches(evidence))
        return min(1.0, matching / len(data))

    def predict_with_uncertainty(
        self,
        inputs: Mapping[str, Any],
        target_variable: str,
        data: Sequence[Observation],
    ) -> PredictionWithUncertainty:
        """Posterior-mean prediction for a target variable given inputs as evidence."""
        inference = self.perform_inference(inputs, [target_variable], data)

        posterior = inference.posterior_distributions.get(target_variable)
        uncertainty = inference.uncertainties.get(target_variable)

        return PredictionWithUncertainty(
            predicted_value=posterior.mean if posterior is not None else 0.5,
            uncertainty=uncertainty or UncertaintyMeasure.unknown(),
            confidence=inference.evidence_strength,
            prediction_interval=uncertainty.confidence_interval if uncertainty else (0.0, 1.0),
        )
