"""
Treatment pathway optimization.

Generates candidate pathways (monotherapy, compatible combinations and
medication-first sequences), scores each one on efficacy, safety, cost and
quality of life, and selects the best pathway under the requested criteria.
Efficacy is adjusted by the causal effect of treatment estimated from the
patient's historical outcomes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from .causal_graph import CausalEffect, CausalGraphModel, EffectType
from .observations import Observation, clamp

logger = logging.getLogger(__name__)


class TreatmentType(Enum):
    """Kinds of treatment."""
    MEDICATION = "medication"
    SURGERY = "surgery"
    THERAPY = "therapy"
    LIFESTYLE = "lifestyle"
    MONITORING = "monitoring"
    COMBINATION = "combination"


class OptimizationCriterion(Enum):
    """Objectives a pathway can be optimized for."""
    EFFICACY = "efficacy"
    SAFETY = "safety"
    COST = "cost"
    QUALITY_OF_LIFE = "quality_of_life"
    PATIENT_PREFERENCE = "patient_preference"
    CLINICAL_GUIDELINES = "clinical_guidelines"


BASE_EFFICACY = {
    TreatmentType.MEDICATION: 0.7,
    TreatmentType.SURGERY: 0.9,
    TreatmentType.THERAPY: 0.6,
    TreatmentType.LIFESTYLE: 0.4,
}

BASE_RISK = {
    TreatmentType.MEDICATION: 0.2,
    TreatmentType.SURGERY: 0.4,
    TreatmentType.THERAPY: 0.1,
    TreatmentType.LIFESTYLE: 0.05,
}

TREATMENT_BURDEN = {
    TreatmentType.SURGERY: 0.3,
    TreatmentType.MEDICATION: 0.1,
    TreatmentType.THERAPY: 0.2,
    TreatmentType.LIFESTYLE: 0.05,
}

CRITERION_WEIGHTS = {
    OptimizationCriterion.EFFICACY: 0.4,
    OptimizationCriterion.SAFETY: 0.3,
    OptimizationCriterion.COST: 0.1,
    OptimizationCriterion.QUALITY_OF_LIFE: 0.15,
    OptimizationCriterion.CLINICAL_GUIDELINES: 0.05,
}

# Drug pairs with known interactions
INTERACTING_MEDICATIONS = [
    frozenset({"Aspirin", "Warfarin"}),
]

# (first, second) type transitions that are not allowed in a sequence
INVALID_SEQUENCES = {
    (TreatmentType.SURGERY, TreatmentType.MEDICATION),
    (TreatmentType.THERAPY, TreatmentType.MEDICATION),
}


@dataclass
class Treatment:
    """An available treatment option."""
    id: str
    name: str
    type: TreatmentType
    dosage: Optional[str] = None
    duration: Optional[int] = None  # days
    cost: Optional[float] = None
    side_effects: List[str] = field(default_factory=list)
    contraindications: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "dosage": self.dosage,
            "duration": self.duration,
            "cost": self.cost,
            "side_effects": list(self.side_effects),
            "contraindications": list(self.contraindications),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Treatment":
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            type=TreatmentType(str(data.get("type", "medication")).lower()),
            dosage=data.get("dosage"),
            duration=data.get("duration"),
            cost=data.get("cost"),
            side_effects=list(data.get("side_effects", [])),
            contraindications=list(data.get("contraindications", [])),
        )


@dataclass
class Demographics:
    """Basic patient demographics."""
    age: int
    gender: str
    weight: Optional[float] = None
    height: Optional[float] = None
    ethnicity: Optional[str] = None


@dataclass
class PatientProfile:
    """Clinical profile used to personalize pathway scoring."""
    demographics: Demographics
    medical_history: List[str] = field(default_factory=list)
    current_conditions: List[str] = field(default_factory=list)
    allergies: List[str] = field(default_factory=list)
    biomarkers: Dict[str, float] = field(default_factory=dict)
    genetic_factors: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatientProfile":
        """Deserialize from dictionary."""
        return cls(
            demographics=Demographics(**data["demographics"]),
            medical_history=list(data.get("medical_history", [])),
            current_conditions=list(data.get("current_conditions", [])),
            allergies=list(data.get("allergies", [])),
            biomarkers={k: float(v) for k, v in data.get("biomarkers", {}).items()},
            genetic_factors=dict(data.get("genetic_factors", {})),
        )

    def is_allergic_to(self, treatment: Treatment) -> bool:
        return any(
            allergy.lower() in side_effect.lower()
            for side_effect in treatment.side_effects
            for allergy in self.allergies
        )

    def is_contraindicated(self, treatment: Treatment) -> bool:
        return any(
            contraindication.lower() in condition.lower()
            for contraindication in treatment.contraindications
            for condition in self.medical_history
        )


@dataclass
class TreatmentConstraints:
    """Hard limits on which treatments may be used."""
    max_cost: Optional[float] = None
    max_duration: Optional[int] = None
    excluded_treatments: List[str] = field(default_factory=list)
    preferred_treatments: List[str] = field(default_factory=list)
    comorbidities: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreatmentConstraints":
        """Deserialize from dictionary."""
        return cls(
            max_cost=data.get("max_cost"),
            max_duration=data.get("max_duration"),
            excluded_treatments=list(data.get("excluded_treatments", [])),
            preferred_treatments=list(data.get("preferred_treatments", [])),
            comorbidities=list(data.get("comorbidities", [])),
        )


@dataclass
class TreatmentPathway:
    """An ordered treatment plan with its evaluation."""
    pathway_id: str
    treatments: List[Treatment]
    sequence: List[str]  # Treatment ids in order
    duration: int
    total_cost: float
    expected_efficacy: float
    risk_score: float  # 1 - safety
    quality_of_life: float
    overall_score: float
    rationale: str = ""

    @property
    def safety(self) -> float:
        return 1.0 - self.risk_score

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "pathway_id": self.pathway_id,
            "treatments": [t.to_dict() for t in self.treatments],
            "sequence": list(self.sequence),
            "duration": self.duration,
            "total_cost": self.total_cost,
            "expected_efficacy": self.expected_efficacy,
            "risk_score": self.risk_score,
            "quality_of_life": self.quality_of_life,
            "overall_score": self.overall_score,
            "rationale": self.rationale,
        }


@dataclass
class PathwayOptimizationResult:
    """Optimal pathway plus the runners-up."""
    optimal_pathway: TreatmentPathway
    alternative_pathways: List[TreatmentPathway]
    candidates_evaluated: int
    causal_effects: List[CausalEffect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "optimal_pathway": self.optimal_pathway.to_dict(),
            "alternative_pathways": [p.to_dict() for p in self.alternative_pathways],
            "candidates_evaluated": self.candidates_evaluated,
            "causal_effects": [e.to_dict() for e in self.causal_effects],
        }


@dataclass
class PathwayOptimizerConfig:
    """Configuration for pathway search."""
    max_candidates: int = 50
    n_alternatives: int = 3
    outcome_variable: str = "outcome"
    treatment_variable: str = "treatment"
    combination_risk_factor: float = 1.2
    allergy_risk: float = 0.3


@dataclass
class _EvaluatedPathway:
    treatments: List[Treatment]
    efficacy: float
    safety: float
    cost: float
    duration: int
    quality_of_life: float
    causal_effects: List[CausalEffect]
    overall_score: float


def is_compatible_combination(treatments: Sequence[Treatment]) -> bool:
    """No known drug interaction and no two treatments of the same type."""
    medication_names = {t.name for t in treatments if t.type == TreatmentType.MEDICATION}
    if any(pair <= medication_names for pair in INTERACTING_MEDICATIONS):
        return False
    return len({t.type for t in treatments}) == len(treatments)


def is_valid_sequence(first: Treatment, second: Treatment) -> bool:
    return (first.type, second.type) not in INVALID_SEQUENCES


class TreatmentPathwayOptimizer:
    """
    Searches treatment pathways for a single patient.

    Args:
        causal_model: Causal graph used to estimate treatment effects
        patient_profile: The patient being treated
        historical_outcomes: Observations for causal effect estimation
        config: Search configuration

    Example:
        optimizer = TreatmentPathwayOptimizer(model, profile, history)
        result = optimizer.optimize_pathway(treatments, constraints)
        print(result.optimal_pathway.rationale)
    """

    def __init__(
        self,
        causal_model: CausalGraphModel,
        patient_profile: PatientProfile,
        historical_outcomes: Sequence[Observation],
        config: Optional[PathwayOptimizerConfig] = None,
    ):
        self.causal_model = causal_model
        self.patient_profile = patient_profile
        self.historical_outcomes = list(historical_outcomes)
        self.config = config or PathwayOptimizerConfig()

    def optimize_pathway(
        self,
        available_treatments: Sequence[Treatment],
        constraints: Optional[TreatmentConstraints] = None,
        criteria: Optional[Sequence[OptimizationCriterion]] = None,
        time_horizon: int = 30,
    ) -> PathwayOptimizationResult:
        """
        Select the highest scoring pathway.

        Raises:
            ValueError: If no treatments are given, the horizon is not
                positive, or no candidate satisfies the constraints.
        """
        if not available_treatments:
            raise ValueError("At least one treatment must be available")
        if time_horizon <= 0:
            raise ValueError("Time horizon must be positive")
        criteria = list(criteria or [OptimizationCriterion.EFFICACY])

        candidates = self.generate_candidate_pathways(available_treatments, constraints)
        if not candidates:
            raise ValueError("No valid treatment pathways found")

        treatment_effect = self._treatment_effect()
        evaluated = [
            self._evaluate(candidate, criteria, treatment_effect)
            for candidate in candidates
        ]
        ranked = sorted(evaluated, key=lambda p: p.overall_score, reverse=True)
        optimal = ranked[0]

        logger.info(
            f"Evaluated {len(candidates)} candidate pathways; "
            f"best score {optimal.overall_score:.3f} "
            f"({' -> '.join(t.id for t in optimal.treatments)})"
        )

        alternatives = [
            self._to_pathway(
                "alt", pathway,
                f"Alternative pathway with score: {pathway.overall_score:.3f}",
            )
            for pathway in ranked[1:1 + self.config.n_alternatives]
        ]
        return PathwayOptimizationResult(
            optimal_pathway=self._to_pathway(
                "optimal", optimal, self._rationale(optimal, criteria)
            ),
            alternative_pathways=alternatives,
            candidates_evaluated=len(candidates),
            causal_effects=optimal.causal_effects,
        )

    # =========================================================================
    # Candidate generation
    # =========================================================================

    def generate_candidate_pathways(
        self,
        treatments: Sequence[Treatment],
        constraints: Optional[TreatmentConstraints] = None,
    ) -> List[List[Treatment]]:
        """Monotherapies, then compatible pairs, then medication-first sequences."""
        allowed = [t for t in treatments if self.satisfies_constraints(t, constraints)]

        candidates: List[List[Treatment]] = [[t] for t in allowed]

        for i, first in enumerate(allowed):
            for second in allowed[i + 1:]:
                if is_compatible_combination([first, second]):
                    candidates.append([first, second])

        first_line = [t for t in allowed if t.type == TreatmentType.MEDICATION]
        second_line = [t for t in allowed if t.type != TreatmentType.MEDICATION]
        for first in first_line:
            for second in second_line:
                if is_valid_sequence(first, second):
                    candidates.append([first, second])

        unique: Dict[Tuple[str, ...], List[Treatment]] = {}
        for candidate in candidates:
            unique.setdefault(tuple(t.id for t in candidate), candidate)
        return list(unique.values())[:self.config.max_candidates]

    def satisfies_constraints(
        self,
        treatment: Treatment,
        constraints: Optional[TreatmentConstraints] = None,
    ) -> bool:
        if constraints is not None:
            if (constraints.max_cost is not None and treatment.cost is not None
                    and treatment.cost > constraints.max_cost):
                return False
            if (constraints.max_duration is not None and treatment.duration is not None
                    and treatment.duration > constraints.max_duration):
                return False
            if treatment.id in constraints.excluded_treatments:
                return False
            if constraints.preferred_treatments and treatment.id not in constraints.preferred_treatments:
                return False

        if self.patient_profile.is_allergic_to(treatment):
            return False
        return not self.patient_profile.is_contraindicated(treatment)

    # =========================================================================
    # Evaluation
    # =========================================================================

    def _treatment_effect(self) -> float:
        return self.causal_model.apply_do_operator(
            self.config.outcome_variable,
            self.config.treatment_variable,
            1.0,
            self.historical_outcomes,
        )

    def _evaluate(
        self,
        treatments: List[Treatment],
        criteria: Sequence[OptimizationCriterion],
        treatment_effect: float,
    ) -> _EvaluatedPathway:
        causal_effects = [
            CausalEffect(
                treatment=t.name,
                outcome="health_outcome",
                effect_size=treatment_effect,
                effect_type=EffectType.AVERAGE_TREATMENT_EFFECT,
                confidence=0.8,
                p_value=0.05,
                description=f"Causal effect of {t.name} on health outcomes",
            )
            for t in treatments
        ]

        efficacy = self.pathway_efficacy(treatments, causal_effects)
        safety = self.pathway_safety(treatments)
        cost = sum(t.cost or 0.0 for t in treatments)
        quality_of_life = self.quality_of_life(treatments, safety)

        return _EvaluatedPathway(
            treatments=treatments,
            efficacy=efficacy,
            safety=safety,
            cost=cost,
            duration=sum(t.duration or 0 for t in treatments),
            quality_of_life=quality_of_life,
            causal_effects=causal_effects,
            overall_score=self.overall_score(efficacy, safety, cost, quality_of_life, criteria),
        )

    def pathway_efficacy(
        self,
        treatments: Sequence[Treatment],
        causal_effects: Sequence[CausalEffect],
    ) -> float:
        """Position-weighted efficacy; later treatments count less."""
        total = 0.0
        weight_sum = 0.0
        for index, treatment in enumerate(treatments):
            base = BASE_EFFICACY.get(treatment.type, 0.5)
            effect = causal_effects[index].effect_size if index < len(causal_effects) else 0.0
            weight = 1.0 / (index + 1.0)
            total += base * (1.0 + effect * 0.2) * weight
            weight_sum += weight

        total *= self.patient_efficacy_adjustment()
        return clamp(total / weight_sum, 0.0, 1.0)

    def patient_efficacy_adjustment(self) -> float:
        profile = self.patient_profile
        adjustment = 1.0

        age = profile.demographics.age
        if age < 30:
            adjustment *= 1.1
        elif age > 70:
            adjustment *= 0.9

        adjustment *= max(0.5, 1.0 - len(profile.medical_history) * 0.1)

        if profile.biomarkers.get("inflammation_marker", 0.0) > 10:
            adjustment *= 0.8
        if profile.biomarkers.get("immune_response", 0.0) > 5:
            adjustment *= 1.2

        return adjustment

    def pathway_safety(self, treatments: Sequence[Treatment]) -> float:
        total_risk = 0.0
        for treatment in treatments:
            risk = BASE_RISK.get(treatment.type, 0.15) + len(treatment.side_effects) * 0.1
            if self.patient_profile.is_allergic_to(treatment):
                risk += self.config.allergy_risk
            total_risk += risk

        if len(treatments) > 1:
            total_risk *= self.config.combination_risk_factor

        return max(0.0, 1.0 - total_risk / len(treatments))

    def quality_of_life(self, treatments: Sequence[Treatment], safety: float) -> float:
        impact = 1.0
        for treatment in treatments:
            impact *= 1.0 - TREATMENT_BURDEN.get(treatment.type, 0.15)

        impact *= safety
        impact *= max(0.8, 1.0 - (self.patient_profile.demographics.age - 50) * 0.005)
        return impact

    @staticmethod
    def overall_score(
        efficacy: float,
        safety: float,
        cost: float,
        quality_of_life: float,
        criteria: Sequence[OptimizationCriterion],
    ) -> float:
        """Weighted mean of the criterion values."""
        values = {
            OptimizationCriterion.EFFICACY: efficacy,
            OptimizationCriterion.SAFETY: safety,
            OptimizationCriterion.COST: 1.0 / (1.0 + cost / 1000.0),
            OptimizationCriterion.QUALITY_OF_LIFE: quality_of_life,
            OptimizationCriterion.CLINICAL_GUIDELINES: 0.8,
        }

        score = 0.0
        total_weight = 0.0
        for criterion in criteria:
            weight = CRITERION_WEIGHTS.get(criterion, 0.1)
            score += values.get(criterion, 0.5) * weight
            total_weight += weight

        return score / total_weight if total_weight > 0 else 0.5

    # =========================================================================
    # Selection
    # =========================================================================

    @staticmethod
    def _to_pathway(prefix: str, pathway: _EvaluatedPathway, rationale: str) -> TreatmentPathway:
        sequence = [t.id for t in pathway.treatments]
        return TreatmentPathway(
            pathway_id=f"{prefix}_{'_'.join(sequence)}",
            treatments=list(pathway.treatments),
            sequence=sequence,
            duration=pathway.duration,
            total_cost=pathway.cost,
            expected_efficacy=pathway.efficacy,
            risk_score=1.0 - pathway.safety,
            quality_of_life=pathway.quality_of_life,
            overall_score=pathway.overall_score,
            rationale=rationale,
        )

    @staticmethod
    def _rationale(pathway: _EvaluatedPathway, criteria: Sequence[OptimizationCriterion]) -> str:
        parts = [
            f"Selected based on {', '.join(c.value for c in criteria)} optimization"
        ]
        if pathway.efficacy > 0.8:
            parts.append(f"High expected efficacy: {pathway.efficacy * 100:.1f}%")
        if pathway.safety > 0.9:
            parts.append("Excellent safety profile")
        if pathway.cost < 500:
            parts.append("Cost-effective option")
        if pathway.quality_of_life > 0.8:
            parts.append("Minimal impact on quality of life")
        if pathway.causal_effects:
            parts.append("Supported by causal evidence from patient data")
        return ". ".join(parts)
