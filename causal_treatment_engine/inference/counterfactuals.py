"""
Counterfactual reasoning engine.

Enables queries like:
- "What if this patient had received a higher dosage?"
- "What if this patient had switched to another treatment?"

Factual outcomes come from rule-based clinical response curves. Counterfactual
outcomes are estimated on the historical observations most similar to the
counterfactual scenario (nearest-neighbor matching), through the causal
graph's do-operator, matched treatment switchers, or a propensity-style
match rate.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
import logging
import math

import numpy as np
from scipy import stats

from .causal_graph import CausalGraphModel
from .observations import Observation, as_number, clamp

logger = logging.getLogger(__name__)


@dataclass
class CounterfactualConfig:
    """Configuration for counterfactual matching."""
    n_neighbors: int = 10
    similarity_scales: Dict[str, float] = field(default_factory=lambda: {
        "age": 20.0,  # years
        "treatment_dosage": 100.0,  # mg
        "blood_pressure": 50.0,  # mmHg
    })
    default_scale: float = 10.0
    categorical_mismatch: float = 0.5
    propensity_variables: List[str] = field(
        default_factory=lambda: ["age", "gender", "comorbidities"]
    )
    min_match_rate: float = 0.1
    outcome_variable: str = "outcome"


@dataclass
class Scenario:
    """A named assignment of patient variables."""
    variables: Dict[str, Any]
    timestamp: Optional[float] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "variables": dict(self.variables),
            "timestamp": self.timestamp,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scenario":
        """Deserialize from dictionary."""
        return cls(
            variables=dict(data.get("variables", {})),
            timestamp=data.get("timestamp"),
            context=dict(data.get("context", {})),
        )


@dataclass
class ScenarioOutcome:
    """Simulated result of a scenario."""
    scenario_id: str
    outcome: Dict[str, Any]
    probability: float
    confidence: float
    explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "scenario_id": self.scenario_id,
            "outcome": self.outcome,
            "probability": self.probability,
            "confidence": self.confidence,
            "explanation": self.explanation,
        }


@dataclass
class CausalContrast:
    """Counterfactual minus factual value of one outcome variable."""
    variable: str
    factual_value: float
    counterfactual_value: float
    difference: float
    significance: float

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "variable": self.variable,
            "factual_value": self.factual_value,
            "counterfactual_value": self.counterfactual_value,
            "difference": self.difference,
            "significance": self.significance,
        }


@dataclass
class WhatIfAnalysis:
    """Narrative summary of a counterfactual comparison."""
    key_insights: List[str]
    potential_benefits: List[str]
    potential_risks: List[str]
    actionable_recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "key_insights": self.key_insights,
            "potential_benefits": self.potential_benefits,
            "potential_risks": self.potential_risks,
            "actionable_recommendations": self.actionable_recommendations,
        }


@dataclass
class CounterfactualReport:
    """Factual and counterfactual outcomes with their comparison."""
    factual_outcome: ScenarioOutcome
    counterfactual_outcomes: List[ScenarioOutcome]
    causal_contrasts: List[CausalContrast]
    what_if_analysis: WhatIfAnalysis
    recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "factual_outcome": self.factual_outcome.to_dict(),
            "counterfactual_outcomes": [o.to_dict() for o in self.counterfactual_outcomes],
            "causal_contrasts": [c.to_dict() for c in self.causal_contrasts],
            "what_if_analysis": self.what_if_analysis.to_dict(),
            "recommendations": self.recommendations,
        }


def treatment_efficacy(dosage: float, factors: Mapping[str, Any]) -> float:
    """
    Dose-response efficacy adjusted for age and comorbidities.

    Younger patients respond better; each comorbidity costs 10%.
    """
    age = as_number(factors.get("age"))
    comorbidities = as_number(factors.get("comorbidities"))
    age = 50.0 if age is None else age
    comorbidities = 0.0 if comorbidities is None else comorbidities

    efficacy = min(1.0, dosage / 100.0)
    efficacy *= clamp(1.0 - (age - 30.0) / 100.0, 0.5, 1.5)
    efficacy *= clamp(1.0 - comorbidities * 0.1, 0.3, 1.0)
    return clamp(efficacy)


def side_effect_risk(dosage: float, factors: Mapping[str, Any]) -> float:
    """Dose-dependent side effect risk, higher with age and poor kidney function."""
    age = as_number(factors.get("age"))
    kidney_function = as_number(factors.get("kidney_function"))
    age = 50.0 if age is None else age
    kidney_function = 1.0 if kidney_function is None else kidney_function

    risk = dosage / 200.0
    risk *= clamp(0.5 + (age - 20.0) / 100.0, 0.5, 2.0)
    risk *= clamp(2.0 - kidney_function, 1.0, 3.0)
    return clamp(risk)


def contrast_significance(difference: float, sample_size: int) -> float:
    """
    Simplified two-tailed z-test using |difference| / 2 as the standard deviation.

    Returns 1.0 when there is no difference and 0.0 without historical data.
    """
    diff = abs(difference)
    if diff == 0:
        return 1.0
    if sample_size <= 0:
        return 0.0
    z_score = diff / ((diff / 2.0) / math.sqrt(sample_size))
    return float(1.0 - 2 * stats.norm.cdf(-abs(z_score)))


class CounterfactualEngine:
    """
    Simulates factual and counterfactual treatment scenarios for a patient.

    Args:
        causal_model: Causal graph used for dosage interventions
        historical_data: Observations used for nearest-neighbor matching
        config: Matching configuration
    """

    def __init__(
        self,
        causal_model: CausalGraphModel,
        historical_data: Sequence[Observation],
        config: Optional[CounterfactualConfig] = None,
    ):
        self.causal_model = causal_model
        self.historical_data = list(historical_data)
        self.config = config or CounterfactualConfig()

    def generate_counterfactuals(
        self,
        factual_scenario: Scenario,
        counterfactual_scenarios: Sequence[Scenario],
        outcome_variables: Optional[Sequence[str]] = None,
    ) -> CounterfactualReport:
        """Simulate every scenario and compare each counterfactual to the factual one."""
        factual = self.simulate_factual_outcome(factual_scenario)
        counterfactuals = [
            self.simulate_counterfactual_outcome(scenario, factual_scenario, index)
            for index, scenario in enumerate(counterfactual_scenarios)
        ]

        contrasts = self.calculate_causal_contrasts(
            factual, counterfactuals, list(outcome_variables or ["outcome"])
        )
        analysis = self.what_if_analysis(factual, counterfactuals, contrasts)

        logger.info(
            f"Generated {len(counterfactuals)} counterfactual outcomes "
            f"and {len(contrasts)} contrasts"
        )
        return CounterfactualReport(
            factual_outcome=factual,
            counterfactual_outcomes=counterfactuals,
            causal_contrasts=contrasts,
            what_if_analysis=analysis,
            recommendations=self.recommendations(contrasts, analysis),
        )

    # =========================================================================
    # Simulation
    # =========================================================================

    def simulate_factual_outcome(self, scenario: Scenario) -> ScenarioOutcome:
        outcome: Dict[str, Any] = {}
        probability = 1.0
        confidence = 0.0
        explanations = []

        for variable, value in scenario.variables.items():
            if variable == "treatment_dosage":
                dosage = as_number(value) or 0.0
                efficacy = treatment_efficacy(dosage, scenario.variables)
                side_effects = side_effect_risk(dosage, scenario.variables)

                outcome["efficacy"] = efficacy
                outcome["side_effects"] = side_effects
                outcome["quality_of_life"] = max(0.0, 1.0 - side_effects * 0.3)

                probability *= 0.8 + efficacy * 0.2
                confidence += 0.9
                explanations.append(
                    f"Treatment dosage of {dosage}mg predicted efficacy: {efficacy * 100:.1f}%"
                )
            elif variable == "lifestyle_changes":
                adherence = as_number(value) or 0.0
                benefit = adherence * 0.2

                outcome["lifestyle_benefit"] = benefit
                probability *= 0.9 + adherence * 0.1
                confidence += 0.8
                explanations.append(
                    f"Lifestyle adherence predicted additional benefit: {benefit * 100:.1f}%"
                )
            else:
                outcome[variable] = value

        return ScenarioOutcome(
            scenario_id="factual",
            outcome=outcome,
            probability=min(1.0, probability),
            confidence=min(1.0, confidence / max(1, len(scenario.variables))),
            explanation="; ".join(explanations),
        )

    def simulate_counterfactual_outcome(
        self,
        scenario: Scenario,
        factual_scenario: Scenario,
        index: int = 0,
    ) -> ScenarioOutcome:
        outcome: Dict[str, Any] = {}
        probability = 1.0
        confidence = 0.0
        explanations = []

        similar = self.find_similar_observations(scenario)

        for variable, value in scenario.variables.items():
            if variable == "treatment_dosage":
                dosage = as_number(value) or 0.0
                factual_dosage = as_number(factual_scenario.variables.get(variable)) or 0.0

                difference = self._dosage_effect(dosage, similar) - self._dosage_effect(
                    factual_dosage, similar
                )
                outcome["counterfactual_efficacy"] = clamp(0.5 + difference)
                outcome["treatment_difference"] = difference

                probability *= 0.7 + abs(difference) * 0.3
                confidence += 0.7
                explanations.append(
                    f"Counterfactual dosage change predicted effect difference: {difference:.3f}"
                )
            elif variable == "alternative_treatment":
                alternative = str(value)
                current = factual_scenario.variables.get("current_treatment")
                benefit = self.treatment_switch_effect(
                    alternative, "none" if current is None else str(current), similar
                )

                outcome["switch_benefit"] = benefit
                probability *= 0.8 + abs(benefit) * 0.2
                confidence += 0.75
                explanations.append(
                    f"Switching to {alternative} predicted benefit: {benefit * 100:.1f}%"
                )
            else:
                propensity = self.propensity_score(scenario, similar)
                outcome["propensity_score"] = propensity
                probability *= propensity
                confidence += 0.6

        return ScenarioOutcome(
            scenario_id=f"counterfactual_{index}",
            outcome=outcome,
            probability=min(1.0, probability),
            confidence=min(1.0, confidence / max(1, len(scenario.variables))),
            explanation="; ".join(explanations),
        )

    def _dosage_effect(self, dosage: float, cohort: Sequence[Observation]) -> float:
        return self.causal_model.interventional_expectation(
            self.config.outcome_variable, "treatment_dosage", dosage, cohort
        )

    # =========================================================================
    # Matching
    # =========================================================================

    def find_similar_observations(self, scenario: Scenario) -> List[Observation]:
        """The most similar historical observations, best first."""
        scored = [
            (self.scenario_similarity(scenario, point), position, point)
            for position, point in enumerate(self.historical_data)
        ]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [point for _, _, point in scored[:self.config.n_neighbors]]

    def scenario_similarity(self, scenario: Scenario, point: Observation) -> float:
        """Mean per-variable similarity over variables both sides share."""
        similarities = [
            self.variable_similarity(variable, value, point.variables[variable])
            for variable, value in scenario.variables.items()
            if point.variables.get(variable) is not None
        ]
        if not similarities:
            return 0.0
        return float(np.mean(similarities))

    def variable_similarity(self, variable: str, first: Any, second: Any) -> float:
        x, y = as_number(first), as_number(second)
        if x is not None and y is not None:
            scale = self.config.similarity_scales.get(variable, self.config.default_scale)
            return max(0.0, 1.0 - abs(x - y) / scale)
        if str(first) == str(second):
            return 1.0
        return self.config.categorical_mismatch

    @staticmethod
    def treatment_switch_effect(
        new_treatment: str,
        old_treatment: str,
        cohort: Sequence[Observation],
    ) -> float:
        """Mean post - pre switch outcome among matched switchers."""
        if new_treatment == old_treatment:
            return 0.0

        improvements = []
        for point in cohort:
            if point.interventions.get("treatment_switch") is not True:
                continue
            if (point.variables.get("old_treatment") != old_treatment
                    or point.variables.get("new_treatment") != new_treatment):
                continue
            pre = point.get_number("pre_switch_outcome")
            post = point.get_number("post_switch_outcome")
            if pre is not None and post is not None:
                improvements.append(post - pre)

        if not improvements:
            return 0.0
        return float(np.mean(improvements))

    def propensity_score(self, scenario: Scenario, cohort: Sequence[Observation]) -> float:
        """Product of clamped match rates over the propensity variables."""
        score = 1.0
        for variable in self.config.propensity_variables:
            value = scenario.variables.get(variable)
            if value is None:
                continue
            if cohort:
                matches = sum(1 for point in cohort if point.variables.get(variable) == value)
                rate = matches / len(cohort)
            else:
                rate = 0.0
            score *= clamp(rate, self.config.min_match_rate, 1.0)
        return score

    # =========================================================================
    # Comparison
    # =========================================================================

    def calculate_causal_contrasts(
        self,
        factual: ScenarioOutcome,
        counterfactuals: Sequence[ScenarioOutcome],
        outcome_variables: Sequence[str],
    ) -> List[CausalContrast]:
        contrasts = []
        for counterfactual in counterfactuals:
            for variable in outcome_variables:
                factual_value = as_number(factual.outcome.get(variable))
                counterfactual_value = as_number(counterfactual.outcome.get(variable))
                if factual_value is None or counterfactual_value is None:
                    continue

                difference = counterfactual_value - factual_value
                contrasts.append(CausalContrast(
                    variable=variable,
                    factual_value=factual_value,
                    counterfactual_value=counterfactual_value,
                    difference=difference,
                    significance=contrast_significance(difference, len(self.historical_data)),
                ))
        return contrasts

    @staticmethod
    def what_if_analysis(
        factual: ScenarioOutcome,
        counterfactuals: Sequence[ScenarioOutcome],
        contrasts: Sequence[CausalContrast],
    ) -> WhatIfAnalysis:
        insights: List[str] = []
        benefits: List[str] = []
        risks: List[str] = []
        actions: List[str] = []

        by_variable: Dict[str, List[float]] = {}
        for contrast in contrasts:
            by_variable.setdefault(contrast.variable, []).append(contrast.difference)

        for variable, differences in by_variable.items():
            mean_difference = float(np.mean(differences))
            if variable == "efficacy":
                if mean_difference > 0.1:
                    insights.append(
                        f"Alternative scenarios show {mean_difference * 100:.1f}% higher efficacy"
                    )
                    benefits.append("Improved treatment outcomes possible")
                elif mean_difference < -0.1:
                    risks.append(
                        f"Alternative scenarios may reduce efficacy by {abs(mean_difference) * 100:.1f}%"
                    )
            elif variable == "side_effects":
                if mean_difference < -0.1:
                    benefits.append("Reduced side effect risk in alternative scenarios")
                    actions.append("Consider alternative treatments to minimize side effects")
            elif variable == "quality_of_life":
                if mean_difference > 0.05:
                    insights.append("Counterfactual scenarios suggest better quality of life outcomes")
                    benefits.append("Enhanced patient well-being possible")

        if any(c.probability > factual.probability for c in counterfactuals):
            insights.append("Some counterfactual scenarios have higher success probabilities")
        if any(c.significance < 0.01 for c in contrasts):
            insights.append("Statistically significant differences found in counterfactual analysis")

        return WhatIfAnalysis(
            key_insights=insights or ["No significant counterfactual differences identified"],
            potential_benefits=benefits or ["Current treatment appears optimal"],
            potential_risks=risks or ["Minimal additional risks identified"],
            actionable_recommendations=actions or [
                "Continue monitoring current treatment effectiveness"
            ],
        )

    @staticmethod
    def recommendations(
        contrasts: Sequence[CausalContrast],
        analysis: WhatIfAnalysis,
    ) -> List[str]:
        recommendations = list(analysis.actionable_recommendations)

        improvements = [c.variable for c in contrasts if c.difference > 0 and c.significance < 0.05]
        worsening = [c.variable for c in contrasts if c.difference < 0 and c.significance < 0.05]
        if improvements:
            recommendations.append(
                f"Consider implementing scenarios with significant improvements: {', '.join(improvements)}"
            )
        if worsening:
            recommendations.append(
                f"Avoid scenarios that may worsen outcomes: {', '.join(worsening)}"
            )

        recommendations.append(
            "Use counterfactual analysis results to inform shared decision-making with patients"
        )
        recommendations.append(
            "Monitor patient response closely and re-evaluate if conditions change"
        )
        return list(dict.fromkeys(recommendations))
