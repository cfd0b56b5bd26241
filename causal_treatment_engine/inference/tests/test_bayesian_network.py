"""Tests for the Bayesian network and its conjugate distributions."""

import math

import pytest

from causal_treatment_engine.inference.bayesian_network import (
    BayesianNetwork,
    BetaDistribution,
    ConditionalProbabilityTable,
    NormalDistribution,
    UncertaintyLevel,
    UncertaintyMeasure,
    default_prior,
    distribution_from_dict,
)
from causal_treatment_engine.inference.observations import Observation


def obs(**variables):
    return Observation(timestamp=0.0, variables=variables)


class TestDistributions:
    """Tests for Beta and Normal beliefs."""

    def test_beta_rejects_non_positive(self):
        with pytest.raises(ValueError):
            BetaDistribution(0.0, 1.0)

    def test_normal_rejects_non_positive_variance(self):
        with pytest.raises(ValueError):
            NormalDistribution(0.0, 0.0)

    def test_uniform_beta_moments(self):
        dist = BetaDistribution(1.0, 1.0)
        assert dist.mean == 0.5
        assert dist.variance == pytest.approx(1.0 / 12.0)
        assert dist.entropy() == pytest.approx(0.0, abs=1e-12)

    def test_beta_interval(self):
        lower, upper = BetaDistribution(1.0, 1.0).confidence_interval()
        assert lower == pytest.approx(0.025)
        assert upper == pytest.approx(0.975)

    def test_beta_update(self):
        updated = BetaDistribution(1.0, 1.0).update(0.7, 10)
        assert updated.alpha == pytest.approx(8.0)
        assert updated.beta == pytest.approx(4.0)

    def test_standard_normal(self):
        dist = NormalDistribution(0.0, 1.0)
        assert dist.entropy() == pytest.approx(0.5 * math.log(2 * math.pi * math.e))
        lower, upper = dist.confidence_interval()
        assert lower == pytest.approx(-1.959964, abs=1e-5)
        assert upper == pytest.approx(1.959964, abs=1e-5)

    def test_normal_update(self):
        updated = NormalDistribution(0.0, 1.0).update(1.0, 4)
        assert updated.mean == pytest.approx(0.8)
        assert updated.variance == pytest.approx(0.2)

    def test_update_without_data_is_identity(self):
        assert BetaDistribution(2.0, 3.0).update(0.5, 0) == BetaDistribution(2.0, 3.0)
        assert NormalDistribution(1.0, 2.0).update(0.5, 0) == NormalDistribution(1.0, 2.0)

    def test_from_dict(self):
        dist = BetaDistribution(2.0, 5.0)
        assert distribution_from_dict(dist.to_dict()) == dist
        with pytest.raises(ValueError):
            distribution_from_dict({"type": "poisson"})

    def test_default_prior(self):
        assert isinstance(default_prior("event_probability"), BetaDistribution)
        assert isinstance(default_prior("risk_score"), BetaDistribution)
        assert isinstance(default_prior("heart_rate"), NormalDistribution)


class TestConditionalProbabilityTable:
    """Tests for CPT lookups."""

    @pytest.fixture
    def cpt(self):
        return ConditionalProbabilityTable(
            variable="outcome_risk",
            parents=["treatment"],
            probabilities={"treatment=true": 0.9, "default": 0.2},
        )

    def test_matching_key(self, cpt):
        assert cpt.get_probability({"treatment": True}) == 0.9

    def test_missing_parent_uses_default(self, cpt):
        assert cpt.assignment_key({}) == "treatment=unknown"
        assert cpt.get_probability({}) == 0.2

    def test_no_default_gives_half(self):
        cpt = ConditionalProbabilityTable("x", ["a", "b"], {})
        assert cpt.assignment_key({"a": 1, "b": False}) == "a=1,b=false"
        assert cpt.get_probability({"a": 1}) == 0.5

    def test_round_trip(self, cpt):
        assert ConditionalProbabilityTable.from_dict(cpt.to_dict()) == cpt


class TestUncertainty:
    """Tests for uncertainty classification."""

    def test_levels(self):
        assert UncertaintyLevel.from_variance(0.05) == UncertaintyLevel.LOW
        assert UncertaintyLevel.from_variance(0.1) == UncertaintyLevel.MEDIUM
        assert UncertaintyLevel.from_variance(0.49) == UncertaintyLevel.MEDIUM
        assert UncertaintyLevel.from_variance(0.5) == UncertaintyLevel.HIGH

    def test_measure_of_normal(self):
        measure = UncertaintyMeasure.of(NormalDistribution(0.0, 1.0))
        assert measure.uncertainty_level == UncertaintyLevel.HIGH
        assert measure.to_dict()["uncertainty_level"] == "high"


class TestBayesianNetworkValidation:
    """Tests for network construction."""

    def test_unknown_structure_parent(self):
        with pytest.raises(ValueError, match="Unknown variable in structure"):
            BayesianNetwork(["a"], {"b": ["a"]})

    def test_unknown_structure_child(self):
        with pytest.raises(ValueError, match="Unknown variable in structure"):
            BayesianNetwork(["a"], {"a": ["b"]})

    def test_unknown_cpt_variable(self):
        cpt = ConditionalProbabilityTable("b", [], {})
        with pytest.raises(ValueError, match="CPT defined for unknown variable"):
            BayesianNetwork(["a"], {}, {"b": cpt})

    def test_cycle_rejected(self):
        with pytest.raises(ValueError, match="contains cycles"):
            BayesianNetwork(["a", "b"], {"a": ["b"], "b": ["a"]})

    def test_duplicate_variables_collapsed(self):
        network = BayesianNetwork(["a", "b", "a"])
        assert network.variables == ["a", "b"]

    def test_parents_of(self):
        network = BayesianNetwork(["a", "b", "c"], {"a": ["c"], "b": ["c"]})
        assert network.parents_of("c") == ["a", "b"]
        assert network.parents_of("a") == []


class TestBayesianInference:
    """Tests for belief updates and queries."""

    def test_conjugate_beta_update(self):
        network = BayesianNetwork(["event_probability"])
        data = [obs(event_probability=1) for _ in range(7)]
        data += [obs(event_probability=0) for _ in range(3)]

        result = network.perform_inference({}, ["event_probability"], data)
        posterior = result.posterior_distributions["event_probability"]

        assert posterior.alpha == pytest.approx(8.0)
        assert posterior.beta == pytest.approx(4.0)
        assert result.marginal_probabilities["event_probability"] == pytest.approx(8.0 / 12.0)

    def test_half_positive_risk(self):
        network = BayesianNetwork(["risk_score"])
        data = [obs(risk_score=i % 2) for i in range(20)]

        posterior = network.perform_inference({}, ["risk_score"], data).posterior_distributions["risk_score"]
        assert posterior.alpha == pytest.approx(11.0)
        assert posterior.beta == pytest.approx(11.0)

    def test_normal_posterior(self):
        network = BayesianNetwork(["score"])
        data = [obs(score=1.0) for _ in range(4)]

        result = network.perform_inference({}, ["score"], data)
        posterior = result.posterior_distributions["score"]

        assert posterior.mean == pytest.approx(0.8)
        assert posterior.variance == pytest.approx(0.2)
        assert result.uncertainties["score"].uncertainty_level == UncertaintyLevel.MEDIUM

    def test_evidence_filters_likelihood(self):
        network = BayesianNetwork(["event_probability", "group"])
        data = [obs(group="a", event_probability=1) for _ in range(5)]
        data += [obs(group="b", event_probability=0) for _ in range(5)]

        assert network.likelihood("event_probability", {"group": "a"}, data) == 1.0
        assert network.likelihood("event_probability", {"group": "b"}, data) == 0.0
        assert network.likelihood("event_probability", {"group": "c"}, data) == 0.5

    def test_evidence_strength(self):
        data = [obs(treatment="A") for _ in range(10)]
        data += [obs(treatment="B") for _ in range(10)]
        assert BayesianNetwork.evidence_strength({"treatment": "A"}, data) == 0.5
        assert BayesianNetwork.evidence_strength({}, data) == 1.0
        assert BayesianNetwork.evidence_strength({"treatment": "A"}, []) == 0.0

    def test_unknown_query_variable(self):
        network = BayesianNetwork(["score"])
        result = network.perform_inference({}, ["missing"], [])

        assert result.marginal_probabilities["missing"] == 0.5
        assert result.posterior_distributions["missing"] == NormalDistribution(0.0, 1.0)

    def test_cpt_marginal_is_clamped(self):
        cpt = ConditionalProbabilityTable("outcome_risk", [], {"default": 1.4})
        network = BayesianNetwork(["outcome_risk"], {}, {"outcome_risk": cpt})
        assert network.marginal_probability("outcome_risk", {}) == 1.0

    def test_marginals_in_unit_interval(self):
        network = BayesianNetwork(["a_probability", "score"])
        data = [obs(a_probability=1, score=10.0) for _ in range(30)]
        result = network.perform_inference({}, ["a_probability", "score"], data)
        for value in result.marginal_probabilities.values():
            assert 0.0 <= value <= 1.0
        for value in result.joint_probabilities.values():
            assert 0.0 <= value <= 1.0


class TestJointProbabilities:
    """Tests for pairwise joints."""

    def test_independent_pair(self):
        network = BayesianNetwork(["a_probability", "b_probability"])
        result = network.perform_inference({}, ["a_probability", "b_probability"], [])
        assert result.joint_probabilities == {
            "a_probability_b_probability": pytest.approx(0.25)
        }

    def test_dependent_pair_uses_cpt(self):
        cpt = ConditionalProbabilityTable(
            "outcome_risk", ["treatment_probability"], {"treatment_probability=true": 0.9}
        )
        network = BayesianNetwork(
            ["treatment_probability", "outcome_risk"],
            {"treatment_probability": ["outcome_risk"]},
            {"outcome_risk": cpt},
        )
        result = network.perform_inference({}, ["treatment_probability", "outcome_risk"], [])
        assert result.joint_probabilities["treatment_probability_outcome_risk"] == pytest.approx(0.45)

    def test_dependent_pair_without_cpt(self):
        network = BayesianNetwork(
            ["a_probability", "b_probability"], {"a_probability": ["b_probability"]}
        )
        result = network.perform_inference({}, ["a_probability", "b_probability"], [])
        assert result.joint_probabilities["a_probability_b_probability"] == pytest.approx(0.2)


class TestPrediction:
    """Tests for predict_with_uncertainty."""

    def test_prediction(self):
        network = BayesianNetwork(["event_probability"])
        data = [obs(event_probability=1) for _ in range(7)]
        data += [obs(event_probability=0) for _ in range(3)]

        prediction = network.predict_with_uncertainty({}, "event_probability", data)

        assert prediction.predicted_value == pytest.approx(8.0 / 12.0)
        assert prediction.confidence == 1.0
        lower, upper = prediction.prediction_interval
        assert lower < prediction.predicted_value < upper

    def test_prediction_without_data(self):
        network = BayesianNetwork(["score"])
        prediction = network.predict_with_uncertainty({}, "score", [])
        assert prediction.predicted_value == 0.0
        assert prediction.confidence == 0.0
        assert prediction.uncertainty.uncertainty_level == UncertaintyLevel.HIGH
