"""
Tests for the causal analysis service.

These tests drive every service operation end to end with small synthetic
patient histories.
"""

from unittest.mock import patch

import numpy as np
import pytest

from causal_treatment_engine.inference.observations import Observation


def binary_history(n=20):
    """Treated observations score 0.8, controls 0.3."""
    return [
        Observation(
            timestamp=float(i),
            variables={"treatment": i % 2, "outcome": 0.8 if i % 2 else 0.3},
        )
        for i in range(n)
    ]


def dosage_history():
    dosages = [10.0, 20.0, 30.0, 40.0, 50.0, 60.0, 70.0, 80.0, 90.0, 100.0]
    efficacy = [0.12, 0.19, 0.33, 0.41, 0.48, 0.62, 0.69, 0.81, 0.88, 0.97]
    return [
        Observation(
            timestamp=float(i),
            variables={"treatment_dosage": d, "efficacy": e, "outcome": d / 100.0},
        )
        for i, (d, e) in enumerate(zip(dosages, efficacy))
    ]


@pytest.fixture
def quiet_config():
    from causal_treatment_engine.config import EngineConfig

    return EngineConfig(verbose=False)


# =============================================================================
# Test requests
# =============================================================================

class TestRequests:
    """Tests for request validation and parsing."""

    def test_empty_patient_id(self):
        """Test that a patient id is required."""
        from causal_treatment_engine.pipelines import CausalAnalysisRequest

        with pytest.raises(ValueError, match="patient_id"):
            CausalAnalysisRequest("", ["treatment"], ["outcome"])

    def test_empty_variables(self):
        """Test that treatment and outcome lists are required."""
        from causal_treatment_engine.pipelines import CausalAnalysisRequest

        with pytest.raises(ValueError):
            CausalAnalysisRequest("p1", [], ["outcome"])

    def test_analysis_from_dict(self):
        """Test parsing historical data from plain dictionaries."""
        from causal_treatment_engine.pipelines import CausalAnalysisRequest

        request = CausalAnalysisRequest.from_dict({
            "patient_id": "p1",
            "treatment_variables": ["treatment"],
            "outcome_variables": ["outcome"],
            "historical_data": [{"timestamp": 1, "variables": {"treatment": 1}}],
        })
        assert isinstance(request.historical_data[0], Observation)
        assert request.historical_data[0].variables == {"treatment": 1}

    def test_optimization_from_dict(self):
        """Test parsing criteria, treatments and profile."""
        from causal_treatment_engine.inference.pathway_optimizer import OptimizationCriterion
        from causal_treatment_engine.pipelines import TreatmentOptimizationRequest

        request = TreatmentOptimizationRequest.from_dict({
            "patient_id": "p1",
            "available_treatments": [{"id": "med_a", "type": "medication"}],
            "patient_profile": {"demographics": {"age": 45, "gender": "F"}},
            "optimization_criteria": ["EFFICACY", "quality_of_life"],
            "constraints": {"max_cost": 500},
        })
        assert request.optimization_criteria == [
            OptimizationCriterion.EFFICACY,
            OptimizationCriterion.QUALITY_OF_LIFE,
        ]
        assert request.constraints.max_cost == 500
        assert request.time_horizon == 30

    def test_optimization_default_criteria(self):
        """Test the default optimization criteria."""
        from causal_treatment_engine.inference.pathway_optimizer import (
            Demographics,
            OptimizationCriterion,
            PatientProfile,
        )
        from causal_treatment_engine.pipelines import TreatmentOptimizationRequest

        request = TreatmentOptimizationRequest("p1", [], PatientProfile(Demographics(45, "F")))
        assert request.optimization_criteria == [
            OptimizationCriterion.EFFICACY,
            OptimizationCriterion.SAFETY,
            OptimizationCriterion.COST,
        ]

    def test_bayesian_from_dict(self):
        """Test parsing CPTs keyed by variable."""
        from causal_treatment_engine.pipelines import BayesianInferenceRequest

        request = BayesianInferenceRequest.from_dict({
            "patient_id": "p1",
            "query_variables": ["outcome_risk"],
            "conditional_probabilities": {
                "outcome_risk": {"parents": ["treatment"], "probabilities": {"default": 0.3}},
            },
        })
        cpt = request.conditional_probabilities["outcome_risk"]
        assert cpt.variable == "outcome_risk"
        assert cpt.get_probability({}) == 0.3


# =============================================================================
# Test causal analysis
# =============================================================================

class TestCausalAnalysis:
    """Tests for perform_causal_analysis."""

    def test_default_graph_without_history(self, quiet_config):
        """Test analysis with no data falls back to the default graph."""
        from causal_treatment_engine.pipelines import CausalAnalysisRequest, CausalAnalysisService

        service = CausalAnalysisService(quiet_config)
        response = service.perform_causal_analysis(
            CausalAnalysisRequest("p1", ["treatment_dosage"], ["efficacy"])
        )

        assert len(response.causal_graph.nodes) == 10
        assert len(response.causal_graph.edges) == 8
        effect = response.causal_effects[0]
        assert effect.effect_size == 0.0
        assert effect.confidence == 0.0
        assert effect.p_value == 0.1
        interval = response.confidence_intervals["treatment_dosage_efficacy"]
        assert interval.upper == pytest.approx(1.96 / np.sqrt(10))
        assert interval.lower == pytest.approx(-1.96 / np.sqrt(10))
        assert response.metadata.data_quality_score == 0.0
        assert response.metadata.model_version == "1.0.0"

    def test_learned_graph_from_history(self, quiet_config):
        """Test analysis on a learned graph with a clear effect."""
        from causal_treatment_engine.pipelines import CausalAnalysisRequest, CausalAnalysisService

        data = binary_history(20)
        service = CausalAnalysisService(quiet_config)
        response = service.perform_causal_analysis(
            CausalAnalysisRequest("p1", ["treatment"], ["outcome"], historical_data=data)
        )

        assert [(e.source, e.target) for e in response.causal_graph.edges] == [
            ("treatment", "outcome")
        ]
        effect = response.causal_effects[0]
        assert effect.effect_size == pytest.approx(0.5)
        assert effect.confidence == pytest.approx(0.4)
        assert effect.p_value == 0.05
        interval = response.confidence_intervals["treatment_outcome"]
        assert interval.upper - interval.lower == pytest.approx(2 * 1.96 / np.sqrt(20))
        assert response.metadata.data_quality_score == pytest.approx(0.6)

    def test_history_provider(self, quiet_config):
        """Test that the history provider is used when the request has no data."""
        from causal_treatment_engine.pipelines import CausalAnalysisRequest, CausalAnalysisService

        requested = []

        def provider(patient_id):
            requested.append(patient_id)
            return binary_history(20)

        service = CausalAnalysisService(quiet_config, history_provider=provider)
        response = service.perform_causal_analysis(
            CausalAnalysisRequest("p7", ["treatment"], ["outcome"])
        )

        assert requested == ["p7"]
        assert response.causal_effects[0].effect_size == pytest.approx(0.5)

    def test_causal_graph_cached(self, quiet_config):
        """Test that the causal graph is built once per patient."""
        from causal_treatment_engine.pipelines import (
            CausalAnalysisRequest,
            CausalAnalysisService,
            ModelKind,
        )

        service = CausalAnalysisService(quiet_config)
        request = CausalAnalysisRequest("p1", ["treatment"], ["outcome"], historical_data=[])
        service.perform_causal_analysis(request)
        service.perform_causal_analysis(request)

        assert service.registry.version("p1", ModelKind.CAUSAL_GRAPH) == 1

    def test_graph_rebuilt_when_history_changes(self, quiet_config):
        """Test that a request with a different history gets a fresh graph."""
        from causal_treatment_engine.inference.observations import history_fingerprint
        from causal_treatment_engine.pipelines import (
            CausalAnalysisRequest,
            CausalAnalysisService,
            ModelKind,
        )

        reversed_history = [
            Observation(
                timestamp=float(i),
                variables={"treatment": i % 2, "outcome": 0.1 if i % 2 else 0.9},
            )
            for i in range(20)
        ]
        service = CausalAnalysisService(quiet_config)
        service.perform_causal_analysis(
            CausalAnalysisRequest("p1", ["treatment"], ["outcome"], historical_data=binary_history(20))
        )
        response = service.perform_causal_analysis(
            CausalAnalysisRequest("p1", ["treatment"], ["outcome"], historical_data=reversed_history)
        )

        assert response.causal_effects[0].effect_size == pytest.approx(-0.8)
        assert service.registry.version("p1", ModelKind.CAUSAL_GRAPH) == 2
        cached = service.registry.get("p1", ModelKind.CAUSAL_GRAPH)
        assert cached.source_fingerprint == history_fingerprint(reversed_history)

    def test_consecutive_analyses_export_same_graph(self, quiet_config):
        """Test that effect estimation leaves the cached graph untouched."""
        from causal_treatment_engine.pipelines import (
            CausalAnalysisRequest,
            CausalAnalysisService,
            ModelKind,
        )

        service = CausalAnalysisService(quiet_config)
        request = CausalAnalysisRequest(
            "p1", ["treatment"], ["outcome"], historical_data=binary_history(20)
        )
        first = service.perform_causal_analysis(request)
        second = service.perform_causal_analysis(request)

        assert first.causal_graph.to_dict() == second.causal_graph.to_dict()
        nodes = {node.id: node for node in second.causal_graph.nodes}
        assert nodes["treatment"].properties["intervened"] is True
        assert nodes["outcome"].properties["intervened"] is False
        assert service.registry.get("p1", ModelKind.CAUSAL_GRAPH).interventions == {}

    def test_overlapping_variable_names_stay_acyclic(self, quiet_config):
        """Test that names matching several domain pairs never produce a cycle."""
        from causal_treatment_engine.pipelines import (
            CausalAnalysisRequest,
            CausalAnalysisService,
            ModelKind,
        )

        data = [
            Observation(
                timestamp=float(i),
                variables={
                    "treatment_outcome": i % 2,
                    "adherence_outcome": 0.8 if i % 2 else 0.3,
                },
            )
            for i in range(20)
        ]
        service = CausalAnalysisService(quiet_config)
        response = service.perform_causal_analysis(CausalAnalysisRequest(
            "p1", ["treatment_outcome"], ["adherence_outcome"], historical_data=data
        ))

        graph = service.registry.get("p1", ModelKind.CAUSAL_GRAPH)
        assert graph.is_valid_dag()
        assert graph.edges == [("treatment_outcome", "adherence_outcome")]
        assert response.causal_effects[0].effect_size == pytest.approx(0.5)

    def test_failed_effect_becomes_placeholder(self, quiet_config):
        """Test that an estimation error yields a low-confidence placeholder."""
        from causal_treatment_engine.inference.causal_graph import CausalGraphModel
        from causal_treatment_engine.pipelines import CausalAnalysisRequest, CausalAnalysisService

        service = CausalAnalysisService(quiet_config)
        with patch.object(CausalGraphModel, "apply_do_operator", side_effect=RuntimeError("boom")):
            response = service.perform_causal_analysis(
                CausalAnalysisRequest("p1", ["treatment"], ["outcome", "efficacy"])
            )

        assert len(response.causal_effects) == 2
        for effect in response.causal_effects:
            assert effect.effect_size == 0.0
            assert effect.confidence == 0.1
            assert effect.p_value == 1.0
            assert "boom" in effect.description

    def test_p_value_buckets(self):
        """Test the coarse p-value buckets."""
        from causal_treatment_engine.pipelines import CausalAnalysisService

        assert CausalAnalysisService._p_value(0.5, 100) == 0.001
        assert CausalAnalysisService._p_value(0.25, 100) == 0.05
        assert CausalAnalysisService._p_value(0.1, 100) == 0.1
        assert CausalAnalysisService._p_value(1.0, 0) == 0.1

    def test_data_quality_score(self):
        """Test completeness and sample size scoring."""
        from causal_treatment_engine.pipelines import CausalAnalysisService

        data = [Observation(0.0, {"a": 1, "b": None})]
        assert CausalAnalysisService.data_quality_score(data) == pytest.approx(0.255)
        assert CausalAnalysisService.data_quality_score([]) == 0.0

    def test_negative_effects_are_risk_factors(self):
        """Test risk assessment from negative effects."""
        from causal_treatment_engine.inference.causal_graph import CausalEffect, EffectType
        from causal_treatment_engine.pipelines import CausalAnalysisService

        effects = [
            CausalEffect("a", "y", -0.4, EffectType.AVERAGE_TREATMENT_EFFECT, 0.3, 0.05),
            CausalEffect("b", "y", 0.2, EffectType.AVERAGE_TREATMENT_EFFECT, 0.9, 0.05),
        ]
        risk = CausalAnalysisService._assess_risk(effects)

        assert risk.overall_risk == pytest.approx(-0.1)
        assert len(risk.risk_factors) == 1
        assert risk.risk_factors[0].impact == pytest.approx(0.4)
        assert risk.risk_factors[0].probability == pytest.approx(0.7)

    def test_summary(self, quiet_config):
        """Test the text summary."""
        from causal_treatment_engine.pipelines import CausalAnalysisRequest, CausalAnalysisService

        service = CausalAnalysisService(quiet_config)
        response = service.perform_causal_analysis(
            CausalAnalysisRequest("p1", ["treatment_dosage"], ["efficacy"])
        )
        assert "CAUSAL ANALYSIS RESULTS" in response.summary
        assert "treatment_dosage -> efficacy" in response.summary

    def test_run_causal_analysis(self):
        """Test the convenience function."""
        from causal_treatment_engine.pipelines.causal_analysis import run_causal_analysis

        response = run_causal_analysis("p1", ["treatment"], ["outcome"], binary_history(20))
        assert response.patient_id == "p1"
        assert response.causal_effects[0].effect_size == pytest.approx(0.5)


# =============================================================================
# Test counterfactuals and optimization
# =============================================================================

class TestCounterfactualsAndOptimization:
    """Tests for counterfactual and pathway operations."""

    def test_generate_counterfactuals(self, quiet_config):
        """Test a counterfactual report through the service."""
        from causal_treatment_engine.inference.counterfactuals import Scenario
        from causal_treatment_engine.pipelines import (
            CausalAnalysisService,
            CounterfactualRequest,
            ModelKind,
        )

        service = CausalAnalysisService(quiet_config, history_provider=lambda pid: dosage_history())
        response = service.generate_counterfactuals(CounterfactualRequest(
            patient_id="p1",
            factual_scenario=Scenario({"treatment_dosage": 50.0}),
            counterfactual_scenarios=[Scenario({"treatment_dosage": 80.0})],
        ))

        assert response.patient_id == "p1"
        outcome = response.report.counterfactual_outcomes[0]
        assert outcome.scenario_id == "counterfactual_0"
        assert outcome.outcome["treatment_difference"] == pytest.approx(0.3)
        assert ("p1", ModelKind.COUNTERFACTUAL) in service.registry
        assert response.to_dict()["patient_id"] == "p1"

    def test_optimize_treatment_pathway(self, quiet_config):
        """Test pathway optimization through the service."""
        from causal_treatment_engine.inference.pathway_optimizer import (
            Demographics,
            PatientProfile,
            Treatment,
            TreatmentType,
        )
        from causal_treatment_engine.pipelines import (
            CausalAnalysisService,
            TreatmentOptimizationRequest,
        )

        service = CausalAnalysisService(quiet_config)
        response = service.optimize_treatment_pathway(TreatmentOptimizationRequest(
            patient_id="p1",
            available_treatments=[
                Treatment("med_a", "Metformin", TreatmentType.MEDICATION, duration=30, cost=100.0),
                Treatment("therapy_b", "Physiotherapy", TreatmentType.THERAPY, duration=60, cost=300.0),
            ],
            patient_profile=PatientProfile(Demographics(45, "F")),
        ))

        assert response.metadata.candidates_evaluated == 3
        assert response.metadata.algorithm == "Causal-Aware Multi-Objective Optimization"
        assert len(response.alternative_pathways) == 2
        assert response.expected_outcomes.efficacy_probability == \
            response.optimal_pathway.expected_efficacy
        ratio = response.optimal_pathway.expected_efficacy / (response.optimal_pathway.risk_score + 0.1)
        assert response.risk_benefit_analysis.benefit_risk_ratio == pytest.approx(ratio)
        assert "TREATMENT PATHWAY OPTIMIZATION" in response.summary

    def test_optimizer_rebuilt_on_profile_change(self, quiet_config):
        """Test that a new patient profile replaces the cached optimizer."""
        from causal_treatment_engine.inference.pathway_optimizer import (
            Demographics,
            PatientProfile,
            Treatment,
            TreatmentType,
        )
        from causal_treatment_engine.pipelines import (
            CausalAnalysisService,
            ModelKind,
            TreatmentOptimizationRequest,
        )

        service = CausalAnalysisService(quiet_config)
        treatments = [Treatment("med_a", "Metformin", TreatmentType.MEDICATION)]

        def request(age):
            return TreatmentOptimizationRequest("p1", treatments, PatientProfile(Demographics(age, "F")))

        service.optimize_treatment_pathway(request(45))
        service.optimize_treatment_pathway(request(45))
        assert service.registry.version("p1", ModelKind.PATHWAY_OPTIMIZER) == 1

        service.optimize_treatment_pathway(request(25))
        assert service.registry.version("p1", ModelKind.PATHWAY_OPTIMIZER) == 2
        optimizer = service.registry.get("p1", ModelKind.PATHWAY_OPTIMIZER)
        assert optimizer.patient_profile.demographics.age == 25


# =============================================================================
# Test personalized models
# =============================================================================

class TestPersonalizedModels:
    """Tests for create_personalized_model."""

    def test_create_personalized_model(self, quiet_config):
        """Test learning and caching a personalized model."""
        from causal_treatment_engine.pipelines import (
            CausalAnalysisService,
            ModelKind,
            PersonalizedModelRequest,
        )

        service = CausalAnalysisService(quiet_config)
        data = dosage_history()
        response = service.create_personalized_model(PersonalizedModelRequest("p1", data))

        assert response.causal_model.model_id == "personalized_p1"
        assert response.metadata.training_data_size == 10
        assert response.metadata.validation_score == response.model_performance.accuracy
        assert 1 <= len(response.personalized_insights) <= 5
        assert response.recommendations
        assert service.get_personalized_model("p1") is not None
        assert service.registry.version("p1", ModelKind.PERSONALIZED) == 1

    def test_recreate_replaces_model(self, quiet_config):
        """Test that creating again bumps the cached version."""
        from causal_treatment_engine.pipelines import (
            CausalAnalysisService,
            ModelKind,
            PersonalizedModelRequest,
        )

        service = CausalAnalysisService(quiet_config)
        service.create_personalized_model(PersonalizedModelRequest("p1", dosage_history()))
        first = service.get_personalized_model("p1")
        service.create_personalized_model(PersonalizedModelRequest("p1", dosage_history()))

        assert service.get_personalized_model("p1") is not first
        assert service.registry.version("p1", ModelKind.PERSONALIZED) == 2

    def test_insufficient_data(self, quiet_config):
        """Test that learning errors propagate and nothing is cached."""
        from causal_treatment_engine.pipelines import CausalAnalysisService, PersonalizedModelRequest

        service = CausalAnalysisService(quiet_config)
        with pytest.raises(ValueError, match="Insufficient data"):
            service.create_personalized_model(
                PersonalizedModelRequest("p1", dosage_history()[:3])
            )
        assert service.get_personalized_model("p1") is None


# =============================================================================
# Test Bayesian inference
# =============================================================================

class TestBayesianInference:
    """Tests for perform_bayesian_inference."""

    @staticmethod
    def event_history():
        data = [Observation(float(i), {"event_probability": 1}) for i in range(7)]
        data += [Observation(float(i), {"event_probability": 0}) for i in range(7, 10)]
        return data

    def test_inference(self, quiet_config):
        """Test posterior marginals and predictions."""
        from causal_treatment_engine.pipelines import BayesianInferenceRequest, CausalAnalysisService

        service = CausalAnalysisService(quiet_config)
        response = service.perform_bayesian_inference(BayesianInferenceRequest(
            patient_id="p1",
            evidence={},
            query_variables=["event_probability"],
            historical_data=self.event_history(),
        ))

        assert response.inference.marginal_probabilities["event_probability"] == \
            pytest.approx(8.0 / 12.0)
        prediction = response.predictions["event_probability"]
        assert prediction.predicted_value == pytest.approx(8.0 / 12.0)
        assert response.inference.evidence_strength == 1.0

    def test_network_rebuilt_on_structure_change(self, quiet_config):
        """Test that a different network definition replaces the cached one."""
        from causal_treatment_engine.pipelines import (
            BayesianInferenceRequest,
            CausalAnalysisService,
            ModelKind,
        )

        service = CausalAnalysisService(quiet_config)

        def request(variables):
            return BayesianInferenceRequest(
                patient_id="p1",
                evidence={},
                query_variables=["event_probability"],
                variables=variables,
                historical_data=self.event_history(),
            )

        service.perform_bayesian_inference(request(["event_probability"]))
        service.perform_bayesian_inference(request(["event_probability"]))
        assert service.registry.version("p1", ModelKind.BAYESIAN_NETWORK) == 1

        service.perform_bayesian_inference(request(["event_probability", "risk_score"]))
        assert service.registry.version("p1", ModelKind.BAYESIAN_NETWORK) == 2

    def test_invalid_network(self, quiet_config):
        """Test that an invalid structure raises."""
        from causal_treatment_engine.pipelines import BayesianInferenceRequest, CausalAnalysisService

        service = CausalAnalysisService(quiet_config)
        with pytest.raises(ValueError, match="contains cycles"):
            service.perform_bayesian_inference(BayesianInferenceRequest(
                patient_id="p1",
                evidence={},
                query_variables=["a"],
                variables=["a", "b"],
                structure={"a": ["b"], "b": ["a"]},
                historical_data=[],
            ))


# =============================================================================
# Test asynchronous dispatch
# =============================================================================

class TestAsyncDispatch:
    """Tests for the submit_* methods."""

    def test_submit_causal_analysis(self, quiet_config):
        """Test that a submitted analysis matches the synchronous result."""
        from causal_treatment_engine.pipelines import CausalAnalysisRequest, CausalAnalysisService

        with CausalAnalysisService(quiet_config) as service:
            futures = [
                service.submit_causal_analysis(CausalAnalysisRequest(
                    f"p{i}", ["treatment"], ["outcome"], historical_data=binary_history(20)
                ))
                for i in range(4)
            ]
            responses = [f.result(timeout=30) for f in futures]

        assert [r.patient_id for r in responses] == ["p0", "p1", "p2", "p3"]
        assert all(r.causal_effects[0].effect_size == pytest.approx(0.5) for r in responses)
        assert service._executor is None

    def test_submit_errors_surface_on_result(self, quiet_config):
        """Test that errors propagate through the future."""
        from causal_treatment_engine.pipelines import CausalAnalysisService, PersonalizedModelRequest

        with CausalAnalysisService(quiet_config) as service:
            future = service.submit_personalized_model(PersonalizedModelRequest("p1", []))
            with pytest.raises(ValueError):
                future.result(timeout=30)

    def test_submit_bayesian_inference(self, quiet_config):
        """Test submitting Bayesian inference."""
        from causal_treatment_engine.pipelines import BayesianInferenceRequest, CausalAnalysisService

        with CausalAnalysisService(quiet_config) as service:
            future = service.submit_bayesian_inference(BayesianInferenceRequest(
                patient_id="p1",
                evidence={},
                query_variables=["event_probability"],
                historical_data=[],
            ))
            response = future.result(timeout=30)

        assert response.inference.marginal_probabilities["event_probability"] == 0.5
