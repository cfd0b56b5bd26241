"""
Causal graphical model with do-calculus for treatment effect estimation.

Encodes patient variables as a directed acyclic graph:
    age -> comorbidities -> treatment_response
    treatment_dosage -> side_effects -> adherence -> outcome

and supports:
- Ancestor / descendant traversal
- Path-based d-connection checks
- Backdoor adjustment set discovery
- The do-operator, P(outcome | do(treatment = value))
- Front-door estimation and mediation analysis
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
import logging

import numpy as np
from sklearn.linear_model import LinearRegression

from .observations import Observation, as_number, paired_values

logger = logging.getLogger(__name__)


class NodeType(Enum):
    """Causal role of a node in an exported graph."""
    TREATMENT = "treatment"
    OUTCOME = "outcome"
    CONFOUNDER = "confounder"
    MEDIATOR = "mediator"
    COLLIDER = "collider"


class EdgeType(Enum):
    """Types of causal relationships."""
    CAUSAL = "causal"
    CONFOUNDING = "confounding"
    MEDIATION = "mediation"
    SELECTION_BIAS = "selection_bias"


class EffectType(Enum):
    """Kinds of estimated causal effects."""
    AVERAGE_TREATMENT_EFFECT = "average_treatment_effect"
    CONDITIONAL_AVERAGE_TREATMENT_EFFECT = "conditional_average_treatment_effect"
    MARGINAL_EFFECT = "marginal_effect"
    TOTAL_EFFECT = "total_effect"
    DIRECT_EFFECT = "direct_effect"
    INDIRECT_EFFECT = "indirect_effect"


@dataclass
class CausalNode:
    """A node in an exported causal graph."""
    id: str
    name: str
    node_type: NodeType
    properties: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Node id cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "node_type": self.node_type.value,
            "properties": self.properties,
        }


@dataclass
class CausalEdge:
    """A directed edge in an exported causal graph."""
    source: str
    target: str
    edge_type: EdgeType = EdgeType.CAUSAL
    strength: float = 1.0
    properties: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.source or not self.target:
            raise ValueError("Edge source and target cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "source": self.source,
            "target": self.target,
            "edge_type": self.edge_type.value,
            "strength": self.strength,
            "properties": self.properties,
        }


@dataclass
class CausalGraph:
    """Node/edge list representation of a causal model."""
    nodes: List[CausalNode]
    edges: List[CausalEdge]
    graph_type: str = "DAG"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "graph_type": self.graph_type,
        }


@dataclass
class CausalEffect:
    """An estimated causal effect of a treatment on an outcome."""
    treatment: str
    outcome: str
    effect_size: float
    effect_type: EffectType
    confidence: float
    p_value: float
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "treatment": self.treatment,
            "outcome": self.outcome,
            "effect_size": self.effect_size,
            "effect_type": self.effect_type.value,
            "confidence": self.confidence,
            "p_value": self.p_value,
            "description": self.description,
        }


@dataclass
class MediationEffects:
    """Decomposition of a total effect through a single mediator."""
    total_effect: float
    direct_effect: float
    indirect_effect: float
    proportion_mediated: float

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "total_effect": self.total_effect,
            "direct_effect": self.direct_effect,
            "indirect_effect": self.indirect_effect,
            "proportion_mediated": self.proportion_mediated,
        }


class CausalGraphModel:
    """
    Causal graphical model implementing the do-operator.

    Edges are kept in an edge-keyed attribute map so that each
    cause -> effect relationship carries its own strength. The graph is
    acyclic after every mutation: an edge that would close a cycle is
    rejected.

    Estimation methods never raise on bad data: observations with
    non-numeric values are dropped from the relevant calculation, and
    an estimate with no usable data is 0.0.
    """

    def __init__(self):
        self._variables: Dict[str, None] = {}
        self._edges: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._parents: Dict[str, List[str]] = {}
        self._children: Dict[str, List[str]] = {}
        self.interventions: Dict[str, Any] = {}
        self.source_fingerprint: Optional[str] = None

    # =========================================================================
    # Structure
    # =========================================================================

    @property
    def variables(self) -> List[str]:
        """Declared variables in insertion order."""
        return list(self._variables)

    @property
    def edges(self) -> List[Tuple[str, str]]:
        """Directed edges as (cause, effect) pairs."""
        return list(self._edges)

    def add_variable(self, name: str) -> None:
        """Declare a variable; no-op if it already exists."""
        if not name:
            raise ValueError("Variable name cannot be empty")
        if name not in self._variables:
            self._variables[name] = None
            self._parents[name] = []
            self._children[name] = []

    def add_causal_relationship(
        self,
        cause: str,
        effect: str,
        strength: float = 1.0
    ) -> None:
        """
        Add a directed cause -> effect edge, declaring both variables.

        Re-adding an existing edge updates its strength.

        Raises:
            ValueError: If the edge is a self-loop or would create a cycle.
        """
        if cause == effect:
            raise ValueError(f"Self-loop on {cause} would create a cycle")

        key = (cause, effect)
        if key not in self._edges and cause in self.get_descendants(effect):
            raise ValueError(f"Edge {cause} -> {effect} would create a cycle")

        self.add_variable(cause)
        self.add_variable(effect)
        if key not in self._edges:
            self._parents[effect].append(cause)
            self._children[cause].append(effect)
        self._edges[key] = {"strength": float(strength)}

    def remove_causal_relationship(self, cause: str, effect: str) -> bool:
        """Remove an edge. Variables stay declared."""
        if self._edges.pop((cause, effect), None) is None:
            return False
        self._parents[effect].remove(cause)
        self._children[cause].remove(effect)
        return True

    def has_edge(self, cause: str, effect: str) -> bool:
        return (cause, effect) in self._edges

    def get_edge_strength(self, cause: str, effect: str) -> float:
        """Stored strength of an edge, 0.0 if it does not exist."""
        attributes = self._edges.get((cause, effect))
        return attributes["strength"] if attributes else 0.0

    def get_parents(self, variable: str) -> List[str]:
        return list(self._parents.get(variable, []))

    def get_children(self, variable: str) -> List[str]:
        return list(self._children.get(variable, []))

    def is_valid_dag(self) -> bool:
        """True iff the graph contains no directed cycle."""
        visited: Set[str] = set()
        on_stack: Set[str] = set()

        def has_cycle(node: str) -> bool:
            if node in on_stack:
                return True
            if node in visited:
                return False
            visited.add(node)
            on_stack.add(node)
            for child in self._children.get(node, []):
                if has_cycle(child):
                    return True
            on_stack.remove(node)
            return False

        return not any(has_cycle(node) for node in self._variables)

    def get_ancestors(self, variable: str) -> Set[str]:
        """All transitive parents of a variable."""
        return self._reachable(variable, self._parents)

    def get_descendants(self, variable: str) -> Set[str]:
        """All transitive children of a variable."""
        return self._reachable(variable, self._children)

    def _reachable(self, start: str, adjacency: Dict[str, List[str]]) -> Set[str]:
        found: Set[str] = set()
        visited: Set[str] = set()

        def dfs(current: str) -> None:
            if current in visited:
                return
            visited.add(current)
            for neighbor in adjacency.get(current, []):
                found.add(neighbor)
                dfs(neighbor)

        dfs(start)
        return found

    # =========================================================================
    # d-connection and identification
    # =========================================================================

    def are_d_connected(
        self,
        x: str,
        y: str,
        conditioned: Optional[Set[str]] = None
    ) -> bool:
        """
        Path-based d-connection check over directed paths x -> ... -> y.

        A path is blocked at an interior node that has two or more parents
        and is not conditioned on, and at any interior node that is
        conditioned on. This models collider blocking but treats every
        conditioned node as blocking, whatever its role on the path.
        """
        conditioned = conditioned or set()
        paths = self._find_directed_paths(x, y)
        return any(self._is_open_path(path, conditioned) for path in paths)

    def _find_directed_paths(self, start: str, end: str) -> List[List[str]]:
        """All simple directed paths from start to end."""
        if start not in self._variables or end not in self._variables:
            return []

        all_paths: List[List[str]] = []

        def dfs(current: str, path: List[str], visited: Set[str]):
            if current == end:
                all_paths.append(path.copy())
                return
            for child in self._children[current]:
                if child not in visited:
                    visited.add(child)
                    path.append(child)
                    dfs(child, path, visited)
                    path.pop()
                    visited.remove(child)

        dfs(start, [start], {start})
        return all_paths

    def _is_open_path(self, path: List[str], conditioned: Set[str]) -> bool:
        if len(path) < 2:
            return False

        for node in path[1:-1]:
            if node in conditioned:
                return False
            if len(self._parents[node]) >= 2:
                # Unconditioned collider
                return False

        return True

    def find_backdoor_adjustment_set(self, outcome: str, treatment: str) -> Set[str]:
        """Ancestors of the treatment still d-connected to the outcome given the treatment."""
        return {
            ancestor
            for ancestor in self.get_ancestors(treatment)
            if self.are_d_connected(ancestor, outcome, {treatment})
        }

    def satisfies_front_door_criterion(
        self,
        outcome: str,
        treatment: str,
        mediators: Set[str]
    ) -> bool:
        """
        Simplified front-door check.

        Every directed treatment -> outcome path must pass through a mediator,
        and no mediator may be d-connected to the treatment.
        """
        if not mediators:
            return False

        paths = self._find_directed_paths(treatment, outcome)
        intercepted = all(
            any(mediator in path for mediator in mediators)
            for path in paths
        )
        return intercepted and all(
            not self.are_d_connected(treatment, mediator, set())
            for mediator in mediators
        )

    # =========================================================================
    # Effect estimation
    # =========================================================================

    def apply_do_operator(
        self,
        outcome: str,
        treatment: str,
        intervention_value: Any,
        data: Sequence[Observation]
    ) -> float:
        """
        Estimate the causal effect of do(treatment = intervention_value) on outcome.

        With an empty backdoor adjustment set this is the difference in mean
        outcome between treated (treatment > 0) and control observations;
        otherwise it is the treatment coefficient of a regression adjusted for
        the backdoor set.
        """
        self.interventions[treatment] = intervention_value

        adjustment_set = self.find_backdoor_adjustment_set(outcome, treatment)
        if adjustment_set:
            effect = self._adjusted_effect(outcome, treatment, adjustment_set, data)
        else:
            effect = self._simple_effect(outcome, treatment, data)

        logger.debug(
            f"do({treatment}={intervention_value}) -> {outcome}: effect={effect:.4f} "
            f"(adjustment set: {sorted(adjustment_set) or 'none'})"
        )
        return effect

    def interventional_expectation(
        self,
        outcome: str,
        treatment: str,
        intervention_value: float,
        data: Sequence[Observation]
    ) -> float:
        """
        E[outcome | do(treatment = value)] from a linear adjustment model.

        Fits outcome on treatment plus the backdoor set and averages the
        prediction over the observed covariates with the treatment fixed.
        Returns 0.0 when no usable data exists.
        """
        self.interventions[treatment] = intervention_value
        value = as_number(intervention_value)
        if value is None:
            return 0.0

        covariates = sorted(self.find_backdoor_adjustment_set(outcome, treatment))
        x_rows, y = self._design_matrix(outcome, treatment, covariates, data)
        if len(y) == 0:
            return 0.0
        if len(y) < 2 or np.ptp(x_rows[:, 0]) == 0:
            return float(np.mean(y))

        model = LinearRegression().fit(x_rows, y)
        counterfactual_rows = x_rows.copy()
        counterfactual_rows[:, 0] = value
        return float(np.mean(model.predict(counterfactual_rows)))

    def _simple_effect(
        self,
        outcome: str,
        treatment: str,
        data: Sequence[Observation]
    ) -> float:
        """Difference in mean outcome between treated and control groups."""
        treated: List[float] = []
        control: List[float] = []

        for treatment_value, outcome_value in zip(*paired_values(data, treatment, outcome)):
            if treatment_value > 0:
                treated.append(outcome_value)
            else:
                control.append(outcome_value)

        if not treated or not control:
            return 0.0

        return float(np.mean(treated) - np.mean(control))

    def _adjusted_effect(
        self,
        outcome: str,
        treatment: str,
        adjustment_set: Iterable[str],
        data: Sequence[Observation]
    ) -> float:
        """
        Treatment coefficient from OLS of outcome on treatment and covariates.

        Observations missing any covariate are dropped. If too few remain to
        fit every coefficient, falls back to the single-predictor slope.
        """
        covariates = sorted(adjustment_set)
        x_rows, y = self._design_matrix(outcome, treatment, covariates, data)

        if len(y) > len(covariates) + 1 and np.ptp(x_rows[:, 0]) > 0:
            model = LinearRegression().fit(x_rows, y)
            return float(model.coef_[0])

        return self._slope(*paired_values(data, treatment, outcome))

    def _design_matrix(
        self,
        outcome: str,
        treatment: str,
        covariates: List[str],
        data: Sequence[Observation]
    ) -> Tuple[np.ndarray, np.ndarray]:
        rows: List[List[float]] = []
        targets: List[float] = []

        for point in data:
            values = [point.get_number(name) for name in [treatment] + covariates]
            outcome_value = point.get_number(outcome)
            if outcome_value is None or any(v is None for v in values):
                continue
            rows.append(values)
            targets.append(outcome_value)

        x_rows = np.array(rows, dtype=float).reshape(len(rows), len(covariates) + 1)
        return x_rows, np.array(targets, dtype=float)

    @staticmethod
    def _slope(xs: List[float], ys: List[float]) -> float:
        """Least-squares slope of ys on xs; 0.0 when undefined."""
        if len(xs) < 2:
            return 0.0
        x = np.asarray(xs)
        y = np.asarray(ys)
        x_var = np.sum((x - x.mean()) ** 2)
        if x_var == 0:
            return 0.0
        return float(np.sum((x - x.mean()) * (y - y.mean())) / x_var)

    def calculate_total_effect(
        self,
        outcome: str,
        treatment: str,
        mediators: Set[str],
        data: Sequence[Observation]
    ) -> float:
        """
        Total effect, using the front-door formula when its criterion holds.

        P(Y|do(X)) is approximated as sum over treatment values x and mediators
        M of P(M | X=x) * P(Y | M=1); otherwise the do-operator is used.
        """
        if not self.satisfies_front_door_criterion(outcome, treatment, mediators):
            return self.apply_do_operator(outcome, treatment, 1.0, data)

        treatment_values = list(dict.fromkeys(
            value for value in (point.get_number(treatment) for point in data)
            if value is not None
        ))

        total_effect = 0.0
        for treatment_value in treatment_values:
            for mediator in sorted(mediators):
                mediator_prob = self._conditional_mean(mediator, treatment, treatment_value, data)
                outcome_prob = self._conditional_mean(outcome, mediator, 1.0, data)
                total_effect += mediator_prob * outcome_prob

        logger.debug(f"Front-door effect {treatment} -> {outcome}: {total_effect:.4f}")
        return total_effect

    @staticmethod
    def _conditional_mean(
        outcome: str,
        condition: str,
        condition_value: float,
        data: Sequence[Observation],
        tolerance: float = 0.01
    ) -> float:
        """Mean outcome over observations where condition ~= condition_value."""
        matching = []
        for point in data:
            cond = point.get_number(condition)
            if cond is None or abs(cond - condition_value) >= tolerance:
                continue
            value = point.get_number(outcome)
            if value is not None:
                matching.append(value)

        if not matching:
            return 0.0
        return float(np.mean(matching))

    def calculate_mediation_effects(
        self,
        outcome: str,
        treatment: str,
        mediator: str,
        data: Sequence[Observation]
    ) -> MediationEffects:
        """
        Split the total effect into direct and indirect parts.

        total    = do-operator effect
        direct   = treatment coefficient adjusted for the mediator
        indirect = total - direct
        """
        total = self.apply_do_operator(outcome, treatment, 1.0, data)
        direct = self._adjusted_effect(outcome, treatment, {mediator}, data)
        indirect = total - direct

        return MediationEffects(
            total_effect=total,
            direct_effect=direct,
            indirect_effect=indirect,
            proportion_mediated=indirect / total if total != 0 else 0.0,
        )

    # =========================================================================
    # Export
    # =========================================================================

    def reset_interventions(self) -> None:
        self.interventions.clear()

    def copy(self) -> "CausalGraphModel":
        """Structural copy with its own, empty intervention record."""
        clone = CausalGraphModel()
        clone._variables = dict(self._variables)
        clone._edges = {key: dict(attributes) for key, attributes in self._edges.items()}
        clone._parents = {name: list(parents) for name, parents in self._parents.items()}
        clone._children = {name: list(children) for name, children in self._children.items()}
        clone.source_fingerprint = self.source_fingerprint
        return clone

    def _determine_node_type(self, variable: str) -> NodeType:
        if variable in self.interventions:
            return NodeType.TREATMENT
        if self._children.get(variable):
            return NodeType.MEDIATOR
        return NodeType.OUTCOME

    def to_causal_graph(self) -> CausalGraph:
        """Export nodes with causal roles and edges with their stored strengths."""
        nodes = [
            CausalNode(
                id=variable,
                name=variable,
                node_type=self._determine_node_type(variable),
                properties={"intervened": variable in self.interventions},
            )
            for variable in self._variables
        ]
        edges = [
            CausalEdge(
                source=cause,
                target=effect,
                edge_type=EdgeType.CAUSAL,
                strength=attributes["strength"],
            )
            for (cause, effect), attributes in self._edges.items()
        ]
        return CausalGraph(nodes=nodes, edges=edges)


def create_default_clinical_graph() -> CausalGraphModel:
    """
    Default causal structure for common clinical scenarios.

    Used when no patient history is available to learn from.
    """
    model = CausalGraphModel()
    model.add_causal_relationship("age", "comorbidities", 0.6)
    model.add_causal_relationship("comorbidities", "treatment_response", 0.7)
    model.add_causal_relationship("treatment_dosage", "efficacy", 0.8)
    model.add_causal_relationship("treatment_dosage", "side_effects", 0.5)
    model.add_causal_relationship("side_effects", "adherence", 0.6)
    model.add_causal_relationship("adherence", "outcome", 0.7)
    model.add_causal_relationship("lifestyle_factors", "outcome", 0.4)
    model.add_causal_relationship("genetics", "treatment_response", 0.5)
    return model
