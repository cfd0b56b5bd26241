"""
Historical observations and value helpers shared by the inference engines.

An observation is one externally supplied data point for a patient:
a timestamp, the measured variables, the interventions that were active,
and any recorded outcomes. Values are untyped at declaration and may be
numeric, boolean or string.
"""

from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import hashlib
import json
import logging

logger = logging.getLogger(__name__)

_POSITIVE_STRINGS = frozenset({"true", "yes", "positive"})


@dataclass(frozen=True)
class Observation:
    """A single historical data point for a patient."""
    timestamp: float
    variables: Dict[str, Any] = field(default_factory=dict)
    interventions: Dict[str, Any] = field(default_factory=dict)
    outcomes: Dict[str, Any] = field(default_factory=dict)

    def get_number(self, name: str) -> Optional[float]:
        """Numeric value of a variable, or None if absent or non-numeric."""
        return as_number(self.variables.get(name))

    def matches(self, evidence: Mapping[str, Any]) -> bool:
        """True if every evidence key is present with an equal value."""
        return all(
            key in self.variables and self.variables[key] == value
            for key, value in evidence.items()
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "timestamp": self.timestamp,
            "variables": dict(self.variables),
            "interventions": dict(self.interventions),
            "outcomes": dict(self.outcomes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Observation":
        """Deserialize from dictionary."""
        return cls(
            timestamp=float(data.get("timestamp", 0.0)),
            variables=dict(data.get("variables", {})),
            interventions=dict(data.get("interventions", {})),
            outcomes=dict(data.get("outcomes", {})),
        )


def as_number(value: Any) -> Optional[float]:
    """Coerce a value to float if it is a real number. Booleans are flags, not numbers."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Real):
        return float(value)
    return None


def is_positive(value: Any) -> bool:
    """Interpret a value as a positive (true) binary outcome."""
    if isinstance(value, bool):
        return value
    number = as_number(value)
    if number is not None:
        return number > 0.5
    return str(value).lower() in _POSITIVE_STRINGS


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp a value into [lower, upper]."""
    return max(lower, min(upper, value))


def collect_variables(observations: Iterable[Observation]) -> List[str]:
    """Variable names in order of first appearance."""
    names: Dict[str, None] = {}
    for observation in observations:
        for name in observation.variables:
            names.setdefault(name, None)
    return list(names)


def numeric_column(observations: Iterable[Observation], name: str) -> List[float]:
    """All numeric values recorded for a variable."""
    values = []
    for observation in observations:
        number = observation.get_number(name)
        if number is not None:
            values.append(number)
    return values


def paired_values(
    observations: Iterable[Observation],
    first: str,
    second: str,
) -> Tuple[List[float], List[float]]:
    """Numeric values of two variables from observations that carry both."""
    xs: List[float] = []
    ys: List[float] = []
    for observation in observations:
        x = observation.get_number(first)
        y = observation.get_number(second)
        if x is not None and y is not None:
            xs.append(x)
            ys.append(y)
    return xs, ys


def history_fingerprint(observations: Sequence[Observation]) -> str:
    """Stable digest of a history, equal for equal observation sequences."""
    payload = json.dumps(
        [observation.to_dict() for observation in observations],
        sort_keys=True,
        default=str,
    )
    return hashlib.md5(payload.encode("utf-8")).hexdigest()
