"""
Engine configuration.

Combines the per-component configurations into a single object that can be
loaded from YAML:

    engine:
      model_version: "1.0.0"
      max_workers: 4
    structure_learning:
      min_correlation: 0.3
    counterfactual:
      n_neighbors: 10
    pathway_optimizer:
      max_candidates: 50
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Union
import logging

import yaml

from .inference.counterfactuals import CounterfactualConfig
from .inference.pathway_optimizer import PathwayOptimizerConfig
from .inference.structure_learning import StructureLearnerConfig

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """
    Complete configuration for the causal treatment engine.

    Combines all component configurations into a single config object.
    """
    structure_learning: StructureLearnerConfig = field(default_factory=StructureLearnerConfig)
    counterfactual: CounterfactualConfig = field(default_factory=CounterfactualConfig)
    pathway_optimizer: PathwayOptimizerConfig = field(default_factory=PathwayOptimizerConfig)

    # Runtime settings
    model_version: str = "1.0.0"
    max_workers: int = 4
    verbose: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        d = asdict(self)
        return {
            "engine": {
                "model_version": d.pop("model_version"),
                "max_workers": d.pop("max_workers"),
                "verbose": d.pop("verbose"),
            },
            **d,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EngineConfig":
        """Create config from dictionary."""
        engine = d.get("engine", {})
        return cls(
            structure_learning=StructureLearnerConfig(**d.get("structure_learning", {})),
            counterfactual=CounterfactualConfig(**d.get("counterfactual", {})),
            pathway_optimizer=PathwayOptimizerConfig(**d.get("pathway_optimizer", {})),
            model_version=str(engine.get("model_version", "1.0.0")),
            max_workers=int(engine.get("max_workers", 4)),
            verbose=bool(engine.get("verbose", True)),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EngineConfig":
        """Load config from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            d = yaml.safe_load(f) or {}
        logger.info(f"Config loaded from {path}")
        return cls.from_dict(d)

    def save(self, path: Union[str, Path]) -> None:
        """Save config to a YAML file."""
        path = Path(path)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
        logger.info(f"Config saved to {path}")
