"""
Per-patient model registry.

Caches one model instance per (patient, model kind). First access builds the
model exactly once, even when several threads ask for the same key at the
same time. Every store bumps the entry's version so callers can tell a
rebuilt model from the one they saw before.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import threading

logger = logging.getLogger(__name__)


class ModelKind(Enum):
    """Kinds of per-patient model held by the registry."""
    CAUSAL_GRAPH = "causal_graph"
    BAYESIAN_NETWORK = "bayesian_network"
    PERSONALIZED = "personalized"
    COUNTERFACTUAL = "counterfactual"
    PATHWAY_OPTIMIZER = "pathway_optimizer"


RegistryKey = Tuple[str, ModelKind]


@dataclass
class RegistryEntry:
    """A cached model and its bookkeeping."""
    instance: Any
    version: int
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())


class ModelRegistry:
    """
    Thread-safe cache of per-patient models.

    Example:
        registry = ModelRegistry()
        graph = registry.get_or_create("patient_1", ModelKind.CAUSAL_GRAPH, build_graph)
        registry.invalidate_patient("patient_1")
    """

    def __init__(self):
        self._entries: Dict[RegistryKey, RegistryEntry] = {}
        self._versions: Dict[RegistryKey, int] = {}
        self._key_locks: Dict[RegistryKey, threading.Lock] = {}
        self._lock = threading.Lock()

    def _key_lock(self, key: RegistryKey) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _store(self, key: RegistryKey, instance: Any) -> RegistryEntry:
        with self._lock:
            version = self._versions.get(key, 0) + 1
            self._versions[key] = version
            entry = RegistryEntry(instance=instance, version=version)
            self._entries[key] = entry
        logger.debug(f"Stored {key[1].value} for patient {key[0]} (version {version})")
        return entry

    def get(self, patient_id: str, kind: ModelKind) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get((patient_id, kind))
        return entry.instance if entry is not None else None

    def get_or_create(
        self,
        patient_id: str,
        kind: ModelKind,
        factory: Callable[[], Any],
    ) -> Any:
        """
        Return the cached model, building it with ``factory`` if absent.

        The factory runs at most once per key between invalidations. If it
        raises, nothing is cached and the error propagates.
        """
        key = (patient_id, kind)
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None:
            return entry.instance

        with self._key_lock(key):
            with self._lock:
                entry = self._entries.get(key)
            if entry is not None:
                return entry.instance
            logger.info(f"Building {kind.value} for patient {patient_id}")
            return self._store(key, factory()).instance

    def put(self, patient_id: str, kind: ModelKind, instance: Any) -> int:
        """Store a model, replacing any cached one. Returns the new version."""
        key = (patient_id, kind)
        with self._key_lock(key):
            return self._store(key, instance).version

    def refresh(
        self,
        patient_id: str,
        kind: ModelKind,
        factory: Callable[[], Any],
    ) -> Any:
        """Rebuild a model unconditionally and cache the result."""
        key = (patient_id, kind)
        with self._key_lock(key):
            logger.info(f"Refreshing {kind.value} for patient {patient_id}")
            return self._store(key, factory()).instance

    def invalidate(self, patient_id: str, kind: ModelKind) -> bool:
        key = (patient_id, kind)
        with self._lock:
            self._key_locks.pop(key, None)
            return self._entries.pop(key, None) is not None

    def invalidate_patient(self, patient_id: str) -> int:
        """Drop every model for a patient. Returns the number removed."""
        with self._lock:
            keys = [key for key in self._entries if key[0] == patient_id]
            for key in keys:
                del self._entries[key]
            for key in [key for key in self._key_locks if key[0] == patient_id]:
                del self._key_locks[key]
        if keys:
            logger.info(f"Invalidated {len(keys)} models for patient {patient_id}")
        return len(keys)

    def version(self, patient_id: str, kind: ModelKind) -> int:
        """Version of the last stored model for a key, 0 if never stored."""
        with self._lock:
            return self._versions.get((patient_id, kind), 0)

    def keys(self) -> List[RegistryKey]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, key: RegistryKey) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
