"""Structural validation and deterministic hashing of checkpoints."""

import hashlib
import json
import logging
from typing import Any, Callable, Dict, Mapping, Union

from ..models.checkpoint_models import (
    Checkpoint,
    CheckpointType,
    OPERATION_CHECKPOINT_TYPES,
)
from ..models.state_models import MemorySnapshot
from ..utils.identifiers import now_ms

logger = logging.getLogger(__name__)

ValidationRule = Callable[[Mapping[str, Any]], bool]


def _decision_rule(record: Mapping[str, Any]) -> bool:
    decision = (record.get("payload") or {}).get("decision")
    return (
        isinstance(decision, Mapping)
        and "context" in decision
        and "selected" in decision
    )


def _operation_rule(record: Mapping[str, Any]) -> bool:
    operation = (record.get("payload") or {}).get("operation")
    if not isinstance(operation, Mapping):
        return False
    return bool(operation.get("name")) and bool(operation.get("type"))


def _session_boundary_rule(record: Mapping[str, Any]) -> bool:
    return bool(record.get("session_id"))


class CheckpointValidator:
    """
    Baseline plus type-specific checkpoint validation.

    Type rules are kept in a lookup table; register_rule adds or replaces
    a rule for one checkpoint type.
    """

    def __init__(self):
        self._rules: Dict[str, ValidationRule] = {
            CheckpointType.DECISION_POINT.value: _decision_rule,
            CheckpointType.SESSION_BOUNDARY.value: _session_boundary_rule,
        }
        for checkpoint_type in OPERATION_CHECKPOINT_TYPES:
            self._rules[checkpoint_type.value] = _operation_rule

    def register_rule(
        self, checkpoint_type: Union[str, CheckpointType], rule: ValidationRule
    ) -> None:
        """
        Register a validation rule for a checkpoint type.

        Args:
            checkpoint_type: Type the rule applies to
            rule: Predicate over the checkpoint's serialized mapping
        """
        key = (
            checkpoint_type.value
            if isinstance(checkpoint_type, CheckpointType)
            else checkpoint_type
        )
        self._rules[key] = rule

    def is_valid(self, checkpoint: Union[Checkpoint, Mapping[str, Any]]) -> bool:
        """
        Validate a checkpoint.

        Args:
            checkpoint: Checkpoint model or its raw serialized mapping

        Returns:
            True if baseline and type-specific checks pass
        """
        if isinstance(checkpoint, Checkpoint):
            record: Mapping[str, Any] = checkpoint.model_dump(mode="json")
        elif isinstance(checkpoint, Mapping):
            record = checkpoint
        else:
            return False

        if not record.get("id") or not record.get("type"):
            return False

        timestamp = record.get("timestamp")
        if (
            not timestamp
            or isinstance(timestamp, bool)
            or not isinstance(timestamp, int)
        ):
            return False
        if timestamp > now_ms():
            logger.debug(f"Checkpoint {record.get('id')} has a future timestamp")
            return False

        rule = self._rules.get(record["type"])
        if rule is None:
            return True

        try:
            return bool(rule(record))
        except Exception as e:
            logger.warning(f"Validation rule for {record['type']} failed: {e}")
            return False


def canonical_json(data: Any) -> str:
    """Serialize with sorted keys at every level and no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def compute_integrity_hash(snapshot: Union[MemorySnapshot, Mapping[str, Any]]) -> str:
    """
    Compute a deterministic SHA-256 digest of a snapshot.

    A MemorySnapshot is hashed over its scope contents only, so capture
    timestamps and metrics do not register as drift.

    Args:
        snapshot: MemorySnapshot or plain mapping

    Returns:
        Hex digest
    """
    data = snapshot.content() if isinstance(snapshot, MemorySnapshot) else snapshot
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def validate_memory_state(snapshot: Union[MemorySnapshot, Mapping[str, Any]]) -> bool:
    """
    Check the structure of a memory snapshot.

    Args:
        snapshot: MemorySnapshot or its mapping form

    Returns:
        True if agent memory and coordination state are well formed
    """
    data = snapshot.content() if isinstance(snapshot, MemorySnapshot) else snapshot
    if not isinstance(data, Mapping):
        return False

    agent_memory = data.get("agent_memory", {})
    coordination_state = data.get("coordination_state", {})
    if not isinstance(agent_memory, Mapping) or not isinstance(
        coordination_state, Mapping
    ):
        return False

    return all(isinstance(memory, Mapping) for memory in agent_memory.values())
