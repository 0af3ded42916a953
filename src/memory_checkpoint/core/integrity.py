"""Integrity drift detection over the live memory state."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from .state import EngineState
from .validation import compute_integrity_hash, validate_memory_state
from ..exceptions import CorruptionDetected
from ..utils.identifiers import now_ms

logger = logging.getLogger(__name__)

MEMORY_STATE_KEY = "memory_state"
LAST_CHECK_KEY = "last_check_time"

CorruptionHandler = Callable[[CorruptionDetected], Union[Awaitable[Any], Any]]


class IntegrityChecker:
    """
    Compares the hash of the live memory state between polling cycles.

    A changed hash alone is normal activity. Only a changed hash on a
    structurally invalid snapshot is reported to the corruption handler.
    """

    def __init__(
        self,
        capture: Any,
        state: EngineState,
        on_corruption: Optional[CorruptionHandler] = None,
    ):
        """
        Initialize integrity checker.

        Args:
            capture: SnapshotCapture providing the live snapshot
            state: Engine state holding the integrity cache
            on_corruption: Called with CorruptionDetected on drift plus invalid state
        """
        self.capture = capture
        self.state = state
        self.on_corruption = on_corruption

    @property
    def last_check_time(self) -> Optional[int]:
        value = self.state.integrity_cache.get(LAST_CHECK_KEY)
        return int(value) if value else None

    async def check(self) -> bool:
        """
        Run one integrity check.

        Returns:
            False if corruption was detected, True otherwise
        """
        snapshot = await self.capture.capture()
        current_hash = compute_integrity_hash(snapshot)
        previous_hash = self.state.integrity_cache.get(MEMORY_STATE_KEY)

        healthy = True
        if previous_hash and previous_hash != current_hash:
            if not validate_memory_state(snapshot):
                healthy = False
                signal = CorruptionDetected(previous_hash, current_hash)
                logger.error(str(signal))
                await self._report(signal)
            else:
                logger.debug("Memory state changed, structure valid")

        self.state.integrity_cache[MEMORY_STATE_KEY] = current_hash
        self.state.integrity_cache[LAST_CHECK_KEY] = str(now_ms())
        return healthy

    async def _report(self, signal: CorruptionDetected) -> None:
        if self.on_corruption is None:
            return
        try:
            result = self.on_corruption(signal)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Corruption handler failed: {e}", exc_info=True)
