"""
Runtime base — the protocol contract between backends and the host.

This defines the abstract interface that every runtime must implement.
Backend adapters only talk to the container runtime through this
protocol, never directly to the docker CLI or the filesystem.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from stackplane.core.models.intent import Intent, Receipt

logger = logging.getLogger(__name__)


class Runtime(ABC):
    """Abstract base class for all runtimes.

    Runtimes perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.

    To create a new runtime:
        1. Subclass Runtime
        2. Implement name, is_available, handle
        3. Return data for query intents in ``Receipt.metadata``
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The runtime identifier (e.g., 'docker', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this runtime's underlying tool is available.

        Should be fast and never raise.
        """

    @abstractmethod
    def handle(self, intent: Intent) -> Receipt:
        """Carry out one intent. May raise; ``execute`` captures it."""

    def execute(self, intent: Intent) -> Receipt:
        """Execute the intent and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """
        start = time.monotonic()
        try:
            receipt = self.handle(intent)
        except Exception as e:
            logger.debug("Runtime %s failed on %s", self.name, intent.id, exc_info=True)
            receipt = Receipt.failure(
                runtime=self.name,
                intent_id=intent.id,
                error=f"{type(e).__name__}: {e}",
            )
        receipt.duration_ms = receipt.duration_ms or int((time.monotonic() - start) * 1000)
        return receipt

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
