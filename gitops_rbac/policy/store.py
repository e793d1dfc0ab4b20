"""
GITOPS RBAC - Policy Store

Holds the single current PolicyGeneration.

Readers call ``current()`` and get a reference to an immutable snapshot;
they never take a lock. ``install()`` swaps the reference under a short
lock that only serializes writers. Superseded generations are not kept:
queries that already hold a reference finish against it, and the garbage
collector reclaims it afterwards.
"""

import logging
import threading
from typing import Callable, List, Optional

from gitops_rbac.core.exceptions import StaleGenerationError
from gitops_rbac.policy.model import PolicyGeneration, empty_generation


logger = logging.getLogger(__name__)


InstallListener = Callable[[PolicyGeneration, PolicyGeneration], None]


class PolicyStore:
    """Atomically swapped reference to the current policy generation."""

    def __init__(self, initial: Optional[PolicyGeneration] = None):
        self._current: PolicyGeneration = initial or empty_generation()
        self._write_lock = threading.Lock()
        self._listeners: List[InstallListener] = []

    def current(self) -> PolicyGeneration:
        """Snapshot of the installed generation. Never blocks."""
        return self._current

    def install(self, generation: PolicyGeneration) -> PolicyGeneration:
        """
        Make ``generation`` the current policy.

        Returns:
            The generation that was replaced

        Raises:
            StaleGenerationError: If ``generation`` is not newer than current
        """
        with self._write_lock:
            previous = self._current
            if generation.number <= previous.number:
                raise StaleGenerationError(
                    f"Generation {generation.number} is not newer than "
                    f"installed generation {previous.number}",
                    current=previous.number,
                    attempted=generation.number,
                )
            self._current = generation

        logger.info(
            f"Policy generation {generation.number} installed "
            f"(replaced {previous.number}, digest={generation.digest[:12]})"
        )
        for listener in list(self._listeners):
            try:
                listener(previous, generation)
            except Exception as e:
                logger.error(f"Install listener failed: {e}")
        return previous

    def on_install(self, listener: InstallListener) -> None:
        """Register a callback invoked with (previous, installed) after a swap."""
        self._listeners.append(listener)

    @property
    def generation_number(self) -> int:
        return self._current.number
