"""
Write serialization for the dependency set and the task hierarchy.

Acyclicity is only guaranteed if "reachability check + insert" runs against
the current committed state, so every mutation of the dependency set runs
inside DependencyWriteLock. Dependencies may cross project boundaries, which
means a cycle can span projects; the lock therefore guards the whole
dependency set served by this process rather than a single project.

Task moves are serialized the same way with a separate "hierarchy" lock:
the ancestry check and the parent update must not interleave with another
move, or two moves could each make the other task an ancestor.

Reads (blocking info, graph generation, trees) never take a lock.
"""

import logging
import threading
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class DependencyWriteLock:
    """
    Re-entrant lock around dependency mutations or task moves.

    Re-entrancy lets the bulk coordinator hold the lock for a whole batch
    while each entry goes through the engine's own locked code path.
    """

    def __init__(self, name: str = "dependencies"):
        self.name = name
        self._lock = threading.RLock()

    @contextmanager
    def hold(self):
        logger.debug(f"Acquiring write lock '{self.name}'")
        with self._lock:
            yield
        logger.debug(f"Released write lock '{self.name}'")
