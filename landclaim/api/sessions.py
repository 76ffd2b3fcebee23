"""
Per-user claim attempts held by the service.

Each user has at most one live ``PathRecorder``. Only that user's requests
touch it; the registry lock guards the dictionary, not the paths.
"""

import threading
from typing import Dict, Optional

import structlog

from ..core.path_recorder import TERMINAL_STATES, PathRecorder
from ..core.rules import ClaimRules
from ..utils.timeutil import Clock, utcnow

logger = structlog.get_logger()


class PathSessionRegistry:
    """owner -> PathRecorder, with inactivity expiry."""

    def __init__(self, rules: Optional[ClaimRules] = None, clock: Clock = utcnow):
        self.rules = rules or ClaimRules()
        self.clock = clock
        self._paths: Dict[str, PathRecorder] = {}
        self._lock = threading.Lock()

    def get(self, owner: str) -> Optional[PathRecorder]:
        """The owner's live path, or None. Idle paths are expired on access."""
        now = self.clock()
        with self._lock:
            recorder = self._paths.get(owner)
            if recorder is None:
                return None
            if recorder.is_expired(now):
                recorder.expire()
                del self._paths[owner]
                return None
            return recorder

    def get_or_start(self, owner: str) -> PathRecorder:
        """The owner's live path, starting a new one if none is in progress."""
        recorder = self.get(owner)
        if recorder is not None and recorder.state not in TERMINAL_STATES:
            return recorder

        recorder = PathRecorder(owner, self.rules)
        recorder.touch(self.clock())
        with self._lock:
            self._paths[owner] = recorder
        return recorder

    def discard(self, owner: str):
        with self._lock:
            self._paths.pop(owner, None)

    def sweep(self) -> int:
        """Expire idle paths. Returns how many were dropped."""
        now = self.clock()
        with self._lock:
            expired = [o for o, r in self._paths.items() if r.is_expired(now)]
            for owner in expired:
                self._paths.pop(owner).expire()
            terminal = [o for o, r in self._paths.items() if r.state in TERMINAL_STATES]
            for owner in terminal:
                del self._paths[owner]

        if expired:
            logger.info("Expired idle claim paths", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)
