"""Caller-owned record of engine commands that recently failed to start."""

import time
from dataclasses import dataclass
from typing import Dict, List, Optional

DEFAULT_TTL_S = 7 * 24 * 3600


@dataclass
class FailureRecord:
    command: str
    reason: str
    timestamp: float


class FailureRegistry:
    def __init__(self, ttl_s: float = DEFAULT_TTL_S):
        self.ttl_s = ttl_s
        self._records: Dict[str, FailureRecord] = {}

    def record(self, command: str, error: Optional[BaseException] = None):
        reason = str(error) if error is not None and str(error) else "unknown error"
        self._records[command] = FailureRecord(command, reason, time.time())

    def is_known_bad(self, command: str) -> bool:
        rec = self._records.get(command)
        if rec is None:
            return False
        if time.time() - rec.timestamp > self.ttl_s:
            del self._records[command]
            return False
        return True

    def forget(self, command: str):
        self._records.pop(command, None)

    def entries(self) -> List[FailureRecord]:
        return [rec for rec in list(self._records.values()) if self.is_known_bad(rec.command)]

    def clear(self):
        self._records.clear()

    def __contains__(self, command: str) -> bool:
        return self.is_known_bad(command)

    def __len__(self):
        return len(self.entries())
