"""
Candidate Lock Registry
Serializes every read-modify-write on one (candidate, campaign) pipeline state
"""
import asyncio
from typing import Dict, Tuple


class CandidateLockRegistry:
    """One asyncio.Lock per (candidate, campaign) pair, created lazily."""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def lock_for(self, candidate_id: str, campaign_id: str) -> asyncio.Lock:
        key = (candidate_id, campaign_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
