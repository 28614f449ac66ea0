# Overview: Bounded retry loop for optimistic concurrency conflicts on stock lots.

from __future__ import annotations

import time
from dataclasses import dataclass

from flask import current_app

from .lot_store import VersionMismatch
from .stock_errors import StockConflictError


@dataclass(frozen=True)
class RetryPolicy:
    """
    attempts counts total tries, not retries. The sleep after failed attempt n
    (0-based) is backoff_base * multiplier ** n, capped at max_backoff.
    """
    attempts: int = 3
    backoff_base: float = 0.1
    multiplier: float = 2.0
    max_backoff: float = 1.0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("RetryPolicy.attempts must be at least 1")

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            attempts=int(config.get("STOCK_RETRY_ATTEMPTS", cls.attempts)),
            backoff_base=float(config.get("STOCK_RETRY_BACKOFF_BASE", cls.backoff_base)),
            multiplier=float(config.get("STOCK_RETRY_MULTIPLIER", cls.multiplier)),
            max_backoff=float(config.get("STOCK_RETRY_MAX_BACKOFF", cls.max_backoff)),
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.backoff_base * (self.multiplier ** attempt), self.max_backoff)


def current_retry_policy() -> RetryPolicy:
    return RetryPolicy.from_config(current_app.config)


def run_with_retry(func, *, policy: RetryPolicy | None = None, sleep=None, operation: str = "stock write"):
    """
    Run one optimistic-concurrency attempt, retrying on version conflicts.

    func() performs a complete attempt (fresh read included) and returns
    either its result or a VersionMismatch. Anything func raises propagates
    immediately and is never retried: insufficient stock is final, and
    storage failures are not this loop's business.

    After policy.attempts conflicted attempts, raises StockConflictError.
    """
    policy = policy or current_retry_policy()
    sleep = sleep or time.sleep

    conflict = None
    for attempt in range(policy.attempts):
        outcome = func()
        if not isinstance(outcome, VersionMismatch):
            return outcome

        conflict = outcome
        current_app.logger.warning(
            "Version conflict on stock lot %s during %s (attempt %d/%d)",
            conflict.lot_id,
            operation,
            attempt + 1,
            policy.attempts,
        )
        if attempt >= policy.attempts - 1:
            break
        sleep(policy.delay_for(attempt))

    raise StockConflictError(
        attempts=policy.attempts,
        lot_id=conflict.lot_id if conflict is not None else None,
    )
