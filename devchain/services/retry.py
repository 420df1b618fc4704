from __future__ import annotations

"""
devchain.services.retry
=======================

Bounded retry for blocking calls against a remote collaborator.

Only errors whose ``retryable`` flag is set (the transient category: timeouts
and connection failures) are retried. Everything else propagates on the first
occurrence, so a semantic rejection is never repeated.

Usage
-----
    value = call_with_retry(
        lambda: rpc.get_code_hash(cid),
        settings.retry,
        operation="code hash lookup",
        timeout_s=30,
    )

Hooks
-----
- ``probe()`` runs before every retry. If it returns something other than
  None, that value is the result and no further attempt is made. Deployment
  uses it to ask the node whether an ambiguous submission already landed.
- ``exhausted(err, attempts)`` builds the exception raised once the attempt
  cap is reached. Without it the last transient error is re-raised.

An overall ``timeout_s`` bounds the whole sequence, waits included. Each
attempt (and each probe) runs through ``run_bounded`` with whatever is left
of it, so a call that hangs, or succeeds only after the deadline, ends in
``Timeout``. When the next wait would cross the deadline, ``Timeout`` is
raised immediately.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional, TypeVar

from devchain.config import RetryPolicy
from devchain.errors import DevchainError, Timeout
from devchain.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


def run_bounded(fn: Callable[[], T], *, operation: str, timeout_s: float) -> T:
    """
    Run ``fn`` on a daemon worker thread and wait at most ``timeout_s``.

    Raises Timeout if the worker has not finished; re-raises whatever the
    worker raised otherwise.
    """
    box: Dict[str, Any] = {}

    def _target() -> None:
        try:
            box["value"] = fn()
        except BaseException as e:  # handed back to the caller below
            box["error"] = e

    worker = threading.Thread(target=_target, name=f"devchain-{operation}", daemon=True)
    worker.start()
    worker.join(timeout_s)
    if worker.is_alive():
        raise Timeout(operation, timeout_s=timeout_s)
    if "error" in box:
        raise box["error"]
    return box.get("value")


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    operation: str,
    timeout_s: Optional[float] = None,
    probe: Optional[Callable[[], Optional[T]]] = None,
    exhausted: Optional[Callable[[DevchainError, int], Exception]] = None,
    sleep: Callable[[float], None] = time.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> T:
    deadline = None if timeout_s is None else monotonic() + timeout_s

    def expired() -> bool:
        return deadline is not None and monotonic() >= deadline

    def bounded(call: Callable[[], T]) -> T:
        if deadline is None:
            return call()
        if expired():
            raise Timeout(operation, timeout_s=timeout_s)
        value = run_bounded(call, operation=operation, timeout_s=deadline - monotonic())
        if expired():
            raise Timeout(operation, timeout_s=timeout_s)
        return value

    attempt = 0
    while True:
        attempt += 1
        try:
            return bounded(fn)
        except DevchainError as e:
            if not e.retryable:
                raise
            if expired():
                log.warning("retry.deadline", operation=operation, attempts=attempt, timeout_s=timeout_s)
                raise Timeout(operation, timeout_s=timeout_s) from e
            if attempt >= policy.max_attempts:
                log.warning("retry.exhausted", operation=operation, attempts=attempt, error_code=e.code)
                if exhausted is not None:
                    raise exhausted(e, attempt) from e
                raise
            delay = policy.delay(attempt)
            if deadline is not None and monotonic() + delay >= deadline:
                raise Timeout(operation, timeout_s=timeout_s) from e
            log.info(
                "retry.scheduled",
                operation=operation,
                attempt=attempt,
                delay_s=delay,
                error_code=e.code,
            )
            last = e

        sleep(delay)
        if probe is not None:
            try:
                found = bounded(probe)
            except DevchainError as e:
                if not e.retryable:
                    raise
                if expired():
                    raise Timeout(operation, timeout_s=timeout_s) from e
                log.info("retry.probe_failed", operation=operation, error_code=e.code)
                found = None
            if found is not None:
                log.info("retry.probe_resolved", operation=operation, attempt=attempt, after=last.code)
                return found


__all__ = ["call_with_retry", "run_bounded"]
