"""
devchain.runtime — transaction execution against the LedgerStateEngine.
"""

from __future__ import annotations

from devchain.runtime.executor import Executor

__all__ = ["Executor"]
