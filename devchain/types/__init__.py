"""
devchain.types — transaction and outcome types.

- tx:      Transaction, payloads, ResourceLimits
- result:  Receipt, Failure, error_to_failure
"""

from __future__ import annotations

from devchain.types.result import Failure, Outcome, Receipt, TxStatus, error_to_failure
from devchain.types.tx import (
    DeployPayload,
    FundPayload,
    InvokePayload,
    ResourceLimits,
    Transaction,
    TxKind,
)

__all__ = [
    "Transaction",
    "TxKind",
    "ResourceLimits",
    "FundPayload",
    "DeployPayload",
    "InvokePayload",
    "Receipt",
    "Failure",
    "Outcome",
    "TxStatus",
    "error_to_failure",
]
