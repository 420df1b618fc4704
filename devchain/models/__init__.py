from __future__ import annotations

"""
Durable, user-facing records (pydantic models).

- records.py → DeployReceipt, VerificationRecord
"""

from devchain.models.records import DeployReceipt, VerificationRecord

__all__ = ["DeployReceipt", "VerificationRecord"]
