"""
devchain.storage — SQLite store for deployment receipts and verification
records. Devnet snapshots live in devchain.state.persistence.
"""

from __future__ import annotations

from devchain.storage.sqlite import RecordStore

__all__ = ["RecordStore"]
