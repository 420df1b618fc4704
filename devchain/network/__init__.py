"""
devchain.network — local devnet lifecycle.
"""

from __future__ import annotations

from devchain.network.controller import DevnetController, DevnetState, DevnetStatus

__all__ = ["DevnetController", "DevnetState", "DevnetStatus"]
