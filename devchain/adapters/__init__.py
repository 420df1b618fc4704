"""
devchain.adapters — boundaries to external collaborators.

- builder:   deterministic build (contract.yaml -> contract binary)
- node_rpc:  remote RPC (JSON-RPC over httpx, or an in-process devnet)
"""

from __future__ import annotations

from devchain.adapters.builder import BuildArtifact, Builder, DeterministicBuilder
from devchain.adapters.node_rpc import HttpNodeRpc, LocalNodeRpc, RemoteRpc

__all__ = [
    "BuildArtifact",
    "Builder",
    "DeterministicBuilder",
    "HttpNodeRpc",
    "LocalNodeRpc",
    "RemoteRpc",
]
