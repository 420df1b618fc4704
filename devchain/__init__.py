"""
devchain
========

Local smart-contract devnet with a deterministic build / deploy / verify
pipeline.

This package exposes:

- ``__version__``: semantic version string

Prefer importing submodules directly for specific concerns:
``devchain.network`` (devnet lifecycle), ``devchain.runtime`` (transaction
execution), ``devchain.services.deploy`` and ``devchain.services.verify``
(pipelines), ``devchain.config`` and ``devchain.logging``.
"""

from __future__ import annotations

from .version import __version__

__all__ = ["__version__"]
