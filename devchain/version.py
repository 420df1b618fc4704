"""
Version metadata for devchain.

``__version__`` is the semantic version for packaging. On-disk formats carry
their own version bytes (see ``devchain.vm.module`` and
``devchain.state.persistence``) and change independently of it.
"""

from __future__ import annotations

# Bump this when making a release; use semver (MAJOR.MINOR.PATCH)
__version__ = "0.1.0"

__all__ = ["__version__"]
