"""
devchain.vm — local contract emulation (module codec, meter, interpreter).

Submodules:
- module:  ContractModule / Function model and the DVCM binary codec
- meter:   ResourceMeter (step + memory budgets)
- host:    Overlay staging balance moves, storage writes and events
- engine:  Engine, the stack interpreter

Common symbols are lazily re-exported to keep import-time cycles away from
the state layer.
"""

from __future__ import annotations

from importlib import import_module as _imp
from typing import Any, Dict, Tuple

_exports: Dict[str, Tuple[str, str]] = {
    "ContractModule": ("module", "ContractModule"),
    "Function": ("module", "Function"),
    "encode_module": ("module", "encode_module"),
    "decode_module": ("module", "decode_module"),
    "ResourceMeter": ("meter", "ResourceMeter"),
    "Overlay": ("host", "Overlay"),
    "Engine": ("engine", "Engine"),
    "ExecResult": ("engine", "ExecResult"),
}

__all__ = tuple(_exports.keys())


def __getattr__(name: str) -> Any:
    if name in _exports:
        submod, symbol = _exports[name]
        mod = _imp(f"{__name__}.{submod}")
        return getattr(mod, symbol)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover
    return sorted(list(globals().keys()) + list(__all__))
