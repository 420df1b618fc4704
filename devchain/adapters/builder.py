"""
Deterministic build adapter for devchain contract sources.

Given a source directory (or a ``contract.yaml`` file) and a pinned toolchain
configuration, produce a contract binary whose bytes depend *only* on the
source's meaning and the pin:

- YAML comments, whitespace, key order and label names do not reach the
  binary (labels are resolved to instruction indices).
- With ``optimize=True`` no-op instructions (NOP, LABEL) are stripped.
- The pin (toolchain version + optimize flag) is embedded in the binary, so a
  build under a different pin yields a different code hash.
- No timestamps, hostnames or filesystem paths are ever embedded.

Source format
-------------
    name: counter
    functions:
      increment:
        params: [by]
        code:
          - SLOADI count          # instructions as "OP imm ..." strings
          - [ARG, by]             # ... or as [OP, imm, ...] lists
          - ADD
          - DUP
          - [SSTOREI, count]
          - RETURN

Typical usage:
    from devchain.adapters.builder import DeterministicBuilder

    artifact = DeterministicBuilder().build("contracts/counter", pin)
    # -> artifact.binary (bytes), artifact.code_hash ("0x…"), artifact.interface
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import yaml

from devchain.config import ToolchainPin
from devchain.errors import BuildFailed, InvalidTransaction
from devchain.hashing import sha3_hex
from devchain.logging import get_logger
from devchain.vm.module import OPCODES, encode_module, module_from_obj

log = get_logger(__name__)

SOURCE_FILENAME = "contract.yaml"
SUPPORTED_TOOLCHAINS = ("devchain-asm/1",)

_STRIPPABLE = ("NOP", "LABEL")
_MESSAGE_OPS = ("REQUIRE", "REVERT")
_INT_RE = re.compile(r"^-?\d+$")


# ----------------------------- Result & protocol -----------------------------


@dataclass
class BuildArtifact:
    """
    Normalized build output.

    Attributes
    ----------
    binary : bytes
        The contract binary (DVCM header + canonical CBOR module).
    code_hash : str
        0x-prefixed SHA3-256 over ``binary``.
    interface : Dict[str, Tuple[str, ...]]
        Function name -> parameter names.
    toolchain : Dict[str, Any]
        The pin the artifact was built under.
    diagnostics : List[str]
        Human-friendly notes produced by the build.
    """

    binary: bytes
    code_hash: str
    interface: Dict[str, Tuple[str, ...]]
    toolchain: Dict[str, Any]
    diagnostics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "binary": "0x" + self.binary.hex(),
            "code_hash": self.code_hash,
            "interface": {k: list(v) for k, v in self.interface.items()},
            "toolchain": dict(self.toolchain),
            "diagnostics": list(self.diagnostics),
        }


class Builder(Protocol):
    def build(self, source: Union[str, Path], pin: ToolchainPin) -> BuildArtifact: ...


# ----------------------------- Helpers ---------------------------------------


def resolve_source(source: Union[str, Path]) -> Path:
    p = Path(source)
    if p.is_dir():
        p = p / SOURCE_FILENAME
    if not p.is_file():
        raise BuildFailed(f"contract source not found: {p.name}", source=str(source))
    return p


def _parse_instr(raw: Any, where: str) -> List[Any]:
    if isinstance(raw, str):
        parts = raw.split()
        if not parts:
            raise BuildFailed(f"empty instruction at {where}")
        if parts[0].upper() in _MESSAGE_OPS and len(parts) > 1:
            instr: List[Any] = [parts[0], raw.split(None, 1)[1].strip()]
        else:
            # "PUSH 5" -> 5, "ARG to" -> "to"
            instr = [parts[0]] + [int(tok) if _INT_RE.match(tok) else tok for tok in parts[1:]]
    elif isinstance(raw, list) and raw:
        instr = list(raw)
    else:
        raise BuildFailed(f"malformed instruction at {where}: {raw!r}")
    if not isinstance(instr[0], str):
        raise BuildFailed(f"opcode must be a name at {where}")
    instr[0] = instr[0].upper()
    if instr[0] not in OPCODES:
        raise BuildFailed(f"unknown opcode {instr[0]!r} at {where}")
    # YAML booleans become 0/1 so the VM only ever sees int/str/bytes
    return [int(x) if isinstance(x, bool) else x for x in instr]


def _assemble(fname: str, raw_code: List[Any], optimize: bool) -> Tuple[List[List[Any]], int]:
    """Resolve labels to indices; strip no-ops when optimizing. Returns (code, stripped)."""
    parsed = [_parse_instr(r, f"{fname}[{i}]") for i, r in enumerate(raw_code)]

    labels: Dict[str, int] = {}
    kept: List[List[Any]] = []
    stripped = 0
    for ins in parsed:
        if ins[0] == "LABEL":
            if len(ins) != 2 or not isinstance(ins[1], str):
                raise BuildFailed(f"LABEL needs a name in {fname}")
            if ins[1] in labels:
                raise BuildFailed(f"duplicate label {ins[1]!r} in {fname}")
            labels[ins[1]] = len(kept)
        if optimize and ins[0] in _STRIPPABLE:
            stripped += 1
            continue
        kept.append(ins)

    out: List[List[Any]] = []
    for ins in kept:
        if ins[0] in ("JUMP", "JUMPI"):
            if len(ins) != 2:
                raise BuildFailed(f"{ins[0]} needs exactly one label in {fname}")
            target = ins[1]
            if not isinstance(target, str) or target not in labels:
                raise BuildFailed(f"unknown label {target!r} in {fname}")
            ins = [ins[0], labels[target]]
        out.append(ins)
    return out, stripped


# ----------------------------- Builder ---------------------------------------


class DeterministicBuilder:
    """Compiles ``contract.yaml`` sources into DVCM contract binaries."""

    def __init__(self, supported: Tuple[str, ...] = SUPPORTED_TOOLCHAINS) -> None:
        self.supported = supported

    def compile_text(self, text: str, pin: ToolchainPin, *, source: Optional[str] = None) -> BuildArtifact:
        if pin.version not in self.supported:
            raise BuildFailed(
                f"unsupported toolchain {pin.version!r}",
                source=source,
                output=f"supported: {', '.join(self.supported)}",
            )
        try:
            doc = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise BuildFailed("contract source is not valid YAML", source=source, output=str(e)) from e
        if not isinstance(doc, dict):
            raise BuildFailed("contract source must be a mapping", source=source)

        name = doc.get("name")
        functions = doc.get("functions")
        if not isinstance(name, str) or not name.strip():
            raise BuildFailed("contract needs a 'name'", source=source)
        if not isinstance(functions, dict) or not functions:
            raise BuildFailed("contract needs at least one function", source=source)

        diagnostics: List[str] = []
        funcs_obj: Dict[str, Any] = {}
        for fname, fdef in functions.items():
            if not isinstance(fname, str) or not isinstance(fdef, dict):
                raise BuildFailed(f"malformed function {fname!r}", source=source)
            params = fdef.get("params") or []
            raw_code = fdef.get("code") or []
            if not isinstance(raw_code, list):
                raise BuildFailed(f"code of {fname!r} must be a list", source=source)
            code, stripped = _assemble(fname, raw_code, pin.optimize)
            if stripped:
                diagnostics.append(f"{fname}: stripped {stripped} no-op instruction(s)")
            funcs_obj[fname] = {"params": params, "code": code}

        obj = {
            "name": name.strip(),
            "functions": funcs_obj,
            "toolchain": {"version": pin.version, "optimize": pin.optimize},
        }
        try:
            module = module_from_obj(obj)
        except InvalidTransaction as e:
            raise BuildFailed(f"contract does not assemble: {e.message}", source=source, output=str(e.data)) from e

        binary = encode_module(module)
        artifact = BuildArtifact(
            binary=binary,
            code_hash=sha3_hex(binary),
            interface=module.interface(),
            toolchain=dict(module.toolchain),
            diagnostics=diagnostics,
        )
        log.debug("builder.built", contract=module.name, code_hash=artifact.code_hash, size=len(binary))
        return artifact

    def build(self, source: Union[str, Path], pin: ToolchainPin) -> BuildArtifact:
        path = resolve_source(source)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise BuildFailed(f"cannot read contract source: {e}", source=str(source)) from e
        return self.compile_text(text, pin, source=path.name)


__all__ = [
    "Builder",
    "BuildArtifact",
    "DeterministicBuilder",
    "resolve_source",
    "SOURCE_FILENAME",
    "SUPPORTED_TOOLCHAINS",
]
