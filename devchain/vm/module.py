"""
devchain.vm.module — contract module model and its binary encoding.

A contract module is a named set of functions; each function has ordered
parameter names and a flat list of instructions ``(OP, *immediates)``. Jump
targets are instruction indices (the builder resolves source labels).

Binary format
-------------
    b"DVCM" || u8(version) || canonical_cbor({
        "name": str,
        "functions": {fname: {"params": [str, ...], "code": [[op, *imm], ...]}},
        "toolchain": {"version": str, "optimize": bool},
    })

Canonical CBOR sorts map keys and uses minimal-length encodings, so the same
module always encodes to the same bytes and therefore the same code hash.
Nothing time- or path-dependent is ever part of the payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Mapping, Tuple

import cbor2

from devchain.errors import InvalidTransaction
from devchain.hashing import canonical_cbor, sha3_hex

MAGIC = b"DVCM"
VERSION = 1

# op -> number of immediates
OPCODES: Dict[str, int] = {
    "PUSH": 1,
    "POP": 0,
    "DUP": 0,
    "SWAP": 0,
    "ARG": 1,
    "ADD": 0,
    "SUB": 0,
    "MUL": 0,
    "DIV": 0,
    "MOD": 0,
    "EQ": 0,
    "LT": 0,
    "GT": 0,
    "ISZERO": 0,
    "CAT": 0,
    "LEN": 0,
    "SLOAD": 0,
    "SSTORE": 0,
    "SLOADI": 1,
    "SSTOREI": 1,
    "CALLER": 0,
    "SELF": 0,
    "BALANCE": 0,
    "TRANSFER": 0,
    "EMIT": 1,
    "INVOKE": 2,
    "REQUIRE": 1,
    "REVERT": 1,
    "JUMP": 1,
    "JUMPI": 1,
    "LABEL": 1,
    "RETURN": 0,
    "NOP": 0,
}

Instr = Tuple[Any, ...]


def _is_value(v: Any) -> bool:
    return isinstance(v, (int, str, bytes)) and not isinstance(v, bool)


# ------------------------------------------------------------------ model


@dataclass(frozen=True)
class Function:
    name: str
    params: Tuple[str, ...] = ()
    code: Tuple[Instr, ...] = ()

    def to_obj(self) -> Dict[str, Any]:
        return {"params": list(self.params), "code": [list(i) for i in self.code]}


@dataclass(frozen=True)
class ContractModule:
    name: str
    functions: Mapping[str, Function] = field(default_factory=dict)
    toolchain: Mapping[str, Any] = field(default_factory=dict)

    def interface(self) -> Dict[str, Tuple[str, ...]]:
        return {n: f.params for n, f in sorted(self.functions.items())}

    def to_obj(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "functions": {n: f.to_obj() for n, f in self.functions.items()},
            "toolchain": dict(self.toolchain),
        }


# ------------------------------------------------------------- validation


def _validate_function(fname: str, params: Tuple[str, ...], code: Tuple[Instr, ...]) -> None:
    if len(set(params)) != len(params):
        raise InvalidTransaction(f"duplicate parameter in {fname!r}", data={"function": fname})
    for pc, ins in enumerate(code):
        where = {"function": fname, "pc": pc}
        if not ins or not isinstance(ins[0], str) or ins[0] not in OPCODES:
            raise InvalidTransaction(f"unknown opcode at {fname}:{pc}", data={**where, "op": repr(ins[:1])})
        op, imm = ins[0], ins[1:]
        if len(imm) != OPCODES[op]:
            raise InvalidTransaction(
                f"{op} takes {OPCODES[op]} immediate(s)", data={**where, "got": len(imm)}
            )
        if op in ("PUSH", "SLOADI", "SSTOREI") and not _is_value(imm[0]):
            raise InvalidTransaction(f"{op} immediate must be int, str or bytes", data=where)
        if op in ("ARG",) and imm[0] not in params:
            raise InvalidTransaction(f"ARG {imm[0]!r} is not a parameter of {fname!r}", data=where)
        if op in ("EMIT", "REQUIRE", "REVERT", "LABEL") and not isinstance(imm[0], str):
            raise InvalidTransaction(f"{op} immediate must be a string", data=where)
        if op in ("JUMP", "JUMPI"):
            target = imm[0]
            if isinstance(target, bool) or not isinstance(target, int) or not 0 <= target <= len(code):
                raise InvalidTransaction(f"{op} target out of range", data={**where, "target": repr(target)})
        if op == "INVOKE":
            fn, argc = imm
            if not isinstance(fn, str) or isinstance(argc, bool) or not isinstance(argc, int) or argc < 0:
                raise InvalidTransaction("INVOKE expects (function: str, argc: int >= 0)", data=where)


def module_from_obj(obj: Any) -> ContractModule:
    if not isinstance(obj, dict):
        raise InvalidTransaction("contract module must be a map")
    name = obj.get("name")
    funcs = obj.get("functions")
    toolchain = obj.get("toolchain") or {}
    if not isinstance(name, str) or not name:
        raise InvalidTransaction("contract module needs a non-empty name")
    if not isinstance(funcs, dict) or not funcs:
        raise InvalidTransaction("contract module needs at least one function")
    if not isinstance(toolchain, dict):
        raise InvalidTransaction("toolchain must be a map")
    functions: Dict[str, Function] = {}
    for fname, fobj in funcs.items():
        if not isinstance(fname, str) or not isinstance(fobj, dict):
            raise InvalidTransaction("malformed function entry", data={"function": repr(fname)})
        params = fobj.get("params") or []
        code = fobj.get("code") or []
        if not isinstance(params, list) or not all(isinstance(p, str) for p in params):
            raise InvalidTransaction("params must be a list of names", data={"function": fname})
        if not isinstance(code, list) or not all(isinstance(i, list) for i in code):
            raise InvalidTransaction("code must be a list of instructions", data={"function": fname})
        p = tuple(params)
        c = tuple(tuple(i) for i in code)
        _validate_function(fname, p, c)
        functions[fname] = Function(name=fname, params=p, code=c)
    return ContractModule(name=name, functions=functions, toolchain=dict(toolchain))


# ------------------------------------------------------------------ codec


def encode_module(module: ContractModule) -> bytes:
    return MAGIC + bytes([VERSION]) + canonical_cbor(module.to_obj())


def decode_module(binary: bytes) -> ContractModule:
    """Decode and validate a contract binary. Raises InvalidTransaction."""
    if len(binary) < 5 or binary[:4] != MAGIC:
        raise InvalidTransaction("not a contract binary (bad magic)")
    if binary[4] != VERSION:
        raise InvalidTransaction(f"unsupported contract binary version {binary[4]}")
    try:
        obj = cbor2.loads(binary[5:])
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise InvalidTransaction(f"contract binary does not decode: {e}") from e
    return module_from_obj(obj)


@lru_cache(maxsize=256)
def load_module(binary: bytes) -> ContractModule:
    """Cached ``decode_module`` for hot paths (binaries are immutable)."""
    return decode_module(binary)


def code_hash(binary: bytes) -> str:
    return sha3_hex(binary)


__all__ = [
    "MAGIC",
    "VERSION",
    "OPCODES",
    "Function",
    "ContractModule",
    "module_from_obj",
    "encode_module",
    "decode_module",
    "load_module",
    "code_hash",
]
