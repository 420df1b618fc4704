"""
devchain.vm.engine — deterministic interpreter for devnet contract modules.

Design goals
------------
- Deterministic, step-first execution (no I/O, no time, no randomness).
- Small, explicit instruction set over three value types: int, str, bytes.
- All effects go through a transaction-scoped ``Overlay``; the engine itself
  never touches the ledger.

Supported ops (one step each)
-----------------------------
    PUSH v / POP / DUP / SWAP         stack manipulation
    ARG name                          push a call argument
    ADD SUB MUL DIV MOD               int arithmetic (DIV/MOD by zero reverts)
    EQ LT GT ISZERO                   comparisons -> 0/1
    CAT / LEN                         concat / length of str or bytes
    SLOAD / SSTORE                    storage, key (and value) from the stack
    SLOADI k / SSTOREI k              storage with an immediate key
    CALLER / SELF                     calling identity / current instance id
    BALANCE                           pop handle, push its balance
    TRANSFER                          pop amount, to, from; move balance
    EMIT topic                        pop value, record an event
    INVOKE fn argc                    pop argc args then a target instance id;
                                      push the callee's return value
    REQUIRE msg / REVERT msg          conditional / unconditional revert
    JUMP pc / JUMPI pc                control flow (JUMPI pops a condition)
    LABEL name / NOP                  no-ops
    RETURN                            return TOS (or None if the stack is empty)

Falling off the end of a function is an implicit RETURN.

Steps are charged *before* executing each instruction so exhaustion is
deterministic. Nested invocations share the transaction's meter and are bounded
by ``max_call_depth``; callees are resolved by instance id at call time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from devchain.errors import ContractReverted, InvalidTransaction, ResourceExhausted
from devchain.vm.host import Overlay
from devchain.vm.meter import ResourceMeter, value_size
from devchain.vm.module import ContractModule, Function, load_module

# ------------------------------- utilities -------------------------------- #


class _Revert(Exception):
    """Internal shorthand; converted to ContractReverted with call context."""


def _to_int(x: Any, op: str) -> int:
    if isinstance(x, int) and not isinstance(x, bool):
        return x
    raise _Revert(f"{op} expects int, got {type(x).__name__}")


def _truthy(x: Any) -> bool:
    if isinstance(x, (bytes, str)):
        return len(x) > 0
    if isinstance(x, int):
        return x != 0
    return x is not None


def _require_len(stack: Sequence[Any], n: int, op: str) -> None:
    if len(stack) < n:
        raise _Revert(f"stack underflow in {op}: need {n}, have {len(stack)}")


# ------------------------------- Engine ----------------------------------- #


@dataclass
class ExecResult:
    return_value: Optional[Any]
    steps_used: int
    memory_peak: int
    events: Tuple[dict, ...]


class Engine:
    """Runs one top-level call (and any nested INVOKEs) against an Overlay."""

    def __init__(
        self,
        host: Overlay,
        meter: ResourceMeter,
        *,
        max_call_depth: int = 8,
        loader: Callable[[bytes], ContractModule] = load_module,
    ) -> None:
        self.host = host
        self.meter = meter
        self.max_call_depth = int(max_call_depth)
        self._load = loader

    def call(self, instance_id: str, function: str, args: Sequence[Any], *, caller: str) -> ExecResult:
        rv = self._invoke(instance_id, function, list(args), caller=caller, depth=0)
        return ExecResult(
            return_value=rv,
            steps_used=self.meter.steps_used,
            memory_peak=self.meter.memory_peak,
            events=tuple(self.host.events),
        )

    def resolve(self, instance_id: str, function: str, argc: int) -> Function:
        """Look up ``function`` on an instance and check its arity."""
        inst = self.host.instance(instance_id)
        module = self._load(self.host.code(inst.code_hash).binary)
        fn = module.functions.get(function)
        if fn is None:
            raise InvalidTransaction(
                f"unknown function {function!r}",
                data={"instance_id": instance_id, "function": function, "available": sorted(module.functions)},
            )
        if argc != len(fn.params):
            raise InvalidTransaction(
                f"{function} takes {len(fn.params)} argument(s), got {argc}",
                data={"function": function, "expected": len(fn.params), "got": argc},
            )
        return fn

    def _invoke(self, instance_id: str, function: str, args: List[Any], *, caller: str, depth: int) -> Any:
        if depth > self.max_call_depth:
            raise ResourceExhausted("call_depth", budget=self.max_call_depth, used=depth)
        fn = self.resolve(instance_id, function, len(args))
        frame = self.meter.push_frame()
        try:
            return self._run(fn, dict(zip(fn.params, args)), instance_id=instance_id, caller=caller, depth=depth, frame=frame)
        except _Revert as e:
            raise ContractReverted(str(e), function=function, instance_id=instance_id) from None
        finally:
            self.meter.pop_frame()

    # ---------- interpreter loop ---------- #

    def _run(self, fn: Function, env: dict, *, instance_id: str, caller: str, depth: int, frame: int) -> Any:
        code = fn.code
        host = self.host
        meter = self.meter
        stack: List[Any] = []
        pc = 0

        while True:
            if pc >= len(code):
                return stack[-1] if stack else None

            ins = code[pc]
            op = ins[0]
            meter.step()
            pc += 1

            if op in ("NOP", "LABEL"):
                continue

            if op == "PUSH":
                stack.append(ins[1])
            elif op == "POP":
                _require_len(stack, 1, op)
                stack.pop()
            elif op == "DUP":
                _require_len(stack, 1, op)
                stack.append(stack[-1])
            elif op == "SWAP":
                _require_len(stack, 2, op)
                stack[-1], stack[-2] = stack[-2], stack[-1]
            elif op == "ARG":
                stack.append(env[ins[1]])

            elif op in ("ADD", "SUB", "MUL", "DIV", "MOD"):
                _require_len(stack, 2, op)
                b = _to_int(stack.pop(), op)
                a = _to_int(stack.pop(), op)
                if op in ("DIV", "MOD") and b == 0:
                    raise _Revert("division by zero")
                if op == "ADD":
                    stack.append(a + b)
                elif op == "SUB":
                    stack.append(a - b)
                elif op == "MUL":
                    stack.append(a * b)
                elif op == "DIV":
                    stack.append(a // b)
                else:
                    stack.append(a % b)

            elif op == "EQ":
                _require_len(stack, 2, op)
                b = stack.pop()
                a = stack.pop()
                stack.append(1 if (type(a) is type(b) and a == b) else 0)
            elif op in ("LT", "GT"):
                _require_len(stack, 2, op)
                b = _to_int(stack.pop(), op)
                a = _to_int(stack.pop(), op)
                stack.append(1 if (a < b if op == "LT" else a > b) else 0)
            elif op == "ISZERO":
                _require_len(stack, 1, op)
                stack.append(0 if _truthy(stack.pop()) else 1)

            elif op == "CAT":
                _require_len(stack, 2, op)
                b = stack.pop()
                a = stack.pop()
                if not (isinstance(a, (str, bytes)) and type(a) is type(b)):
                    raise _Revert("CAT expects two str or two bytes values")
                stack.append(a + b)
            elif op == "LEN":
                _require_len(stack, 1, op)
                a = stack.pop()
                if not isinstance(a, (str, bytes)):
                    raise _Revert("LEN expects str or bytes")
                stack.append(len(a))

            elif op == "SLOAD":
                _require_len(stack, 1, op)
                stack.append(host.sload(instance_id, stack.pop()))
            elif op == "SLOADI":
                stack.append(host.sload(instance_id, ins[1]))
            elif op == "SSTORE":
                _require_len(stack, 2, op)
                value = stack.pop()
                key = stack.pop()
                meter.add_pending(host.sstore(instance_id, key, value))
            elif op == "SSTOREI":
                _require_len(stack, 1, op)
                meter.add_pending(host.sstore(instance_id, ins[1], stack.pop()))

            elif op == "CALLER":
                stack.append(caller)
            elif op == "SELF":
                stack.append(instance_id)
            elif op == "BALANCE":
                _require_len(stack, 1, op)
                stack.append(host.balance(stack.pop()))
            elif op == "TRANSFER":
                _require_len(stack, 3, op)
                amount = stack.pop()
                to = stack.pop()
                frm = stack.pop()
                host.transfer(frm, to, amount)
            elif op == "EMIT":
                _require_len(stack, 1, op)
                host.emit(instance_id, ins[1], stack.pop())

            elif op == "INVOKE":
                target_fn, argc = ins[1], ins[2]
                _require_len(stack, argc + 1, op)
                call_args = stack[len(stack) - argc:] if argc else []
                del stack[len(stack) - argc:]
                target = stack.pop()
                if not isinstance(target, str):
                    raise _Revert("INVOKE target must be an instance id")
                meter.set_frame(frame, sum(value_size(v) for v in stack))
                rv = self._invoke(target, target_fn, call_args, caller=instance_id, depth=depth + 1)
                stack.append(0 if rv is None else rv)

            elif op == "REQUIRE":
                _require_len(stack, 1, op)
                if not _truthy(stack.pop()):
                    raise _Revert(ins[1])
            elif op == "REVERT":
                raise _Revert(ins[1])

            elif op == "JUMP":
                pc = ins[1]
            elif op == "JUMPI":
                _require_len(stack, 1, op)
                if _truthy(stack.pop()):
                    pc = ins[1]

            elif op == "RETURN":
                return stack[-1] if stack else None

            else:  # unreachable for decoded modules
                raise InvalidTransaction(f"unknown opcode {op!r}")

            meter.set_frame(frame, sum(value_size(v) for v in stack))


__all__ = ["Engine", "ExecResult"]
