"""Turning solver models into concrete, human-readable inputs."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..bytecode.abi import decode_value
from ..engine.explorer import Leaf
from ..engine.state import Environment
from ..expr import Expr, Model, Op, evaluate, evaluate_int
from ..solver import Solver, SolverPool

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StorageSlot:
    address: int
    slot: int
    value: int

    def to_dict(self) -> dict[str, str]:
        return {"address": f"0x{self.address:040x}", "slot": hex(self.slot), "value": hex(self.value)}


@dataclass(slots=True)
class Counterexample:
    calldata: bytes
    caller: int
    callvalue: int
    function: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)
    storage: list[StorageSlot] = field(default_factory=list)
    model: Model = field(default_factory=Model)

    def to_dict(self) -> dict[str, Any]:
        return {
            "calldata": "0x" + self.calldata.hex(),
            "function": self.function,
            "arguments": dict(self.arguments),
            "caller": f"0x{self.caller:040x}",
            "callvalue": self.callvalue,
            "storage": [s.to_dict() for s in self.storage],
        }

    def describe(self) -> str:
        if self.function is not None:
            args = ", ".join(f"{v}" for v in self.arguments.values())
            call = f"{self.function.split('(')[0]}({args})"
        else:
            call = "calldata 0x" + self.calldata.hex()
        return f"{call} from 0x{self.caller:040x} with value {self.callvalue}"


def _initial_reads(leaves: Iterable[Leaf]) -> list[tuple[int, Expr, Expr]]:
    reads: list[tuple[int, Expr, Expr]] = []
    for leaf in leaves:
        for address, key, value in leaf.state.storage_reads:
            if value.op is Op.SLOAD and value.args[0].op is Op.VAR:
                reads.append((address, key, value))
    return reads


class CounterexampleSynthesizer:
    """Requests a model for a constraint set and decodes it against the call environment."""

    def __init__(self, solver: Solver | SolverPool, env: Environment) -> None:
        self.solver = solver
        self.env = env

    def _session(self) -> Solver:
        return self.solver.get() if isinstance(self.solver, SolverPool) else self.solver

    def synthesize(self, constraints: Sequence[Expr], leaves: Sequence[Leaf] = ()) -> Counterexample:
        """Witness for *constraints*; raises ``ModelUnavailable`` when there is none."""
        reads = _initial_reads(leaves)
        extra = [self.env.calldata.buffer, self.env.caller, self.env.callvalue]
        for _, key, value in reads:
            extra += [key, value]
        model = self._session().model(constraints, extra)
        return self.decode(model, reads)

    def decode(self, model: Model, reads: Sequence[tuple[int, Expr, Expr]] = ()) -> Counterexample:
        calldata = evaluate(self.env.calldata.buffer, model).value
        example = Counterexample(
            calldata=calldata,
            caller=evaluate_int(self.env.caller, model),
            callvalue=evaluate_int(self.env.callvalue, model),
            model=model,
        )
        signature = self.env.calldata.signature
        if signature is not None:
            example.function = signature.canonical
            for argument in self.env.calldata.arguments:
                raw = evaluate_int(argument.word, model)
                try:
                    example.arguments[argument.name] = decode_value(argument.type, raw)
                except (ValueError, OverflowError) as e:
                    logger.debug("cannot decode %s as %s: %s", argument.name, argument.type.name, e)
                    example.arguments[argument.name] = f"0x{raw:064x}"
        elif len(calldata) >= 4:
            example.arguments["selector"] = "0x" + calldata[:4].hex()
            body = calldata[4:]
            for i in range(0, len(body), 32):
                example.arguments[f"word{i // 32}"] = "0x" + body[i : i + 32].hex()
        seen: set[tuple[int, int]] = set()
        for address, key, value in reads:
            slot = evaluate_int(key, model)
            if (address, slot) in seen:
                continue
            seen.add((address, slot))
            example.storage.append(StorageSlot(address, slot, evaluate_int(value, model)))
        example.storage.sort(key=lambda s: (s.address, s.slot))
        return example
