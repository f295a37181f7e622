"""One invocation: configuration in, report out."""
from __future__ import annotations

import logging
from collections.abc import Callable

from .bytecode import Program, parse_signature, symbolic_calldata
from .checks import (
    CounterexampleSynthesizer,
    EquivalenceChecker,
    EquivalenceReport,
    ViolationChecker,
    ViolationReport,
)
from .config import Config
from .engine import Environment, Exploration, Interpreter, Leaf, MachineState, PathExplorer
from .engine.storage import StorageModel, make_storage_model
from .errors import ConfigError
from .expr import Expr
from .solver import Solver, SolverPool, make_solver
from .sources import CachingStateSource, RpcStateSource, StateSource

logger = logging.getLogger(__name__)

Predicate = Callable[[Leaf], Expr]


def load_program(code: str | bytes | Program, name: str = "program") -> Program:
    """Accept hex text, raw bytes or an already parsed program."""
    if isinstance(code, Program):
        return code
    if isinstance(code, str):
        return Program.from_hex(code, name=name)
    return Program.from_bytes(code, name=name)


class Runner:
    """Builds the solver, storage strategy, interpreter and explorer for a run.

    A runner owns the solver sessions and any RPC connection it opened;
    use it as a context manager or call :meth:`close`.
    """

    def __init__(
        self,
        config: Config | None = None,
        source: StateSource | None = None,
        programs: dict[int, Program] | None = None,
    ) -> None:
        self.config = config or Config()
        self._rpc: RpcStateSource | None = None
        if source is None and self.config.rpc_url:
            self._rpc = RpcStateSource(self.config.rpc_url, block=self.config.block)
            source = self._rpc
        if source is not None and not isinstance(source, CachingStateSource):
            source = CachingStateSource(source)
        if self.config.storage_model == "concrete" and source is None:
            raise ConfigError("storage_model 'concrete' requires rpc_url or a state source")
        self.source = source
        self.programs: dict[int, Program] = dict(programs or {})
        self.storage: StorageModel = make_storage_model(self.config.storage_model, source)
        self.solver: Solver | SolverPool = self._make_solver()
        signature = None
        if self.config.signature:
            try:
                signature = parse_signature(self.config.signature)
            except ValueError as e:
                raise ConfigError(f"invalid signature: {e}") from e
        self.env = Environment.symbolic(
            symbolic_calldata(signature),
            address=self.config.address,
            caller=self.config.caller,
            callvalue=self.config.callvalue,
        )
        self.synthesizer = CounterexampleSynthesizer(self.solver, self.env)

    def _make_solver(self) -> Solver | SolverPool:
        cfg = self.config

        def factory() -> Solver:
            return make_solver(cfg.solver, timeout_ms=cfg.solver_timeout_ms, command=cfg.solver_command)

        if cfg.workers > 1:
            return SolverPool(factory)
        return factory()

    def code_for(self, address: int) -> Program | None:
        program = self.programs.get(address)
        if program is not None or self.source is None:
            return program
        code = self.source.get_code(address)
        if not code:
            return None
        program = Program.from_bytes(code, name=f"0x{address:040x}")
        self.programs[address] = program
        return program

    def explore(self, program: Program, on_leaf: Callable[[Leaf], bool] | None = None) -> Exploration:
        cfg = self.config
        interpreter = Interpreter(
            storage=self.storage,
            code_for=self.code_for,
            call_fallback=cfg.call_fallback,
            max_depth=cfg.max_depth,
        )
        explorer = PathExplorer(
            interpreter,
            self.solver,
            max_iterations=cfg.max_iterations,
            loop_bound_policy=cfg.loop_bound_policy,
            workers=cfg.workers,
            on_leaf=on_leaf,
        )
        self.programs[self.env.address] = program
        logger.info("exploring %s (%d bytes)", program.name, len(program.code))
        initial = MachineState.initial(program, self.env, cfg.gas_limit)
        return explorer.explore(initial, self.env.assumptions)

    def check(self, code: str | bytes | Program, predicate: Predicate | None = None) -> ViolationReport:
        """Violation search, or postcondition proof when *predicate* is given."""
        cfg = self.config
        checker = ViolationChecker(
            self.solver,
            self.synthesizer,
            predicate=predicate,
            assert_panic_codes=cfg.assert_panic_codes,
            get_models=cfg.get_models,
            first_counterexample=cfg.first_counterexample,
        )
        on_leaf = checker.watch if cfg.first_counterexample else None
        exploration = self.explore(load_program(code), on_leaf=on_leaf)
        return checker.check(exploration)

    def equivalence(self, code_a: str | bytes | Program, code_b: str | bytes | Program) -> EquivalenceReport:
        """Compare two programs deployed, one after the other, at the same address."""
        program_a = load_program(code_a, name="a")
        program_b = load_program(code_b, name="b")
        exploration_a = self.explore(program_a)
        exploration_b = self.explore(program_b)
        checker = EquivalenceChecker(
            self.solver,
            self.synthesizer,
            initial_storage=self.storage.initial,
            facts=self.storage.facts,
            first_counterexample=self.config.first_counterexample,
        )
        return checker.check(exploration_a, exploration_b)

    def close(self) -> None:
        self.solver.close()
        if self._rpc is not None:
            self._rpc.close()

    def __enter__(self) -> Runner:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def run_check(
    code: str | bytes | Program,
    config: Config | None = None,
    predicate: Predicate | None = None,
    source: StateSource | None = None,
) -> ViolationReport:
    with Runner(config, source=source) as runner:
        return runner.check(code, predicate)


def run_equivalence(
    code_a: str | bytes | Program,
    code_b: str | bytes | Program,
    config: Config | None = None,
    source: StateSource | None = None,
) -> EquivalenceReport:
    with Runner(config, source=source) as runner:
        return runner.equivalence(code_a, code_b)
