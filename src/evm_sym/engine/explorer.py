"""Path exploration: run paths to their next branch, fork on feasible sides."""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from ..config import LOOP_BOUND_POLICIES
from ..errors import ConfigError, InternalInconsistency, PathError
from ..expr import Expr
from ..expr import build as B
from ..solver import CheckResult, Solver, SolverPool
from .state import LeafKind, MachineState
from .symbolic import Branch, Continue, Halt, Interpreter

logger = logging.getLogger(__name__)

Location = tuple[int, int]


@dataclass(slots=True)
class PathNode:
    state: MachineState
    constraints: tuple[Expr, ...]
    path_id: tuple[int, ...] = ()
    visits: dict[Location, int] = field(default_factory=dict)


@dataclass(slots=True)
class Leaf:
    """A finished path and why it finished."""

    kind: LeafKind
    path_id: tuple[int, ...]
    constraints: tuple[Expr, ...]
    state: MachineState
    returndata: Expr = B.EMPTY
    reason: str | None = None
    message: str | None = None
    pc: int | None = None
    visits: dict[Location, int] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return ".".join(map(str, self.path_id)) or "root"

    @property
    def storage(self) -> dict[int, Expr]:
        return self.state.storage


@dataclass(slots=True)
class Exploration:
    leaves: list[Leaf]
    branches: int = 0
    forks: int = 0
    steps: int = 0
    cancelled: bool = False

    def count(self, kind: LeafKind) -> int:
        return sum(1 for leaf in self.leaves if leaf.kind is kind)

    @property
    def exhaustive(self) -> bool:
        """True when every path ran to a halt the program itself chose."""
        return not self.cancelled and all(leaf.kind.is_halt for leaf in self.leaves)


class PathExplorer:
    """Work-list exploration of every feasible path from an initial state."""

    def __init__(
        self,
        interpreter: Interpreter,
        solver: Solver | SolverPool,
        max_iterations: int = 5,
        loop_bound_policy: str = "per_path",
        workers: int = 1,
        on_leaf: Callable[[Leaf], bool] | None = None,
    ) -> None:
        if loop_bound_policy not in LOOP_BOUND_POLICIES:
            raise ConfigError(f"unknown loop_bound_policy {loop_bound_policy!r}")
        if workers > 1 and not isinstance(solver, SolverPool):
            raise ConfigError("parallel exploration needs a SolverPool")
        self.interpreter = interpreter
        self.solver = solver
        self.max_iterations = max_iterations
        self.loop_bound_policy = loop_bound_policy
        self.workers = workers
        self.on_leaf = on_leaf
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._global_visits: dict[Location, int] = {}
        self._branches = 0
        self._forks = 0
        self._steps = 0

    def cancel(self) -> None:
        """Stop scheduling; nodes not yet started are abandoned."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _session(self) -> Solver:
        if isinstance(self.solver, SolverPool):
            return self.solver.get()
        return self.solver

    def explore(self, initial: MachineState, assumptions: Iterable[Expr] = ()) -> Exploration:
        constraints = tuple(c for c in assumptions if c is not B.TRUE)
        root = PathNode(initial, constraints)
        if self.workers > 1:
            leaves = self._explore_parallel(root)
        else:
            leaves = self._explore_serial(root)
        leaves.sort(key=lambda leaf: leaf.path_id)
        logger.info(
            "explored %d paths (%d forks, %d steps)%s",
            len(leaves), self._forks, self._steps, " [cancelled]" if self.cancelled else "",
        )
        return Exploration(
            leaves=leaves,
            branches=self._branches,
            forks=self._forks,
            steps=self._steps,
            cancelled=self.cancelled,
        )

    def _explore_serial(self, root: PathNode) -> list[Leaf]:
        queue: list[PathNode] = [root]
        leaves: list[Leaf] = []
        while queue and not self.cancelled:
            node = queue.pop()
            children = self._advance(node)
            # reversed so the condition-true child is explored first
            for child in reversed(children):
                if isinstance(child, Leaf):
                    self._collect(child, leaves)
                else:
                    queue.append(child)
        return leaves

    def _explore_parallel(self, root: PathNode) -> list[Leaf]:
        leaves: list[Leaf] = []
        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="evm-sym")
        pending: set[Future] = {pool.submit(self._advance, root)}
        try:
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    for child in future.result():
                        if isinstance(child, Leaf):
                            self._collect(child, leaves)
                        elif not self.cancelled:
                            pending.add(pool.submit(self._advance, child))
        finally:
            pool.shutdown(wait=True, cancel_futures=True)
        return leaves

    def _collect(self, leaf: Leaf, leaves: list[Leaf]) -> None:
        leaves.append(leaf)
        if self.on_leaf is not None and self.on_leaf(leaf):
            logger.info("stopping after path %s", leaf.label)
            self.cancel()

    def _advance(self, node: PathNode) -> list[PathNode | Leaf]:
        """Run *node* until it halts, fails or reaches a branch."""
        state = node.state
        steps = 0
        try:
            while not self.cancelled:
                result = self.interpreter.step(state)
                steps += 1
                if state.pending:
                    node.constraints += tuple(state.pending)
                    state.pending.clear()
                if isinstance(result, Continue):
                    continue
                if isinstance(result, Halt):
                    return [Leaf(result.kind, node.path_id, node.constraints, state, result.returndata, visits=node.visits)]
                if isinstance(result, Branch):
                    return self._fork(node, result)
            return []
        except PathError as exc:
            logger.warning("path %s ended at pc %s: %s", ".".join(map(str, node.path_id)) or "root", exc.pc, exc)
            return [
                Leaf(
                    LeafKind(exc.kind),
                    node.path_id,
                    node.constraints,
                    state,
                    reason=exc.reason,
                    message=str(exc),
                    pc=exc.pc,
                    visits=node.visits,
                )
            ]
        finally:
            with self._lock:
                self._steps += steps

    def _decide(self, constraints: tuple[Expr, ...], condition: Expr) -> tuple[CheckResult, CheckResult]:
        if condition is B.TRUE:
            return CheckResult.SAT, CheckResult.UNSAT
        if condition is B.FALSE:
            return CheckResult.UNSAT, CheckResult.SAT
        solver = self._session()
        taken = solver.check(constraints + (condition,))
        not_taken = solver.check(constraints + (B.bnot(condition),))
        return taken, not_taken

    def _fork(self, node: PathNode, branch: Branch) -> list[PathNode | Leaf]:
        state = branch.state
        location = (state.frame.address, branch.location)
        with self._lock:
            self._branches += 1
        taken, not_taken = self._decide(node.constraints, branch.condition)
        if taken is CheckResult.UNSAT and not_taken is CheckResult.UNSAT:
            raise InternalInconsistency(
                f"both sides of the branch at {branch.location:#x} are unsatisfiable on path {node.path_id}"
            )
        sides = [
            (taken, branch.condition, branch.pc_true, True),
            (not_taken, B.bnot(branch.condition), branch.pc_false, False),
        ]

        # any branch neither side of which is refuted counts against the bound
        visits = node.visits
        if CheckResult.UNSAT not in (taken, not_taken):
            count = self._count_visit(node, location)
            if count > self.max_iterations:
                logger.debug("loop bound reached at %#x on path %s", branch.location, node.path_id)
                return [
                    Leaf(
                        LeafKind.BOUND_REACHED,
                        node.path_id + (choice,),
                        node.constraints + (condition,),
                        state if choice == 0 else state.clone(),
                        reason="BoundReached",
                        message=f"branch at {branch.location:#x} visited more than {self.max_iterations} times",
                        pc=branch.location,
                        visits=node.visits,
                    )
                    for choice, (_, condition, _, _) in enumerate(sides)
                ]
            visits = dict(node.visits)
            visits[location] = count

        if taken is CheckResult.SAT and not_taken is CheckResult.SAT:
            with self._lock:
                self._forks += 1
            logger.debug("fork at %#x on path %s (visit %d)", branch.location, node.path_id, visits[location])
            children: list[PathNode | Leaf] = []
            for choice, (_, condition, pc, jumped) in enumerate(sides):
                child_state = state.clone() if choice == 0 else state
                self._move(child_state, pc, jumped)
                children.append(PathNode(child_state, node.constraints + (condition,), node.path_id + (choice,), dict(visits)))
            return children

        single = CheckResult.UNSAT in (taken, not_taken)
        children = []
        for choice, (result, condition, _, _) in enumerate(sides):
            if result is CheckResult.UNKNOWN:
                logger.warning("solver could not decide side %d of branch at %#x", choice, branch.location)
                children.append(
                    Leaf(
                        LeafKind.UNDECIDED,
                        node.path_id if single else node.path_id + (choice,),
                        node.constraints + (condition,),
                        state.clone(),
                        reason="SolverUnknown",
                        message=f"branch at {branch.location:#x} could not be decided",
                        pc=branch.location,
                        visits=visits,
                    )
                )
            elif result is CheckResult.UNSAT:
                logger.debug("pruned infeasible side %d of branch at %#x", choice, branch.location)
        for choice, (result, condition, pc, jumped) in enumerate(sides):
            if result is not CheckResult.SAT:
                continue
            constraints = node.constraints if condition.is_lit else node.constraints + (condition,)
            self._move(state, pc, jumped)
            path_id = node.path_id if single else node.path_id + (choice,)
            children.append(PathNode(state, constraints, path_id, visits))
        children.sort(key=lambda child: child.path_id)
        return children

    def _count_visit(self, node: PathNode, location: Location) -> int:
        if self.loop_bound_policy == "global":
            with self._lock:
                self._global_visits[location] = self._global_visits.get(location, 0) + 1
                return self._global_visits[location]
        return node.visits.get(location, 0) + 1

    @staticmethod
    def _move(state: MachineState, pc: int, jumped: bool) -> None:
        state.frame.pc = pc
        state.frame.jump_pending = jumped
