"""Shared result types for the outcome checks."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..engine.explorer import Exploration, Leaf
from ..engine.state import LeafKind
from .counterexample import Counterexample

__all__ = ["Discrepancy", "EquivalenceReport", "Failure", "Verdict", "ViolationReport", "leaf_summary"]


class Verdict(StrEnum):
    PROVED = "proved"
    FAILED = "failed"
    INCONCLUSIVE = "inconclusive"


def leaf_summary(leaf: Leaf) -> dict[str, Any]:
    data: dict[str, Any] = {
        "path": leaf.label,
        "kind": str(leaf.kind),
        "constraints": len(leaf.constraints),
    }
    if leaf.reason is not None:
        data["reason"] = leaf.reason
    if leaf.message is not None:
        data["message"] = leaf.message
    if leaf.pc is not None:
        data["pc"] = leaf.pc
    return data


@dataclass(slots=True)
class Failure:
    """A leaf on which the checked property does not hold."""

    leaf: Leaf
    description: str
    counterexample: Counterexample | None = None


@dataclass(slots=True)
class ViolationReport:
    mode: str
    exploration: Exploration
    failures: list[Failure] = field(default_factory=list)
    undecided: list[Leaf] = field(default_factory=list)
    witnesses: dict[tuple[int, ...], Counterexample] = field(default_factory=dict)

    @property
    def leaves(self) -> list[Leaf]:
        return self.exploration.leaves

    @property
    def verdict(self) -> Verdict:
        if self.failures:
            return Verdict.FAILED
        if self.exploration.exhaustive and not self.undecided:
            return Verdict.PROVED
        return Verdict.INCONCLUSIVE

    def incomplete_counts(self) -> dict[str, int]:
        counts = {
            "undecided": self.exploration.count(LeafKind.UNDECIDED) + len(self.undecided),
            "bound_reached": self.exploration.count(LeafKind.BOUND_REACHED),
            "path_errors": sum(
                self.exploration.count(k) for k in (LeafKind.UNSUPPORTED, LeafKind.EXCEPTION, LeafKind.OUT_OF_GAS)
            ),
        }
        return counts

    def summary(self) -> str:
        paths = len(self.leaves)
        verdict = self.verdict
        if verdict is Verdict.PROVED:
            return f"no violations found, {paths} paths explored"
        if verdict is Verdict.FAILED:
            return f"{len(self.failures)} counterexample(s) found, {paths} paths explored"
        counts = self.incomplete_counts()
        detail = ", ".join(f"{v} {k.replace('_', ' ')}" for k, v in counts.items() if v)
        if self.exploration.cancelled:
            detail = ", ".join(filter(None, [detail, "exploration cancelled"]))
        return f"inconclusive: {paths} paths explored ({detail})"


@dataclass(slots=True)
class Discrepancy:
    leaf_a: Leaf
    leaf_b: Leaf
    description: str
    counterexample: Counterexample | None = None


@dataclass(slots=True)
class EquivalenceReport:
    exploration_a: Exploration
    exploration_b: Exploration
    discrepancies: list[Discrepancy] = field(default_factory=list)
    undecided: list[tuple[Leaf, Leaf]] = field(default_factory=list)

    @property
    def verdict(self) -> Verdict:
        if self.discrepancies:
            return Verdict.FAILED
        if self.exploration_a.exhaustive and self.exploration_b.exhaustive and not self.undecided:
            return Verdict.PROVED
        return Verdict.INCONCLUSIVE

    def summary(self) -> str:
        counts = f"{len(self.exploration_a.leaves)}/{len(self.exploration_b.leaves)} paths"
        verdict = self.verdict
        if verdict is Verdict.PROVED:
            return f"no discrepancies, {counts}"
        if verdict is Verdict.FAILED:
            return f"{len(self.discrepancies)} discrepancy(ies) found, {counts}"
        return f"inconclusive: {counts}, {len(self.undecided)} undecided pair(s)"
