"""Outcome checks: violation search, postcondition proof and equivalence."""

from __future__ import annotations

from .base import Discrepancy, EquivalenceReport, Failure, Verdict, ViolationReport, leaf_summary
from .counterexample import Counterexample, CounterexampleSynthesizer, StorageSlot
from .equivalence import EquivalenceChecker, canonical
from .violations import PANIC_SELECTOR, ViolationChecker, panic_condition

__all__ = [
    "PANIC_SELECTOR",
    "Counterexample",
    "CounterexampleSynthesizer",
    "Discrepancy",
    "EquivalenceChecker",
    "EquivalenceReport",
    "Failure",
    "StorageSlot",
    "Verdict",
    "ViolationChecker",
    "ViolationReport",
    "canonical",
    "leaf_summary",
    "panic_condition",
]
