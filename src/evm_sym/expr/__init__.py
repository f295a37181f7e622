"""Symbolic expression model."""

from __future__ import annotations

from . import build
from .core import BOOL, BUFFER, BYTE, STORAGE, WORD, BV, ArrayValue, Expr, Op, Sort, iter_dag
from .evaluate import Model, array_reads, evaluate, evaluate_int, free_variables, substitute

__all__ = [
    "BOOL",
    "BUFFER",
    "BV",
    "BYTE",
    "STORAGE",
    "WORD",
    "ArrayValue",
    "Expr",
    "Model",
    "Op",
    "Sort",
    "array_reads",
    "build",
    "evaluate",
    "evaluate_int",
    "free_variables",
    "iter_dag",
    "substitute",
]
