"""Symbolic execution engine components."""

from __future__ import annotations

from .explorer import Exploration, Leaf, PathExplorer, PathNode
from .state import Environment, Frame, LeafKind, LogRecord, MachineState
from .storage import ConcreteStorage, StorageModel, SymbolicStorage, ZeroStorage, make_storage_model
from .symbolic import Branch, Continue, Halt, Interpreter

__all__ = [
    "Branch",
    "ConcreteStorage",
    "Continue",
    "Environment",
    "Exploration",
    "Frame",
    "Halt",
    "Interpreter",
    "Leaf",
    "LeafKind",
    "LogRecord",
    "MachineState",
    "PathExplorer",
    "PathNode",
    "StorageModel",
    "SymbolicStorage",
    "ZeroStorage",
    "make_storage_model",
]
