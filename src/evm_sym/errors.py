"""Exception taxonomy for the symbolic engine."""
from __future__ import annotations

__all__ = [
    "BadJumpDestination",
    "CallDepthExceeded",
    "ConfigError",
    "EvmSymError",
    "InternalInconsistency",
    "MalformedBytecode",
    "ModelUnavailable",
    "OutOfGas",
    "PathError",
    "RunFatalError",
    "SolverFailure",
    "StackOverflow",
    "StackUnderflow",
    "StateSourceError",
    "UnrecognizedOpcode",
    "UnresolvedCallTarget",
    "UnsupportedOperation",
    "UnsupportedSymbolicAddress",
    "UnsupportedSymbolicStorageRead",
    "UnsupportedSymbolicStorageWrite",
    "WidthMismatch",
    "WriteProtection",
]


class EvmSymError(Exception):
    """Base class for every error raised by evm-sym."""


class ConfigError(EvmSymError, ValueError):
    """Invalid configuration value or unknown configuration key."""


class ModelUnavailable(EvmSymError):
    """A model was requested for constraints that are not known to be satisfiable."""


class PathError(EvmSymError):
    """Terminates the offending path only; sibling paths keep running.

    ``kind`` is the leaf classification the explorer records for the path.
    """

    kind = "error"

    def __init__(self, message: str, pc: int | None = None) -> None:
        super().__init__(message)
        self.pc = pc

    @property
    def reason(self) -> str:
        return type(self).__name__


class UnsupportedSymbolicAddress(PathError):
    kind = "unsupported"


class UnresolvedCallTarget(PathError):
    kind = "unsupported"


class UnsupportedSymbolicStorageRead(PathError):
    kind = "unsupported"


class UnsupportedSymbolicStorageWrite(PathError):
    kind = "unsupported"


class UnsupportedOperation(PathError):
    kind = "unsupported"


class OutOfGas(PathError):
    kind = "out_of_gas"


class StackUnderflow(PathError):
    kind = "exception"


class StackOverflow(PathError):
    kind = "exception"


class BadJumpDestination(PathError):
    kind = "exception"


class UnrecognizedOpcode(PathError):
    kind = "exception"


class CallDepthExceeded(PathError):
    kind = "unsupported"


class RunFatalError(EvmSymError):
    """Aborts the whole run; no partial verdict is reported."""


class InternalInconsistency(RunFatalError):
    """Both successors of a reached branch are unsatisfiable."""


class SolverFailure(RunFatalError):
    """The decision procedure crashed or produced unparseable output."""


class MalformedBytecode(RunFatalError):
    """Bytecode input could not be decoded."""


class WidthMismatch(RunFatalError, TypeError):
    """Operator applied to operands of the wrong sort (an engine defect)."""


class WriteProtection(PathError):
    """State modification attempted inside a static call."""

    kind = "exception"


class StateSourceError(RunFatalError):
    """The external state source could not answer a lookup."""
