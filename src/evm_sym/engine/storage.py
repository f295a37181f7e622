"""Storage model strategies selected once per run and injected into the interpreter."""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from ..config import STORAGE_MODELS
from ..errors import ConfigError, UnsupportedSymbolicStorageRead, UnsupportedSymbolicStorageWrite
from ..expr import Expr, Op
from ..expr import build as B
from ..sources import StateSource

logger = logging.getLogger(__name__)


def storage_name(address: int) -> str:
    return f"storage_{address:040x}"


class StorageModel(ABC):
    """What an ``SLOAD`` returns and what an ``SSTORE`` produces."""

    name = "abstract"

    @abstractmethod
    def initial(self, address: int) -> Expr:
        """Storage array of *address* before the run writes to it."""

    def load(self, storage: Expr, key: Expr, address: int, pc: int | None = None) -> Expr:
        return B.sload(storage, key)

    def store(self, storage: Expr, key: Expr, value: Expr, address: int, pc: int | None = None) -> Expr:
        return B.sstore(storage, key, value)

    def facts(self) -> list[Expr]:
        """Assumptions about initial storage established during the run."""
        return []


class SymbolicStorage(StorageModel):
    """Unwritten slots are unconstrained symbols of one array per address."""

    name = "symbolic"

    def initial(self, address: int) -> Expr:
        return B.storage_var(storage_name(address))


class ZeroStorage(StorageModel):
    """Freshly deployed contract: unwritten slots read as zero."""

    name = "initial-zero"

    def initial(self, address: int) -> Expr:
        return B.EMPTY_STORAGE


class ConcreteStorage(StorageModel):
    """Unwritten slots are fetched from *source* on demand.

    Only literal keys are supported. Every fetched value is also recorded as a
    fact tying the symbolic initial array to the fetched literal, so two runs
    over the same address agree on the slots either of them read.
    """

    name = "concrete"

    def __init__(self, source: StateSource) -> None:
        self.source = source
        self._lock = threading.Lock()
        self._facts: dict[tuple[int, int], Expr] = {}

    def initial(self, address: int) -> Expr:
        return B.storage_var(storage_name(address))

    def load(self, storage: Expr, key: Expr, address: int, pc: int | None = None) -> Expr:
        if not key.is_lit:
            raise UnsupportedSymbolicStorageRead(f"symbolic storage key read at {address:#x}", pc)
        value = B.sload(storage, key)
        if value.op is not Op.SLOAD:
            return value
        if value.args[0] is not self.initial(address):
            # storage replaced since the run began (havocked call): nothing to fetch
            return value
        # reached the initial array: the slot was never written on this path
        fetched = self.source.get_storage(address, key.value)
        logger.debug("fetched storage %#x[%#x] = %#x", address, key.value, fetched)
        result = B.lit(fetched)
        with self._lock:
            self._facts.setdefault((address, key.value), B.eq(value, result))
        return result

    def store(self, storage: Expr, key: Expr, value: Expr, address: int, pc: int | None = None) -> Expr:
        if not key.is_lit:
            raise UnsupportedSymbolicStorageWrite(f"symbolic storage key write at {address:#x}", pc)
        return B.sstore(storage, key, value)

    def facts(self) -> list[Expr]:
        with self._lock:
            return [self._facts[k] for k in sorted(self._facts)]


def make_storage_model(name: str, source: StateSource | None = None) -> StorageModel:
    if name == "symbolic":
        return SymbolicStorage()
    if name == "initial-zero":
        return ZeroStorage()
    if name == "concrete":
        if source is None:
            raise ConfigError("storage_model 'concrete' needs a state source (rpc_url)")
        return ConcreteStorage(source)
    raise ConfigError(f"unknown storage_model {name!r}; expected one of {', '.join(STORAGE_MODELS)}")
