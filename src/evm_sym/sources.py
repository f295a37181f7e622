"""External state sources: where concrete code and storage come from."""
from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Protocol

import requests

from .errors import StateSourceError

logger = logging.getLogger(__name__)


class StateSource(Protocol):
    def get_code(self, address: int) -> bytes: ...

    def get_storage(self, address: int, slot: int) -> int: ...


class DictStateSource:
    """In-memory state, mostly for tests and offline replays."""

    def __init__(
        self,
        code: dict[int, bytes] | None = None,
        storage: dict[int, dict[int, int]] | None = None,
    ) -> None:
        self.code = dict(code or {})
        self.storage = {address: dict(slots) for address, slots in (storage or {}).items()}

    def get_code(self, address: int) -> bytes:
        return self.code.get(address, b"")

    def get_storage(self, address: int, slot: int) -> int:
        return self.storage.get(address, {}).get(slot, 0)


class RpcStateSource:
    """Ethereum JSON-RPC node queried with ``eth_getCode`` and ``eth_getStorageAt``."""

    def __init__(self, url: str, block: str | int = "latest", timeout: float = 30.0) -> None:
        self.url = url
        self.block = hex(block) if isinstance(block, int) else block
        self.timeout = timeout
        self.session = requests.Session()
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise StateSourceError(f"{method} request to {self.url} failed: {e}") from e
        if "error" in body:
            raise StateSourceError(f"{method} returned an error: {body['error']}")
        return body.get("result")

    def get_code(self, address: int) -> bytes:
        result = self._call("eth_getCode", [f"0x{address:040x}", self.block])
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    def get_storage(self, address: int, slot: int) -> int:
        result = self._call("eth_getStorageAt", [f"0x{address:040x}", hex(slot), self.block])
        return int(result, 16)

    def close(self) -> None:
        self.session.close()


class CachingStateSource:
    """Memoizes another source; each key is fetched at most once per run."""

    def __init__(self, inner: StateSource) -> None:
        self.inner = inner
        self._lock = threading.Lock()
        self._code: dict[int, bytes] = {}
        self._storage: dict[tuple[int, int], int] = {}
        self.fetches = 0

    def get_code(self, address: int) -> bytes:
        with self._lock:
            if address not in self._code:
                self.fetches += 1
                self._code[address] = self.inner.get_code(address)
            return self._code[address]

    def get_storage(self, address: int, slot: int) -> int:
        key = (address, slot)
        with self._lock:
            if key not in self._storage:
                self.fetches += 1
                self._storage[key] = self.inner.get_storage(address, slot)
                logger.debug("storage %#x[%#x] fetched", address, slot)
            return self._storage[key]
