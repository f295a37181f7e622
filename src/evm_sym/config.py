"""Run configuration, from keyword arguments, a mapping or a TOML file."""
from __future__ import annotations

import dataclasses
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError

CONFIG_FILES = ["evm-sym.toml", ".evm-sym.toml", "pyproject.toml"]

STORAGE_MODELS = ("symbolic", "initial-zero", "concrete")
LOOP_BOUND_POLICIES = ("per_path", "global")
SOLVERS = ("z3", "smtlib")
CALL_FALLBACKS = ("fail", "havoc")


@dataclass(slots=True)
class Config:
    max_iterations: int = 5
    solver_timeout_ms: int = 30_000
    storage_model: str = "symbolic"
    get_models: bool = False
    signature: str | None = None
    loop_bound_policy: str = "per_path"
    gas_limit: int = 30_000_000
    workers: int = 1
    solver: str = "z3"
    solver_command: str | None = None
    first_counterexample: bool = False
    assert_panic_codes: list[int] = field(default_factory=lambda: [0x01])
    call_fallback: str = "fail"
    rpc_url: str | None = None
    block: str | int = "latest"
    address: int = 0xAAAA0000000000000000000000000000000000AA
    caller: int | None = None
    callvalue: int | None = None
    max_depth: int = 1024

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _check_int(self, "max_iterations", minimum=0)
        _check_int(self, "solver_timeout_ms", minimum=1)
        _check_int(self, "gas_limit", minimum=0)
        _check_int(self, "workers", minimum=1)
        _check_int(self, "max_depth", minimum=1)
        _check_int(self, "address", minimum=0, maximum=(1 << 160) - 1)
        _check_choice(self, "storage_model", STORAGE_MODELS)
        _check_choice(self, "loop_bound_policy", LOOP_BOUND_POLICIES)
        _check_choice(self, "solver", SOLVERS)
        _check_choice(self, "call_fallback", CALL_FALLBACKS)
        for name in ("get_models", "first_counterexample"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be a boolean, got {getattr(self, name)!r}")
        for name in ("signature", "solver_command", "rpc_url"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"{name} must be a string, got {value!r}")
        for name in ("caller", "callvalue"):
            if getattr(self, name) is not None:
                _check_int(self, name, minimum=0, maximum=(1 << 256) - 1)
        codes = self.assert_panic_codes
        if not isinstance(codes, (list, tuple)) or not all(isinstance(c, int) and c >= 0 for c in codes):
            raise ConfigError(f"assert_panic_codes must be a list of non-negative integers, got {codes!r}")
        if not isinstance(self.block, (str, int)) or isinstance(self.block, bool):
            raise ConfigError(f"block must be a tag or a number, got {self.block!r}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        known = {f.name for f in dataclasses.fields(cls)}
        normalized = {key.replace("-", "_"): value for key, value in data.items()}
        unknown = sorted(set(normalized) - known)
        if unknown:
            raise ConfigError(f"unknown configuration key(s): {', '.join(unknown)}")
        for key in ("address", "caller", "callvalue"):
            if isinstance(normalized.get(key), str):
                normalized[key] = _parse_int(key, normalized[key])
        return cls(**normalized)

    @classmethod
    def from_toml(cls, path: str | Path) -> Config:
        path = Path(path)
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except OSError as e:
            raise ConfigError(f"cannot read {path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"invalid TOML in {path}: {e}") from e
        if path.name == "pyproject.toml":
            data = data.get("tool", {}).get("evm-sym", {})
        else:
            data = data.get("tool", {}).get("evm-sym", data)
        return cls.from_dict(data)

    def replace(self, **overrides: Any) -> Config:
        """Copy with *overrides* applied; ``None`` values leave a setting unchanged."""
        return self.from_dict(self.to_dict() | {k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}


def _parse_int(name: str, text: str) -> int:
    try:
        return int(text, 0)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {text!r}") from e


def _check_int(config: Config, name: str, minimum: int | None = None, maximum: int | None = None) -> None:
    value = getattr(config, name)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum:#x}, got {value:#x}")


def _check_choice(config: Config, name: str, choices: tuple[str, ...]) -> None:
    value = getattr(config, name)
    if value not in choices:
        raise ConfigError(f"{name} must be one of {', '.join(choices)}, got {value!r}")


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Nearest configuration file walking up from *start_dir*."""
    current = (start_dir or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        for name in CONFIG_FILES:
            candidate = directory / name
            if not candidate.is_file():
                continue
            if name != "pyproject.toml":
                return candidate
            with open(candidate, "rb") as f:
                try:
                    if "evm-sym" in tomllib.load(f).get("tool", {}):
                        return candidate
                except tomllib.TOMLDecodeError:
                    continue
    return None


def load_config(path: str | Path | None = None, start_dir: Path | None = None) -> Config:
    if path is None:
        path = find_config_file(start_dir)
    if path is None:
        return Config()
    return Config.from_toml(path)
