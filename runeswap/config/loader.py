"""TOML config loader with environment variable overrides.

Layers, later wins: ``default.toml``, ``{env}.toml``, then
``RUNESWAP__section__key`` variables from the process environment.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]
from pathlib import Path
from typing import Any

ENV_PREFIX = "RUNESWAP__"


class ConfigError(Exception):
    """Raised when config loading or validation fails."""


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return base updated with override; nested tables merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _parse_env_value(raw: str) -> Any:
    """Read an override as a TOML literal (``5``, ``1.5``, ``true``, ``[1, 2]``).

    Anything that is not a valid literal is kept as the bare string.
    """
    try:
        return tomllib.loads(f"value = {raw}")["value"]
    except tomllib.TOMLDecodeError:
        return raw


def _env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect RUNESWAP__rate_limit__limit=60 style variables into a nested table."""
    source = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name, raw in source.items():
        if not name.startswith(ENV_PREFIX):
            continue
        *path, leaf = name[len(ENV_PREFIX) :].lower().split("__")
        table = overrides
        for part in path:
            nested = table.setdefault(part, {})
            if not isinstance(nested, dict):
                break
            table = nested
        else:
            table[leaf] = _parse_env_value(raw)
    return overrides


class ConfigLoader:
    """Load and merge TOML config files with env var overrides."""

    def __init__(
        self,
        config_dir: str | Path = "config",
        env: str | None = None,
    ) -> None:
        self._config_dir = Path(config_dir)
        self._env = env or os.environ.get("RUNESWAP_ENV", "development")
        self._config: dict[str, Any] = {}

    @property
    def env(self) -> str:
        return self._env

    def load(self) -> dict[str, Any]:
        """Load config: default.toml, then {env}.toml, then env vars."""
        default_path = self._config_dir / "default.toml"
        if not default_path.exists():
            msg = f"Default config not found: {default_path}"
            raise ConfigError(msg)

        config = self._load_toml(default_path)
        env_path = self._config_dir / f"{self._env}.toml"
        if env_path.exists():
            config = _merge(config, self._load_toml(env_path))

        self._config = _merge(config, _env_overrides())
        return self._config

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Get a config value using dotted notation: 'rate_limit.limit'."""
        if not self._config:
            self.load()

        parts = dotted_key.split(".")
        current: Any = self._config
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def require(self, dotted_key: str) -> Any:
        """Get a config value, raising ConfigError if missing."""
        value = self.get(dotted_key)
        if value is None:
            msg = f"Required config key missing: {dotted_key}"
            raise ConfigError(msg)
        return value

    def validate_keys(self, required_keys: list[str]) -> None:
        """Validate that all required keys exist."""
        missing = [k for k in required_keys if self.get(k) is None]
        if missing:
            msg = f"Missing required config keys: {', '.join(missing)}"
            raise ConfigError(msg)

    def forced_fee_rate(self) -> float | None:
        """Operator override for swap PSBT fee rates, if configured.

        SATS_TERMINAL_FORCED_FEE_RATE wins over swap.forced_fee_rate.
        """
        raw: Any = os.environ.get("SATS_TERMINAL_FORCED_FEE_RATE") or self.get("swap.forced_fee_rate")
        if raw in (None, ""):
            return None
        try:
            value = float(raw)
        except (TypeError, ValueError):
            msg = f"forced fee rate must be a positive number, got {raw!r}"
            raise ConfigError(msg) from None
        if value <= 0:
            msg = f"forced fee rate must be a positive number, got {raw!r}"
            raise ConfigError(msg)
        return value

    def validate_ranges(self) -> None:
        """Validate config value ranges for safety-critical parameters.

        Raises:
            ConfigError: If any limiter, TTL or transport parameter is out of range.
        """
        if not self._config:
            self.load()

        errors: list[str] = []

        limit = self.get("rate_limit.limit")
        if limit is not None and limit <= 0:
            errors.append(f"rate_limit.limit must be > 0, got {limit}")

        window = self.get("rate_limit.window_ms")
        if window is not None and window <= 0:
            errors.append(f"rate_limit.window_ms must be > 0, got {window}")

        ttl = self.get("swap.quote_ttl_seconds")
        if ttl is not None and ttl <= 0:
            errors.append(f"swap.quote_ttl_seconds must be > 0, got {ttl}")

        timeout = self.get("transport.timeout_seconds")
        if timeout is not None and timeout <= 0:
            errors.append(f"transport.timeout_seconds must be > 0, got {timeout}")

        retries = self.get("transport.retries")
        if retries is not None and retries < 0:
            errors.append(f"transport.retries must be >= 0, got {retries}")

        repay_fee = self.get("liquidium.default_repay_fee_rate")
        if repay_fee is not None and repay_fee <= 0:
            errors.append(f"liquidium.default_repay_fee_rate must be > 0, got {repay_fee}")

        range_ttl = self.get("liquidium.borrow_range_ttl_seconds")
        if range_ttl is not None and range_ttl <= 0:
            errors.append(f"liquidium.borrow_range_ttl_seconds must be > 0, got {range_ttl}")

        try:
            self.forced_fee_rate()
        except ConfigError as exc:
            errors.append(str(exc))

        if errors:
            msg = "Config validation failed:\n  " + "\n  ".join(errors)
            raise ConfigError(msg)

    @property
    def config(self) -> dict[str, Any]:
        if not self._config:
            self.load()
        return self._config

    @staticmethod
    def _load_toml(path: Path) -> dict[str, Any]:
        try:
            with open(path, "rb") as f:
                return tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            msg = f"Malformed config file {path}: {exc}"
            raise ConfigError(msg) from exc
