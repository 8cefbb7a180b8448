from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Any, Optional

from flowmap.errors import ConfigError

DEFAULT_SEED_ADDRESS = (
    "ckb1qzda0cr08m85hc8jlnfp3zer7xulejywt49kt2rr0vthywaa50xwsq0w7teyh77d48krwz2837wwejrppzw905cm588n0"
)


def get_env(name: str, default: str) -> str:
    v = os.getenv(name)
    return v if v else default


def parse_positive_int(value: Any, name: str) -> int:
    """
    Validate a UI-supplied integer such as the page limit.

    Strings are accepted ("100"), but anything non-numeric, fractional or
    below 1 raises ConfigError instead of being coerced.
    """
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ConfigError(f"{name} must be a positive integer, got an empty value")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a positive integer, got {value!r}") from None
    if not math.isfinite(number) or number != int(number) or number < 1:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    return int(number)


def parse_positive_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a positive number, got {value!r}")
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a positive number, got {value!r}") from None
    if not math.isfinite(number) or number <= 0:
        raise ConfigError(f"{name} must be a positive number, got {value!r}")
    return number


@dataclass(frozen=True)
class RetryPolicy:
    # None retries forever (the behavior of the first version of the explorer)
    max_attempts: Optional[int] = 5
    base_delay: float = 0.5
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    def allows(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt < self.max_attempts


@dataclass(frozen=True)
class Settings:
    ledger_source: str = "rpc"
    rpc_url: str = "https://mainnet.ckb.dev/"
    rpc_timeout: float = 30.0
    layout_distance: float = 450.0
    page_limit: int = 100
    retry: RetryPolicy = RetryPolicy()
    tick_hz: float = 30.0
    refit_seconds: float = 2.0
    seed_address: Optional[str] = DEFAULT_SEED_ADDRESS
    explorer_url: str = "https://explorer.nervos.org"

    @classmethod
    def from_env(cls) -> "Settings":
        source = get_env("LEDGER_SOURCE", "rpc").lower()
        if source not in {"rpc", "sim"}:
            raise ConfigError(f"LEDGER_SOURCE must be 'rpc' or 'sim', got {source!r}")

        # 0 retries forever
        attempts = get_env("RETRY_MAX_ATTEMPTS", "5").strip()
        retry = RetryPolicy(
            max_attempts=None if attempts == "0" else parse_positive_int(attempts, "RETRY_MAX_ATTEMPTS"),
            base_delay=parse_positive_float(get_env("RETRY_BASE_DELAY", "0.5"), "RETRY_BASE_DELAY"),
            max_delay=parse_positive_float(get_env("RETRY_MAX_DELAY", "30"), "RETRY_MAX_DELAY"),
        )

        seed = os.getenv("SEED_ADDRESS", DEFAULT_SEED_ADDRESS).strip()

        return cls(
            ledger_source=source,
            rpc_url=get_env("CKB_RPC_URL", "https://mainnet.ckb.dev/"),
            rpc_timeout=parse_positive_float(get_env("RPC_TIMEOUT", "30"), "RPC_TIMEOUT"),
            layout_distance=parse_positive_float(get_env("LAYOUT_DISTANCE", "450"), "LAYOUT_DISTANCE"),
            page_limit=parse_positive_int(get_env("PAGE_LIMIT", "100"), "PAGE_LIMIT"),
            retry=retry,
            tick_hz=parse_positive_float(get_env("TICK_HZ", "30"), "TICK_HZ"),
            refit_seconds=parse_positive_float(get_env("REFIT_SECONDS", "2"), "REFIT_SECONDS"),
            seed_address=seed or None,
            explorer_url=get_env("EXPLORER_URL", "https://explorer.nervos.org").rstrip("/"),
        )
