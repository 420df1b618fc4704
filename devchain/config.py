from __future__ import annotations

"""
Configuration loader for devchain.

- Reads environment variables (optionally from `.env`) via pydantic-settings.
- Provides strongly typed sub-configs for the ledger, execution limits, cost
  model, retry policy, persistence, build toolchain pinning and remote RPC.
- Exposes a cached `get_settings()` accessor.

Environment variables (nested keys use a double underscore):
    DEVCHAIN_LOG_LEVEL                    (str, default "INFO")
    DEVCHAIN_LOG_FORMAT                   ("json" | "console", default "console")
    DEVCHAIN_DEVNET_SEED                  (str, default "devchain") key derivation seed
    DEVCHAIN_LOCK_TIMEOUT_S               (float, default 5.0) lifecycle lock bound

Ledger / execution:
    DEVCHAIN_LEDGER__RETENTION            (int, default 64)
    DEVCHAIN_LIMITS__MAX_STEPS            (int, default 1_000_000)
    DEVCHAIN_LIMITS__MAX_MEMORY_BYTES     (size, e.g. "1MiB")
    DEVCHAIN_LIMITS__MAX_CODE_BYTES       (size, e.g. "64KiB")
    DEVCHAIN_LIMITS__MAX_CALL_DEPTH       (int, default 8)
    DEVCHAIN_LIMITS__DEPLOY_COST          (int, default 100)

Cost model (deployment fee estimates):
    DEVCHAIN_COSTS__BASE_FEE / PER_BYTE_FEE / PER_FUNCTION_FEE / PER_STEP_FEE

Retry policy (transient RPC failures only):
    DEVCHAIN_RETRY__MAX_ATTEMPTS / BACKOFF_BASE_S / BACKOFF_MAX_S / MULTIPLIER

Persistence:
    DEVCHAIN_PERSISTENCE__ENABLED         (bool, default False)
    DEVCHAIN_PERSISTENCE__STATE_DIR       (path, default "./.devchain")
    DEVCHAIN_PERSISTENCE__IO_TIMEOUT_S    (float, default 5.0)
    DEVCHAIN_RECORDS_DB                   (path, default <state_dir>/records.db)

Toolchain pin / RPC:
    DEVCHAIN_TOOLCHAIN__VERSION           (str, default "devchain-asm/1")
    DEVCHAIN_TOOLCHAIN__OPTIMIZE          (bool, default True)
    DEVCHAIN_RPC__URL / TIMEOUT_S
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ----------------------------- Helpers ---------------------------------------

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([kKmMgG]i?[bB]|[bB])?\s*$")
_UNITS = {
    "b": 1,
    "kb": 1000,
    "kib": 1024,
    "mb": 1000**2,
    "mib": 1024**2,
    "gb": 1000**3,
    "gib": 1024**3,
}


def parse_size_bytes(s: Union[str, int, float]) -> int:
    """
    Parse human-friendly byte sizes:
      "256KiB", "64KB", "1MiB", "131072", 131072 -> bytes (int)
    """
    if isinstance(s, (int, float)):
        n = int(s)
        if n < 0:
            raise ValueError("size must be non-negative")
        return n
    m = _SIZE_RE.match(str(s))
    if not m:
        raise ValueError(f"invalid size: {s!r}")
    unit = (m.group(2) or "B").lower()
    return int(m.group(1)) * _UNITS[unit]


# ----------------------------- Sub-configs -----------------------------------


class LedgerConfig(BaseModel):
    retention: int = Field(64, ge=1, description="Retained ledger snapshots (FIFO eviction).")


class ExecutionLimits(BaseModel):
    """Configured maxima; per-transaction limits must stay within these."""

    max_steps: int = Field(1_000_000, ge=1)
    max_memory_bytes: int = Field(1024 * 1024, ge=1)
    max_code_bytes: int = Field(64 * 1024, ge=1)
    max_call_depth: int = Field(8, ge=1)
    deploy_cost: int = Field(100, ge=0, description="Fixed cost charged to a deployer (local devnet).")

    @field_validator("max_memory_bytes", "max_code_bytes", mode="before")
    @classmethod
    def _coerce_size(cls, v):
        return parse_size_bytes(v)


class CostModel(BaseModel):
    """Resource-cost model for deployment fee estimates."""

    base_fee: int = Field(100, ge=0)
    per_byte_fee: int = Field(1, ge=0)
    per_function_fee: int = Field(10, ge=0)


class RetryPolicy(BaseModel):
    """
    Bounded exponential backoff for transient I/O errors.

    ``max_attempts`` counts the first try; ``delay(n)`` is the wait before
    attempt ``n + 1``.
    """

    max_attempts: int = Field(4, ge=1)
    backoff_base_s: float = Field(0.25, ge=0)
    backoff_max_s: float = Field(4.0, ge=0)
    multiplier: float = Field(2.0, ge=1.0)

    def delay(self, attempt: int) -> float:
        d = self.backoff_base_s * (self.multiplier ** max(0, attempt - 1))
        return min(d, self.backoff_max_s)


class PersistenceConfig(BaseModel):
    enabled: bool = False
    state_dir: Path = Path("./.devchain")
    io_timeout_s: float = Field(5.0, gt=0)

    @field_validator("state_dir", mode="before")
    @classmethod
    def _coerce_path(cls, v):
        return Path(v).expanduser() if v is not None else Path("./.devchain")


class ToolchainPin(BaseModel):
    """Pinned build configuration; part of the deterministic build input."""

    version: str = "devchain-asm/1"
    optimize: bool = True

    model_config = {"frozen": True}


class RpcConfig(BaseModel):
    url: Optional[str] = None
    timeout_s: float = Field(10.0, gt=0)
    headers: Dict[str, str] = Field(default_factory=dict)


# --------------------------------- Settings ----------------------------------


class Settings(BaseSettings):
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_format: str = Field("console", description='"json" or "console"')
    devnet_seed: str = Field("devchain", description="Seed for deterministic test identities")
    lock_timeout_s: float = Field(5.0, gt=0, description="Bound on devnet lifecycle lock waits")
    records_db: Optional[Path] = None

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    limits: ExecutionLimits = Field(default_factory=ExecutionLimits)
    costs: CostModel = Field(default_factory=CostModel)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    toolchain: ToolchainPin = Field(default_factory=ToolchainPin)
    rpc: RpcConfig = Field(default_factory=RpcConfig)

    model_config = SettingsConfigDict(
        env_prefix="DEVCHAIN_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_format")
    @classmethod
    def _check_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @model_validator(mode="after")
    def _default_records_db(self) -> "Settings":
        if self.records_db is None:
            self.records_db = self.persistence.state_dir / "records.db"
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


__all__ = [
    "Settings",
    "LedgerConfig",
    "ExecutionLimits",
    "CostModel",
    "RetryPolicy",
    "PersistenceConfig",
    "ToolchainPin",
    "RpcConfig",
    "get_settings",
    "parse_size_bytes",
]
