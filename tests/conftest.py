from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from devchain.adapters.builder import BuildArtifact, DeterministicBuilder
from devchain.config import ExecutionLimits, Settings, ToolchainPin
from devchain.network.controller import DevnetController, DevnetState
from devchain.runtime.executor import Executor
from devchain.state.accounts import AccountStore
from devchain.state.contracts import ContractRegistry
from devchain.state.keys import Keyring
from devchain.state.ledger import LedgerStateEngine

# -----------------------------------------------------------------------------
# Contract sources
# -----------------------------------------------------------------------------

TOKEN_YAML = """\
# moves native units between accounts on behalf of the caller
name: token
functions:
  transfer:
    params: [from, to, amount]
    code:
      - ARG from
      - ARG to
      - ARG amount
      - TRANSFER
      - ARG amount
      - EMIT transferred
      - PUSH 1
      - RETURN
  balance_of:
    params: [who]
    code:
      - ARG who
      - BALANCE
      - RETURN
"""

COUNTER_YAML = """\
name: counter
functions:
  increment:
    params: [by]
    code:
      - SLOADI count
      - ARG by
      - ADD
      - DUP
      - SSTOREI count
      - RETURN
  get:
    params: []
    code:
      - SLOADI count
      - RETURN
  guarded:
    params: [x]
    code:
      - ARG x
      - PUSH 10
      - LT
      - REQUIRE x must be below 10
      - ARG x
      - SSTOREI last
      - PUSH 0
      - RETURN
  spin:
    params: []
    code:
      - LABEL top
      - NOP
      - JUMP top
"""


def write_contract(root: Path, name: str, text: str) -> Path:
    d = root / name
    d.mkdir(parents=True, exist_ok=True)
    (d / "contract.yaml").write_text(text, encoding="utf-8")
    return d


def build_text(text: str, pin: ToolchainPin = ToolchainPin()) -> BuildArtifact:
    return DeterministicBuilder().compile_text(text, pin)


# -----------------------------------------------------------------------------
# Settings & devnet
# -----------------------------------------------------------------------------


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def settings(state_dir: Path) -> Settings:
    """In-memory devnet settings with fast retries."""
    return Settings(
        _env_file=None,
        devnet_seed="test-seed",
        lock_timeout_s=2.0,
        persistence={"enabled": False, "state_dir": state_dir, "io_timeout_s": 2.0},
        retry={"max_attempts": 3, "backoff_base_s": 0.01, "backoff_max_s": 0.05},
    )


@pytest.fixture
def persistent_settings(settings: Settings) -> Settings:
    return settings.model_copy(
        update={"persistence": settings.persistence.model_copy(update={"enabled": True})}
    )


@pytest.fixture
def controller(settings: Settings) -> Iterator[DevnetController]:
    ctl = DevnetController(settings)
    ctl.start()
    yield ctl
    if ctl.state is DevnetState.RUNNING:
        ctl.stop()


# -----------------------------------------------------------------------------
# Bare components
# -----------------------------------------------------------------------------


@pytest.fixture
def engine() -> LedgerStateEngine:
    return LedgerStateEngine(retention=16)


@pytest.fixture
def keyring() -> Keyring:
    return Keyring("test-seed")


@pytest.fixture
def accounts(engine: LedgerStateEngine, keyring: Keyring) -> AccountStore:
    return AccountStore(engine, keyring)


@pytest.fixture
def registry(engine: LedgerStateEngine) -> ContractRegistry:
    return ContractRegistry(engine, ExecutionLimits())


@pytest.fixture
def executor(engine: LedgerStateEngine, registry: ContractRegistry) -> Executor:
    return Executor(engine, registry, ExecutionLimits())


@pytest.fixture
def token_artifact() -> BuildArtifact:
    return build_text(TOKEN_YAML)


@pytest.fixture
def counter_artifact() -> BuildArtifact:
    return build_text(COUNTER_YAML)


@pytest.fixture
def token_src(tmp_path: Path) -> Path:
    return write_contract(tmp_path / "src", "token", TOKEN_YAML)


@pytest.fixture
def counter_src(tmp_path: Path) -> Path:
    return write_contract(tmp_path / "src", "counter", COUNTER_YAML)


@pytest.fixture
def token_yaml() -> str:
    return TOKEN_YAML


@pytest.fixture
def counter_yaml() -> str:
    return COUNTER_YAML
