"""
devchain command line.

Every command runs an in-process devnet backed by snapshot persistence under
``--state-dir`` (default: $DEVCHAIN_PERSISTENCE__STATE_DIR or ./.devchain).
``devnet start`` marks the devnet as running; other devnet commands load the
latest snapshot, apply their change, and persist again on the way out.

Commands
--------
  devnet start|stop|reset|status
  account create|fund|show
  deploy SOURCE --account A [--rpc-url URL --network N --chain-id C]
  invoke INSTANCE FUNCTION [ARGS...] --account A
  verify CONTRACT_ID SOURCE [--rpc-url URL --network N]
  inspect [CONTRACT_ID]

Human output uses rich tables; ``--json`` prints machine-readable JSON.

Examples:
  devchain devnet start
  devchain account create alice && devchain account fund alice 10000
  devchain deploy contracts/token --account alice
  devchain invoke 0xabc… transfer alice bob 500 --account alice
  devchain verify 0xabc… contracts/token --json
"""

from __future__ import annotations

import json
import re
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from devchain.adapters.node_rpc import HttpNodeRpc
from devchain.config import Settings, get_settings
from devchain.errors import DevchainError, DevnetNotRunning, InvalidTransition
from devchain.logging import bind_context, clear_context, setup_logging
from devchain.network.controller import DevnetController
from devchain.services.deploy import DeploymentPipeline, LocalTarget, RemoteTarget
from devchain.services.verify import VerificationEngine
from devchain.storage.sqlite import RecordStore
from devchain.types.tx import ResourceLimits, Transaction
from devchain.version import __version__

app = typer.Typer(
    name="devchain",
    add_completion=False,
    no_args_is_help=True,
    help="Local smart-contract devnet with deterministic build, deploy and verify.",
)
devnet_app = typer.Typer(no_args_is_help=True, help="Start, stop, reset and inspect the local devnet.")
account_app = typer.Typer(no_args_is_help=True, help="Create, fund and show devnet accounts.")
app.add_typer(devnet_app, name="devnet")
app.add_typer(account_app, name="account")

RUNNING_MARKER = "RUNNING"
_INT_RE = re.compile(r"^-?\d+$")

console = Console()


@dataclass
class CliState:
    settings: Settings
    as_json: bool = False


_state: Optional[CliState] = None


def _ctx() -> CliState:
    global _state
    if _state is None:
        _state = CliState(settings=_settings(None))
    return _state


def _settings(state_dir: Optional[Path]) -> Settings:
    base = get_settings()
    update: Dict[str, Any] = {"enabled": True}
    if state_dir is not None:
        update["state_dir"] = state_dir
    persistence = base.persistence.model_copy(update=update)
    records_db = base.records_db if state_dir is None else state_dir / "records.db"
    return base.model_copy(update={"persistence": persistence, "records_db": records_db})


# -------------------------------- output ---------------------------------


def _emit(data: Any, *, title: Optional[str] = None) -> None:
    if _ctx().as_json:
        typer.echo(json.dumps(data, indent=2, sort_keys=True, default=str))
        return
    if isinstance(data, list):
        if not data:
            console.print(f"[dim]no {title or 'entries'}[/dim]")
            return
        table = Table(title=title, box=box.SIMPLE_HEAVY)
        cols = list(data[0].keys())
        for c in cols:
            table.add_column(c)
        for row in data:
            table.add_row(*[_cell(row.get(c)) for c in cols])
        console.print(table)
        return
    table = Table(title=title, box=box.SIMPLE_HEAVY, show_header=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    for k, v in data.items():
        table.add_row(k, _cell(v))
    console.print(table)


def _cell(v: Any) -> str:
    if v is None:
        return "-"
    if isinstance(v, (dict, list, tuple)):
        return json.dumps(v, sort_keys=True, default=str)
    return str(v)


@contextmanager
def _handled() -> Iterator[None]:
    """Turn DevchainError into a readable message and exit code 1."""
    try:
        yield
    except DevchainError as e:
        if _ctx().as_json:
            typer.echo(json.dumps({"error": e.to_dict()}, indent=2, sort_keys=True, default=str))
        else:
            console.print(f"[bold red]error[/bold red] [{e.code}] {e.message}")
        raise typer.Exit(code=1)


# -------------------------------- devnet ---------------------------------


def _marker(settings: Settings) -> Path:
    return settings.persistence.state_dir / RUNNING_MARKER


@contextmanager
def _devnet() -> Iterator[DevnetController]:
    settings = _ctx().settings
    if not _marker(settings).exists():
        raise DevnetNotRunning("stopped")
    ctl = DevnetController(settings)
    ctl.start()
    try:
        yield ctl
    finally:
        ctl.stop()


def _records() -> RecordStore:
    settings = _ctx().settings
    return RecordStore(settings.records_db)


@app.callback()
def main(
    ctx: typer.Context,
    state_dir: Optional[Path] = typer.Option(None, "--state-dir", help="Devnet state directory."),
    as_json: bool = typer.Option(False, "--json", help="Print machine-readable JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show structured logs on stderr."),
) -> None:
    global _state
    settings = _settings(state_dir)
    _state = CliState(settings=settings, as_json=as_json)
    setup_logging(
        service_name="devchain-cli",
        level=settings.log_level if verbose else "WARNING",
        log_format=settings.log_format,
    )
    clear_context()
    bind_context(command=ctx.invoked_subcommand)


@app.command("version")
def version() -> None:
    """Print the devchain version."""
    _emit({"version": __version__})


@devnet_app.command("start")
def devnet_start() -> None:
    """Start the devnet (resumes from the latest snapshot, if any)."""
    settings = _ctx().settings
    with _handled():
        marker = _marker(settings)
        if marker.exists() and not _ctx().as_json:
            console.print("[yellow]devnet already running[/yellow]")
        ctl = DevnetController(settings)
        ctl.start()
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.write_text("running\n", encoding="utf-8")
        status = ctl.status()
        ctl.stop()
        _emit(status.to_dict(), title="devnet")


@devnet_app.command("stop")
def devnet_stop() -> None:
    """Stop the devnet. Its state stays on disk for the next start."""
    settings = _ctx().settings
    with _handled():
        marker = _marker(settings)
        if not marker.exists():
            raise InvalidTransition("stopped", "stop")
        marker.unlink()
        _emit({"state": "stopped"}, title="devnet")


@devnet_app.command("reset")
def devnet_reset() -> None:
    """Wipe all devnet state and start fresh at sequence 0."""
    settings = _ctx().settings
    with _handled():
        ctl = DevnetController(settings)
        ctl.reset()
        marker = _marker(settings)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.write_text("running\n", encoding="utf-8")
        status = ctl.status()
        ctl.stop()
        _emit(status.to_dict(), title="devnet")


@devnet_app.command("status")
def devnet_status() -> None:
    """Show devnet state and ledger counters."""
    settings = _ctx().settings
    with _handled():
        if not _marker(settings).exists():
            _emit({"state": "stopped"}, title="devnet")
            return
        with _devnet() as ctl:
            _emit(ctl.status().to_dict(), title="devnet")


# -------------------------------- accounts -------------------------------


@account_app.command("create")
def account_create(handle: str = typer.Argument(..., help="Account handle, e.g. alice")) -> None:
    with _handled(), _devnet() as ctl:
        _emit(ctl.accounts.create(handle).to_dict(), title="account")


@account_app.command("fund")
def account_fund(
    handle: str = typer.Argument(...),
    amount: int = typer.Argument(..., help="Units to mint into the account"),
) -> None:
    with _handled(), _devnet() as ctl:
        _emit(ctl.accounts.fund(handle, amount).to_dict(), title="account")


@account_app.command("show")
def account_show(handle: Optional[str] = typer.Argument(None, help="Omit to list all accounts")) -> None:
    with _handled(), _devnet() as ctl:
        if handle is None:
            _emit([a.to_dict() for a in ctl.accounts.list()], title="accounts")
        else:
            _emit(ctl.accounts.get(handle).to_dict(), title="account")


# ------------------------------ deploy/invoke ----------------------------


@app.command("deploy")
def deploy(
    source: Path = typer.Argument(..., help="Contract directory or contract.yaml"),
    account: str = typer.Option(..., "--account", "-a", help="Deployer account"),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="Deploy to a remote node instead of the devnet"),
    network: str = typer.Option("remote", "--network", help="Remote network name (with --rpc-url)"),
    chain_id: int = typer.Option(1, "--chain-id", help="Remote chain id (with --rpc-url)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall deadline in seconds"),
) -> None:
    """Build SOURCE deterministically and deploy it; prints the signed receipt."""
    settings = _ctx().settings
    with _handled():
        records = _records()
        try:
            if rpc_url:
                pipeline = DeploymentPipeline(settings=settings, records=records)
                target = RemoteTarget(network=network, rpc_url=rpc_url, account=account, chain_id=chain_id)
                receipt = pipeline.deploy(source, target, timeout_s=timeout)
            else:
                with _devnet() as ctl:
                    pipeline = DeploymentPipeline(settings=settings, records=records, controller=ctl)
                    receipt = pipeline.deploy(source, LocalTarget(account), timeout_s=timeout)
        finally:
            records.close()
        _emit(receipt.model_dump(mode="json"), title="deploy receipt")


def _parse_arg(raw: str) -> Any:
    return int(raw) if _INT_RE.match(raw) else raw


@app.command("invoke")
def invoke(
    instance_id: str = typer.Argument(..., help="Contract instance id"),
    function: str = typer.Argument(...),
    args: Optional[List[str]] = typer.Argument(None, help="Integer or string arguments"),
    account: str = typer.Option(..., "--account", "-a", help="Calling account"),
    steps: int = typer.Option(ResourceLimits().steps, "--steps", help="Execution-step budget"),
    memory: int = typer.Option(ResourceLimits().memory_bytes, "--memory", help="Memory budget in bytes"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Simulate without committing"),
) -> None:
    """Call FUNCTION on a deployed instance."""
    with _handled(), _devnet() as ctl:
        tx = Transaction.invoke(
            account,
            ctl.accounts.next_sequence(account),
            instance_id,
            function,
            [_parse_arg(a) for a in args or []],
            limits=ResourceLimits(steps=steps, memory_bytes=memory),
        )
        outcome = ctl.executor.simulate(tx) if dry_run else ctl.executor.execute(tx)
        if not outcome.ok:
            outcome.raise_error()
        _emit(outcome.to_dict(), title="receipt")


# --------------------------------- verify --------------------------------


@app.command("verify")
def verify(
    contract_id: str = typer.Argument(..., help="Instance id (devnet) or network contract id"),
    source: Path = typer.Argument(..., help="Contract directory or contract.yaml"),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="Verify against a remote node"),
    network: str = typer.Option("remote", "--network", help="Remote network name (with --rpc-url)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall deadline in seconds"),
) -> None:
    """Rebuild SOURCE and compare its code hash with the deployed contract."""
    settings = _ctx().settings
    with _handled():
        records = _records()
        try:
            if rpc_url:
                with HttpNodeRpc(rpc_url, timeout_s=settings.rpc.timeout_s, headers=settings.rpc.headers) as rpc:
                    engine = VerificationEngine(rpc, network=network, settings=settings, records=records)
                    record = engine.verify(contract_id, source, timeout_s=timeout)
            else:
                with _devnet() as ctl:
                    engine = VerificationEngine.for_devnet(ctl, records=records)
                    record = engine.verify(contract_id, source, timeout_s=timeout)
        finally:
            records.close()
        _emit(record.model_dump(mode="json"), title="verification")
        if not record.match:
            raise typer.Exit(code=2)


@app.command("inspect")
def inspect(contract_id: Optional[str] = typer.Argument(None, help="Filter by contract id")) -> None:
    """List stored deploy receipts and verification records."""
    with _handled():
        records = _records()
        try:
            receipts = [r.model_dump(mode="json") for r in records.list_receipts(contract_id=contract_id)]
            verifications = [v.model_dump(mode="json") for v in records.list_verifications(contract_id=contract_id)]
        finally:
            records.close()
        if _ctx().as_json:
            _emit({"receipts": receipts, "verifications": verifications})
            return
        _emit(
            [{k: r[k] for k in ("receipt_id", "contract_id", "network", "position", "deployer")} for r in receipts],
            title="deploy receipts",
        )
        _emit(
            [{k: v[k] for k in ("record_id", "contract_id", "match", "network")} for v in verifications],
            title="verifications",
        )


if __name__ == "__main__":  # pragma: no cover
    app()
