"""Qave operator CLI implemented with Typer.

Commands run in-process against the configured metadata store and piece
backend; they do not go through the HTTP API. With the in-memory piece backend
every invocation starts with an empty piece store, so ``upload``/``get`` only
make sense across invocations with ``backend: filesystem``.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator

import typer

from packages.qave_core.main import (
    CONFIG_FILE_ENV,
    QaveRuntime,
    build_runtime,
    serve,
)
from packages.qave_shared.config import QaveSettings, load_settings
from packages.qave_shared.envelope import Envelope, EnvelopeKind, EnvelopeMeta, new_meta
from packages.qave_shared.errors import ErrorCategory
from services.state.lease_authority.domain import (
    AggregateStats,
    HealthStatus,
    LeaseListing,
    SweepReport,
    UploadReceipt,
)

DOMAIN_ERROR_EXIT_CODE = 3
DEPENDENCY_ERROR_EXIT_CODE = 4


@dataclass(frozen=True)
class CliConfig:
    """Global CLI options shared by every command."""

    config_path: Path | None
    principal: str
    as_json: bool


def _load(cfg: CliConfig) -> QaveSettings:
    return load_settings(config_path=cfg.config_path)


@contextmanager
def _runtime(cfg: CliConfig) -> Iterator[QaveRuntime]:
    """Build one runtime for a single command and release the engine after."""
    runtime = build_runtime(_load(cfg))
    try:
        yield runtime
    finally:
        runtime.sql.dispose()


def _require_config(ctx: typer.Context) -> CliConfig:
    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


def _unwrap(cfg: CliConfig, envelope: Envelope[Any]) -> Any:
    """Return the payload value or exit with a category-specific code."""
    if envelope.ok and envelope.payload is not None:
        return envelope.payload.value
    for error in envelope.errors:
        if cfg.as_json:
            typer.echo(
                json.dumps({"error": error.code.lower(), "message": error.message}),
                err=True,
            )
        else:
            typer.echo(f"error: {error.message} ({error.code.lower()})", err=True)
    dependency = any(
        error.category in (ErrorCategory.DEPENDENCY, ErrorCategory.INTERNAL)
        for error in envelope.errors
    )
    raise typer.Exit(
        code=DEPENDENCY_ERROR_EXIT_CODE if dependency else DOMAIN_ERROR_EXIT_CODE
    )


def _emit(cfg: CliConfig, data: Any, render: Callable[[Any], str]) -> None:
    if cfg.as_json:
        typer.echo(json.dumps(_serialize(data), sort_keys=True, separators=(",", ":")))
        return
    typer.echo(render(data))


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_serialize(item) for item in value]
    return value


def _render_health(status: HealthStatus) -> str:
    lines = [f"Qave: {_status_label(status.service_ready)}"]
    lines.append(f"  Metadata store: {_status_label(status.store_ready)}")
    lines.append(f"  Piece storage: {_status_label(status.storage_ready)}")
    if status.detail != "ok":
        lines.append(f"  Detail: {status.detail}")
    return "\n".join(lines)


def _render_stats(stats: AggregateStats) -> str:
    return "\n".join(
        f"{name.replace('_', ' ').capitalize()}: {value}"
        for name, value in stats.model_dump().items()
    )


def _render_listing(items: list[LeaseListing]) -> str:
    if len(items) == 0:
        return "No objects found."
    lines: list[str] = []
    for item in items:
        expire = "never" if item.lease.expire_at is None else item.lease.expire_at.isoformat()
        lines.append(
            f"- {item.object.object_id} {item.status.value} "
            f"size={item.object.size_bytes} expires={expire}"
        )
    return "\n".join(lines)


def _render_receipt(receipt: UploadReceipt) -> str:
    return "\n".join(
        [
            f"object_id: {receipt.object.object_id}",
            f"lease_id: {receipt.lease.lease_id}",
            f"piece_cid: {receipt.lease.storage_ref.piece_id}",
            f"size: {receipt.object.size_bytes}",
        ]
    )


def _render_sweep(report: SweepReport) -> str:
    line = (
        f"found={report.found} marked={report.marked} "
        f"pieces_deleted={report.pieces_deleted} "
        f"piece_delete_failures={report.piece_delete_failures}"
    )
    return line if report.error is None else f"{line} error={report.error}"


def _status_label(ready: bool) -> str:
    return "healthy" if ready else "degraded"


def _meta(cfg: CliConfig, kind: EnvelopeKind) -> EnvelopeMeta:
    return new_meta(kind=kind, source="cli", principal=cfg.principal)


app = typer.Typer(no_args_is_help=True, help="Qave operator command-line interface")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        envvar=CONFIG_FILE_ENV,
        help="Path to qave.yaml",
    ),
    principal: str = typer.Option("operator", help="Envelope principal"),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
) -> None:
    """Store global options for all commands."""
    ctx.obj = CliConfig(config_path=config, principal=principal, as_json=as_json)


@app.command("health")
def health_command(ctx: typer.Context) -> None:
    """Report metadata store and piece storage readiness."""
    cfg = _require_config(ctx)
    with _runtime(cfg) as runtime:
        status = _unwrap(cfg, runtime.service.health(meta=_meta(cfg, EnvelopeKind.QUERY)))
    _emit(cfg, status, _render_health)
    if not status.service_ready:
        raise typer.Exit(code=DEPENDENCY_ERROR_EXIT_CODE)


@app.command("stats")
def stats_command(ctx: typer.Context) -> None:
    """Print dashboard aggregates."""
    cfg = _require_config(ctx)
    with _runtime(cfg) as runtime:
        stats = _unwrap(cfg, runtime.service.dashboard(meta=_meta(cfg, EnvelopeKind.QUERY)))
    _emit(cfg, stats, _render_stats)


@app.command("objects")
def objects_command(
    ctx: typer.Context,
    wallet: str = typer.Argument(..., help="Owner wallet"),
) -> None:
    """List every lease for one owner, newest first."""
    cfg = _require_config(ctx)
    with _runtime(cfg) as runtime:
        items = _unwrap(
            cfg,
            runtime.service.list_objects(
                meta=_meta(cfg, EnvelopeKind.QUERY), wallet=wallet
            ),
        )
    _emit(cfg, items, _render_listing)


@app.command("upload")
def upload_command(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    wallet: str = typer.Option(..., help="Owner wallet"),
) -> None:
    """Upload one file and create a fresh lease for it."""
    cfg = _require_config(ctx)
    with _runtime(cfg) as runtime:
        receipt = _unwrap(
            cfg,
            runtime.service.upload(
                meta=_meta(cfg, EnvelopeKind.COMMAND),
                wallet=wallet,
                content=path.read_bytes(),
                file_name=path.name,
            ),
        )
    _emit(cfg, receipt, _render_receipt)


@app.command("get")
def get_command(
    ctx: typer.Context,
    object_id: str = typer.Argument(..., help="Object identifier"),
    output: Path = typer.Option(..., "--output", "-o", help="Destination file"),
) -> None:
    """Write the bytes of one active object to a file."""
    cfg = _require_config(ctx)
    with _runtime(cfg) as runtime:
        content = _unwrap(
            cfg,
            runtime.service.get_object(
                meta=_meta(cfg, EnvelopeKind.QUERY), object_id=object_id
            ),
        )
    output.write_bytes(content.content)
    _emit(
        cfg,
        {"object_id": object_id, "size": len(content.content), "output": str(output)},
        lambda data: f"wrote {data['size']} bytes to {data['output']}",
    )


@app.command("sweep")
def sweep_command(ctx: typer.Context) -> None:
    """Run one expiration sweep cycle and report what it did."""
    cfg = _require_config(ctx)
    with _runtime(cfg) as runtime:
        report = runtime.sweeper.run_once()
    _emit(cfg, report, _render_sweep)
    if not report.ok:
        raise typer.Exit(code=DEPENDENCY_ERROR_EXIT_CODE)


@app.command("serve")
def serve_command(ctx: typer.Context) -> None:
    """Serve the HTTP API until interrupted."""
    serve(_load(_require_config(ctx)))


if __name__ == "__main__":
    app()
