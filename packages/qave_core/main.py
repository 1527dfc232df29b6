"""Process entrypoint for the Qave HTTP runtime."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from fastapi import FastAPI

from packages.qave_core import __version__
from packages.qave_shared.config import QaveSettings, load_settings
from packages.qave_shared.http import create_app, run_app
from packages.qave_shared.logging import configure_logging, get_logger
from resources.adapters.piece_storage import (
    InMemoryPieceStorageAdapter,
    PieceStorageAdapter,
    build_piece_storage_adapter,
    resolve_piece_storage_settings,
)
from services.state.lease_authority.api import register_routes
from services.state.lease_authority.config import (
    LeaseAuthoritySettings,
    resolve_lease_authority_settings,
)
from services.state.lease_authority.data import LeaseSqlRuntime, SqlLeaseRepository
from services.state.lease_authority.guard import PieceGuard
from services.state.lease_authority.service import (
    LeaseAuthorityService,
    build_lease_authority_service,
)
from services.state.lease_authority.sweeper import ExpirationSweeper

CONFIG_FILE_ENV = "QAVE_CONFIG_FILE"

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class QaveRuntime:
    """Fully wired process components sharing one repository and backend."""

    settings: QaveSettings
    service_settings: LeaseAuthoritySettings
    sql: LeaseSqlRuntime
    adapter: PieceStorageAdapter
    service: LeaseAuthorityService
    sweeper: ExpirationSweeper
    app: FastAPI


def build_runtime(
    settings: QaveSettings,
    *,
    adapter: PieceStorageAdapter | None = None,
) -> QaveRuntime:
    """Create schema, wire service and sweeper, and build the HTTP app."""
    service_settings = resolve_lease_authority_settings(settings)
    sql = LeaseSqlRuntime.from_settings(settings)
    sql.create_schema()
    repository = SqlLeaseRepository(sql.sessions)
    guard = PieceGuard()
    backend = adapter or build_piece_storage_adapter(
        resolve_piece_storage_settings(settings)
    )
    service = build_lease_authority_service(
        settings=settings, repository=repository, adapter=backend, guard=guard
    )
    sweeper = ExpirationSweeper(
        repository=repository,
        adapter=backend,
        settings=service_settings,
        guard=guard,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if service_settings.sweeper_enabled:
            sweeper.start()
        try:
            yield
        finally:
            sweeper.stop(wait=True, timeout=service_settings.sweep_interval_seconds + 5.0)
            sql.dispose()

    app = create_app(title="Qave", version=__version__, lifespan=lifespan)
    register_routes(app, service=service, settings=service_settings, sweeper=sweeper)
    return QaveRuntime(
        settings=settings,
        service_settings=service_settings,
        sql=sql,
        adapter=backend,
        service=service,
        sweeper=sweeper,
        app=app,
    )


def _pieces_lost_on_restart(runtime: QaveRuntime) -> bool:
    """Return whether metadata outlives the process while pieces do not."""
    if not isinstance(runtime.adapter, InMemoryPieceStorageAdapter):
        return False
    url = runtime.sql.engine.url
    if url.get_backend_name() != "sqlite":
        return True
    return url.database not in (None, "", ":memory:")


def settings_from_environment() -> QaveSettings:
    """Load settings from the file named by ``QAVE_CONFIG_FILE``, if any."""
    config_path = os.getenv(CONFIG_FILE_ENV, "").strip()
    return load_settings(config_path=Path(config_path) if config_path else None)


def serve(settings: QaveSettings) -> None:
    """Configure logging, wire the runtime, and serve until interrupted."""
    configure_logging(
        level=settings.logging.level,
        json_output=settings.logging.json_output,
        service=settings.logging.service,
        environment=settings.logging.environment,
    )
    runtime = build_runtime(settings)
    db_url = runtime.sql.engine.url.render_as_string(hide_password=True)
    if _pieces_lost_on_restart(runtime):
        _LOGGER.warning(
            "In-memory piece backend with a persistent metadata store: "
            "objects recorded in db=%s become unreadable after restart",
            db_url,
        )
    _LOGGER.info(
        "Qave startup completed: host=%s port=%s db=%s",
        settings.http.host,
        settings.http.port,
        db_url,
    )
    run_app(
        runtime.app,
        host=settings.http.host,
        port=settings.http.port,
        log_level=settings.http.log_level,
    )


def main() -> None:
    serve(settings_from_environment())


if __name__ == "__main__":
    main()
