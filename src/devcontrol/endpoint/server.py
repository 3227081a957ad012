"""FastAPI HTTP server for the devcontrol service.

Every route authenticates the caller, checks one capability, runs a
single gateway operation and returns a uniform ``{success, message, ...}``
body. Diagnostics (the command line and the error kind) go to the log
only.

    GET  /health                       -> {"status": "ok", ...}
    GET  /system-info                  -> docker availability + host metadata
    GET  /metrics                      -> load, backup storage, container counts
    GET  /containers                   -> {"containers": [...], "total": n}
    POST /containers/manage            <- {"action": "restart", "container": "web"}
    POST /containers/{name}/start      (also /stop, /restart)
    GET  /containers/{name}/logs?lines=100
    POST /backup                       <- {"action": "backup", "filename": ""}
    GET  /backups                      -> {"backups": [...], "total": n}
"""

from __future__ import annotations

import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from devcontrol import __version__
from devcontrol.config.settings import Settings, load_settings
from devcontrol.domain.models import (
    AuthContext,
    Capability,
    CommandResult,
    ContainerAction,
    DataAction,
    ErrorKind,
)
from devcontrol.endpoint.auth import TokenAuthenticator, require
from devcontrol.gateway.gateway import (
    DEFAULT_LOG_LINES,
    CommandGateway,
    default_backup_filename,
)
from devcontrol.gateway.validation import ValidationError, validate_action
from devcontrol.sysinfo import collect_metrics, collect_system_info
from devcontrol.utils.logging import audit

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class ManageContainerRequest(BaseModel):
    action: str = Field(description="start, stop or restart")
    container: str = Field(description="Container name")


class BackupRestoreRequest(BaseModel):
    action: str = Field(description="backup or restore")
    filename: str = Field(default="", description="Backup filename")


class HealthResponse(BaseModel):
    status: str = "ok"
    enabled: bool = True
    version: str = __version__


class ManageContainerResponse(BaseModel):
    success: bool
    message: str
    output: str
    action: str
    container: str


class LogsResponse(BaseModel):
    success: bool
    message: str = ""
    logs: str
    container: str
    lines: int


class ContainerEntry(BaseModel):
    id: str
    name: str
    image: str
    status: str
    ports: str


class ContainerStatusResponse(BaseModel):
    success: bool
    message: str = ""
    containers: list[ContainerEntry]
    total: int


class BackupRestoreResponse(BaseModel):
    success: bool
    message: str
    filename: str
    action: str
    output: str = ""


class BackupEntry(BaseModel):
    filename: str
    size_bytes: int
    created_at: str


class BackupListResponse(BaseModel):
    success: bool = True
    backups: list[BackupEntry]
    total: int


# Rejections map to client errors; anything that reached a subprocess
# is reported with 200 and success=false.
_STATUS_BY_ERROR = {
    ErrorKind.INVALID_ACTION: 400,
    ErrorKind.INVALID_TARGET_NAME: 400,
    ErrorKind.MISSING_FILENAME: 400,
    ErrorKind.INVALID_LINE_COUNT: 400,
    ErrorKind.FILE_NOT_FOUND: 404,
    ErrorKind.PERMISSION_DENIED: 403,
}


def _status_for(result: CommandResult) -> int:
    if result.error is None:
        return 200
    return _STATUS_BY_ERROR.get(result.error, 200)


def _respond(result: CommandResult, body: BaseModel) -> JSONResponse:
    return JSONResponse(status_code=_status_for(result), content=body.model_dump())


def _client(request: Request) -> str | None:
    return request.client.host if request.client else None


def _describe_validation_errors(exc: RequestValidationError) -> str:
    """Flatten FastAPI's error list into one line, e.g. ``query.lines: ...``."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "Invalid request: " + "; ".join(parts)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    gateway: CommandGateway | None = None,
    authenticator: TokenAuthenticator | None = None,
) -> FastAPI:
    """Create the devcontrol REST API application.

    Args:
        settings: Service configuration. Defaults to ``Settings()``.
        gateway: Optional pre-configured CommandGateway (for testing).
        authenticator: Optional pre-configured TokenAuthenticator.
    """
    settings = settings or Settings()
    if gateway is None:
        gateway = CommandGateway(
            docker=settings.docker,
            backup=settings.backup,
            db_password=settings.db_password.get_secret_value(),
        )

    app = FastAPI(
        title="devcontrol",
        description="Container and database control API",
        version=__version__,
    )
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.authenticator = authenticator or TokenAuthenticator(settings.auth)

    def ensure_enabled() -> None:
        if not app.state.settings.enabled:
            raise HTTPException(status_code=503, detail="devcontrol is disabled")

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        message = _describe_validation_errors(exc)
        logger.info("Rejected malformed request to %s: %s", request.url.path, message)
        return JSONResponse(status_code=400, content={"success": False, "message": message})

    enabled = [Depends(ensure_enabled)]

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(enabled=app.state.settings.enabled)

    # -------------------------------------------------------------------
    # Read-only endpoints
    # -------------------------------------------------------------------

    @app.get("/system-info", dependencies=enabled)
    async def get_system_info(
        auth: AuthContext = Depends(require(Capability.VIEW)),
    ) -> dict:
        return await collect_system_info(app.state.gateway)

    @app.get("/metrics", dependencies=enabled)
    async def get_metrics(
        auth: AuthContext = Depends(require(Capability.VIEW)),
    ) -> dict:
        return await collect_metrics(app.state.gateway)

    @app.get("/containers", dependencies=enabled)
    async def get_container_status(
        request: Request,
        auth: AuthContext = Depends(require(Capability.VIEW)),
    ) -> ContainerStatusResponse:
        gw: CommandGateway = app.state.gateway
        result, containers = await gw.list_containers()
        audit(auth, "ps", "", result, _client(request))
        entries = [ContainerEntry(**c.model_dump()) for c in containers]
        return ContainerStatusResponse(
            success=result.success,
            message="" if result.success else result.output,
            containers=entries,
            total=len(entries),
        )

    @app.get("/containers/{container}/logs", dependencies=enabled)
    async def get_logs(
        container: str,
        request: Request,
        lines: int = Query(default=DEFAULT_LOG_LINES),
        auth: AuthContext = Depends(require(Capability.VIEW)),
    ) -> LogsResponse:
        gw: CommandGateway = app.state.gateway
        result = await gw.fetch_logs(container, lines)
        audit(auth, "logs", container, result, _client(request))
        body = LogsResponse(
            success=result.success,
            message=result.message,
            logs=result.output,
            container=container,
            lines=lines,
        )
        return _respond(result, body)

    # -------------------------------------------------------------------
    # Container lifecycle
    # -------------------------------------------------------------------

    async def _manage(
        action: str, container: str, auth: AuthContext, request: Request
    ) -> JSONResponse:
        gw: CommandGateway = app.state.gateway
        result = await gw.run_container_action(action, container)
        audit(auth, action, container, result, _client(request))
        body = ManageContainerResponse(
            success=result.success,
            message=result.message,
            output=result.output,
            action=action,
            container=container,
        )
        return _respond(result, body)

    @app.post("/containers/manage", dependencies=enabled)
    async def manage_container(
        payload: ManageContainerRequest,
        request: Request,
        auth: AuthContext = Depends(require(Capability.CONTAINERS)),
    ) -> ManageContainerResponse:
        return await _manage(payload.action, payload.container, auth, request)

    @app.post("/containers/{container}/start", dependencies=enabled)
    async def start_container(
        container: str,
        request: Request,
        auth: AuthContext = Depends(require(Capability.CONTAINERS)),
    ) -> ManageContainerResponse:
        return await _manage(ContainerAction.START.value, container, auth, request)

    @app.post("/containers/{container}/stop", dependencies=enabled)
    async def stop_container(
        container: str,
        request: Request,
        auth: AuthContext = Depends(require(Capability.CONTAINERS)),
    ) -> ManageContainerResponse:
        return await _manage(ContainerAction.STOP.value, container, auth, request)

    @app.post("/containers/{container}/restart", dependencies=enabled)
    async def restart_container(
        container: str,
        request: Request,
        auth: AuthContext = Depends(require(Capability.CONTAINERS)),
    ) -> ManageContainerResponse:
        return await _manage(ContainerAction.RESTART.value, container, auth, request)

    # -------------------------------------------------------------------
    # Backup / restore
    # -------------------------------------------------------------------

    @app.post("/backup", dependencies=enabled)
    async def backup_restore(
        payload: BackupRestoreRequest,
        request: Request,
        auth: AuthContext = Depends(require(Capability.MANAGE)),
    ) -> BackupRestoreResponse:
        gw: CommandGateway = app.state.gateway
        try:
            action = validate_action(payload.action, DataAction)
        except ValidationError as e:
            result = CommandResult.rejected(e.kind, str(e))
            audit(auth, payload.action, payload.filename, result, _client(request))
            body = BackupRestoreResponse(
                success=False,
                message=result.message,
                filename=payload.filename,
                action=payload.action,
            )
            return _respond(result, body)

        filename = payload.filename
        if action == DataAction.BACKUP.value:
            filename = filename or default_backup_filename()
            result = await gw.run_backup(filename)
        else:
            result = await gw.run_restore(filename)
        audit(auth, action, filename, result, _client(request))
        body = BackupRestoreResponse(
            success=result.success,
            message=result.message,
            filename=filename,
            action=action,
            output=result.output,
        )
        return _respond(result, body)

    @app.get("/backups", dependencies=enabled)
    async def list_backups(
        auth: AuthContext = Depends(require(Capability.MANAGE)),
    ) -> BackupListResponse:
        gw: CommandGateway = app.state.gateway
        entries = [
            BackupEntry(
                filename=a.filename,
                size_bytes=a.size_bytes,
                created_at=a.created_at.isoformat(),
            )
            for a in gw.list_backups()
        ]
        return BackupListResponse(backups=entries, total=len(entries))

    return app


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

def main(settings: Settings | None = None) -> None:
    """Run the devcontrol API server."""
    settings = settings or load_settings()
    app = create_app(settings)
    logger.info("Serving devcontrol on %s:%d", settings.server.host, settings.server.port)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
