import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from autoupdate_common.errors import (
    ConcurrencyConflict,
    NoUpdateAvailable,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from autoupdate_common.models import UPGRADE_STATUSES, criteria_from_fields
from autoupdate_common.repository import AutoUpdateRepository
from autoupdate_engine.analytics import aggregate, calculate_stats, filter_by_endpoints
from autoupdate_engine.collaborators import InventorySource, UpgradeAction, VersionSource
from autoupdate_engine.config import (
    build_collaborators,
    build_runner,
    get_database_path,
    get_inventory_file,
    get_versions_file,
)
from autoupdate_engine.intent_store import IntentStore
from autoupdate_engine.runner import BatchRunner
from autoupdate_persistence.sqlite_repository import SQLiteAutoUpdateRepository

logger = logging.getLogger(__name__)

# Global instances (initialized at startup)
repository: AutoUpdateRepository | None = None
inventory_source: InventorySource | None = None
version_source: VersionSource | None = None
upgrade_action: UpgradeAction | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI app.

    - Startup: Connect to the database and build the collaborators
    - Shutdown: Close database connections

    Scheduled batch passes run in the autoupdate-controller process; the
    server only serves the API, dry runs and manual upgrades.
    """
    global repository, inventory_source, version_source, upgrade_action

    repository = SQLiteAutoUpdateRepository(get_database_path())
    # Schema creation is idempotent, so server and controller may both run it
    await repository.initialize()

    inventory_source, version_source, upgrade_action = build_collaborators(
        get_inventory_file(), get_versions_file()
    )

    yield

    if repository:
        await repository.close()
        repository = None


app = FastAPI(title="Auto-update intents", lifespan=lifespan)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConcurrencyConflict)
async def conflict_handler(request: Request, exc: ConcurrencyConflict) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(NoUpdateAvailable)
async def no_update_handler(request: Request, exc: NoUpdateAvailable) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.warning(f"Upstream failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def get_repository() -> AutoUpdateRepository:
    """
    Get the global repository instance.

    Raises:
        RuntimeError: If repository is not initialized
    """
    if repository is None:
        raise RuntimeError("Repository not initialized")
    return repository


def get_inventory_source() -> InventorySource:
    if inventory_source is None:
        raise RuntimeError("Inventory source not initialized")
    return inventory_source


def get_version_source() -> VersionSource:
    if version_source is None:
        raise RuntimeError("Version source not initialized")
    return version_source


def get_upgrade_action() -> UpgradeAction:
    if upgrade_action is None:
        raise RuntimeError("Upgrade action not initialized")
    return upgrade_action


def get_intent_store(repo: AutoUpdateRepository = Depends(get_repository)) -> IntentStore:
    return IntentStore(repo)


def get_runner(
    repo: AutoUpdateRepository = Depends(get_repository),
    inventory: InventorySource = Depends(get_inventory_source),
    versions: VersionSource = Depends(get_version_source),
    action: UpgradeAction = Depends(get_upgrade_action),
) -> BatchRunner:
    """Batch runner wired to the shared repository and collaborators."""
    return build_runner(repo, inventory, versions, action)


def _optional_text(body: dict[str, Any], key: str) -> str | None:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value if value.strip() else None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """
    Health check endpoint.

    Returns:
        Dictionary with status="ok" if server is running
    """
    return {"status": "ok"}


@app.get("/intents")
async def list_intents(store: IntentStore = Depends(get_intent_store)) -> dict[str, Any]:
    intents = await store.list()
    return {"intents": [intent.to_dict() for intent in intents]}


@app.post("/intents", status_code=201)
async def create_intent(
    body: dict[str, Any] = Body(...),
    store: IntentStore = Depends(get_intent_store),
) -> dict[str, Any]:
    """
    Create an intent.

    The body populates exactly one criteria shape: imageRepo, stackName plus
    serviceName, or containerName. Optional description and enabled.

    Raises:
        ValidationError: 400 if zero or several criteria shapes are populated
    """
    criteria = criteria_from_fields(
        image_repo=_optional_text(body, "imageRepo"),
        stack_name=_optional_text(body, "stackName"),
        service_name=_optional_text(body, "serviceName"),
        container_name=_optional_text(body, "containerName"),
    )
    enabled = body.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ValidationError("enabled must be a boolean")

    intent = await store.create(
        criteria, description=_optional_text(body, "description"), enabled=enabled
    )
    return intent.to_dict()


@app.get("/intents/{intent_id}")
async def get_intent(
    intent_id: str, store: IntentStore = Depends(get_intent_store)
) -> dict[str, Any]:
    intent = await store.get(intent_id)
    return intent.to_dict()


@app.post("/intents/{intent_id}/test-match")
async def test_match(
    intent_id: str, runner: BatchRunner = Depends(get_runner)
) -> dict[str, Any]:
    """
    Dry-run an intent: report its matches and which have updates.

    Performs no upgrade and writes nothing.

    Raises:
        NotFoundError: 404 if the intent does not exist
        UpstreamError: 502 if the inventory or version source fails
    """
    result = await runner.test_match(intent_id)
    return result.to_dict()


@app.get("/intents/{intent_id}/executions")
async def list_intent_executions(
    intent_id: str,
    limit: int = Query(50, ge=1, le=500),
    store: IntentStore = Depends(get_intent_store),
    repo: AutoUpdateRepository = Depends(get_repository),
) -> dict[str, Any]:
    """Per-pass execution summaries for an intent, newest first."""
    await store.get(intent_id)
    executions = await repo.list_intent_executions(intent_id, limit=limit)
    return {"executions": [execution.to_dict() for execution in executions]}


@app.post("/intents/{intent_id}/enable")
async def enable_intent(
    intent_id: str, store: IntentStore = Depends(get_intent_store)
) -> dict[str, Any]:
    intent = await store.set_enabled(intent_id, True)
    return intent.to_dict()


@app.post("/intents/{intent_id}/disable")
async def disable_intent(
    intent_id: str, store: IntentStore = Depends(get_intent_store)
) -> dict[str, Any]:
    intent = await store.set_enabled(intent_id, False)
    return intent.to_dict()


@app.delete("/intents/{intent_id}", status_code=204)
async def delete_intent(
    intent_id: str, store: IntentStore = Depends(get_intent_store)
) -> Response:
    await store.delete(intent_id)
    return Response(status_code=204)


@app.get("/upgrade-history")
async def list_upgrade_history(
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    container_name: str | None = Query(None, alias="containerName"),
    status: str | None = Query(None),
    repo: AutoUpdateRepository = Depends(get_repository),
) -> dict[str, Any]:
    """
    Query the upgrade ledger in insertion order.

    containerName is a substring filter; status is "success" or "failed".
    """
    if status is not None and status not in UPGRADE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    records = await repo.query_upgrade_history(
        container_name=container_name or None,
        status=status,
        limit=limit,
        offset=offset,
    )
    return {"history": [record.to_dict() for record in records]}


@app.get("/upgrade-history/stats")
async def upgrade_history_stats(
    endpoint: list[str] = Query(default=[]),
    repo: AutoUpdateRepository = Depends(get_repository),
) -> dict[str, Any]:
    """
    Ledger statistics plus derived analytics.

    Repeated endpoint parameters restrict every section to those endpoints;
    no endpoint parameter means every endpoint.
    """
    endpoints = {name for name in endpoint if name}
    stats = await repo.get_upgrade_stats(endpoints)
    records = filter_by_endpoints(await repo.query_upgrade_history(), endpoints)
    return {
        "stats": stats,
        "summary": calculate_stats(records),
        "charts": aggregate(records),
    }


@app.get("/upgrade-history/{record_id}")
async def get_upgrade_record(
    record_id: str, repo: AutoUpdateRepository = Depends(get_repository)
) -> dict[str, Any]:
    record = await repo.get_upgrade_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Upgrade record not found")
    return record.to_dict()


@app.post("/containers/{container_id}/upgrade")
async def upgrade_container(
    container_id: str, runner: BatchRunner = Depends(get_runner)
) -> dict[str, Any]:
    """
    Manually upgrade one container to its latest known version.

    Raises:
        NotFoundError: 404 if the container is not in the inventory
        NoUpdateAvailable: 409 if no newer version is known
        ConcurrencyConflict: 409 if the container is already being upgraded
    """
    record = await runner.upgrade_container(container_id)
    return record.to_dict()


@app.post("/auto-update/run")
async def run_batch_pass(runner: BatchRunner = Depends(get_runner)) -> dict[str, Any]:
    """Run one batch pass now and return its summary."""
    result = await runner.run_pass()
    return result.to_dict()


def main() -> None:
    """Serve the API with uvicorn (AU_HOST / AU_PORT)."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    host = os.environ.get("AU_HOST", "127.0.0.1")
    try:
        port = int(os.environ.get("AU_PORT", "8000"))
    except ValueError:
        logger.warning(f"Invalid AU_PORT={os.environ.get('AU_PORT')}, using default 8000")
        port = 8000

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
