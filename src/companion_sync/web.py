"""
FastAPI status API for the companion sync system.

Exposes per-user sync status, manual sync triggers, recovery prompts and the
aggregated integration health log. The store and registry are created in the
application lifespan; every configured user is started on boot.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import click
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .sync.exceptions import CircuitOpenError, SyncError
from .sync.services import SERVICES

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global sync components (initialized in lifespan)
database = None
registry = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan event handler.

    Opens the store, builds the registry and starts sync for every user with
    a stored connection. Shutdown stops all bundles before closing the store.
    """
    global database, registry

    logger.info("Starting Companion Sync application")

    try:
        from .database import CompanionDatabase
        from .sync.config import SyncConfig
        from .sync.registry import UserSyncRegistry

        config = SyncConfig.from_env()
        database = CompanionDatabase(config.database_path)
        database.__enter__()
        registry = UserSyncRegistry(database, config)

        for user_id in database.list_user_ids():
            await registry.start_user(user_id)

        logger.info("Companion sync system initialized successfully")

    except Exception as e:
        logger.error(f"Failed to initialize sync system: {e}", exc_info=True)
        registry = None
        if database:
            database.__exit__(None, None, None)
            database = None

    yield

    logger.info("Shutting down Companion Sync application")

    if registry:
        try:
            await registry.stop_all()
        except Exception as e:
            logger.error(f"Error stopping sync registry: {e}")

    if database:
        try:
            database.__exit__(None, None, None)
        except Exception as e:
            logger.error(f"Error closing database: {e}")

    logger.info("Sync system shutdown complete")


app = FastAPI(
    title="Companion Sync",
    description="Status and control API for integration syncing",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def _require_registry():
    if registry is None:
        raise HTTPException(status_code=503, detail="Sync system is not available")
    return registry


def _known_bundle(sync_registry, user_id: str):
    """Bundle for a user that is running or has a stored connection; 404 otherwise."""
    bundle = sync_registry.find(user_id)
    if bundle is not None:
        return bundle
    if user_id not in sync_registry.store.list_user_ids():
        raise HTTPException(status_code=404, detail=f"Unknown user: {user_id}")
    return sync_registry.get(user_id)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns:
        JSON response with application status
    """
    return {
        "status": "healthy",
        "application": "Companion Sync",
        "version": app.version,
        "sync_system": "enabled" if registry is not None else "disabled",
        "active_users": len(registry.users()) if registry is not None else 0,
    }


@app.get("/api/sync/{user_id}/status")
async def get_sync_status(user_id: str):
    """Per-integration service state and auto-healing status for one user."""
    sync_registry = _require_registry()
    try:
        status = _known_bundle(sync_registry, user_id).status()
        status["timestamp"] = datetime.now().isoformat()
        return status
    except SyncError as e:
        logger.error(f"Error getting sync status for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get sync status")


@app.post("/api/sync/{user_id}/{integration}")
async def trigger_sync(user_id: str, integration: str, force: bool = True):
    """
    Run a manual sync of one integration.

    Args:
        user_id: Owning user
        integration: Integration name
        force: When false, an open circuit rejects the request with 409

    Returns:
        JSON response with the sync result
    """
    sync_registry = _require_registry()
    if integration not in SERVICES:
        raise HTTPException(status_code=404, detail=f"Unknown integration: {integration}")

    try:
        result = await sync_registry.trigger(user_id, integration, force=force)
    except CircuitOpenError as e:
        raise HTTPException(status_code=409, detail=e.to_dict())

    return result.to_dict()


@app.get("/api/sync/{user_id}/recovery")
async def get_recovery_snapshot(user_id: str):
    """Current recovery prompts and per-integration staleness."""
    sync_registry = _require_registry()
    return _known_bundle(sync_registry, user_id).recovery_tracker.get_snapshot().to_dict()


@app.get("/api/integrations/health")
async def get_integration_health(
    hours: float = Query(24, gt=0, le=24 * 90),
    user_id: Optional[str] = None,
):
    """Aggregated health log over a trailing window."""
    sync_registry = _require_registry()
    try:
        return sync_registry.store.get_integration_sync_summary(hours, user_id)
    except SyncError as e:
        logger.error(f"Error building integration health summary: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get integration health")


@click.command()
@click.option(
    '--host',
    envvar='WEB_HOST',
    default='0.0.0.0',
    show_default=True,
    help='Host to bind the web server to'
)
@click.option(
    '--port',
    envvar='WEB_PORT',
    type=int,
    default=8000,
    show_default=True,
    help='Port to bind the web server to'
)
@click.option(
    '--reload',
    envvar='WEB_RELOAD',
    is_flag=True,
    default=False,
    help='Enable auto-reload for development'
)
@click.option(
    '--log-level',
    envvar='WEB_LOG_LEVEL',
    default='info',
    show_default=True,
    type=click.Choice(['critical', 'error', 'warning', 'info', 'debug'], case_sensitive=False),
    help='Logging level for the web server'
)
def run_server(host: str, port: int, reload: bool, log_level: str):
    """
    Run the status API with Uvicorn.

    Configuration can be provided via command-line options or environment variables:
    - WEB_HOST: Host to bind to (default: 0.0.0.0)
    - WEB_PORT: Port to bind to (default: 8000)
    - WEB_RELOAD: Enable auto-reload (default: false)
    - WEB_LOG_LEVEL: Logging level (default: info)
    """
    import uvicorn

    logger.info(f"Starting web server on {host}:{port}")
    logger.info(f"Reload mode: {reload}")

    uvicorn.run(
        "companion_sync.web:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower()
    )
