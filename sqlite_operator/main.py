"""
Operator entry point.

Runs the reconcile dispatcher inside the lifespan of a small FastAPI app that
serves the pod's health probes.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sentry_sdk
import uvicorn
from fastapi import FastAPI

from sqlite_operator.api.v1 import health
from sqlite_operator.config.logging import configure_logging, get_logger
from sqlite_operator.config.settings import settings
from sqlite_operator.core.reconciler import SQLiteDBReconciler
from sqlite_operator.services.cluster_store import KubernetesClusterStore
from sqlite_operator.workers.dispatcher import ReconcileDispatcher

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Initialize Sentry for error tracking (production)
if settings.sentry_dsn and settings.is_production:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        environment=settings.environment,
        release=settings.app_version,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Connects to the cluster, starts the dispatcher, and tears both down on
    shutdown.
    """
    logger.info(
        "operator_starting",
        version=settings.app_version,
        environment=settings.environment,
        watch_namespace=settings.watch_namespace or "*",
    )

    try:
        store = await KubernetesClusterStore.connect(settings)
        reconciler = SQLiteDBReconciler(store, image=settings.sqlite_image)
        dispatcher = ReconcileDispatcher(
            reconciler,
            source=store,
            namespace=settings.watch_namespace,
            workers=settings.max_concurrent_reconciles,
            requeue_base_delay=settings.requeue_base_delay,
            requeue_max_delay=settings.requeue_max_delay,
            watch_timeout_seconds=settings.watch_timeout_seconds,
        )
        await dispatcher.start()
        app.state.dispatcher = dispatcher
    except Exception as e:
        logger.error("operator_startup_failed", error=str(e))
        raise

    logger.info("operator_started", workers=settings.max_concurrent_reconciles)

    yield

    logger.info("operator_shutting_down")
    await dispatcher.stop()

    try:
        await store.close()
        logger.info("kubernetes_client_closed")
    except Exception as e:
        logger.error("kubernetes_client_close_error", error=str(e))

    logger.info("operator_shutdown_complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Kubernetes operator for SQLiteDB resources",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/health", tags=["health"])


def run() -> None:
    """Console script entry point."""
    uvicorn.run(
        "sqlite_operator.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
