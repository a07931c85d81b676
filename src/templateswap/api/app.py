"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI

from templateswap import __version__
from templateswap.api.deps import get_reload, get_store
from templateswap.api.routes import diagnostics, templates
from templateswap.errors import TemplateCompileError
from templateswap.reload import AutoReload, ReloadConfig, start_auto_reload
from templateswap.store import ArtifactStore
from templateswap.templates import TemplateSet, compile_directory

logger = logging.getLogger(__name__)


def create_app(directory: str | Path, config: ReloadConfig | None = None) -> FastAPI:
    """Create an app serving the templates in ``directory``.

    The lifespan compiles the directory once, then keeps the set live with
    start_auto_reload until shutdown.
    """
    directory = Path(directory)
    config = config or ReloadConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        # Startup
        logger.info(f"Starting templateswap for {directory}...")
        try:
            initial = compile_directory(directory, config.pattern)
        except TemplateCompileError as e:
            logger.warning(f"Initial compile failed, serving no templates until the next change: {e}")
            initial = TemplateSet.empty(directory)

        app.state.store = ArtifactStore(initial)
        app.state.reload = start_auto_reload(app.state.store, directory, config=config)

        yield

        # Shutdown
        logger.info("Shutting down templateswap...")
        await app.state.reload.stop()
        # Make room for the final diagnostic so the loop can exit
        app.state.reload.errors.drain_all()
        await app.state.reload.wait()

    app = FastAPI(
        title="templateswap",
        description="Live-reloaded template rendering",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(templates.router, prefix="/templates", tags=["templates"])
    app.include_router(diagnostics.router, prefix="/diagnostics", tags=["diagnostics"])

    @app.get("/health")
    async def health_check(
        store: ArtifactStore[TemplateSet] = Depends(get_store),
        reload: AutoReload[TemplateSet] = Depends(get_reload),
    ) -> dict:
        """Health check endpoint."""
        return {
            "status": "healthy" if not reload.done else "degraded",
            "version": __version__,
            "generation": store.generation,
            "reloader": reload.state.value,
            "pending_diagnostics": len(reload.errors),
        }

    return app
