"""FastAPI dependencies."""

from fastapi import Request

from templateswap.reload import AutoReload
from templateswap.store import ArtifactStore
from templateswap.templates import TemplateSet


async def get_store(request: Request) -> ArtifactStore[TemplateSet]:
    """Get the template store from app state."""
    return request.app.state.store


async def get_reload(request: Request) -> AutoReload[TemplateSet]:
    """Get the auto-reload handle from app state."""
    return request.app.state.reload
