"""Template listing and rendering routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from templateswap.api.deps import get_store
from templateswap.errors import TemplateNotFoundError
from templateswap.store import ArtifactStore
from templateswap.templates import TemplateSet

router = APIRouter()

Store = Annotated[ArtifactStore[TemplateSet], Depends(get_store)]


class TemplateListResponse(BaseModel):
    """Names in the live template set."""

    names: list[str]
    generation: int


@router.get("")
async def list_templates(store: Store) -> TemplateListResponse:
    """List the templates in the live set."""
    async with store.read() as template_set:
        return TemplateListResponse(names=list(template_set.names), generation=store.generation)


@router.get("/{name}", response_class=HTMLResponse)
async def render_template(name: str, request: Request, store: Store) -> HTMLResponse:
    """Render a template. Query parameters become the render context."""
    context = dict(request.query_params)
    async with store.read() as template_set:
        try:
            body = template_set.render(name, **context)
        except TemplateNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from None
    return HTMLResponse(body)
