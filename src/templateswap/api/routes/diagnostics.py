"""Route exposing pending reload diagnostics."""

from typing import Annotated

from fastapi import APIRouter, Depends

from templateswap.api.deps import get_reload
from templateswap.reload import AutoReload

router = APIRouter()


@router.get("")
async def drain_diagnostics(reload: Annotated[AutoReload, Depends(get_reload)]) -> list[dict]:
    """Drain and return every pending diagnostic, oldest first."""
    return [diagnostic.to_json() for diagnostic in reload.errors.drain_all()]
