# Chat Assistant Routes

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api_client import log
from assistant import ACTIONS, execute_command, parse_command
from catalog_admin import CatalogAdmin
from dependencies import ApiError, get_admin, get_aggregator, get_scim
from scim import ScimService
from workspace_stats import WorkspaceStatsAggregator

router = APIRouter(prefix="/api/assistant", tags=["assistant"])


class Command(BaseModel):
    text: Optional[str] = None
    action: Optional[str] = None


@router.get("/actions")
async def actions():
    return [a.describe() for a in ACTIONS]


@router.post("/command")
async def command(body: Command, scim: ScimService = Depends(get_scim), admin: CatalogAdmin = Depends(get_admin),
                  aggregator: WorkspaceStatsAggregator = Depends(get_aggregator)):
    if not body.text and not body.action:
        raise ApiError(400, "Command text is required")
    parsed = parse_command(body.text or "", body.action)
    log(f"[ASSISTANT] {parsed.action or 'unrecognized'} params={parsed.params}")
    result = await execute_command(parsed, scim, admin, aggregator)
    result["params"] = parsed.params
    result["missing"] = parsed.missing
    return result
