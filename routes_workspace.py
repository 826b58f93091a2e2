# Workspace Dashboard Routes

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api_client import DatabricksAPIError, DatabricksConnectionError, log
from catalog_admin import CatalogAdmin
from dependencies import get_admin, get_aggregator
from unity_catalog import empty_privilege_histogram, zero_catalog_stats
from workspace_stats import (
    WorkspaceStatsAggregator, describe_stats_error, resolve_time_filter, workspace_insights, zero_snapshot
)

router = APIRouter(prefix="/api", tags=["workspace"])


def describe_catalog_error(exc: Exception, catalog: str, fallback: str) -> str:
    if isinstance(exc, DatabricksAPIError):
        if exc.status == 404:
            return f'Catalog "{catalog}" not found'
        if exc.error_code == "TIMEOUT":
            return "Request to Databricks timed out - please try again"
        if isinstance(exc, DatabricksConnectionError):
            return "Network error - please check your connection to Databricks"
        if exc.status == 403:
            return "Access denied - please check your Databricks token"
    return fallback


@router.get("/test")
async def test():
    return {"status": "working", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/workspace/stats")
async def workspace_stats(timeFilter: Optional[str] = None,
                          aggregator: WorkspaceStatsAggregator = Depends(get_aggregator)):
    tf = resolve_time_filter(timeFilter)
    try:
        snapshot, cached = await aggregator.get_workspace_stats(tf)
    except Exception as e:
        log(f"[ERROR] Workspace stats failed ({tf}): {e}")
        return JSONResponse(status_code=500, content=zero_snapshot(describe_stats_error(e), tf))
    return JSONResponse(content=snapshot, headers={"X-Cache": "HIT" if cached else "MISS"})


@router.get("/workspace/readiness")
async def workspace_readiness(aggregator: WorkspaceStatsAggregator = Depends(get_aggregator)):
    return await aggregator.readiness_report()


@router.get("/workspace/insights")
async def insights(timeFilter: Optional[str] = None,
                   aggregator: WorkspaceStatsAggregator = Depends(get_aggregator)):
    snapshot, _ = await aggregator.get_workspace_stats(timeFilter)
    return {"timeFilter": snapshot["timeFilter"], "insights": workspace_insights(snapshot)}


@router.get("/catalogs/{catalog_name}/stats")
async def catalog_stats(catalog_name: str, admin: CatalogAdmin = Depends(get_admin)):
    try:
        return await admin.catalog_stats(catalog_name)
    except Exception as e:
        log(f"[UC-ERROR] Catalog stats for {catalog_name}: {e}")
        body = zero_catalog_stats(catalog_name)
        body["error"] = describe_catalog_error(e, catalog_name, "Failed to fetch catalog statistics")
        return JSONResponse(status_code=500, content=body)


@router.get("/catalogs/{catalog_name}/privileges")
async def catalog_privileges(catalog_name: str, admin: CatalogAdmin = Depends(get_admin)):
    try:
        return await admin.privilege_stats(catalog_name)
    except Exception as e:
        log(f"[UC-ERROR] Privilege stats for {catalog_name}: {e}")
        return JSONResponse(status_code=500, content={
            "error": describe_catalog_error(e, catalog_name, "Failed to fetch privilege statistics"),
            "totalGrants": 0,
            "byPrivilege": empty_privilege_histogram(),
        })


@router.get("/catalogs/{catalog_name}/user-privileges")
async def catalog_user_privileges(catalog_name: str, admin: CatalogAdmin = Depends(get_admin)):
    try:
        return await admin.user_privilege_stats(catalog_name)
    except Exception as e:
        log(f"[UC-ERROR] User privilege stats for {catalog_name}: {e}")
        message = e.message if isinstance(e, DatabricksAPIError) else "Failed to fetch user privilege statistics"
        return JSONResponse(status_code=500, content={
            "error": message,
            "totalUsers": 0,
            "byPrivilege": empty_privilege_histogram(),
        })
