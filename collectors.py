# Workspace Metric Collectors

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from api_client import DatabricksAPIClient, log
from config import SQL_HISTORY_MAX_RESULTS
from unity_catalog import CatalogInventory, UnityCatalogEnumerator
import endpoints


@dataclass
class CollectorResult:
    """Outcome of one metric collector; a failed collector carries its error and the fallback value."""
    name: str
    value: Any = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def readiness_pct(compliant: int, total: int) -> float:
    return compliant / total * 100 if total else 0


def collector(name: str, default: Callable[[], Any] = int):
    """Wrap an async metric function so any failure becomes CollectorResult(name, default(), error)."""
    def decorate(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> CollectorResult:
            try:
                return CollectorResult(name, await fn(*args, **kwargs))
            except Exception as e:
                log(f"[COLLECT-FAIL] {name}: {e}")
                return CollectorResult(name, default(), str(e) or type(e).__name__)
        return wrapper
    return decorate


async def _sql_history(client: DatabricksAPIClient) -> List[Dict[str, Any]]:
    data = await client.get(endpoints.SQL_HISTORY, params={"max_results": SQL_HISTORY_MAX_RESULTS})
    return (data or {}).get("res") or (data or {}).get("results") or []

# ====================================================================================
# COUNTS
# ====================================================================================
@collector("total_views")
async def calculate_total_views(client: DatabricksAPIClient) -> int:
    queries = await _sql_history(client)
    count = 0
    for q in queries:
        text = (q.get("query_text") or "").upper()
        if "SELECT" in text or "VIEW" in text:
            count += 1
    return count


@collector("storage_locations")
async def calculate_storage_locations(client: DatabricksAPIClient) -> int:
    return len(await client.fetch_list("external_locations"))


@collector("total_jobs")
async def calculate_total_jobs(client: DatabricksAPIClient) -> int:
    return len(await client.fetch_list("jobs"))

# ====================================================================================
# READINESS
# ====================================================================================
@collector("cluster_readiness")
async def calculate_cluster_readiness(client: DatabricksAPIClient) -> float:
    clusters = await client.fetch_list("clusters")
    running = sum(1 for c in clusters if c.get("state") == "RUNNING")
    return readiness_pct(running, len(clusters))


@collector("table_readiness")
async def calculate_table_readiness(enumerator: UnityCatalogEnumerator, catalogs: List[Dict[str, Any]],
                                    inventory: List[CatalogInventory] = None) -> float:
    if inventory is None:
        inventory = await enumerator.enumerate(catalogs)
    tables = [t for c in inventory for t in c.tables()]
    managed = sum(1 for t in tables if t.get("table_type") == "MANAGED")
    return readiness_pct(managed, len(tables))


@collector("job_readiness")
async def calculate_job_readiness(client: DatabricksAPIClient) -> float:
    jobs = await client.fetch_list("jobs")
    scheduled = 0
    for job in jobs:
        settings = job.get("settings") or {}
        if settings.get("schedule") or settings.get("trigger"):
            scheduled += 1
    return readiness_pct(scheduled, len(jobs))


@collector("permission_readiness")
async def calculate_permission_readiness(enumerator: UnityCatalogEnumerator, catalogs: List[Dict[str, Any]],
                                         permissions: Dict[str, Optional[List[Dict[str, Any]]]] = None) -> float:
    if permissions is None:
        permissions = await enumerator.permissions_by_catalog(catalogs)
    assignments = [a for rows in permissions.values() if rows for a in rows]
    compliant = sum(1 for a in assignments
                    if "USE_CATALOG" in [str(p).upper() for p in a.get("privileges") or []])
    return readiness_pct(compliant, len(assignments))


async def calculate_overall_readiness(client: DatabricksAPIClient, enumerator: UnityCatalogEnumerator,
                                      catalogs: List[Dict[str, Any]], inventory: List[CatalogInventory] = None,
                                      permissions: Dict[str, Any] = None) -> Dict[str, CollectorResult]:
    """The four readiness collectors plus their unweighted mean under "overall"."""
    parts = await asyncio.gather(
        calculate_cluster_readiness(client),
        calculate_table_readiness(enumerator, catalogs, inventory),
        calculate_job_readiness(client),
        calculate_permission_readiness(enumerator, catalogs, permissions),
    )
    results = {r.name: r for r in parts}
    results["overall"] = CollectorResult("overall", sum(r.value for r in parts) / len(parts))
    return results

# ====================================================================================
# SUMMARIES
# ====================================================================================
@collector("data_summary", default=list)
async def generate_data_summary(client: DatabricksAPIClient, inventory: List[CatalogInventory],
                                permissions: Dict[str, Optional[List[Dict[str, Any]]]]) -> List[Dict[str, Any]]:
    """Per catalog: tables, view-related queries, Delta tables, grant count."""
    try:
        history = await _sql_history(client)
    except Exception as e:
        log(f"[COLLECT-FAIL] data_summary history: {e}")
        history = []
    view_queries = [(q.get("query_text") or "") for q in history
                    if "VIEW" in (q.get("query_text") or "").upper()]

    summary = []
    for cat in inventory:
        tables = cat.tables()
        summary.append({
            "catalog": cat.name,
            "tables": len(tables),
            "views": sum(1 for text in view_queries if cat.name in text),
            "deltaTables": sum(1 for t in tables if (t.get("data_source_format") or "").upper() == "DELTA"),
            "totalGrants": len(permissions.get(cat.name) or []),
        })
    return summary


@collector("recent_jobs", default=list)
async def get_recent_jobs(client: DatabricksAPIClient, limit: int = 10) -> List[Dict[str, Any]]:
    jobs_data, runs_data = await asyncio.gather(
        client.get(endpoints.JOBS_LIST, params={"limit": limit}),
        client.get(endpoints.JOB_RUNS_LIST, params={"limit": 25}),
    )
    last_run: Dict[Any, Dict[str, Any]] = {}
    for run in (runs_data or {}).get("runs") or []:
        prev = last_run.get(run.get("job_id"))
        if prev is None or (run.get("start_time") or 0) > (prev.get("start_time") or 0):
            last_run[run.get("job_id")] = run

    recent = []
    for job in ((jobs_data or {}).get("jobs") or [])[:limit]:
        run = last_run.get(job.get("job_id")) or {}
        state = run.get("state") or {}
        recent.append({
            "jobId": job.get("job_id"),
            "name": (job.get("settings") or {}).get("name") or "Unnamed Job",
            "status": state.get("result_state") or state.get("life_cycle_state") or "UNKNOWN",
            "timestamp": run.get("start_time") or job.get("created_time"),
        })
    return recent
