# Workspace Statistics Aggregation

import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from api_client import DatabricksAPIClient, DatabricksAPIError, DatabricksConnectionError, log
from collectors import (
    CollectorResult, calculate_overall_readiness, calculate_storage_locations,
    calculate_total_jobs, calculate_total_views, generate_data_summary, get_recent_jobs
)
from config import (
    ACTIVITY_PAGE_SIZE, CLUSTER_EVENT_SAMPLE, COST_PER_DBU, DATABRICKS_WAREHOUSE_ID, DBU_PER_QUERY,
    DEFAULT_TIME_FILTER, EXCESSIVE_PRIVILEGE_SHARE, HIGH_STORAGE_SHARE, INBOUND_FACTOR,
    LOW_ENGAGEMENT_SHARE, OUTBOUND_FACTOR, QUERY_SPIKE_PER_DAY, RECENT_QUERY_COUNT,
    SENSITIVE_KEYWORDS, SLOW_QUERY_SEC, STORAGE_COST_PER_UNIT, TABLE_STORAGE_UNIT,
    TIME_FILTER_DAYS, TOP_SCHEMAS, TRANSFER_COST_PER_UNIT
)
from stats_cache import SnapshotCache
from unity_catalog import CatalogInventory, UnityCatalogEnumerator, empty_privilege_histogram, privilege_histogram
import endpoints

DAY_MS = 24 * 60 * 60 * 1000

# ====================================================================================
# PLACEHOLDERS
# ====================================================================================
NO_DATA_CATALOG = {"name": "No Data", "value": 1}
NO_DATA_TABLE = {"name": "No Data", "tables": 0}
NO_DATA_USAGE = {"day": "No Data", "queries": 0, "storage": 0}
NO_DATA_STORAGE = {"name": "No Data", "value": 0}
NO_DATA_PRIVILEGE = {"name": "No Data", "value": 0}

PLACEHOLDERS = {
    "catalogData": NO_DATA_CATALOG,
    "tableData": NO_DATA_TABLE,
    "usageData": NO_DATA_USAGE,
    "storageByType": NO_DATA_STORAGE,
    "privilegeData": NO_DATA_PRIVILEGE,
}


def resolve_time_filter(time_filter: Optional[str]) -> str:
    """day/week/month; anything else falls back to the default window."""
    tf = (time_filter or DEFAULT_TIME_FILTER).lower()
    return tf if tf in TIME_FILTER_DAYS else DEFAULT_TIME_FILTER

def with_placeholders(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    for key, row in PLACEHOLDERS.items():
        if not snapshot.get(key):
            snapshot[key] = [dict(row)]
    return snapshot

def zero_snapshot(error: str = None, time_filter: str = DEFAULT_TIME_FILTER) -> Dict[str, Any]:
    """Same shape as a live snapshot with every metric at zero."""
    snapshot = {
        "totalCatalogs": 0,
        "totalSchemas": 0,
        "totalTables": 0,
        "totalUsers": 0,
        "activeUsers": 0,
        "catalogData": [],
        "tableData": [],
        "usageData": [],
        "storageByType": [],
        "privilegeData": [],
        "recentQueries": [{"id": 1, "query": "No queries", "user": "N/A", "time": "N/A",
                           "status": "N/A", "duration": "N/A", "source": "system"}],
        "recentActivity": 0,
        "privilegeDistribution": {"totalGrants": 0, "byPrivilege": empty_privilege_histogram()},
        "queryPerformance": {"avgDuration": 0, "successRate": 0},
        "sensitiveDataAccesses": 0,
        "readiness": {"overall": 0, "cluster": 0, "table": 0, "job": 0, "permission": 0},
        "totalViews": 0,
        "storageLocations": 0,
        "totalJobs": 0,
        "costEstimate": {"storage": 0, "compute": 0, "transfer": 0, "total": 0},
        "timeFilter": time_filter,
        "generatedAt": None,
        "collectorErrors": {},
    }
    if error is not None:
        snapshot["error"] = error
    return with_placeholders(snapshot)

def describe_stats_error(exc: Exception) -> str:
    if isinstance(exc, DatabricksAPIError) and exc.status == 403:
        return "Access denied - please check your Databricks token permissions"
    if isinstance(exc, asyncio.TimeoutError) or (isinstance(exc, DatabricksAPIError) and exc.error_code == "TIMEOUT"):
        return "Request to Databricks timed out"
    if isinstance(exc, DatabricksConnectionError):
        return "Network error - please check your connection"
    return "Failed to fetch workspace statistics"

# ====================================================================================
# DERIVED METRICS
# ====================================================================================
def format_time_ago(ts_ms: Any, now_ms: int) -> str:
    if not ts_ms:
        return "N/A"
    diff = now_ms - int(ts_ms)
    if diff < 60 * 1000:
        return "Just now"
    if diff < 60 * 60 * 1000:
        return f"{diff // (60 * 1000)} minutes ago"
    if diff < DAY_MS:
        return f"{diff // (60 * 60 * 1000)} hours ago"
    return f"{diff // DAY_MS} days ago"

def format_duration(ms: Any) -> str:
    return f"{ms / 1000:.1f}s" if ms else "N/A"

def is_sensitive(text: str) -> bool:
    text = (text or "").lower()
    return any(k in text for k in SENSITIVE_KEYWORDS)

def build_usage_data(queries: List[Dict[str, Any]], days: int, total_tables: int, now_ms: int) -> List[Dict[str, Any]]:
    """One bucket per calendar day, oldest first; bucket i covers [dayStart, dayEnd)."""
    now_dt = datetime.fromtimestamp(now_ms / 1000)
    stamps = [q.get("execution_start_time_ms") or 0 for q in queries if q.get("source") != "system"]
    usage = []
    for i in range(days):
        date = now_dt - timedelta(days=days - 1 - i)
        day_start = datetime(date.year, date.month, date.day)
        start_ms = int(day_start.timestamp() * 1000)
        end_ms = int((day_start + timedelta(days=1)).timestamp() * 1000)
        usage.append({
            "day": day_start.strftime("%a"),
            "date": day_start.strftime("%Y-%m-%d"),
            "queries": sum(1 for t in stamps if start_ms <= t < end_ms),
            "storage": total_tables * TABLE_STORAGE_UNIT + i * 2,
        })
    return usage

def query_performance(queries: List[Dict[str, Any]]) -> Dict[str, float]:
    n = len(queries) or 1
    total_ms = sum(q.get("duration") or 0 for q in queries)
    finished = sum(1 for q in queries if str(q.get("status") or "").lower() == "finished")
    return {"avgDuration": total_ms / n / 1000, "successRate": finished / n * 100}

def recent_queries(queries: List[Dict[str, Any]], now_ms: int) -> List[Dict[str, Any]]:
    return [{
        "id": i + 1,
        "query": q.get("query_text"),
        "user": q.get("user_name"),
        "time": format_time_ago(q.get("execution_start_time_ms"), now_ms),
        "status": q.get("status"),
        "duration": format_duration(q.get("duration")),
        "source": q.get("source"),
    } for i, q in enumerate(queries[:RECENT_QUERY_COUNT])]

def estimate_cost(catalog_data: List[Dict[str, Any]], usage_data: List[Dict[str, Any]]) -> Dict[str, float]:
    storage_units = sum(c.get("value") or 0 for c in catalog_data)
    total_queries = sum(d.get("queries") or 0 for d in usage_data)
    storage = storage_units * STORAGE_COST_PER_UNIT
    compute = total_queries * DBU_PER_QUERY * COST_PER_DBU
    transfer = (math.floor(total_queries * INBOUND_FACTOR) + math.floor(total_queries * OUTBOUND_FACTOR)) * TRANSFER_COST_PER_UNIT
    return {
        "storage": round(storage, 2),
        "compute": round(compute, 2),
        "transfer": round(transfer, 2),
        "total": round(storage + compute + transfer, 2),
    }

def storage_bucket(table: Dict[str, Any]) -> str:
    kind = f"{table.get('table_type') or ''} {table.get('data_source_format') or ''}".lower()
    if "delta" in kind:
        return "Delta"
    if "parquet" in kind:
        return "Parquet"
    return "Other"

def summarize_inventory(inventory: List[CatalogInventory]) -> Dict[str, Any]:
    """Counts, per-catalog storage estimate, top schemas, storage by format."""
    schema_tables: Dict[str, int] = {}
    catalog_data = []
    storage = {"Delta": 0, "Parquet": 0, "Other": 0}
    total_schemas = total_tables = 0

    for cat in inventory:
        if not cat.ok:
            continue
        total_schemas += len(cat.schemas)
        for schema in cat.schemas:
            schema_tables[schema.full_name] = schema_tables.get(schema.full_name, 0) + len(schema.tables)
            for table in schema.tables:
                storage[storage_bucket(table)] += table.get("storage_size") or TABLE_STORAGE_UNIT
        total_tables += cat.table_count
        catalog_data.append({"name": cat.name, "value": cat.table_count * TABLE_STORAGE_UNIT})

    table_data = sorted(({"name": k, "tables": v} for k, v in schema_tables.items()),
                        key=lambda r: r["tables"], reverse=True)[:TOP_SCHEMAS]
    return {
        "totalSchemas": total_schemas,
        "totalTables": total_tables,
        "catalogData": catalog_data,
        "tableData": table_data,
        "storageByType": [{"name": k, "value": v} for k, v in storage.items()],
    }

def readiness_scores(readiness: Dict[str, CollectorResult]) -> Dict[str, float]:
    return {
        "overall": readiness["overall"].value,
        "cluster": readiness["cluster_readiness"].value,
        "table": readiness["table_readiness"].value,
        "job": readiness["job_readiness"].value,
        "permission": readiness["permission_readiness"].value,
    }

def privilege_distribution(permissions: Dict[str, Optional[List[Dict[str, Any]]]]) -> Dict[str, Any]:
    assignments = [a for rows in permissions.values() if rows for a in rows]
    return privilege_histogram(assignments)

# ====================================================================================
# INSIGHTS
# ====================================================================================
def _duration_seconds(duration: Any) -> float:
    try:
        return float(str(duration).rstrip("s"))
    except ValueError:
        return 0.0

def workspace_insights(snapshot: Dict[str, Any]) -> List[Dict[str, str]]:
    """Rule-based optimisation hints derived from a snapshot."""
    insights = []
    catalogs = [c for c in snapshot.get("catalogData") or [] if c.get("name") != "No Data"]
    total_storage = sum(c["value"] for c in catalogs)
    heavy = [c for c in catalogs if c["value"] > total_storage * HIGH_STORAGE_SHARE]
    if heavy:
        insights.append({
            "severity": "High",
            "title": "High Storage Usage Detected",
            "description": f"Catalog(s) {', '.join(c['name'] for c in heavy)} are using "
                           f"{sum(c['value'] for c in heavy)} MB, which is more than "
                           f"{HIGH_STORAGE_SHARE:.0%} of total storage ({total_storage} MB).",
            "recommendation": "Review these catalogs for unused or old data.",
        })

    spikes = [d for d in snapshot.get("usageData") or [] if d.get("queries", 0) > QUERY_SPIKE_PER_DAY]
    if spikes:
        insights.append({
            "severity": "Medium",
            "title": "Query Spikes Detected",
            "description": f"On {', '.join(d['day'] for d in spikes)}, query counts exceeded "
                           f"{QUERY_SPIKE_PER_DAY} ({', '.join(str(d['queries']) for d in spikes)}).",
            "recommendation": "Consider load balancing by scheduling queries during off-peak hours.",
        })

    total_users = snapshot.get("totalUsers") or 0
    active = snapshot.get("activeUsers") or 0
    if total_users and active / total_users < LOW_ENGAGEMENT_SHARE:
        insights.append({
            "severity": "Medium",
            "title": "Low User Engagement",
            "description": f"Only {active} out of {total_users} users are active "
                           f"({active / total_users * 100:.1f}% engagement rate).",
            "recommendation": "Engage inactive users through training sessions.",
        })

    by_privilege = (snapshot.get("privilegeDistribution") or {}).get("byPrivilege") or {}
    excessive = [name for name, n in by_privilege.items() if total_users and n > total_users * EXCESSIVE_PRIVILEGE_SHARE]
    if excessive:
        insights.append({
            "severity": "High",
            "title": "Excessive Privilege Assignments",
            "description": f"Privileges like {', '.join(excessive)} are assigned to more than "
                           f"{EXCESSIVE_PRIVILEGE_SHARE:.0%} of users.",
            "recommendation": "Audit privilege assignments.",
        })

    problems = [q for q in snapshot.get("recentQueries") or []
                if q.get("status") == "FAILED" or _duration_seconds(q.get("duration")) > SLOW_QUERY_SEC]
    if problems:
        insights.append({
            "severity": "Medium",
            "title": "Problematic Queries Detected",
            "description": f"Found {len(problems)} problematic queries.",
            "recommendation": "Optimize these queries.",
        })

    return insights or [{"severity": "Low", "title": "No Critical Issues",
                         "description": "Your workspace is running smoothly.",
                         "recommendation": "Continue monitoring."}]

# ====================================================================================
# AGGREGATOR
# ====================================================================================
@dataclass
class QueryHistory:
    queries: List[Dict[str, Any]] = field(default_factory=list)
    users: Set[str] = field(default_factory=set)
    sensitive: int = 0

    def add(self, row: Dict[str, Any], user: Optional[str]):
        self.queries.append(row)
        if user:
            self.users.add(user)
        if is_sensitive(row.get("query_text")):
            self.sensitive += 1


class WorkspaceStatsAggregator:
    """Builds (and caches) the dashboard snapshot for a time window."""

    def __init__(self, client: DatabricksAPIClient, enumerator: UnityCatalogEnumerator = None,
                 cache: SnapshotCache = None, clock: Callable[[], float] = time.time):
        self.client = client
        self.enumerator = enumerator or UnityCatalogEnumerator(client)
        self.cache = cache if cache is not None else SnapshotCache(clock=clock)
        self.clock = clock

    async def get_workspace_stats(self, time_filter: str = None) -> Tuple[Dict[str, Any], bool]:
        """Return (snapshot, served_from_cache). Top-level failures propagate and are not cached."""
        tf = resolve_time_filter(time_filter)
        cached = self.cache.get(tf)
        if cached is not None:
            log(f"[STATS] cache hit ({tf})")
            return cached, True
        snapshot = await self.build_snapshot(tf)
        self.cache.put(tf, snapshot)
        return snapshot, False

    async def _total_users(self) -> int:
        data = await self.client.get(endpoints.SCIM_USERS, params={"count": 1, "attributes": "id"})
        return int((data or {}).get("totalResults") or 0)

    async def build_snapshot(self, time_filter: str) -> Dict[str, Any]:
        tf = resolve_time_filter(time_filter)
        days = TIME_FILTER_DAYS[tf]
        now_ms = int(self.clock() * 1000)
        start_ms = now_ms - days * DAY_MS
        t0 = time.time()
        log(f"[STATS] Building snapshot for timeFilter={tf}")

        catalogs, total_users = await asyncio.gather(self.enumerator.list_catalogs(), self._total_users())
        log(f"[STATS] {len(catalogs)} catalogs, {total_users} users")

        inventory, permissions, history, counts = await asyncio.gather(
            self.enumerator.enumerate(catalogs),
            self.enumerator.permissions_by_catalog(catalogs),
            self.collect_query_history(start_ms, now_ms),
            asyncio.gather(
                calculate_total_views(self.client),
                calculate_storage_locations(self.client),
                calculate_total_jobs(self.client),
            ),
        )
        readiness = await calculate_overall_readiness(self.client, self.enumerator, catalogs, inventory, permissions)
        results: List[CollectorResult] = list(counts) + list(readiness.values())

        summary = summarize_inventory(inventory)
        queries = history.queries
        usage = build_usage_data(queries, days, summary["totalTables"], now_ms)
        distribution = privilege_distribution(permissions)

        snapshot = {
            "totalCatalogs": len(catalogs),
            "totalSchemas": summary["totalSchemas"],
            "totalTables": summary["totalTables"],
            "totalUsers": total_users,
            "activeUsers": len(history.users),
            "catalogData": summary["catalogData"],
            "tableData": summary["tableData"],
            "usageData": usage,
            "storageByType": summary["storageByType"],
            "privilegeData": [{"name": k, "value": v} for k, v in distribution["byPrivilege"].items() if v],
            "recentQueries": recent_queries(queries, now_ms),
            "recentActivity": len(queries),
            "privilegeDistribution": distribution,
            "queryPerformance": query_performance(queries),
            "sensitiveDataAccesses": history.sensitive,
            "readiness": readiness_scores(readiness),
            "totalViews": counts[0].value,
            "storageLocations": counts[1].value,
            "totalJobs": counts[2].value,
            "costEstimate": estimate_cost(summary["catalogData"], usage),
            "timeFilter": tf,
            "generatedAt": now_ms,
            "collectorErrors": {r.name: r.error for r in results if not r.ok},
        }
        log(f"[STATS] Snapshot ready ({tf}) [{time.time() - t0:.1f}s]")
        return with_placeholders(snapshot)

    # ---- activity sources ----
    async def _cluster_events(self, cluster: Dict[str, Any], start_ms: int, now_ms: int, history: QueryHistory):
        body = {"cluster_id": cluster.get("cluster_id"), "start_time": start_ms, "end_time": now_ms,
                "limit": ACTIVITY_PAGE_SIZE, "order": "DESC"}
        try:
            data = await self.client.post(endpoints.CLUSTER_EVENTS, body)
        except Exception as e:
            log(f"[WARN] Events for cluster {cluster.get('cluster_id')}: {e}")
            return
        for event in (data or {}).get("events") or []:
            kind = event.get("type") or ""
            if not ("COMMAND" in kind or "RUN" in kind or "COMPLETED" in kind or kind == "STARTING"):
                continue
            details = event.get("details") or {}
            text = ((details.get("command") or {}).get("command_text") or details.get("notebook_path")
                    or f"Cluster {cluster.get('cluster_name')} execution")
            history.add({
                "query_text": text,
                "user_name": details.get("user") or "unknown",
                "execution_start_time_ms": event.get("timestamp"),
                "duration": details.get("execution_duration") or 0,
                "status": details.get("result_state") or kind,
                "source": "notebook",
            }, details.get("user"))

    async def _cluster_activity(self, start_ms: int, now_ms: int, history: QueryHistory):
        clusters = await self.client.fetch_list("clusters")
        await asyncio.gather(*(self._cluster_events(c, start_ms, now_ms, history)
                               for c in clusters[:CLUSTER_EVENT_SAMPLE]))

    async def _job_activity(self, start_ms: int, now_ms: int, history: QueryHistory):
        data = await self.client.get(endpoints.JOB_RUNS_LIST, params={
            "limit": 25, "start_time_from": start_ms, "start_time_to": now_ms,
            "expand_tasks": True, "completed_only": False,
        })
        for run in (data or {}).get("runs") or []:
            task = ((run.get("tasks") or [{}])[0]) or {}
            text = ((task.get("notebook_task") or {}).get("notebook_path")
                    or (task.get("spark_python_task") or {}).get("python_file")
                    or f"Job {run.get('run_id')}")
            state = run.get("state") or {}
            history.add({
                "query_text": text,
                "user_name": run.get("creator_user_name") or "unknown",
                "execution_start_time_ms": run.get("start_time"),
                "duration": run.get("execution_duration") or run.get("run_duration") or 0,
                "status": state.get("result_state") or state.get("life_cycle_state") or "unknown",
                "source": "job",
            }, run.get("creator_user_name"))

    async def _sql_activity(self, start_ms: int, now_ms: int, history: QueryHistory):
        params = {
            "max_results": ACTIVITY_PAGE_SIZE,
            "filter_by.query_start_time_range.start_time_ms": start_ms,
            "filter_by.query_start_time_range.end_time_ms": now_ms,
        }
        if DATABRICKS_WAREHOUSE_ID:
            params["filter_by.warehouse_ids"] = DATABRICKS_WAREHOUSE_ID
        data = await self.client.get(endpoints.SQL_HISTORY, params=params)
        for query in (data or {}).get("res") or (data or {}).get("results") or []:
            row = dict(query)
            row["execution_start_time_ms"] = query.get("execution_start_time_ms") or query.get("query_start_time_ms")
            row["source"] = "sql"
            history.add(row, query.get("user_name"))

    async def collect_query_history(self, start_ms: int, now_ms: int) -> QueryHistory:
        """Merge cluster events, job runs and SQL history, newest first. A failing source contributes nothing."""
        history = QueryHistory()

        async def isolated(name, fn):
            try:
                await fn(start_ms, now_ms, history)
            except Exception as e:
                log(f"[WARN] Activity source {name} failed: {e}")

        await asyncio.gather(
            isolated("clusters", self._cluster_activity),
            isolated("jobs", self._job_activity),
            isolated("sql", self._sql_activity),
        )
        if not history.queries:
            history.queries.append({
                "query_text": "No query history available",
                "user_name": "System",
                "execution_start_time_ms": now_ms,
                "duration": 0,
                "status": "N/A",
                "source": "system",
            })
        history.queries.sort(key=lambda q: q.get("execution_start_time_ms") or 0, reverse=True)
        return history

    async def readiness_report(self) -> Dict[str, Any]:
        """Readiness scores, collector counts, per-catalog data summary and recent jobs."""
        catalogs = await self.enumerator.list_catalogs()
        inventory, permissions = await asyncio.gather(
            self.enumerator.enumerate(catalogs),
            self.enumerator.permissions_by_catalog(catalogs),
        )
        readiness, counts, summary, jobs = await asyncio.gather(
            calculate_overall_readiness(self.client, self.enumerator, catalogs, inventory, permissions),
            asyncio.gather(
                calculate_total_views(self.client),
                calculate_storage_locations(self.client),
                calculate_total_jobs(self.client),
            ),
            generate_data_summary(self.client, inventory, permissions),
            get_recent_jobs(self.client),
        )
        results = list(readiness.values()) + list(counts) + [summary, jobs]
        return {
            "readiness": readiness_scores(readiness),
            "totalViews": counts[0].value,
            "storageLocations": counts[1].value,
            "totalJobs": counts[2].value,
            "dataSummary": summary.value,
            "recentJobs": jobs.value,
            "collectorErrors": {r.name: r.error for r in results if not r.ok},
        }
