# Unity Catalog Enumeration Logic

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from api_client import DatabricksAPIClient, log
from config import SCHEMA_ACTIVITY_DAYS, SCHEMA_ACTIVITY_TOP, TRACKED_PRIVILEGES
import endpoints

TABLE_TYPES = ["MANAGED", "EXTERNAL", "VIEW"]
DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class SchemaInventory:
    catalog: str
    name: str
    tables: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.catalog}.{self.name}"


@dataclass
class CatalogInventory:
    name: str
    schemas: List[SchemaInventory] = field(default_factory=list)
    ok: bool = True             # False when the schema listing itself failed

    @property
    def table_count(self) -> int:
        return sum(len(s.tables) for s in self.schemas)

    def tables(self) -> List[Dict[str, Any]]:
        return [t for s in self.schemas for t in s.tables]


def empty_privilege_histogram() -> Dict[str, int]:
    hist = {p: 0 for p in TRACKED_PRIVILEGES}
    hist["OTHER"] = 0
    return hist

def privilege_histogram(assignments: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Flatten privilege assignments into {totalGrants, byPrivilege}."""
    by_privilege = empty_privilege_histogram()
    total = 0
    for assignment in assignments or []:
        for privilege in assignment.get("privileges") or []:
            name = str(privilege).upper()
            if not name:
                continue
            total += 1
            if name in by_privilege:
                by_privilege[name] += 1
            else:
                by_privilege["OTHER"] += 1
    return {"totalGrants": total, "byPrivilege": by_privilege}

def is_user_principal(principal: str) -> bool:
    principal = (principal or "").lower()
    return "@" in principal or "user" in principal

def format_date(ts_ms: Any) -> str:
    """Render an epoch-ms timestamp as 'Jan 5, 2024'."""
    if not ts_ms:
        return "Unknown"
    try:
        dt = datetime.fromtimestamp(int(ts_ms) / 1000)
    except (TypeError, ValueError, OverflowError, OSError):
        return "Unknown"
    return f"{dt:%b} {dt.day}, {dt.year}"

def zero_catalog_stats(name: str) -> Dict[str, Any]:
    return {
        "name": name,
        "schemaCount": 0,
        "tableCount": 0,
        "createdBy": "System",
        "createdOn": "Unknown",
        "lastModified": "Unknown",
        "tableTypes": {"MANAGED": 0, "EXTERNAL": 0, "VIEW": 0, "OTHER": 0},
        "schemaActivity": [],
    }


class UnityCatalogEnumerator:
    """Unity Catalog enumeration over the shared async client.

    Fan-out is bounded by the client's semaphore. Every branch is isolated: a schema whose
    table listing fails contributes no tables, a catalog whose schema listing fails
    contributes no schemas, and neither aborts the sibling branches.
    """

    def __init__(self, client: DatabricksAPIClient):
        self.client = client

    async def list_catalogs(self) -> List[Dict[str, Any]]:
        return await self.client.fetch_list("catalogs")

    async def list_schemas(self, catalog: str) -> List[Dict[str, Any]]:
        return await self.client.fetch_list("schemas", {"catalog_name": catalog})

    async def list_tables(self, catalog: str, schema: str) -> List[Dict[str, Any]]:
        return await self.client.fetch_list("tables", {"catalog_name": catalog, "schema_name": schema})

    async def get_catalog(self, name: str) -> Dict[str, Any]:
        return await self.client.get(endpoints.CATALOG.format(name=name))

    async def get_permissions(self, securable_type: str, full_name: str) -> List[Dict[str, Any]]:
        path = endpoints.PERMISSIONS.format(securable_type=securable_type.lower(), full_name=full_name)
        data = await self.client.get(path)
        return (data or {}).get("privilege_assignments") or []

    async def _schema_branch(self, catalog: str, schema: Dict[str, Any]) -> SchemaInventory:
        inv = SchemaInventory(catalog=catalog, name=schema.get("name", ""))
        try:
            inv.tables = await self.list_tables(catalog, inv.name)
        except Exception as e:
            log(f"[UC-ERROR] {catalog}.{inv.name}: {e}")
        return inv

    async def _catalog_branch(self, catalog: str) -> CatalogInventory:
        try:
            schemas = await self.list_schemas(catalog)
        except Exception as e:
            log(f"[UC-ERROR] Failed to get schemas for {catalog}: {e}")
            return CatalogInventory(name=catalog, ok=False)
        branches = await asyncio.gather(*(self._schema_branch(catalog, s) for s in schemas))
        return CatalogInventory(name=catalog, schemas=list(branches))

    async def enumerate(self, catalogs: List[Dict[str, Any]]) -> List[CatalogInventory]:
        """Catalog → schemas → tables for every catalog, in parallel."""
        names = [c.get("name") for c in catalogs if c.get("name")]
        t0 = time.time()
        inventory = await asyncio.gather(*(self._catalog_branch(n) for n in names))
        schemas = sum(len(c.schemas) for c in inventory)
        tables = sum(c.table_count for c in inventory)
        log(f"[UC] Done → {len(names)} catalogs, {schemas} schemas, {tables} tables [{time.time() - t0:.1f}s]")
        return list(inventory)

    async def permissions_by_catalog(self, catalogs: List[Dict[str, Any]]) -> Dict[str, Optional[List[Dict[str, Any]]]]:
        """Catalog privilege assignments; None marks a catalog whose lookup failed."""
        names = [c.get("name") for c in catalogs if c.get("name")]

        async def one(name):
            try:
                return await self.get_permissions("catalog", name)
            except Exception as e:
                log(f"[UC-ERROR] Permissions for {name}: {e}")
                return None

        results = await asyncio.gather(*(one(n) for n in names))
        return dict(zip(names, results))

    async def catalog_stats(self, name: str, now: float = None) -> Dict[str, Any]:
        """Schema/table breakdown for one catalog. Vendor errors on the catalog or
        schema listing propagate; per-schema table failures are skipped."""
        now_ms = int((now if now is not None else time.time()) * 1000)
        cutoff = now_ms - SCHEMA_ACTIVITY_DAYS * DAY_MS

        catalog, schemas = await asyncio.gather(self.get_catalog(name), self.list_schemas(name))
        branches = await asyncio.gather(*(self._schema_branch(name, s) for s in schemas))

        table_types = {"MANAGED": 0, "EXTERNAL": 0, "VIEW": 0, "OTHER": 0}
        activity = []
        for branch in branches:
            recent = 0
            for table in branch.tables:
                kind = (table.get("table_type") or "OTHER").upper()
                table_types[kind if kind in TABLE_TYPES else "OTHER"] += 1
                created = table.get("created_at") or 0
                updated = table.get("updated_at") or 0
                if created > cutoff or updated > cutoff:
                    recent += 1
            activity.append({"name": branch.name, "tableCount": len(branch.tables), "recentActivity": recent})

        activity.sort(key=lambda s: s["recentActivity"], reverse=True)
        return {
            "name": name,
            "schemaCount": len(schemas),
            "tableCount": sum(s["tableCount"] for s in activity),
            "createdBy": catalog.get("owner") or "System",
            "createdOn": format_date(catalog.get("created_at")),
            "lastModified": format_date(catalog.get("updated_at")),
            "tableTypes": table_types,
            "schemaActivity": activity[:SCHEMA_ACTIVITY_TOP],
        }

    async def privilege_stats(self, catalog: str) -> Dict[str, Any]:
        return privilege_histogram(await self.get_permissions("catalog", catalog))

    async def user_privilege_stats(self, catalog: str) -> Dict[str, Any]:
        """Privilege histogram restricted to user principals, plus distinct user count."""
        assignments = [a for a in await self.get_permissions("catalog", catalog)
                       if is_user_principal(a.get("principal"))]
        users = {a["principal"].lower().split("/")[-1] for a in assignments}
        hist = privilege_histogram(assignments)
        return {"totalUsers": len(users), "byPrivilege": hist["byPrivilege"]}
