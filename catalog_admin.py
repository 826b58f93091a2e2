# Unity Catalog Object Management (catalogs, schemas, tables, grants)

from typing import Any, Dict, List
from urllib.parse import quote

from api_client import DatabricksAPIError, log
from config import DEFAULT_STORAGE_ROOT
from data_processing import columns_payload, table_keywords
from table_loader import run_statement
from unity_catalog import UnityCatalogEnumerator
import endpoints

SYSTEM_SCHEMAS = {"information_schema"}


class CatalogExistsError(Exception):
    pass


class SchemaNotFoundError(Exception):
    pass


def storage_root_for(name: str) -> str:
    return f"{DEFAULT_STORAGE_ROOT.rstrip('/')}/{name}" if DEFAULT_STORAGE_ROOT else ""

def permissions_path(securable_type: str, full_name: str) -> str:
    return endpoints.PERMISSIONS.format(securable_type=securable_type.lower(), full_name=quote(full_name, safe=""))

def with_keywords(table: Dict[str, Any]) -> Dict[str, Any]:
    return {**table, "metadata": {"keywords": table_keywords(table.get("properties"))}}


class CatalogAdmin(UnityCatalogEnumerator):
    """Create/update/delete operations on top of the read-only enumerator."""

    # ====================================================================================
    # CATALOGS
    # ====================================================================================
    async def create_catalog(self, name: str, comment: str = None) -> Dict[str, Any]:
        """Create a catalog under the default storage root; an existing name raises CatalogExistsError."""
        existing = await self.list_catalogs()
        if any(c.get("name") == name for c in existing):
            raise CatalogExistsError(f"Catalog '{name}' already exists")
        payload = {"name": name, "comment": comment or "Created via UC Manager"}
        root = storage_root_for(name)
        if root:
            payload["storage_root"] = root
        created = await self.client.post(endpoints.CATALOGS, payload)
        log(f"[UC] Catalog created: {name}")
        return created

    async def update_catalog(self, name: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return await self.client.patch(endpoints.CATALOG.format(name=name), changes)

    async def delete_catalog(self, name: str) -> Dict[str, List[str]]:
        """Drop every table and schema in the catalog, then the catalog itself.

        Table and schema failures are logged and skipped; only the final catalog
        delete (and the initial lookups) raise.
        """
        await self.get_catalog(name)
        schemas = await self.list_schemas(name)
        skipped: List[str] = []
        for schema in schemas:
            schema_name = schema.get("name")
            if schema_name in SYSTEM_SCHEMAS:
                log(f"[UC] Skipping system schema: {name}.{schema_name}")
                continue
            for table in await self.list_tables(name, schema_name):
                full = f"{name}.{schema_name}.{table.get('name')}"
                try:
                    await run_statement(self.client, f"DROP TABLE IF EXISTS {full}", wait="10s")
                    log(f"[UC] Deleted table: {full}")
                except DatabricksAPIError as e:
                    log(f"[UC-ERROR] Error deleting table {full}: {e}")
                    skipped.append(full)
            try:
                await self.client.delete(endpoints.SCHEMA.format(full_name=f"{name}.{schema_name}"))
                log(f"[UC] Deleted schema: {name}.{schema_name}")
            except DatabricksAPIError as e:
                log(f"[UC-ERROR] Error deleting schema {name}.{schema_name}: {e}")
                skipped.append(f"{name}.{schema_name}")
        try:
            await self.client.delete(endpoints.CATALOG.format(name=name))
        except DatabricksAPIError as e:
            if e.error_code == "SCHEMA_NOT_EMPTY":
                e.message = "Could not delete all schemas - some tables may be referenced by views"
            raise
        log(f"[UC] Successfully deleted catalog: {name}")
        return {"skipped": skipped}

    # ====================================================================================
    # SCHEMAS
    # ====================================================================================
    async def create_schema(self, catalog: str, name: str, comment: str = None) -> Dict[str, Any]:
        return await self.client.post(endpoints.SCHEMAS, {
            "name": name,
            "catalog_name": catalog,
            "comment": comment or "",
        })

    async def delete_schema(self, catalog: str, name: str):
        full = f"{catalog}.{name}"
        try:
            await self.client.get(endpoints.SCHEMA.format(full_name=full))
        except DatabricksAPIError as e:
            if e.status == 404:
                raise SchemaNotFoundError(f"Schema '{name}' not found in catalog '{catalog}'")
            raise
        await self.client.delete(endpoints.SCHEMA.format(full_name=full))
        log(f"[UC] Deleted schema: {full}")

    # ====================================================================================
    # TABLES
    # ====================================================================================
    async def tables_with_keywords(self, catalog: str, schema: str) -> List[Dict[str, Any]]:
        return [with_keywords(t) for t in await self.list_tables(catalog, schema)]

    async def create_table(self, catalog: str, schema: str, name: str, columns: List[Dict[str, Any]],
                           comment: str = None, table_type: str = "MANAGED",
                           data_source_format: str = "DELTA", properties: Dict[str, Any] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "catalog_name": catalog,
            "schema_name": schema,
            "name": name,
            "table_type": table_type,
            "data_source_format": data_source_format,
            "columns": columns_payload(columns),
        }
        if comment:
            payload["comment"] = comment
        if properties:
            payload["properties"] = properties
        return await self.client.post(endpoints.TABLES, payload)

    async def delete_table(self, catalog: str, schema: str, name: str):
        await self.client.delete(endpoints.TABLE.format(full_name=f"{catalog}.{schema}.{name}"))

    # ====================================================================================
    # PRIVILEGES
    # ====================================================================================
    async def get_privileges(self, securable_type: str, full_name: str) -> Dict[str, Any]:
        return await self.client.get(permissions_path(securable_type, full_name))

    async def update_privileges(self, securable_type: str, full_name: str, principal: str,
                                add: List[str] = None, remove: List[str] = None) -> Dict[str, Any]:
        change: Dict[str, Any] = {"principal": principal}
        if add:
            change["add"] = [p.upper() for p in add]
        if remove:
            change["remove"] = [p.upper() for p in remove]
        return await self.client.patch(permissions_path(securable_type, full_name), {"changes": [change]})

    async def grant(self, securable_type: str, full_name: str, principal: str, privileges: List[str]) -> Dict[str, Any]:
        return await self.update_privileges(securable_type, full_name, principal, add=privileges)

    async def revoke(self, securable_type: str, full_name: str, principal: str, privileges: List[str]) -> Dict[str, Any]:
        return await self.update_privileges(securable_type, full_name, principal, remove=privileges)
