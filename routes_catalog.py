# Catalog, Schema, Table, Upload and Privilege Routes

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, Form, Request, Response, UploadFile
from pydantic import BaseModel

from api_client import DatabricksAPIClient, DatabricksAPIError, log
from catalog_admin import CatalogAdmin, CatalogExistsError, SchemaNotFoundError
from data_processing import SchemaDefinitionError, preview_file
from dependencies import ApiError, get_admin, get_client, relayed, require
from table_loader import UploadRequest, migrate_from_cloud, upload_table, validate_migration

router = APIRouter(prefix="/api", tags=["catalog"])


class CatalogBody(BaseModel):
    name: Optional[str] = None
    comment: Optional[str] = None


class SchemaBody(BaseModel):
    catalogName: Optional[str] = None
    schemaName: Optional[str] = None
    comment: Optional[str] = None


class TableBody(BaseModel):
    catalogName: Optional[str] = None
    schemaName: Optional[str] = None
    tableName: Optional[str] = None
    columns: List[Dict[str, Any]] = []
    comment: Optional[str] = None
    metadata: Dict[str, Any] = {}


class PrivilegeBody(BaseModel):
    securable_type: Optional[str] = None
    full_name: Optional[str] = None
    principal: Optional[str] = None
    privileges: List[str] = []


# ====================================================================================
# CATALOGS
# ====================================================================================
@router.get("/catalogs")
async def list_catalogs(admin: CatalogAdmin = Depends(get_admin)):
    return await admin.list_catalogs()


@router.post("/catalogs", status_code=201)
async def create_catalog(body: CatalogBody, admin: CatalogAdmin = Depends(get_admin)):
    require(body, "name", message="Catalog name is required")
    try:
        return await admin.create_catalog(body.name, body.comment)
    except CatalogExistsError as e:
        raise ApiError(409, str(e))


@router.get("/catalogs/{catalog_name}")
async def get_catalog(catalog_name: str, admin: CatalogAdmin = Depends(get_admin)):
    return await admin.get_catalog(catalog_name)


@router.patch("/catalogs/{catalog_name}")
async def update_catalog(catalog_name: str, changes: Dict[str, Any] = Body(...),
                         admin: CatalogAdmin = Depends(get_admin)):
    return await admin.update_catalog(catalog_name, changes)


@router.delete("/catalogs/{catalog_name}", status_code=204)
async def delete_catalog(catalog_name: str, admin: CatalogAdmin = Depends(get_admin)):
    log(f"[UC] Deleting catalog: {catalog_name}")
    try:
        await admin.delete_catalog(catalog_name)
    except DatabricksAPIError as e:
        raise relayed(e, "Failed to delete catalog")
    return Response(status_code=204)


@router.get("/catalogs/{catalog_name}/schemas")
async def list_schemas(catalog_name: str, admin: CatalogAdmin = Depends(get_admin)):
    return await admin.list_schemas(catalog_name)

# ====================================================================================
# SCHEMAS & TABLES
# ====================================================================================
@router.post("/schemas", status_code=201)
async def create_schema(body: SchemaBody, admin: CatalogAdmin = Depends(get_admin)):
    require(body, "catalogName", "schemaName", message="Catalog name and schema name are required")
    return await admin.create_schema(body.catalogName, body.schemaName, body.comment)


@router.delete("/schemas/{catalog_name}/{schema_name}", status_code=204)
async def delete_schema(catalog_name: str, schema_name: str, admin: CatalogAdmin = Depends(get_admin)):
    try:
        await admin.delete_schema(catalog_name, schema_name)
    except SchemaNotFoundError as e:
        raise ApiError(404, str(e))
    return Response(status_code=204)


@router.get("/tables/{catalog_name}/{schema_name}")
async def list_tables(catalog_name: str, schema_name: str, admin: CatalogAdmin = Depends(get_admin)):
    return await admin.tables_with_keywords(catalog_name, schema_name)


@router.post("/tables", status_code=201)
async def create_table(body: TableBody, admin: CatalogAdmin = Depends(get_admin)):
    require(body, "catalogName", "schemaName", "tableName", "columns")
    tags = {f"tag.{k}": "true" for k in body.metadata.get("keywords") or []}
    return await admin.create_table(body.catalogName, body.schemaName, body.tableName, body.columns,
                                    comment=body.comment, properties=tags)


@router.delete("/tables/{catalog_name}/{schema_name}/{table_name}", status_code=204)
async def delete_table(catalog_name: str, schema_name: str, table_name: str,
                       admin: CatalogAdmin = Depends(get_admin)):
    await admin.delete_table(catalog_name, schema_name, table_name)
    return Response(status_code=204)

# ====================================================================================
# UPLOAD & MIGRATION
# ====================================================================================
@router.post("/upload")
async def upload(file: Optional[UploadFile] = File(None),
                 catalog: Optional[str] = Form(None),
                 schema: Optional[str] = Form(None),
                 table: Optional[str] = Form(None),
                 fileType: Optional[str] = Form(None),
                 schemaDefinition: Optional[str] = Form(None),
                 metadata: Optional[str] = Form(None),
                 client: DatabricksAPIClient = Depends(get_client)):
    if file is None:
        raise ApiError(400, "No file uploaded")
    if not (catalog and schema and table):
        raise ApiError(400, "Missing required parameters: catalog, schema, or table")
    if not schemaDefinition:
        raise ApiError(400, "Missing schema definition")

    content = await file.read()
    log(f"[SAGA] Upload {file.filename} ({len(content)} bytes) -> {catalog}.{schema}.{table}")
    req = UploadRequest(file.filename, content, catalog, schema, table, schemaDefinition, fileType, metadata)
    return await upload_table(client, req)


@router.post("/upload/preview")
async def upload_preview(file: Optional[UploadFile] = File(None), fileType: Optional[str] = Form(None)):
    if file is None:
        raise ApiError(400, "No file uploaded")
    content = await file.read()
    try:
        return preview_file(file.filename, content, fileType)
    except SchemaDefinitionError as e:
        raise ApiError(400, str(e))
    except ValueError as e:
        raise ApiError(400, f"Could not read file: {e}")


@router.post("/cloud-migrate")
async def cloud_migrate(request: Request, client: DatabricksAPIClient = Depends(get_client)):
    form = await request.form()
    fields = {k: v for k, v in form.items() if isinstance(v, str)}
    req = validate_migration(fields)
    log(f"[SAGA] Cloud migration {req.source_path} -> {req.catalog}.{req.schema}.{req.table}")
    return await migrate_from_cloud(client, req)

# ====================================================================================
# PRIVILEGES
# ====================================================================================
@router.post("/privileges/grant")
async def grant_privileges(body: PrivilegeBody, admin: CatalogAdmin = Depends(get_admin)):
    require(body, "securable_type", "full_name", "principal", "privileges",
            message="securable_type, full_name, principal and privileges are required")
    return await admin.grant(body.securable_type, body.full_name, body.principal, body.privileges)


@router.post("/privileges/revoke")
async def revoke_privileges(body: PrivilegeBody, admin: CatalogAdmin = Depends(get_admin)):
    require(body, "securable_type", "full_name", "principal", "privileges",
            message="securable_type, full_name, principal and privileges are required")
    return await admin.revoke(body.securable_type, body.full_name, body.principal, body.privileges)


@router.get("/privileges/{securable_type}/{full_name}")
async def get_privileges(securable_type: str, full_name: str, admin: CatalogAdmin = Depends(get_admin)):
    return await admin.get_privileges(securable_type, full_name)
