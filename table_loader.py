# Table Upload & Cloud Migration Sagas

import base64
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from api_client import DatabricksAPIClient, DatabricksAPIError, log
from config import DATABRICKS_WAREHOUSE_ID, SQL_STATEMENT_WAIT
from data_processing import (
    SchemaDefinitionError, columns_payload, csv_header, parse_keywords,
    parse_migration_schema, parse_schema_definition, prepare_upload
)
import endpoints

SOURCE_PREFIXES = {"s3": "s3://", "gcs": "gs://", "azure": "abfss://"}
CONFLICT_RE = re.compile(r"Conflicting location: ([\w_]+)")


class LoadError(Exception):
    """A load failure with the HTTP status and message the caller should see."""

    def __init__(self, status: int, message: str, details: Any = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.details = details


# ====================================================================================
# SAGA RUNNER
# ====================================================================================
@dataclass
class SagaStep:
    name: str
    action: Callable[[], Awaitable[Any]]
    critical: bool = True
    compensate: Optional[Callable[[], Awaitable[Any]]] = None


@dataclass
class SagaReport:
    completed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    compensated: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None


class SagaFailure(Exception):
    def __init__(self, step: str, error: Exception, report: SagaReport):
        super().__init__(f"{step}: {error}")
        self.step = step
        self.error = error
        self.report = report


async def run_saga(name: str, steps: List[SagaStep]) -> SagaReport:
    """Run steps in order.

    A best-effort step that fails is recorded in ``warnings`` and the saga continues.
    A critical step that fails stops the saga: compensations of the completed steps run
    in reverse order (their own failures are logged only) and SagaFailure is raised
    carrying the original error and the partial report.
    """
    report = SagaReport()
    done: List[SagaStep] = []
    for step in steps:
        try:
            await step.action()
        except Exception as e:
            if not step.critical:
                log(f"[SAGA] {name}/{step.name} failed, continuing: {e}")
                report.warnings.append(f"{step.name}: {e}")
                continue
            log(f"[SAGA] {name}/{step.name} failed: {e}")
            report.failed_step = step.name
            for prior in reversed(done):
                if prior.compensate is None:
                    continue
                try:
                    await prior.compensate()
                    report.compensated.append(prior.name)
                except Exception as ce:
                    log(f"[SAGA] {name}/{prior.name} compensation failed: {ce}")
            raise SagaFailure(step.name, e, report) from e
        log(f"[SAGA] {name}/{step.name} ok")
        report.completed.append(step.name)
        done.append(step)
    return report


async def run_statement(client: DatabricksAPIClient, statement: str, wait: str = SQL_STATEMENT_WAIT) -> Dict[str, Any]:
    """Execute one SQL statement on the configured warehouse; a FAILED state raises."""
    if not DATABRICKS_WAREHOUSE_ID:
        raise DatabricksAPIError(500, "DATABRICKS_WAREHOUSE_ID is not configured", "NOT_CONFIGURED")
    data = await client.post(endpoints.SQL_STATEMENTS, {
        "statement": statement,
        "warehouse_id": DATABRICKS_WAREHOUSE_ID,
        "wait_timeout": wait,
    })
    status = (data or {}).get("status") or {}
    if status.get("state") in ("FAILED", "CANCELED", "CLOSED"):
        error = status.get("error") or {}
        raise DatabricksAPIError(400, error.get("message") or f"Statement {status['state']}",
                                 error.get("error_code"), data)
    return data

def quote_name(*parts: str) -> str:
    return ".".join("`" + str(p).replace("`", "``") + "`" for p in parts)

def sql_string(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"

# ====================================================================================
# FILE UPLOAD
# ====================================================================================
@dataclass
class UploadRequest:
    filename: str
    content: bytes
    catalog: str
    schema: str
    table: str
    schema_definition: Any
    file_type: str = None
    metadata: Any = None


async def upload_table(client: DatabricksAPIClient, req: UploadRequest, now: float = None) -> Dict[str, Any]:
    """Create a managed Delta table and COPY the uploaded file into it.

    Steps: create table (an existing table is reused), apply tags (best effort), write
    the file to DBFS, COPY INTO, delete the temp file (best effort). A failed load
    deletes the temp file; the created table is left in place.
    """
    try:
        columns = parse_schema_definition(req.schema_definition)
        tags = parse_keywords(req.metadata)
    except SchemaDefinitionError as e:
        raise LoadError(400, str(e))
    try:
        content, file_type = prepare_upload(req.filename, req.content, req.file_type)
    except Exception as e:
        raise LoadError(400, f"Failed to process Excel file: {e}")

    full = f"{req.catalog}.{req.schema}.{req.table}"
    stamp = int((now if now is not None else time.time()) * 1000)
    dbfs_path = f"/FileStore/uploads/{req.catalog}/{req.schema}/{req.table}-{stamp}.{file_type}"
    warnings: List[str] = []
    applied: List[str] = []

    async def create_table():
        try:
            await client.post(endpoints.TABLES, {
                "catalog_name": req.catalog,
                "schema_name": req.schema,
                "name": req.table,
                "table_type": "MANAGED",
                "data_source_format": "DELTA",
                "columns": columns_payload(columns),
            })
        except DatabricksAPIError as e:
            if e.error_code != "TABLE_ALREADY_EXISTS":
                raise
            log(f"[SAGA] {full} already exists, proceeding with data upload")

    async def apply_tags():
        for tag in tags:
            await run_statement(client, f"ALTER TABLE {quote_name(req.catalog, req.schema, req.table)} "
                                        f"SET TAGS ({sql_string(tag)} = 'true')")
            applied.append(tag)

    async def write_file():
        try:
            await client.post(endpoints.DBFS_PUT, {
                "path": dbfs_path,
                "contents": base64.b64encode(content).decode("ascii"),
                "overwrite": True,
            })
        except DatabricksAPIError as e:
            raise LoadError(500, f"Failed to upload file to Databricks: {e.message}")

    async def load_data():
        statement = (f"COPY INTO {quote_name(req.catalog, req.schema, req.table)} "
                     f"FROM {sql_string('dbfs:' + dbfs_path)} "
                     f"FILEFORMAT = {file_type.upper()} "
                     f"FORMAT_OPTIONS ('header' = 'true', 'inferSchema' = 'true') "
                     f"COPY_OPTIONS ('mergeSchema' = 'true')")
        try:
            await run_statement(client, statement)
        except DatabricksAPIError as e:
            raise LoadError(500, f"Failed to load data into table: {e.message}")

    async def delete_file():
        await client.post(endpoints.DBFS_DELETE, {"path": dbfs_path})

    if file_type == "csv":
        try:
            missing = sorted({c["name"] for c in columns} - set(csv_header(content)))
        except Exception as e:
            missing = []
            warnings.append(f"header check: {e}")
        if missing:
            warnings.append(f"columns not present in file header: {', '.join(missing)}")

    steps = [SagaStep("create_table", create_table)]
    if tags:
        steps.append(SagaStep("apply_tags", apply_tags, critical=False))
    steps += [
        SagaStep("write_file", write_file, compensate=delete_file),
        SagaStep("load_data", load_data),
        SagaStep("cleanup", delete_file, critical=False),
    ]

    try:
        report = await run_saga(f"upload {full}", steps)
    except SagaFailure as f:
        raise upload_error(f.error, f.report)

    return {
        "success": True,
        "message": f"Data uploaded successfully to {full}",
        "tagsApplied": applied,
        "completedSteps": report.completed,
        "warnings": warnings + report.warnings,
    }


def upload_error(err: Exception, report: SagaReport = None) -> LoadError:
    partial = {"completedSteps": report.completed, "compensated": report.compensated} if report else None
    if isinstance(err, LoadError):
        err.details = partial
        return err
    if isinstance(err, DatabricksAPIError):
        message = err.message
        if err.error_code == "TABLE_ALREADY_EXISTS":
            message = "Table already exists"
        elif err.error_code == "INVALID_PARAMETER_VALUE":
            message = f"Invalid table schema: {err.message}"
        return LoadError(err.status or 500, message, {"error_code": err.error_code, **(partial or {})})
    return LoadError(500, str(err) or "Failed to upload data", partial)

# ====================================================================================
# CLOUD MIGRATION
# ====================================================================================
@dataclass
class MigrationRequest:
    cloud_provider: str
    source_path: str
    catalog: str
    schema: str
    table: str
    credentials: Dict[str, Any]
    columns: List[Dict[str, Any]]


def validate_migration(form: Dict[str, Any]) -> MigrationRequest:
    """Check a cloud-migration form and turn it into a MigrationRequest (400 LoadError otherwise)."""
    required = ["cloudProvider", "sourcePath", "catalog", "schema", "table", "credentials"]
    missing = [f for f in required if not form.get(f) or (isinstance(form[f], str) and not form[f].strip())]
    if missing:
        raise LoadError(400, f"Missing required parameters: {', '.join(missing)}")

    provider = form["cloudProvider"]
    source = form["sourcePath"]
    try:
        credentials = json.loads(form["credentials"]) if isinstance(form["credentials"], str) else form["credentials"]
    except ValueError:
        raise LoadError(400, "Invalid JSON in credentials")
    if not isinstance(credentials, dict):
        raise LoadError(400, "Invalid JSON in credentials")
    if provider == "s3" and not str(credentials.get("roleArn") or "").strip():
        raise LoadError(400, "Missing roleArn in credentials for S3 provider")

    try:
        columns = parse_migration_schema(form.get("schemaDefinition"))
    except SchemaDefinitionError as e:
        raise LoadError(400, str(e))

    prefix = SOURCE_PREFIXES.get(provider)
    if not prefix or not source.startswith(prefix):
        raise LoadError(400, f"Invalid source path for {provider}. Must start with {prefix or 'a valid prefix'}")
    if provider == "s3" and not source[len(prefix):].split("/")[0]:
        raise LoadError(400, "Invalid S3 source path: bucket name is missing")
    if not columns and source.lower().endswith(".csv"):
        raise LoadError(400, "Schema definition is required for CSV files. Please provide the column names and types.")

    return MigrationRequest(provider, source, form["catalog"], form["schema"], form["table"], credentials, columns)


def credential_payload(provider: str, name: str, creds: Dict[str, Any]) -> Dict[str, Any]:
    if provider == "s3":
        return {"name": name, "aws_iam_role": {"role_arn": creds["roleArn"].strip()}}
    if provider == "gcs":
        return {"name": name, "gcp_service_account_key": {
            "email": creds.get("client_email"),
            "private_key_id": creds.get("private_key_id"),
            "private_key": creds.get("private_key"),
        }}
    return {"name": name, "azure_service_principal": {
        "directory_id": creds.get("tenantId"),
        "application_id": creds.get("clientId"),
        "client_secret": creds.get("clientSecret"),
    }}

def location_url(req: MigrationRequest) -> str:
    if req.cloud_provider == "s3":
        return "s3://" + req.source_path[len("s3://"):].split("/")[0]
    return req.source_path

def source_format(path: str) -> str:
    ext = path.rsplit(".", 1)[-1].lower()
    return {"csv": "CSV", "parquet": "PARQUET"}.get(ext, "DELTA")

def schema_mismatch(existing: List[Dict[str, Any]], wanted: List[Dict[str, Any]]) -> Optional[str]:
    if len(existing) != len(wanted):
        return "Schema mismatch: Number of columns does not match"
    for old, new in zip(existing, wanted):
        if old.get("name") != new.get("name") or old.get("type_name") != new.get("type_name"):
            return (f"Schema mismatch: Column {old.get('name')} type {old.get('type_name')} "
                    f"does not match {new.get('name')} type {new.get('type_name')}")
    return None


async def migrate_from_cloud(client: DatabricksAPIClient, req: MigrationRequest, now: float = None) -> Dict[str, Any]:
    """Register cloud data as an external table.

    Steps: storage credential (existing reused), external location (an overlapping one is
    reused), external table (an existing one must match the schema), REFRESH TABLE. A
    credential or location created here is deleted again if a later step fails.
    """
    stamp = int((now if now is not None else time.time()) * 1000)
    full = f"{req.catalog}.{req.schema}.{req.table}"
    url = location_url(req)
    state = {"credential": f"{req.cloud_provider}_cred_{stamp}", "location": f"migration_{stamp}"}

    async def create_credential():
        try:
            await client.post(endpoints.STORAGE_CREDENTIALS,
                              credential_payload(req.cloud_provider, state["credential"], req.credentials))
            state["credential_created"] = True
        except DatabricksAPIError as e:
            if e.error_code != "RESOURCE_ALREADY_EXISTS":
                raise
            log("[SAGA] Storage credential already exists, proceeding")

    async def drop_credential():
        if state.get("credential_created"):
            await client.delete(f"{endpoints.STORAGE_CREDENTIALS}/{state['credential']}")

    async def ensure_location():
        locations = await client.fetch_list("external_locations")
        for loc in locations:
            loc_url = loc.get("url") or ""
            if loc_url and (url.startswith(loc_url) or loc_url.startswith(url)):
                log(f"[SAGA] Reusing external location {loc.get('name')} ({loc_url})")
                state["location"] = loc.get("name")
                return
        try:
            await client.post(endpoints.EXTERNAL_LOCATIONS, {
                "name": state["location"],
                "url": url,
                "credential_name": state["credential"],
                "comment": f"Created for migration of {req.table}",
            })
            state["location_created"] = True
        except DatabricksAPIError as e:
            if e.error_code != "LOCATION_OVERLAP":
                raise
            match = CONFLICT_RE.search(e.message or "")
            raise LoadError(400, f"Cannot create external location for {url}: overlaps with existing location "
                                 f"{match.group(1) if match else 'unknown'}")

    async def drop_location():
        if state.get("location_created"):
            await client.delete(f"{endpoints.EXTERNAL_LOCATIONS}/{state['location']}")

    async def create_table():
        try:
            await client.post(endpoints.TABLES, {
                "catalog_name": req.catalog,
                "schema_name": req.schema,
                "name": req.table,
                "table_type": "EXTERNAL",
                "data_source_format": source_format(req.source_path),
                "storage_location": req.source_path,
                "columns": columns_payload(req.columns),
                "properties": {"header": "true", "inferSchema": "true", "nullValue": "NULL",
                               "emptyValue": "", "mode": "PERMISSIVE"},
            })
        except DatabricksAPIError as e:
            if e.error_code != "TABLE_ALREADY_EXISTS":
                raise
            log(f"[SAGA] {full} already exists, checking schema compatibility")
            existing = await client.get(endpoints.TABLE.format(full_name=full))
            problem = schema_mismatch(existing.get("columns") or [], req.columns)
            if problem:
                raise LoadError(400, f"Schema mismatch for existing table: {problem}")

    async def refresh():
        await run_statement(client, f"REFRESH TABLE {quote_name(req.catalog, req.schema, req.table)}")

    steps = [
        SagaStep("storage_credential", create_credential, compensate=drop_credential),
        SagaStep("external_location", ensure_location, compensate=drop_location),
        SagaStep("create_table", create_table),
        SagaStep("refresh_table", refresh),
    ]
    try:
        report = await run_saga(f"migrate {full}", steps)
    except SagaFailure as f:
        raise migration_error(f.error, f.report)

    return {
        "success": True,
        "message": f"Data migrated successfully from {req.source_path} to {full}",
        "externalLocation": state["location"],
        "completedSteps": report.completed,
    }


def migration_error(err: Exception, report: SagaReport = None) -> LoadError:
    partial = {"completedSteps": report.completed, "compensated": report.compensated} if report else None
    if isinstance(err, LoadError):
        err.details = partial
        return err
    base = "Failed to migrate data from cloud"
    if isinstance(err, DatabricksAPIError):
        if err.error_code and err.status is not None:
            message = f"{base}: {err.error_code} - {err.message or ''}"
        else:
            message = f"{base}: {err.message}"
        return LoadError(err.status or 500, message, partial)
    return LoadError(500, f"{base}: {err}", partial)
