import pytest

from api_client import DatabricksAPIError
import table_loader
from table_loader import (
    LoadError, MigrationRequest, SagaFailure, SagaStep, UploadRequest, migrate_from_cloud, quote_name, run_saga,
    run_statement, schema_mismatch, source_format, sql_string, upload_table
)

UC = "/api/2.1/unity-catalog"


def recorder(log, name, fail=False):
    async def step():
        log.append(name)
        if fail:
            raise RuntimeError(f"{name} broke")
    return step


async def test_saga_compensates_completed_steps_in_reverse():
    log = []
    steps = [
        SagaStep("a", recorder(log, "a"), compensate=recorder(log, "undo a")),
        SagaStep("b", recorder(log, "b"), compensate=recorder(log, "undo b")),
        SagaStep("c", recorder(log, "c", fail=True)),
    ]
    with pytest.raises(SagaFailure) as info:
        await run_saga("test", steps)
    assert log == ["a", "b", "c", "undo b", "undo a"]
    assert info.value.step == "c"
    assert info.value.report.compensated == ["b", "a"]
    assert info.value.report.failed_step == "c"


async def test_saga_best_effort_step_only_warns():
    log = []
    report = await run_saga("test", [
        SagaStep("a", recorder(log, "a")),
        SagaStep("tags", recorder(log, "tags", fail=True), critical=False),
        SagaStep("b", recorder(log, "b")),
    ])
    assert report.completed == ["a", "b"]
    assert report.warnings == ["tags: tags broke"]


async def test_failing_compensation_does_not_mask_error():
    steps = [
        SagaStep("a", recorder([], "a"), compensate=recorder([], "undo a", fail=True)),
        SagaStep("b", recorder([], "b", fail=True)),
    ]
    with pytest.raises(SagaFailure) as info:
        await run_saga("test", steps)
    assert str(info.value.error) == "b broke"
    assert info.value.report.compensated == []


async def test_run_statement_requires_warehouse(fake, monkeypatch):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "")
    with pytest.raises(DatabricksAPIError) as info:
        await run_statement(fake, "SELECT 1")
    assert info.value.error_code == "NOT_CONFIGURED"
    assert fake.calls == []


@pytest.mark.parametrize("state", ["FAILED", "CANCELED", "CLOSED"])
async def test_run_statement_terminal_states_raise(fake, monkeypatch, state):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "wh-1")
    fake.on("POST", "/api/2.0/sql/statements", {"status": {"state": state}})
    with pytest.raises(DatabricksAPIError, match=f"Statement {state}"):
        await run_statement(fake, "SELECT 1")


def test_identifiers_and_literals_are_escaped():
    assert quote_name("main", "my`table") == "`main`.`my``table`"
    assert sql_string("o'neil") == "'o''neil'"


async def test_tag_with_quote_is_escaped(fake, monkeypatch):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "wh-1")
    fake.on("POST", "/api/2.0/sql/statements", {"status": {"state": "SUCCEEDED"}})
    req = UploadRequest("data.csv", b"id\n1\n", "c", "s", "t", '[{"name": "id", "type_name": "INT"}]',
                        metadata='{"keywords": ["o\'neil"]}')
    result = await upload_table(fake, req)
    assert result["tagsApplied"] == ["o'neil"]
    statements = [c["json"]["statement"] for c in fake.called("POST", "/api/2.0/sql/statements")]
    assert statements[0] == "ALTER TABLE `c`.`s`.`t` SET TAGS ('o''neil' = 'true')"


def test_source_format_and_schema_mismatch():
    assert source_format("s3://b/x.CSV") == "CSV"
    assert source_format("s3://b/x.parquet") == "PARQUET"
    assert source_format("s3://b/delta_dir") == "DELTA"
    assert schema_mismatch([{"name": "id", "type_name": "INT"}], [{"name": "id", "type_name": "INT"}]) is None
    assert schema_mismatch([], [{"name": "id"}]) == "Schema mismatch: Number of columns does not match"


async def test_existing_external_table_with_other_schema(fake, monkeypatch):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "wh-1")
    fake.on("POST", f"{UC}/tables", (400, {"error_code": "TABLE_ALREADY_EXISTS", "message": "exists"}))
    fake.on("GET", f"{UC}/tables/main.raw.events", {"columns": [{"name": "id", "type_name": "STRING"}]})
    fake.on("POST", f"{UC}/external-locations", {"name": "migration_1"})
    req = MigrationRequest("azure", "abfss://c@acct.dfs.core.windows.net/events", "main", "raw", "events",
                           {"tenantId": "t", "clientId": "c", "clientSecret": "s"},
                           [{"name": "id", "type_name": "INT"}])
    with pytest.raises(LoadError) as info:
        await migrate_from_cloud(fake, req, now=1)
    assert info.value.status == 400
    assert info.value.message.startswith("Schema mismatch for existing table: Schema mismatch: Column id")
    deleted = sorted(c["path"] for c in fake.calls if c["method"] == "DELETE")
    assert deleted == [f"{UC}/external-locations/migration_1000", f"{UC}/storage-credentials/azure_cred_1000"]
    assert info.value.details["compensated"] == ["external_location", "storage_credential"]
