import json

import catalog_admin
import table_loader

UC = "/api/2.1/unity-catalog"
SCHEMA = json.dumps([{"name": "id", "type_name": "INT"}, {"name": "name", "type_name": "STRING"}])


def test_create_catalog_requires_name(client):
    response = client.post("/api/catalogs", json={})
    assert response.status_code == 400
    assert response.json() == {"error": "Catalog name is required"}


def test_create_catalog_conflict(fake, client):
    fake.on("GET", f"{UC}/catalogs", {"catalogs": [{"name": "main"}]})
    response = client.post("/api/catalogs", json={"name": "main"})
    assert response.status_code == 409
    assert response.json()["error"] == "Catalog 'main' already exists"
    assert not fake.called("POST", f"{UC}/catalogs")


def test_create_catalog_uses_default_storage_root(fake, client, monkeypatch):
    monkeypatch.setattr(catalog_admin, "DEFAULT_STORAGE_ROOT", "s3://lake/")
    fake.on("POST", f"{UC}/catalogs", lambda call: {"name": call["json"]["name"]})
    response = client.post("/api/catalogs", json={"name": "sales"})
    assert response.status_code == 201
    body = fake.called("POST", f"{UC}/catalogs")[0]["json"]
    assert body == {"name": "sales", "comment": "Created via UC Manager", "storage_root": "s3://lake/sales"}


def test_vendor_error_maps_to_500_with_message(fake, client):
    fake.on("GET", f"{UC}/catalogs/ghost", (404, {"error_code": "CATALOG_DOES_NOT_EXIST", "message": "no such catalog"}))
    response = client.get("/api/catalogs/ghost")
    assert response.status_code == 500
    assert response.json() == {"error": "no such catalog", "error_code": "CATALOG_DOES_NOT_EXIST"}


def test_unexpected_exception_renders_json_500(fake, unguarded_client):
    fake.on("GET", f"{UC}/catalogs/main", RuntimeError("socket exploded"))
    response = unguarded_client.get("/api/catalogs/main")
    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"error": "Internal server error"}


def test_delete_catalog_cascades_and_skips_system_schema(fake, client, monkeypatch):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "wh-1")
    fake.on("GET", f"{UC}/catalogs/old", {"name": "old"})
    fake.on("GET", f"{UC}/schemas", {"schemas": [{"name": "information_schema"}, {"name": "raw"}]})
    fake.on("GET", f"{UC}/tables", {"tables": [{"name": "events"}]})
    fake.on("POST", "/api/2.0/sql/statements", {"status": {"state": "SUCCEEDED"}})

    response = client.delete("/api/catalogs/old")
    assert response.status_code == 204
    statements = [c["json"]["statement"] for c in fake.called("POST", "/api/2.0/sql/statements")]
    assert statements == ["DROP TABLE IF EXISTS old.raw.events"]
    assert fake.called("DELETE", f"{UC}/schemas/old.raw")
    assert not fake.called("DELETE", f"{UC}/schemas/old.information_schema")
    assert fake.called("DELETE", f"{UC}/catalogs/old")


def test_delete_catalog_schema_not_empty_message(fake, client, monkeypatch):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "wh-1")
    fake.on("GET", f"{UC}/catalogs/old", {"name": "old"})
    fake.on("DELETE", f"{UC}/catalogs/old", (400, {"error_code": "SCHEMA_NOT_EMPTY", "message": "not empty"}))
    response = client.delete("/api/catalogs/old")
    assert response.status_code == 400
    assert response.json()["error"] == "Could not delete all schemas - some tables may be referenced by views"


def test_create_schema_validation_and_payload(fake, client):
    assert client.post("/api/schemas", json={"catalogName": "main"}).json() == {
        "error": "Catalog name and schema name are required"}
    response = client.post("/api/schemas", json={"catalogName": "main", "schemaName": "sales"})
    assert response.status_code == 201
    assert fake.called("POST", f"{UC}/schemas")[0]["json"] == {"name": "sales", "catalog_name": "main", "comment": ""}


def test_delete_missing_schema_is_404(fake, client):
    fake.on("GET", f"{UC}/schemas/main.gone", (404, {"message": "missing"}))
    response = client.delete("/api/schemas/main/gone")
    assert response.status_code == 404
    assert response.json() == {"error": "Schema 'gone' not found in catalog 'main'"}
    assert not fake.called("DELETE", f"{UC}/schemas/main.gone")


def test_delete_schema(fake, client):
    assert client.delete("/api/schemas/main/sales").status_code == 204
    assert fake.called("DELETE", f"{UC}/schemas/main.sales")


def test_list_tables_exposes_keywords(fake, client):
    fake.on("GET", f"{UC}/tables", {"tables": [
        {"name": "people", "properties": {"tag.pii": "true", "tag.old": "false", "owner": "x"}},
    ]})
    tables = client.get("/api/tables/main/hr").json()
    assert tables[0]["metadata"] == {"keywords": ["pii"]}


def test_create_table(fake, client):
    assert client.post("/api/tables", json={"catalogName": "main", "schemaName": "s", "tableName": "t"}).json() == {
        "error": "Missing required parameters: columns"}
    response = client.post("/api/tables", json={
        "catalogName": "main", "schemaName": "s", "tableName": "t",
        "columns": [{"name": "id", "type_name": "INT"}],
        "metadata": {"keywords": ["finance"]},
    })
    assert response.status_code == 201
    payload = fake.called("POST", f"{UC}/tables")[0]["json"]
    assert payload["properties"] == {"tag.finance": "true"}
    assert payload["columns"][0]["position"] == 0
    assert payload["table_type"] == "MANAGED"


def test_grant_uppercases_privileges(fake, client):
    response = client.post("/api/privileges/grant", json={
        "securable_type": "SCHEMA", "full_name": "main.sales", "principal": "analysts", "privileges": ["select"]})
    assert response.status_code == 200
    call = fake.called("PATCH", f"{UC}/permissions/schema/main.sales")[0]
    assert call["json"] == {"changes": [{"principal": "analysts", "add": ["SELECT"]}]}


def test_revoke_requires_all_fields(client):
    response = client.post("/api/privileges/revoke", json={"securable_type": "catalog", "full_name": "main"})
    assert response.status_code == 400
    assert response.json()["error"] == "securable_type, full_name, principal and privileges are required"


def test_upload_validation(client):
    assert client.post("/api/upload", data={"catalog": "c"}).json() == {"error": "No file uploaded"}
    files = {"file": ("data.csv", b"id,name\n1,a\n", "text/csv")}
    response = client.post("/api/upload", files=files, data={"catalog": "c", "schema": "s"})
    assert response.json() == {"error": "Missing required parameters: catalog, schema, or table"}
    response = client.post("/api/upload", files=files, data={"catalog": "c", "schema": "s", "table": "t"})
    assert response.json() == {"error": "Missing schema definition"}


def test_upload_into_existing_table(fake, client, monkeypatch):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "wh-1")
    fake.on("POST", f"{UC}/tables", (400, {"error_code": "TABLE_ALREADY_EXISTS", "message": "exists"}))
    fake.on("POST", "/api/2.0/sql/statements", {"status": {"state": "SUCCEEDED"}})
    response = client.post("/api/upload",
                           files={"file": ("data.csv", b"id,name\n1,a\n", "text/csv")},
                           data={"catalog": "c", "schema": "s", "table": "t", "schemaDefinition": SCHEMA,
                                 "metadata": json.dumps({"keywords": ["pii"]})})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["tagsApplied"] == ["pii"]
    assert body["completedSteps"] == ["create_table", "apply_tags", "write_file", "load_data", "cleanup"]
    statements = [c["json"]["statement"] for c in fake.called("POST", "/api/2.0/sql/statements")]
    assert statements[0] == "ALTER TABLE `c`.`s`.`t` SET TAGS ('pii' = 'true')"
    assert statements[1].startswith("COPY INTO `c`.`s`.`t` FROM 'dbfs:/FileStore/uploads/c/s/t-")


def test_failed_load_removes_temp_file(fake, client, monkeypatch):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "wh-1")
    fake.on("POST", "/api/2.0/sql/statements",
            {"status": {"state": "FAILED", "error": {"message": "bad rows"}}})
    response = client.post("/api/upload",
                           files={"file": ("data.csv", b"id,name\n1,a\n", "text/csv")},
                           data={"catalog": "c", "schema": "s", "table": "t", "schemaDefinition": SCHEMA})
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to load data into table: bad rows"
    assert body["details"] == {"completedSteps": ["create_table", "write_file"], "compensated": ["write_file"]}
    assert len(fake.called("POST", "/api/2.0/dbfs/delete")) == 1


def test_upload_bad_schema_definition(client):
    response = client.post("/api/upload",
                           files={"file": ("data.csv", b"id\n1\n", "text/csv")},
                           data={"catalog": "c", "schema": "s", "table": "t",
                                 "schemaDefinition": json.dumps([{"name": "id"}])})
    assert response.status_code == 400
    assert response.json()["error"] == 'Invalid schema definition: Column "id" is missing a type_name'


def test_upload_metadata_must_be_an_object(fake, client):
    response = client.post("/api/upload",
                           files={"file": ("data.csv", b"id,name\n1,a\n", "text/csv")},
                           data={"catalog": "c", "schema": "s", "table": "t", "schemaDefinition": SCHEMA,
                                 "metadata": '["pii"]'})
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid metadata format")
    assert fake.calls == []


def test_upload_preview_infers_schema(client):
    response = client.post("/api/upload/preview",
                           files={"file": ("people.csv", b"id,full name\n1,Ann\n2,Bob\n", "text/csv")})
    assert response.status_code == 200
    body = response.json()
    assert body["rowCount"] == 2
    assert [(c["name"], c["type_name"]) for c in body["schemaDefinition"]] == [("id", "BIGINT"), ("full_name", "STRING")]
    assert body["sample"][0] == {"id": 1, "full name": "Ann"}


def test_upload_preview_rejects_unknown_type(client):
    response = client.post("/api/upload/preview", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400
    assert response.json()["error"] == "Unsupported file type: txt"


def migration_form(**overrides):
    form = {
        "cloudProvider": "s3",
        "sourcePath": "s3://bucket/data/events.parquet",
        "catalog": "main",
        "schema": "raw",
        "table": "events",
        "credentials": json.dumps({"roleArn": "arn:aws:iam::1:role/uc"}),
    }
    form.update(overrides)
    return form


def test_cloud_migrate_validation(client):
    response = client.post("/api/cloud-migrate", data=migration_form(sourcePath="gs://bucket/x.parquet"))
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid source path for s3. Must start with s3://"
    response = client.post("/api/cloud-migrate", data=migration_form(credentials="{}"))
    assert response.json()["error"] == "Missing roleArn in credentials for S3 provider"
    response = client.post("/api/cloud-migrate", data=migration_form(sourcePath="s3://bucket/x.csv"))
    assert response.json()["error"].startswith("Schema definition is required for CSV files")


def test_cloud_migrate_location_overlap_rolls_back_credential(fake, client):
    fake.on("POST", f"{UC}/external-locations",
            (400, {"error_code": "LOCATION_OVERLAP", "message": "Conflicting location: landing_zone"}))
    response = client.post("/api/cloud-migrate", data=migration_form())
    assert response.status_code == 400
    assert response.json()["error"] == ("Cannot create external location for s3://bucket: "
                                        "overlaps with existing location landing_zone")
    deletes = [c["path"] for c in fake.calls if c["method"] == "DELETE"]
    assert len(deletes) == 1 and deletes[0].startswith(f"{UC}/storage-credentials/s3_cred_")


def test_cloud_migrate_reuses_overlapping_location(fake, client, monkeypatch):
    monkeypatch.setattr(table_loader, "DATABRICKS_WAREHOUSE_ID", "wh-1")
    fake.on("GET", f"{UC}/external-locations", {"external_locations": [{"name": "lake", "url": "s3://bucket"}]})
    fake.on("POST", "/api/2.0/sql/statements", {"status": {"state": "SUCCEEDED"}})
    response = client.post("/api/cloud-migrate", data=migration_form())
    assert response.status_code == 200
    body = response.json()
    assert body["externalLocation"] == "lake"
    assert body["completedSteps"] == ["storage_credential", "external_location", "create_table", "refresh_table"]
    table = fake.called("POST", f"{UC}/tables")[0]["json"]
    assert table["table_type"] == "EXTERNAL"
    assert table["data_source_format"] == "PARQUET"
    assert not fake.called("POST", f"{UC}/external-locations")
