from collectors import (
    CollectorResult, calculate_cluster_readiness, calculate_job_readiness, calculate_overall_readiness,
    calculate_permission_readiness, calculate_storage_locations, calculate_table_readiness,
    calculate_total_jobs, calculate_total_views, generate_data_summary, get_recent_jobs, readiness_pct
)
from unity_catalog import CatalogInventory, SchemaInventory, UnityCatalogEnumerator


def inventory(*tables):
    return [CatalogInventory("main", [SchemaInventory("main", "sales", list(tables))])]


def test_readiness_pct_handles_empty_total():
    assert readiness_pct(0, 0) == 0
    assert readiness_pct(1, 4) == 25


async def test_total_views_counts_select_and_view_queries(fake):
    fake.on("GET", "/api/2.0/sql/history/queries", {"res": [
        {"query_text": "select * from t"},
        {"query_text": "CREATE VIEW v AS ..."},
        {"query_text": "INSERT INTO t VALUES (1)"},
    ]})
    result = await calculate_total_views(fake)
    assert result == CollectorResult("total_views", 2)
    assert fake.calls[0]["params"]["max_results"] == 1000


async def test_failed_collector_degrades_to_zero(fake):
    fake.on("GET", "/api/2.0/clusters/list", (500, {"message": "boom"}))
    fake.on("GET", "/api/2.1/unity-catalog/external-locations", (403, {"message": "denied"}))
    cluster = await calculate_cluster_readiness(fake)
    locations = await calculate_storage_locations(fake)
    assert cluster.value == 0 and not cluster.ok
    assert "boom" in cluster.error
    assert locations.value == 0 and "denied" in locations.error


async def test_cluster_and_job_readiness(fake):
    fake.on("GET", "/api/2.0/clusters/list", {"clusters": [{"state": "RUNNING"}, {"state": "TERMINATED"}]})
    fake.on("GET", "/api/2.1/jobs/list", {"jobs": [
        {"settings": {"schedule": {"quartz_cron_expression": "0 0 * * * ?"}}},
        {"settings": {"trigger": {"file_arrival": {}}}},
        {"settings": {}},
        {},
    ]})
    assert (await calculate_cluster_readiness(fake)).value == 50
    assert (await calculate_job_readiness(fake)).value == 50
    assert (await calculate_total_jobs(fake)).value == 4


async def test_table_and_permission_readiness(fake):
    enumerator = UnityCatalogEnumerator(fake)
    inv = inventory({"table_type": "MANAGED"}, {"table_type": "EXTERNAL"}, {"table_type": "MANAGED"},
                    {"table_type": "VIEW"})
    perms = {"main": [{"privileges": ["USE_CATALOG", "SELECT"]}, {"privileges": ["SELECT"]}], "locked": None}
    table = await calculate_table_readiness(enumerator, [{"name": "main"}], inv)
    permission = await calculate_permission_readiness(enumerator, [{"name": "main"}], perms)
    assert table.value == 50
    assert permission.value == 50
    assert fake.calls == []


async def test_overall_readiness_on_empty_workspace(fake):
    results = await calculate_overall_readiness(fake, UnityCatalogEnumerator(fake), [], [], {})
    assert results["overall"].value == 0
    assert all(r.value == 0 for r in results.values())


async def test_overall_readiness_counts_failures_as_zero(fake):
    fake.on("GET", "/api/2.0/clusters/list", {"clusters": [{"state": "RUNNING"}]})
    fake.on("GET", "/api/2.1/jobs/list", (500, {"message": "jobs down"}))
    inv = inventory({"table_type": "MANAGED"})
    perms = {"main": [{"privileges": ["USE_CATALOG"]}]}
    results = await calculate_overall_readiness(fake, UnityCatalogEnumerator(fake), [{"name": "main"}], inv, perms)
    assert results["job_readiness"].value == 0 and not results["job_readiness"].ok
    assert results["overall"].value == 75


async def test_data_summary_and_recent_jobs(fake):
    fake.on("GET", "/api/2.0/sql/history/queries", {"res": [{"query_text": "CREATE VIEW main.sales.v AS SELECT 1"}]})
    fake.on("GET", "/api/2.1/jobs/list", {"jobs": [{"job_id": 7, "settings": {"name": "nightly"}},
                                                  {"job_id": 8, "created_time": 5}]})
    fake.on("GET", "/api/2.1/jobs/runs/list", {"runs": [
        {"job_id": 7, "start_time": 10, "state": {"result_state": "FAILED"}},
        {"job_id": 7, "start_time": 20, "state": {"result_state": "SUCCESS"}},
    ]})
    inv = inventory({"data_source_format": "DELTA"}, {"data_source_format": "CSV"})
    summary = await generate_data_summary(fake, inv, {"main": [{}, {}, {}]})
    assert summary.value == [{"catalog": "main", "tables": 2, "views": 1, "deltaTables": 1, "totalGrants": 3}]

    jobs = await get_recent_jobs(fake)
    assert jobs.value[0] == {"jobId": 7, "name": "nightly", "status": "SUCCESS", "timestamp": 20}
    assert jobs.value[1] == {"jobId": 8, "name": "Unnamed Job", "status": "UNKNOWN", "timestamp": 5}


async def test_list_collectors_fall_back_to_empty_list(fake):
    fake.on("GET", "/api/2.1/jobs/list", (500, {"message": "boom"}))
    jobs = await get_recent_jobs(fake)
    assert jobs.value == [] and not jobs.ok
