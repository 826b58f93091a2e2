import pytest

from api_client import DatabricksAPIError
from unity_catalog import (
    UnityCatalogEnumerator, format_date, is_user_principal, privilege_histogram, zero_catalog_stats
)

UC = "/api/2.1/unity-catalog"


def tables_for(mapping):
    def respond(call):
        key = (call["params"].get("catalog_name"), call["params"].get("schema_name"))
        result = mapping.get(key)
        if isinstance(result, tuple):
            return result
        return {"tables": result or []}
    return respond


def test_privilege_histogram_buckets():
    hist = privilege_histogram([
        {"principal": "a@x.com", "privileges": ["USE_CATALOG", "select"]},
        {"principal": "analysts", "privileges": ["APPLY_TAG"]},
        {"principal": "b@x.com"},
    ])
    assert hist["totalGrants"] == 3
    assert hist["byPrivilege"]["USE_CATALOG"] == 1
    assert hist["byPrivilege"]["SELECT"] == 1
    assert hist["byPrivilege"]["OTHER"] == 1
    assert hist["byPrivilege"]["MODIFY"] == 0


def test_principal_and_date_helpers():
    assert is_user_principal("jane@example.com")
    assert is_user_principal("service-user-1")
    assert not is_user_principal("analysts")
    assert format_date(None) == "Unknown"
    assert format_date(1704067200000 + 12 * 3600 * 1000) == "Jan 1, 2024"
    assert zero_catalog_stats("main")["tableTypes"] == {"MANAGED": 0, "EXTERNAL": 0, "VIEW": 0, "OTHER": 0}


async def test_enumerate_isolates_failing_branches(fake):
    fake.on("GET", f"{UC}/schemas", lambda call: (
        (500, {"message": "boom"}) if call["params"]["catalog_name"] == "broken"
        else {"schemas": [{"name": "sales"}, {"name": "hr"}]}))
    fake.on("GET", f"{UC}/tables", tables_for({
        ("main", "sales"): [{"name": "orders"}, {"name": "items"}],
        ("main", "hr"): (403, {"message": "denied"}),
    }))
    inventory = await UnityCatalogEnumerator(fake).enumerate([{"name": "main"}, {"name": "broken"}])
    main, broken = inventory
    assert main.ok and main.table_count == 2
    assert [s.full_name for s in main.schemas] == ["main.sales", "main.hr"]
    assert not broken.ok and broken.schemas == []


async def test_permissions_by_catalog_marks_failures(fake):
    fake.on("GET", f"{UC}/permissions/catalog/main",
            {"privilege_assignments": [{"principal": "a@x.com", "privileges": ["USE_CATALOG"]}]})
    fake.on("GET", f"{UC}/permissions/catalog/locked", (403, {"message": "denied"}))
    perms = await UnityCatalogEnumerator(fake).permissions_by_catalog([{"name": "main"}, {"name": "locked"}])
    assert len(perms["main"]) == 1
    assert perms["locked"] is None


async def test_catalog_stats_breakdown(fake):
    now = 1_700_000_000.0
    recent = int(now * 1000) - 24 * 3600 * 1000
    old = int(now * 1000) - 90 * 24 * 3600 * 1000
    fake.on("GET", f"{UC}/catalogs/main", {"owner": "admin@x.com", "created_at": old, "updated_at": recent})
    fake.on("GET", f"{UC}/schemas", {"schemas": [{"name": "sales"}, {"name": "hr"}]})
    fake.on("GET", f"{UC}/tables", tables_for({
        ("main", "sales"): [
            {"name": "orders", "table_type": "MANAGED", "created_at": recent},
            {"name": "v_orders", "table_type": "VIEW", "created_at": old, "updated_at": old},
        ],
        ("main", "hr"): [{"name": "people", "table_type": "STREAMING_TABLE", "created_at": old}],
    }))
    stats = await UnityCatalogEnumerator(fake).catalog_stats("main", now=now)
    assert stats["schemaCount"] == 2
    assert stats["tableCount"] == 3
    assert stats["createdBy"] == "admin@x.com"
    assert stats["tableTypes"] == {"MANAGED": 1, "EXTERNAL": 0, "VIEW": 1, "OTHER": 1}
    assert stats["schemaActivity"][0] == {"name": "sales", "tableCount": 2, "recentActivity": 1}


async def test_catalog_stats_propagates_missing_catalog(fake):
    fake.on("GET", f"{UC}/catalogs/nope", (404, {"message": "not found"}))
    with pytest.raises(DatabricksAPIError):
        await UnityCatalogEnumerator(fake).catalog_stats("nope")


async def test_user_privilege_stats_counts_distinct_users(fake):
    fake.on("GET", f"{UC}/permissions/catalog/main", {"privilege_assignments": [
        {"principal": "Jane@x.com", "privileges": ["SELECT"]},
        {"principal": "jane@x.com", "privileges": ["MODIFY"]},
        {"principal": "analysts", "privileges": ["SELECT"]},
    ]})
    stats = await UnityCatalogEnumerator(fake).user_privilege_stats("main")
    assert stats["totalUsers"] == 1
    assert stats["byPrivilege"]["SELECT"] == 1
    assert stats["byPrivilege"]["MODIFY"] == 1
