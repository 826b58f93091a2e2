import asyncio

import aiohttp
import pytest

import api_client
from api_client import (
    DatabricksAPIError, DatabricksConnectionError, DatabricksTimeoutError, normalize_host
)
from conftest import FakeDatabricksClient


def test_normalize_host():
    assert normalize_host("adb-1.azuredatabricks.net/") == "https://adb-1.azuredatabricks.net"
    assert normalize_host("http://localhost:8080") == "http://localhost:8080"
    assert normalize_host("") == ""


def test_error_from_vendor_payload():
    err = DatabricksAPIError.from_response(409, {"error_code": "RESOURCE_ALREADY_EXISTS", "message": "exists"})
    assert err.status == 409
    assert err.error_code == "RESOURCE_ALREADY_EXISTS"
    assert str(err) == "RESOURCE_ALREADY_EXISTS - exists"

    scim = DatabricksAPIError.from_response(404, {"detail": "User not found", "scimType": None})
    assert scim.message == "User not found"

    bare = DatabricksAPIError.from_response(502, {})
    assert bare.message == "Databricks returned HTTP 502"


async def test_vendor_error_raises(fake):
    fake.on("GET", "/api/2.1/unity-catalog/catalogs/missing",
            (404, {"error_code": "CATALOG_DOES_NOT_EXIST", "message": "Catalog 'missing' does not exist."}))
    with pytest.raises(DatabricksAPIError) as info:
        await fake.get("/api/2.1/unity-catalog/catalogs/missing")
    assert info.value.status == 404
    assert info.value.error_code == "CATALOG_DOES_NOT_EXIST"


async def test_rate_limit_is_retried(fake, monkeypatch):
    monkeypatch.setattr(api_client, "RETRY_DELAY_BASE", 0)
    answers = [(429, {"message": "slow down"}), (200, {"catalogs": [{"name": "main"}]})]
    fake.on("GET", "/api/2.1/unity-catalog/catalogs", lambda call: answers.pop(0))
    assert await fake.fetch_list("catalogs") == [{"name": "main"}]
    assert len(fake.called("GET", "/api/2.1/unity-catalog/catalogs")) == 2


async def test_other_errors_are_not_retried(fake):
    fake.on("GET", "/api/2.0/clusters/list", (500, {"message": "boom"}))
    with pytest.raises(DatabricksAPIError):
        await fake.fetch_list("clusters")
    assert len(fake.called("GET", "/api/2.0/clusters/list")) == 1


async def test_transport_failures_are_typed(fake):
    fake.on("GET", "/slow", asyncio.TimeoutError())
    fake.on("GET", "/down", aiohttp.ClientConnectionError("refused"))
    with pytest.raises(DatabricksTimeoutError) as slow:
        await fake.get("/slow")
    assert slow.value.status is None
    assert slow.value.error_code == "TIMEOUT"
    with pytest.raises(DatabricksConnectionError) as down:
        await fake.get("/down")
    assert down.value.error_code == "NETWORK_ERROR"


async def test_missing_host_is_reported():
    client = FakeDatabricksClient(host="")
    with pytest.raises(DatabricksAPIError) as info:
        await client.get("/api/2.1/unity-catalog/catalogs")
    assert info.value.error_code == "NOT_CONFIGURED"
    assert client.calls == []


async def test_query_params_are_cleaned(fake):
    await fake.get("/api/2.1/jobs/runs/list", params={"expand_tasks": True, "completed_only": False, "x": None})
    assert fake.calls[0]["params"] == {"expand_tasks": "true", "completed_only": "false"}


async def test_token_and_host_override(fake):
    await fake.get("/api/2.0/preview/scim/v2/Me", base_url="other.cloud.databricks.com", token="pat-1")
    await fake.post("/oidc/v1/token", base_url="https://other.cloud.databricks.com", token="")
    me, tok = fake.calls
    assert me["host"] == "https://other.cloud.databricks.com"
    assert me["headers"]["Authorization"] == "Bearer pat-1"
    assert "Authorization" not in tok["headers"]


async def test_paginated_list_follows_page_token(fake):
    pages = {
        None: {"jobs": [{"job_id": 1}, {"job_id": 2}], "has_more": True, "next_page_token": "p2"},
        "p2": {"jobs": [{"job_id": 3}], "has_more": False},
    }
    fake.on("GET", "/api/2.1/jobs/list", lambda call: pages[call["params"].get("page_token")])
    jobs = await fake.fetch_list("jobs")
    assert [j["job_id"] for j in jobs] == [1, 2, 3]
    assert fake.calls[0]["params"]["limit"] == 100
