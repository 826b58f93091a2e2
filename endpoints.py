# Databricks API Endpoint Definitions

from typing import Dict, Any
from config import (
    PAGE_SIZE_DEFAULT, JOBS_PAGE_SIZE,
    ENABLE_PAGINATION_BY_DEFAULT, ENDPOINT_PAGINATION_OVERRIDES
)

def should_paginate(endpoint_key: str, endpoint_config: Dict[str, Any]) -> bool:
    """
    Determine if an endpoint should use pagination based on:
    1. Explicit override in ENDPOINT_PAGINATION_OVERRIDES (if not None)
    2. Endpoint's built-in paginate setting
    3. Global default
    """
    override = ENDPOINT_PAGINATION_OVERRIDES.get(endpoint_key)
    if override is not None:
        return override

    if "paginate" in endpoint_config:
        return endpoint_config["paginate"]

    has_pagination_params = any(key in endpoint_config for key in ["token_key", "limit_param"])
    return ENABLE_PAGINATION_BY_DEFAULT and has_pagination_params

# ====================================================================================
# PATH TEMPLATES
# ====================================================================================
UC = "/api/2.1/unity-catalog"
SCIM = "/api/2.0/preview/scim/v2"

CATALOGS = f"{UC}/catalogs"
CATALOG = f"{UC}/catalogs/{{name}}"
SCHEMAS = f"{UC}/schemas"
SCHEMA = f"{UC}/schemas/{{full_name}}"
TABLES = f"{UC}/tables"
TABLE = f"{UC}/tables/{{full_name}}"
PERMISSIONS = f"{UC}/permissions/{{securable_type}}/{{full_name}}"
EXTERNAL_LOCATIONS = f"{UC}/external-locations"
STORAGE_CREDENTIALS = f"{UC}/storage-credentials"

SCIM_USERS = f"{SCIM}/Users"
SCIM_USER = f"{SCIM}/Users/{{id}}"
SCIM_GROUPS = f"{SCIM}/Groups"
SCIM_GROUP = f"{SCIM}/Groups/{{id}}"
SCIM_ME = f"{SCIM}/Me"
LEGACY_GROUP_ADD_MEMBER = "/api/2.0/groups/add-member"
ACCOUNT_USERS = "/api/2.0/accounts/{account_id}/scim/v2/Users"

CLUSTERS_LIST = "/api/2.0/clusters/list"
CLUSTER_EVENTS = "/api/2.0/clusters/events"
JOBS_LIST = "/api/2.1/jobs/list"
JOB_RUNS_LIST = "/api/2.1/jobs/runs/list"
SQL_HISTORY = "/api/2.0/sql/history/queries"
SQL_STATEMENTS = "/api/2.0/sql/statements"

DBFS_PUT = "/api/2.0/dbfs/put"
DBFS_DELETE = "/api/2.0/dbfs/delete"

OAUTH_AUTHORIZE = "/oidc/v1/authorize"
OAUTH_TOKEN = "/oidc/v1/token"

# ====================================================================================
# LIST ENDPOINT DEFINITIONS
# ====================================================================================
API_ENDPOINTS: Dict[str, Dict[str, Any]] = {
    "clusters": {
        "url": CLUSTERS_LIST,
        "list_key": "clusters",
        "paginate": False
    },
    "jobs": {
        "url": JOBS_LIST,
        "list_key": "jobs",
        "paginate": True,
        "token_key": "next_page_token",
        "page_param": "page_token",
        "limit_param": "limit",
        "limit": JOBS_PAGE_SIZE
    },
    "external_locations": {
        "url": EXTERNAL_LOCATIONS,
        "list_key": "external_locations",
        "paginate": True,
        "token_key": "next_page_token",
        "page_param": "page_token",
        "limit_param": "max_results",
        "limit": PAGE_SIZE_DEFAULT
    },
    "storage_credentials": {
        "url": STORAGE_CREDENTIALS,
        "list_key": "storage_credentials",
        "paginate": True,
        "token_key": "next_page_token",
        "page_param": "page_token",
        "limit_param": "max_results",
        "limit": PAGE_SIZE_DEFAULT
    },
    "catalogs": {
        "url": CATALOGS,
        "list_key": "catalogs",
        "paginate": False
    },
    "schemas": {
        "url": SCHEMAS,
        "list_key": "schemas",
        "paginate": False
    },
    "tables": {
        "url": TABLES,
        "list_key": "tables",
        "paginate": False
    },
}

def get_endpoint_config(endpoint_key: str) -> Dict[str, Any]:
    """Get configuration for a specific endpoint with pagination resolved."""
    if endpoint_key not in API_ENDPOINTS:
        raise KeyError(f"Unknown endpoint: {endpoint_key}")
    cfg = API_ENDPOINTS[endpoint_key].copy()
    cfg["paginate"] = should_paginate(endpoint_key, cfg)
    return cfg
