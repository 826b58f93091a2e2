# Unity Catalog Admin Console Configuration

import os
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()

# ====================================================================================
# TARGET CONFIGURATION
# ====================================================================================
# ---- Workspace / account credentials ----
DATABRICKS_HOST = os.getenv("DATABRICKS_HOST", "")
DATABRICKS_TOKEN = os.getenv("DATABRICKS_TOKEN", "")
DATABRICKS_ACCOUNT_ID = os.getenv("DATABRICKS_ACCOUNT_ID", "")
DATABRICKS_ACCOUNT_TOKEN = os.getenv("DATABRICKS_ACCOUNT_TOKEN", "")
DATABRICKS_ACCOUNTS_HOST = os.getenv("DATABRICKS_ACCOUNTS_HOST", "accounts.cloud.databricks.com")
DATABRICKS_WAREHOUSE_ID = os.getenv("DATABRICKS_WAREHOUSE_ID", "")
DEFAULT_STORAGE_ROOT = os.getenv("DEFAULT_STORAGE_ROOT", "")   # used when a catalog is created without one

# ---- OAuth (U2M) ----
DATABRICKS_CLIENT_ID = os.getenv("DATABRICKS_CLIENT_ID", "")
DATABRICKS_CLIENT_SECRET = os.getenv("DATABRICKS_CLIENT_SECRET", "")
OAUTH_REDIRECT_URI = os.getenv("OAUTH_REDIRECT_URI", "http://localhost:5000/api/oauth/callback")
OAUTH_SCOPES = "all-apis offline_access"
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# ---- Outbound mail (OTP) ----
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_SENDER = os.getenv("SMTP_SENDER", "")

# ---- HTTP server ----
APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "5000"))
CORS_ORIGINS: List[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

# ====================================================================================
# HTTP & CONCURRENCY CONFIGURATION
# ====================================================================================
# ---- Async / concurrency ----
MAX_CONCURRENCY = 20               # aiohttp concurrent in-flight requests
HTTP_TIMEOUT_SEC = 30              # hard timeout per vendor call
PAT_VALIDATION_TIMEOUT_SEC = 10
GROUP_PATCH_TIMEOUT_SEC = 20       # group PATCH is the only call with its own deadline
SQL_STATEMENT_WAIT = "50s"         # wait_timeout for /api/2.0/sql/statements
RETRY_DELAY_BASE = 2
RETRY_ATTEMPTS = 3                 # only HTTP 429 is retried

# ---- Pagination defaults ----
PAGE_SIZE_DEFAULT = 100
JOBS_PAGE_SIZE = 100               # API max for /api/2.1/jobs/list
JOB_RUNS_PAGE_SIZE = 25            # API max for /api/2.1/jobs/runs/list
SQL_HISTORY_MAX_RESULTS = 1000
ACTIVITY_PAGE_SIZE = 50            # per-source cap on dashboard activity rows

# ====================================================================================
# CACHE & SESSION CONFIGURATION
# ====================================================================================
STATS_CACHE_TTL_SEC = 5 * 60
OAUTH_STATE_TTL_SEC = 10 * 60
SESSION_TTL_SEC = 24 * 60 * 60
OTP_TTL_SEC = 5 * 60
OTP_LENGTH = 6
SESSION_SWEEP_SEC = 60             # background purge of expired sessions / OTPs

# ====================================================================================
# DASHBOARD CONFIGURATION
# ====================================================================================
TIME_FILTER_DAYS: Dict[str, int] = {"day": 1, "week": 7, "month": 30}
DEFAULT_TIME_FILTER = "week"
CLUSTER_EVENT_SAMPLE = 5           # clusters whose event log feeds recent activity
TOP_SCHEMAS = 5
RECENT_QUERY_COUNT = 5
SCHEMA_ACTIVITY_TOP = 10
SCHEMA_ACTIVITY_DAYS = 30
TABLE_STORAGE_UNIT = 10            # flat size per table when none is reported
SENSITIVE_KEYWORDS: List[str] = ["pii", "sensitive"]
TRACKED_PRIVILEGES: List[str] = ["USE_CATALOG", "CREATE_SCHEMA", "SELECT", "MODIFY", "ALL_PRIVILEGES"]

# ---- Cost model (per-unit list prices) ----
STORAGE_COST_PER_UNIT = 0.000023
DBU_PER_QUERY = 0.5
COST_PER_DBU = 0.22
INBOUND_FACTOR = 1.2
OUTBOUND_FACTOR = 0.8
TRANSFER_COST_PER_UNIT = 0.0001

# ---- Insight thresholds ----
HIGH_STORAGE_SHARE = 0.3
QUERY_SPIKE_PER_DAY = 100
LOW_ENGAGEMENT_SHARE = 0.3
EXCESSIVE_PRIVILEGE_SHARE = 0.5
SLOW_QUERY_SEC = 60

# ====================================================================================
# LOGGING & DEBUG CONFIGURATION
# ====================================================================================
VERBOSE_LOG = os.getenv("VERBOSE_LOG", "true").lower() != "false"
DEBUG_HTTP = os.getenv("DEBUG_HTTP", "false").lower() == "true"

# ====================================================================================
# ENDPOINT-SPECIFIC CONFIGURATION
# ====================================================================================
# Global pagination controls (can be overridden per endpoint)
ENABLE_PAGINATION_BY_DEFAULT = True

# Per-endpoint pagination overrides
# None = use endpoint's default setting
ENDPOINT_PAGINATION_OVERRIDES = {
    "clusters": None,               # No pagination available
    "jobs": True,                   # can be many jobs
    "external_locations": True,
    "storage_credentials": True,
    "catalogs": None,
    "schemas": None,
    "tables": None,
}
