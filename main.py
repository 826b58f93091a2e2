# Unity Catalog Manager - API Server Entry Point

import uvicorn

from api_client import banner
from config import (
    APP_HOST, APP_PORT, DATABRICKS_HOST, DATABRICKS_WAREHOUSE_ID, MAX_CONCURRENCY,
    STATS_CACHE_TTL_SEC, VERBOSE_LOG
)
from server import create_app

app = create_app()


def main():
    """Start the API server."""
    banner("UNITY CATALOG MANAGER")
    print(f"[Init] Workspace: {DATABRICKS_HOST or '(not configured)'}")
    print(f"[CONFIG] Max concurrency: {MAX_CONCURRENCY} | Stats cache TTL: {STATS_CACHE_TTL_SEC}s")
    if not DATABRICKS_WAREHOUSE_ID:
        print("[WARN] DATABRICKS_WAREHOUSE_ID is not set: uploads, tags and catalog deletes will fail")
    print(f"[▶️ RUN] Listening on http://{APP_HOST}:{APP_PORT}")
    uvicorn.run(app, host=APP_HOST, port=APP_PORT, log_level="info" if VERBOSE_LOG else "warning")


if __name__ == "__main__":
    main()
