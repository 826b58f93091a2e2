# Request-Scoped Service Lookups and API Errors

from typing import Any

from fastapi import Request

from api_client import DatabricksAPIClient, DatabricksAPIError
from catalog_admin import CatalogAdmin
from scim import ScimService
from session_store import ExpiringStore
from workspace_stats import WorkspaceStatsAggregator


class ApiError(Exception):
    """Handler-level failure rendered as ``{"error": message, **details}``."""

    def __init__(self, status: int, message: str, **details: Any):
        super().__init__(message)
        self.status = status
        self.message = message
        self.details = details


def relayed(e: DatabricksAPIError, fallback: str) -> ApiError:
    """Keep the vendor status for the few routes that expose it; everything else maps to 500."""
    return ApiError(e.status if e.status and e.status >= 400 else 500, e.message or fallback)


def require(body: Any, *fields: str, message: str = None):
    """400 unless every named attribute of ``body`` is truthy."""
    missing = [f for f in fields if not getattr(body, f, None)]
    if missing:
        raise ApiError(400, message or f"Missing required parameters: {', '.join(missing)}")


def get_client(request: Request) -> DatabricksAPIClient:
    return request.app.state.client

def get_scim(request: Request) -> ScimService:
    return request.app.state.scim

def get_admin(request: Request) -> CatalogAdmin:
    return request.app.state.admin

def get_aggregator(request: Request) -> WorkspaceStatsAggregator:
    return request.app.state.aggregator

def get_sessions(request: Request) -> ExpiringStore:
    return request.app.state.sessions

def get_oauth_states(request: Request) -> ExpiringStore:
    return request.app.state.oauth_states

def get_otps(request: Request) -> ExpiringStore:
    return request.app.state.otps
