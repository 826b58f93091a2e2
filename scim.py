# SCIM Users & Groups Service

import asyncio
from typing import Any, Dict, List, Optional

from api_client import DatabricksAPIClient, DatabricksAPIError, log
from config import DATABRICKS_ACCOUNT_ID, DATABRICKS_ACCOUNT_TOKEN, DATABRICKS_ACCOUNTS_HOST
import endpoints

PATCH_OP_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_HEADERS = {"Content-Type": "application/scim+json"}

ADMIN_ROLES = {
    "admins": ("Admins", "Can manage workspaces, users & groups, cloud resources and settings. "
                         "This only indicates direct assignment of the role."),
    "marketplace admin": ("Marketplace Admin", "Can manage exchanges and listings on the Marketplace. "
                                               "This change might take a few minutes to update."),
    "billing admin": ("Billing Admin", "Can view Budgets and create budget policies. "
                                       "This change might take a few minutes to update."),
}

# frontend flag -> workspace entitlement value
ENTITLEMENTS = {
    "clusterCreation": "allow-cluster-create",
    "sqlAccess": "databricks-sql-access",
    "workspaceAccess": "workspace-access",
}


def patch_op(*operations: Dict[str, Any]) -> Dict[str, Any]:
    return {"schemas": [PATCH_OP_SCHEMA], "Operations": list(operations)}

def _group_label(group: Dict[str, Any]) -> str:
    return group.get("name") or group.get("display") or group.get("displayName") or group.get("value") or ""

def display_name(user: Dict[str, Any]) -> str:
    name = user.get("name") or {}
    full = f"{name.get('givenName') or ''} {name.get('familyName') or ''}".strip()
    return full or user.get("displayName") or ""


class ScimService:
    """Workspace SCIM operations (users, groups, membership, entitlements)."""

    def __init__(self, client: DatabricksAPIClient):
        self.client = client

    async def _scim(self, method: str, path: str, **kwargs) -> Any:
        headers = dict(SCIM_HEADERS)
        headers.update(kwargs.pop("headers", None) or {})
        return await self.client.request(method, path, headers=headers, **kwargs)

    # ====================================================================================
    # USERS
    # ====================================================================================
    async def list_users(self) -> List[Dict[str, Any]]:
        users_data, groups_data = await asyncio.gather(
            self._scim("GET", endpoints.SCIM_USERS,
                       params={"attributes": "id,userName,displayName,name.givenName,name.familyName,emails,groups"}),
            self._scim("GET", endpoints.SCIM_GROUPS, params={"attributes": "id,displayName"}),
        )
        group_names = {g.get("id"): g.get("displayName") for g in (groups_data or {}).get("Resources") or []}
        users = []
        for user in (users_data or {}).get("Resources") or []:
            emails = user.get("emails") or [{}]
            users.append({
                "id": user.get("id"),
                "name": display_name(user),
                "email": emails[0].get("value") or user.get("userName") or "",
                "groups": [{"id": g.get("value"), "name": group_names.get(g.get("value")) or g.get("display") or g.get("value")}
                           for g in user.get("groups") or []],
            })
        log(f"[SCIM] Processed {len(users)} users with their groups")
        return users

    async def get_user_by_email(self, email: str, account_level: bool = False) -> Optional[Dict[str, Any]]:
        params = {"filter": f'userName eq "{email}"'}
        if account_level:
            if not DATABRICKS_ACCOUNT_ID:
                raise DatabricksAPIError(500, "DATABRICKS_ACCOUNT_ID is not configured", "NOT_CONFIGURED")
            path = endpoints.ACCOUNT_USERS.format(account_id=DATABRICKS_ACCOUNT_ID)
            data = await self._scim("GET", path, params=params, base_url=DATABRICKS_ACCOUNTS_HOST,
                                    token=DATABRICKS_ACCOUNT_TOKEN)
        else:
            data = await self._scim("GET", endpoints.SCIM_USERS, params=params)
        resources = (data or {}).get("Resources") or []
        if not resources:
            return None
        user = resources[0]
        return {
            "id": user.get("id"),
            "email": user.get("userName"),
            "displayName": user.get("displayName") or "",
            "groups": [{"id": g.get("value"), "name": g.get("display") or g.get("value")} for g in user.get("groups") or []],
            "entitlements": [e.get("value") for e in user.get("entitlements") or []],
        }

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        return await self._scim("GET", endpoints.SCIM_USER.format(id=user_id))

    async def user_details(self, user_id: str) -> Dict[str, Any]:
        """User plus group memberships, with the admin roles split out of the group list."""
        user = await self.get_user(user_id)
        groups, roles = [], []
        for group in user.get("groups") or []:
            label = _group_label(group)
            role = ADMIN_ROLES.get(label.lower())
            if role:
                roles.append({"name": role[0], "description": role[1]})
            else:
                groups.append({"id": group.get("value") or group.get("id"), "name": label})
        return {
            "id": user.get("id"),
            "userName": user.get("userName"),
            "displayName": user.get("displayName"),
            "groups": groups,
            "roles": roles,
        }

    async def create_user(self, email: str, display: str = None, first_name: str = None, last_name: str = None,
                          entitlements: List[str] = None, groups: List[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "schemas": [USER_SCHEMA],
            "userName": email,
            "displayName": display or email,
            "active": True,
            "entitlements": [{"value": e} for e in entitlements or []],
            "emails": [{"value": email, "type": "work", "primary": True}],
        }
        if first_name or last_name:
            payload["name"] = {"givenName": first_name or "", "familyName": last_name or ""}

        created = await self._scim("POST", endpoints.SCIM_USERS, json_body=payload)
        user_id = created.get("id")
        if groups and user_id:
            await asyncio.gather(*(self.assign_user_to_group(user_id, g) for g in groups))
        log(f"[SCIM] Created user {email} ({user_id})")
        return {
            "id": user_id,
            "email": created.get("userName"),
            "displayName": created.get("displayName"),
            "active": created.get("active"),
            "groups": groups or [],
            "entitlements": entitlements or [],
        }

    async def update_user(self, user_id: str, name: str, email: str) -> Dict[str, Any]:
        given, _, family = (name or "").partition(" ")
        await self._scim("PUT", endpoints.SCIM_USER.format(id=user_id), json_body={
            "schemas": [USER_SCHEMA],
            "userName": email,
            "name": {"givenName": given, "familyName": family},
            "emails": [{"value": email, "type": "work", "primary": True}],
        })
        return {"id": user_id, "name": name, "email": email}

    async def delete_user(self, user_id: str):
        await self._scim("DELETE", endpoints.SCIM_USER.format(id=user_id))
        log(f"[SCIM] Deleted user {user_id}")

    async def get_user_groups(self, user_id: str) -> List[Dict[str, Any]]:
        data = await self._scim("GET", endpoints.SCIM_USER.format(id=user_id), params={"attributes": "groups"})
        return (data or {}).get("groups") or []

    async def assign_user_to_group(self, user_id: str, group_id: str) -> Any:
        return await self._scim("PATCH", endpoints.SCIM_USER.format(id=user_id),
                                json_body=patch_op({"op": "add", "path": "groups", "value": [{"value": group_id}]}))

    # ====================================================================================
    # GROUPS
    # ====================================================================================
    async def list_groups(self) -> List[Dict[str, Any]]:
        data = await self._scim("GET", endpoints.SCIM_GROUPS, params={"attributes": "id,displayName,members"})
        return [{
            "id": g.get("id"),
            "name": g.get("displayName"),
            "users": len(g.get("members") or []),
            "members": g.get("members") or [],
        } for g in (data or {}).get("Resources") or []]

    async def get_group(self, group_id: str) -> Dict[str, Any]:
        return await self._scim("GET", endpoints.SCIM_GROUP.format(id=group_id))

    async def find_group_id(self, name: str) -> Optional[str]:
        data = await self._scim("GET", endpoints.SCIM_GROUPS, params={"filter": f'displayName eq "{name}"'})
        resources = (data or {}).get("Resources") or []
        return resources[0].get("id") if resources else None

    async def create_group(self, name: str) -> Dict[str, Any]:
        """Create a group; an existing group with the same name is returned with isNew=False."""
        try:
            created = await self._scim("POST", endpoints.SCIM_GROUPS, json_body={"displayName": name})
        except DatabricksAPIError as e:
            if e.status != 409:
                raise
            group_id = await self.find_group_id(name)
            if not group_id:
                raise DatabricksAPIError(409, "Conflict but could not fetch group ID", e.error_code, e.payload)
            log(f"[SCIM] Group '{name}' already exists ({group_id})")
            return {"id": group_id, "name": name, "source": "workspace", "isNew": False}
        log(f"[SCIM] Group created with ID: {created.get('id')}")
        return {"id": created.get("id"), "name": created.get("displayName"), "source": "workspace", "isNew": True}

    async def replace_group(self, group_id: str, body: Dict[str, Any]) -> Any:
        body = dict(body)
        body["schemas"] = [PATCH_OP_SCHEMA]
        return await self._scim("PATCH", endpoints.SCIM_GROUP.format(id=group_id), json_body=body)

    async def patch_group(self, group_id: str, body: Dict[str, Any]) -> Any:
        return await self._scim("PATCH", endpoints.SCIM_GROUP.format(id=group_id), json_body=body)

    async def delete_group(self, group_id: str):
        await self._scim("DELETE", endpoints.SCIM_GROUP.format(id=group_id))
        log(f"[SCIM] Deleted group {group_id}")

    async def get_group_members(self, group_id: str) -> List[Dict[str, Any]]:
        data = await self._scim("GET", endpoints.SCIM_GROUP.format(id=group_id), params={"attributes": "members"})
        return (data or {}).get("members") or []

    async def add_members(self, group_id: str, user_ids: List[str]) -> List[Any]:
        return list(await asyncio.gather(*(self.assign_user_to_group(u, group_id) for u in user_ids)))

    async def remove_members(self, group_id: str, user_ids: List[str]) -> Any:
        ops = [{"op": "remove", "path": f'members[value eq "{u}"]'} for u in user_ids]
        return await self.patch_group(group_id, patch_op(*ops))

    async def get_entitlements(self, group_id: str) -> Dict[str, bool]:
        group = await self.get_group(group_id)
        values = {e.get("value") for e in group.get("entitlements") or []}
        return {flag: value in values for flag, value in ENTITLEMENTS.items()}

    async def update_entitlements(self, group_id: str, display: str = None,
                                  entitlements: Dict[str, bool] = None) -> Any:
        ops = []
        if display:
            ops.append({"op": "replace", "path": "displayName", "value": display})
        if entitlements is not None:
            ops.append({"op": "replace", "path": "entitlements",
                        "value": [{"value": v} for flag, v in ENTITLEMENTS.items() if entitlements.get(flag)]})
        return await self.patch_group(group_id, patch_op(*ops))

    async def add_member_by_name(self, user_name: str, group_name: str) -> Any:
        """Legacy groups API: add a user (by name) to a group (by name)."""
        return await self.client.post(endpoints.LEGACY_GROUP_ADD_MEMBER,
                                      {"user_name": user_name, "parent_name": group_name})
