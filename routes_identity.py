# User and Group Routes (SCIM)

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api_client import DatabricksAPIError, log
import config
from dependencies import ApiError, get_scim, relayed, require
from scim import PATCH_OP_SCHEMA, ScimService

router = APIRouter(prefix="/api", tags=["identity"])


class NewUser(BaseModel):
    email: Optional[str] = None
    displayName: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    entitlements: List[str] = []
    groups: List[str] = []
    groupId: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class GroupRef(BaseModel):
    groupId: Optional[str] = None


class NewGroup(BaseModel):
    name: Optional[str] = None


class GroupMember(BaseModel):
    userId: Optional[str] = None
    groupName: Optional[str] = None


class MemberIds(BaseModel):
    userIds: Optional[List[Optional[str]]] = None


class EntitlementUpdate(BaseModel):
    displayName: Optional[str] = None
    entitlements: Optional[Dict[str, bool]] = None


# ====================================================================================
# USERS
# ====================================================================================
@router.get("/users")
async def list_users(scim: ScimService = Depends(get_scim)):
    return await scim.list_users()


@router.post("/users", status_code=201)
async def create_user(body: NewUser, scim: ScimService = Depends(get_scim)):
    require(body, "email", "displayName", message="Email and display name are required")
    existing = await scim.get_user_by_email(body.email)
    if existing:
        raise ApiError(409, "User already exists", user=existing)
    try:
        user = await scim.create_user(body.email, body.displayName, body.firstName, body.lastName,
                                      body.entitlements, body.groups)
        if body.groupId:
            await scim.assign_user_to_group(user["id"], body.groupId)
    except DatabricksAPIError as e:
        raise relayed(e, "Failed to create user")
    return user


@router.get("/users/{email}")
async def get_user_by_email(email: str, scim: ScimService = Depends(get_scim)):
    user = await scim.get_user_by_email(email)
    if not user:
        raise ApiError(404, "User not found")
    return user


@router.put("/users/{user_id}")
async def update_user(user_id: str, body: UserUpdate, scim: ScimService = Depends(get_scim)):
    require(body, "name", "email")
    return await scim.update_user(user_id, body.name, body.email)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(user_id: str, scim: ScimService = Depends(get_scim)):
    if not user_id or user_id == "undefined":
        raise ApiError(400, "Valid user ID is required for deletion")
    try:
        await scim.delete_user(user_id)
    except DatabricksAPIError as e:
        log(f"[SCIM] Deleting user {user_id} failed: {e}")
        raise relayed(e, "Failed to delete user")
    return Response(status_code=204)


@router.get("/users/{user_id}/details")
async def user_details(user_id: str, scim: ScimService = Depends(get_scim)):
    return await scim.user_details(user_id)


@router.get("/users/{user_id}/groups")
async def user_groups(user_id: str, scim: ScimService = Depends(get_scim)):
    return await scim.get_user_groups(user_id)


@router.post("/users/{user_id}/groups")
async def add_user_group(user_id: str, body: GroupRef, scim: ScimService = Depends(get_scim)):
    require(body, "groupId", message="Group ID is required")
    log(f"[SCIM] Assigning user {user_id} to group {body.groupId}")
    await scim.assign_user_to_group(user_id, body.groupId)
    return await scim.get_user_groups(user_id)


@router.post("/users/{user_id}/assign-group")
async def assign_group(user_id: str, body: GroupRef, scim: ScimService = Depends(get_scim)):
    require(body, "groupId", message="Group ID is required")
    try:
        await scim.assign_user_to_group(user_id, body.groupId)
    except DatabricksAPIError as e:
        raise relayed(e, "Failed to assign user to group")
    return {"success": True}

# ====================================================================================
# GROUPS
# ====================================================================================
@router.get("/groups")
async def list_groups(scim: ScimService = Depends(get_scim)):
    return await scim.list_groups()


@router.post("/groups", status_code=201)
async def create_group(body: NewGroup, scim: ScimService = Depends(get_scim)):
    require(body, "name", message="Group name is required")
    return await scim.create_group(body.name)


@router.post("/groups/add-member")
async def add_member_by_name(body: GroupMember, scim: ScimService = Depends(get_scim)):
    require(body, "userId", "groupName", message="userId and groupName are required")
    return await scim.add_member_by_name(body.userId, body.groupName)


@router.get("/groups/{group_id}")
async def get_group(group_id: str, scim: ScimService = Depends(get_scim)):
    return await scim.get_group(group_id)


@router.put("/groups/{group_id}")
async def replace_group(group_id: str, body: Dict[str, Any] = Body(...), scim: ScimService = Depends(get_scim)):
    return await scim.replace_group(group_id, body)


@router.patch("/groups/{group_id}")
async def patch_group(group_id: str, body: Dict[str, Any] = Body(...), scim: ScimService = Depends(get_scim)):
    """Forward a SCIM PatchOp; the vendor call is bounded by GROUP_PATCH_TIMEOUT_SEC."""
    if PATCH_OP_SCHEMA not in (body.get("schemas") or []):
        raise ApiError(400, "Invalid SCIM schemas", details=f'Must include "{PATCH_OP_SCHEMA}"')
    if not isinstance(body.get("Operations"), list):
        raise ApiError(400, "Invalid Operations", details="Operations array is required")

    try:
        return await asyncio.wait_for(scim.patch_group(group_id, body), timeout=config.GROUP_PATCH_TIMEOUT_SEC)
    except asyncio.TimeoutError:
        log(f"[TIMEOUT] PATCH group {group_id}")
        raise ApiError(504, "Request to Databricks timed out")
    except DatabricksAPIError as e:
        if e.error_code == "TIMEOUT":
            raise ApiError(504, "Request to Databricks timed out")
        if e.status is None:
            raise ApiError(500, "Network error connecting to Databricks")
        content = e.payload if isinstance(e.payload, dict) and e.payload else {"error": e.message}
        return JSONResponse(status_code=e.status, content=content)


@router.delete("/groups/{group_id}", status_code=204)
async def delete_group(group_id: str, scim: ScimService = Depends(get_scim)):
    await scim.delete_group(group_id)
    return Response(status_code=204)


@router.get("/groups/{group_id}/entitlements")
async def get_entitlements(group_id: str, scim: ScimService = Depends(get_scim)):
    return await scim.get_entitlements(group_id)


@router.patch("/groups/{group_id}/entitlements")
async def update_entitlements(group_id: str, body: EntitlementUpdate, scim: ScimService = Depends(get_scim)):
    try:
        return await scim.update_entitlements(group_id, body.displayName, body.entitlements)
    except DatabricksAPIError as e:
        raise ApiError(500, "Failed to update entitlements", details=e.message)


@router.get("/groups/{group_id}/members")
async def group_members(group_id: str, scim: ScimService = Depends(get_scim)):
    return await scim.get_group_members(group_id)


@router.post("/groups/{group_id}/add-members")
async def add_members(group_id: str, body: MemberIds, scim: ScimService = Depends(get_scim)):
    if body.userIds is None:
        raise ApiError(400, "User IDs array is required")
    results = await scim.add_members(group_id, [u for u in body.userIds if u])
    return {"success": True, "results": results}


@router.post("/groups/{group_id}/remove-members")
async def remove_members(group_id: str, body: MemberIds, scim: ScimService = Depends(get_scim)):
    if body.userIds is None:
        raise ApiError(400, "User IDs array is required")
    valid = [u for u in body.userIds if u]
    if not valid:
        return {"success": True, "message": "No valid users to remove"}
    results = await scim.remove_members(group_id, valid)
    return {"success": True, "results": results}
