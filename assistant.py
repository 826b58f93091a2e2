# Chat Assistant Command Interpreter

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from api_client import DatabricksAPIError, log
from catalog_admin import CatalogAdmin, CatalogExistsError, SchemaNotFoundError
from scim import ScimService
from workspace_stats import WorkspaceStatsAggregator, workspace_insights

# ====================================================================================
# PARAMETER PATTERNS
# ====================================================================================
EMAIL = r"email\s+([\w.+-]+@[\w.-]+\w)"
DISPLAY_NAME = r"\bname\s+([\w ]+?)(?=\s+(?:email|with)\b|$)"
USER_ID = r"user\s+id\s+(\w+)"
GROUP_ID = r"group\s+id\s+(\w+)"
GROUP_NAME = r"group\s+(?:named\s+|name\s+)?([\w-]+)"
CATALOG = r"catalog\s+(?:named\s+|name\s+)?(\w+)"
SCHEMA = r"schema\s+(?:named\s+|name\s+)?(\w+)"
TABLE = r"table\s+(?:named\s+|name\s+)?(\w+)"
COMMENT = r"comment\s+[\"']?(.+?)[\"']?$"
COLUMNS = r"columns\s+(\[.*?\])"
METADATA = r"metadata\s+(\{.*?\})"
PRIVILEGES = r"privileges\s+([\w\s,]+?)(?=\s+(?:to|from|on)\b)"
PRINCIPAL = r"\b(?:to|from)\s+([\w.+@-]+)"
SECURABLE_TYPE = r"\btype\s+(\w+)"
FULL_NAME = r"\bname\s+([\w.-]+)"

DEFAULT_COLUMNS = '[{"name": "id", "type": "int"}]'
UNKNOWN_COMMAND = ("Sorry, I didn't recognize that command. Please try again or select an action "
                   "from the dropdown.")


@dataclass
class Param:
    name: str
    patterns: List[str]
    required: bool = True
    default: Optional[str] = None


@dataclass
class Action:
    value: str
    label: str
    keywords: List[str]
    params: List[Param] = field(default_factory=list)

    def describe(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "label": self.label,
            "keywords": self.keywords,
            "params": [{"name": p.name, "required": p.required} for p in self.params],
        }


ACTIONS: List[Action] = [
    Action("create_user", "Create User", ["create user", "add user", "new user"],
           [Param("email", [EMAIL]), Param("displayName", [DISPLAY_NAME], required=False)]),
    Action("delete_user", "Delete User", ["delete user", "remove user"],
           [Param("userId", [USER_ID])]),
    Action("create_group", "Create Group", ["create group", "add group", "new group"],
           [Param("name", [r"\bname\s+([\w-]+)", GROUP_NAME])]),
    Action("delete_group", "Delete Group", ["delete group", "remove group"],
           [Param("groupId", [GROUP_ID])]),
    Action("create_catalog", "Create Catalog", ["create catalog", "add catalog", "new catalog"],
           [Param("name", [r"\bname\s+(\w+)", CATALOG]), Param("comment", [COMMENT], required=False)]),
    Action("delete_catalog", "Delete Catalog", ["delete catalog", "remove catalog"],
           [Param("catalogName", [CATALOG])]),
    Action("create_schema", "Create Schema", ["create schema", "add schema", "new schema"],
           [Param("name", [r"\bname\s+(\w+)", SCHEMA]), Param("catalogName", [CATALOG]),
            Param("comment", [COMMENT], required=False)]),
    Action("delete_schema", "Delete Schema", ["delete schema", "remove schema"],
           [Param("catalogName", [CATALOG]), Param("schemaName", [SCHEMA])]),
    Action("create_table", "Create Table", ["create table", "add table", "new table"],
           [Param("catalogName", [CATALOG]), Param("schemaName", [SCHEMA]), Param("tableName", [TABLE]),
            Param("columns", [COLUMNS], default=DEFAULT_COLUMNS),
            Param("comment", [COMMENT], required=False), Param("metadata", [METADATA], required=False)]),
    Action("delete_table", "Delete Table", ["delete table", "remove table"],
           [Param("catalogName", [CATALOG]), Param("schemaName", [SCHEMA]), Param("tableName", [TABLE])]),
    Action("grant_privileges", "Grant Privileges", ["grant privileges", "assign privileges", "set permissions"],
           [Param("privileges", [PRIVILEGES]), Param("principal", [PRINCIPAL]),
            Param("securable_type", [SECURABLE_TYPE]), Param("full_name", [FULL_NAME])]),
    Action("revoke_privileges", "Revoke Privileges", ["revoke privileges", "remove privileges"],
           [Param("privileges", [PRIVILEGES]), Param("principal", [PRINCIPAL]),
            Param("securable_type", [SECURABLE_TYPE]), Param("full_name", [FULL_NAME])]),
    Action("optimize_workspace", "Optimize Workspace",
           ["optimize workspace", "improve workspace", "analyze workspace"]),
]
ACTIONS_BY_VALUE = {a.value: a for a in ACTIONS}


@dataclass
class ParsedCommand:
    action: Optional[str]
    params: Dict[str, str] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)


class CommandError(ValueError):
    pass


def match_action(text: str) -> Optional[Action]:
    lowered = (text or "").lower()
    for action in ACTIONS:
        if any(k in lowered for k in action.keywords):
            return action
    return None

def extract_param(text: str, param: Param) -> Optional[str]:
    for pattern in param.patterns:
        m = re.search(pattern, text, re.IGNORECASE)
        if m and m.group(1).strip():
            return m.group(1).strip()
    return param.default

def parse_command(text: str, action: str = None) -> ParsedCommand:
    """Pick the action (explicit, or by keyword) and pull its parameters out of the text."""
    chosen = ACTIONS_BY_VALUE.get(action) if action else match_action(text)
    if chosen is None:
        return ParsedCommand(None)
    text = (text or "").strip()
    params: Dict[str, str] = {}
    for param in chosen.params:
        value = extract_param(text, param)
        if value is not None:
            params[param.name] = value
    missing = [p.name for p in chosen.params if p.required and not params.get(p.name)]
    return ParsedCommand(chosen.value, params, missing)

def privilege_list(raw: str) -> List[str]:
    return [p.strip().upper() for p in re.split(r"[,\s]+", raw or "") if p.strip()]

def is_test_group(name: str) -> bool:
    lowered = (name or "").lower()
    return "test" in lowered or lowered == "your group name"

def format_insights(insights: List[Dict[str, str]]) -> str:
    lines = ["Here are my recommendations for optimizing your workspace:", ""]
    for index, insight in enumerate(insights, 1):
        lines.append(f"{index}. **{insight['title']}** ({insight['severity']})")
        lines.append(f"   - **Issue**: {insight['description']}")
        lines.append(f"   - **Recommendation**: {insight['recommendation']}")
        lines.append("")
    lines.append("Would you like to take action on any of these recommendations?")
    return "\n".join(lines)

def _json_param(raw: Optional[str], kind: type, label: str, err_prefix: str) -> Any:
    if not raw:
        return kind()
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise CommandError(f"{err_prefix}: {e}")
    if not isinstance(value, kind):
        raise CommandError(f"{err_prefix}: {label}")
    return value

# ====================================================================================
# EXECUTION
# ====================================================================================
async def execute_command(parsed: ParsedCommand, scim: ScimService, admin: CatalogAdmin,
                          aggregator: WorkspaceStatsAggregator) -> Dict[str, Any]:
    """Run a parsed command and return ``{"success", "action", "reply"}``."""
    if parsed.action is None:
        return {"success": False, "action": None, "reply": UNKNOWN_COMMAND}
    if parsed.missing:
        return {"success": False, "action": parsed.action,
                "reply": f"Please provide the following required parameters: {', '.join(parsed.missing)}."}
    try:
        reply = await _dispatch(parsed.action, parsed.params, scim, admin, aggregator)
    except (CommandError, CatalogExistsError, SchemaNotFoundError, DatabricksAPIError) as e:
        log(f"[ASSISTANT] {parsed.action} failed: {e}")
        return {"success": False, "action": parsed.action, "reply": f"Error: {getattr(e, 'message', e)}"}
    return {"success": True, "action": parsed.action, "reply": reply}


async def _dispatch(action: str, p: Dict[str, str], scim: ScimService, admin: CatalogAdmin,
                    aggregator: WorkspaceStatsAggregator) -> str:
    if action == "create_user":
        await scim.create_user(p["email"], p.get("displayName"))
        return f"User '{p['email']}' created successfully!"

    if action == "delete_user":
        await scim.delete_user(p["userId"])
        return f"User '{p['userId']}' deleted successfully!"

    if action == "create_group":
        if is_test_group(p["name"]):
            raise CommandError("Test groups are not allowed. Please use a different name.")
        await scim.create_group(p["name"])
        return f"Group '{p['name']}' created successfully!"

    if action == "delete_group":
        await scim.delete_group(p["groupId"])
        return f"Group '{p['groupId']}' deleted successfully!"

    if action == "create_catalog":
        await admin.create_catalog(p["name"], p.get("comment"))
        return f"Catalog '{p['name']}' created successfully!"

    if action == "delete_catalog":
        await admin.delete_catalog(p["catalogName"])
        return f"Catalog '{p['catalogName']}' deleted successfully!"

    if action == "create_schema":
        await admin.create_schema(p["catalogName"], p["name"], p.get("comment"))
        return f"Schema '{p['name']}' created in catalog '{p['catalogName']}' successfully!"

    if action == "delete_schema":
        await admin.delete_schema(p["catalogName"], p["schemaName"])
        return f"Schema '{p['schemaName']}' in catalog '{p['catalogName']}' deleted successfully!"

    if action == "create_table":
        columns = _json_param(p.get("columns"), list, "Columns must be a JSON array.", "Invalid columns format")
        metadata = _json_param(p.get("metadata"), dict, "Metadata must be a JSON object.", "Invalid metadata format")
        tags = {f"tag.{k}": "true" for k in metadata.get("keywords") or []}
        comment = p.get("comment") or f"Created via chatbot on {datetime.now(timezone.utc).isoformat()}"
        await admin.create_table(p["catalogName"], p["schemaName"], p["tableName"], columns,
                                 comment=comment, properties=tags)
        return f"Table '{p['tableName']}' created in {p['catalogName']}.{p['schemaName']} successfully!"

    if action == "delete_table":
        await admin.delete_table(p["catalogName"], p["schemaName"], p["tableName"])
        return f"Table '{p['tableName']}' in {p['catalogName']}.{p['schemaName']} deleted successfully!"

    if action in ("grant_privileges", "revoke_privileges"):
        privileges = privilege_list(p["privileges"])
        joined = ", ".join(privileges)
        if action == "grant_privileges":
            await admin.grant(p["securable_type"], p["full_name"], p["principal"], privileges)
            return (f"Privileges '{joined}' granted to '{p['principal']}' on "
                    f"{p['securable_type']} '{p['full_name']}' successfully!")
        await admin.revoke(p["securable_type"], p["full_name"], p["principal"], privileges)
        return (f"Privileges '{joined}' revoked from '{p['principal']}' on "
                f"{p['securable_type']} '{p['full_name']}' successfully!")

    if action == "optimize_workspace":
        snapshot, _ = await aggregator.get_workspace_stats()
        return format_insights(workspace_insights(snapshot))

    raise CommandError(f"Unsupported action: {action}")
