# Upload File Handling and Schema Utilities

import io
import json
from typing import Any, Dict, List, Tuple

import pandas as pd

SUPPORTED_FILE_TYPES = {"csv", "json", "parquet", "xlsx"}

# pandas dtype kind -> Unity Catalog type name
_DTYPE_KIND_TO_UC = {
    "i": "BIGINT",
    "u": "BIGINT",
    "f": "DOUBLE",
    "b": "BOOLEAN",
    "M": "TIMESTAMP",
    "O": "STRING",
}


class SchemaDefinitionError(ValueError):
    pass


def _dedup_columns(cols: List[str]) -> List[str]:
    """Deduplicate column names and make them SQL-safe."""
    seen: Dict[str, int] = {}
    deduped = []
    for c in cols:
        base = str(c).strip() or "column"
        if base in seen:
            seen[base] += 1
            name = f"{base}__{seen[base]}"
        else:
            seen[base] = 0
            name = base
        safe = (name.replace(".", "_")
                    .replace("[", "_")
                    .replace("]", "_")
                    .replace(" ", "_")
                    .replace(":", "_")
                    .replace("-", "_"))
        deduped.append(safe)
    return deduped

def file_type_of(filename: str, declared: str = None) -> str:
    if declared:
        return declared.lower().lstrip(".")
    return (filename or "").rsplit(".", 1)[-1].lower()

def excel_to_csv(content: bytes) -> bytes:
    """First worksheet of an .xlsx workbook rendered as CSV."""
    df = pd.read_excel(io.BytesIO(content), sheet_name=0)
    return df.to_csv(index=False).encode("utf-8")

def prepare_upload(filename: str, content: bytes, declared_type: str = None) -> Tuple[bytes, str]:
    """Normalise an uploaded file to (bytes, file_type); Excel becomes CSV."""
    file_type = file_type_of(filename, declared_type)
    if file_type == "xlsx":
        return excel_to_csv(content), "csv"
    return content, file_type

def read_frame(content: bytes, file_type: str, nrows: int = None) -> pd.DataFrame:
    if file_type not in SUPPORTED_FILE_TYPES:
        raise SchemaDefinitionError(f"Unsupported file type: {file_type}")
    if file_type == "csv":
        return pd.read_csv(io.BytesIO(content), nrows=nrows)
    if file_type == "xlsx":
        return pd.read_excel(io.BytesIO(content), sheet_name=0, nrows=nrows)
    if file_type == "json":
        df = pd.read_json(io.BytesIO(content), lines=content.lstrip()[:1] != b"[")
        return df.head(nrows) if nrows else df
    if file_type == "parquet":
        df = pd.read_parquet(io.BytesIO(content))
        return df.head(nrows) if nrows else df

def csv_header(content: bytes) -> List[str]:
    return [str(c) for c in pd.read_csv(io.BytesIO(content), nrows=0).columns]

def uc_type_for(dtype) -> str:
    return _DTYPE_KIND_TO_UC.get(getattr(dtype, "kind", "O"), "STRING")

def infer_schema_definition(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Column list in the shape the upload endpoint accepts as schemaDefinition."""
    names = _dedup_columns(list(df.columns))
    columns = []
    for name, (_, dtype) in zip(names, df.dtypes.items()):
        type_name = uc_type_for(dtype)
        columns.append({
            "name": name,
            "type_name": type_name,
            "type_text": type_name,
            "type_json": type_name,
            "nullable": True,
            "comment": f"Inferred column: {name}",
        })
    return columns

def preview_file(filename: str, content: bytes, declared_type: str = None, sample_rows: int = 5) -> Dict[str, Any]:
    file_type = file_type_of(filename, declared_type)
    df = read_frame(content, file_type)
    sample = df.head(sample_rows).astype(object).where(df.head(sample_rows).notna(), None)
    return {
        "fileType": file_type,
        "rowCount": int(len(df)),
        "schemaDefinition": infer_schema_definition(df),
        "sample": sample.to_dict(orient="records"),
    }

# ====================================================================================
# SCHEMA DEFINITIONS
# ====================================================================================
def parse_schema_definition(raw: Any) -> List[Dict[str, Any]]:
    """Parse and validate an upload schema definition, filling type_text/type_json/nullable."""
    try:
        parsed = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except ValueError as e:
        raise SchemaDefinitionError(f"Invalid schema definition: {e}")
    if not isinstance(parsed, list):
        raise SchemaDefinitionError("Invalid schema definition: Schema definition must be an array")
    columns = []
    for index, col in enumerate(parsed):
        if not isinstance(col, dict) or not col.get("name"):
            raise SchemaDefinitionError(f"Invalid schema definition: Column at index {index} is missing a name")
        if not col.get("type_name"):
            raise SchemaDefinitionError(f"Invalid schema definition: Column \"{col['name']}\" is missing a type_name")
        col = dict(col)
        col.setdefault("type_text", col["type_name"])
        col.setdefault("type_json", col["type_name"])
        if col.get("nullable") is None:
            col["nullable"] = True
        columns.append(col)
    return columns

def parse_migration_schema(raw: Any) -> List[Dict[str, Any]]:
    """Optional schema for cloud migration; VOID or missing types are rejected."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except ValueError:
        raise SchemaDefinitionError("Invalid JSON in schema definition")
    if not isinstance(parsed, list) or not all(isinstance(c, dict) for c in parsed):
        raise SchemaDefinitionError("Invalid JSON in schema definition")
    invalid = [c for c in parsed if not c.get("type_name") or str(c["type_name"]).upper() == "VOID"]
    if invalid:
        names = ", ".join(c.get("name") or "unnamed" for c in invalid)
        raise SchemaDefinitionError(f"Invalid column types found: {names}")
    return parsed

def parse_keywords(metadata: Any) -> List[str]:
    if not metadata:
        return []
    try:
        parsed = json.loads(metadata) if isinstance(metadata, (str, bytes)) else metadata
    except ValueError as e:
        raise SchemaDefinitionError(f"Invalid metadata format: {e}")
    if parsed is None:
        return []
    if not isinstance(parsed, dict):
        raise SchemaDefinitionError(f"Invalid metadata format: expected an object, got {type(parsed).__name__}")
    keywords = parsed.get("keywords") or []
    if not isinstance(keywords, list):
        raise SchemaDefinitionError("Invalid metadata format: keywords must be a list")
    return [str(k) for k in keywords]

def columns_payload(columns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Unity Catalog column specs with positions."""
    out = []
    for index, col in enumerate(columns):
        type_name = col.get("type_name") or col.get("type") or "STRING"
        name = col.get("name") or f"column_{index}"
        out.append({
            "name": name,
            "type_name": type_name,
            "type_text": col.get("type_text") or type_name,
            "type_json": col.get("type_json") or type_name,
            "nullable": col.get("nullable") is not False,
            "comment": col.get("comment") or f"Column {name}",
            "position": index,
        })
    return out

def table_keywords(properties: Dict[str, Any]) -> List[str]:
    """Tags stored as 'tag.<name>' = 'true' table properties."""
    return [k[len("tag."):] for k, v in (properties or {}).items()
            if k.startswith("tag.") and str(v).lower() == "true"]
