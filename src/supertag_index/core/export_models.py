"""
Export document models.

Pydantic models describing the JSON export of the document graph, plus the
loader that turns an export file into a validated ExportDocument.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class ExportParseError(ValueError):
    """Raised when an export file is missing, is not JSON, or fails validation."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class ExportProps(BaseModel):
    """Property bag of an exported node.

    Unknown keys are preserved so the raw payload survives a round trip.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    created: int = Field(..., description="Creation timestamp in milliseconds")
    name: Optional[str] = None
    description: Optional[str] = None
    owner_id: Optional[str] = Field(default=None, alias="_ownerId")
    meta_node_id: Optional[str] = Field(default=None, alias="_metaNodeId")
    doc_type: Optional[str] = Field(default=None, alias="_docType")
    source_id: Optional[str] = Field(default=None, alias="_sourceId")
    flags: Optional[int] = Field(default=None, alias="_flags")
    done_marker: Union[bool, int, None] = Field(default=None, alias="_done")
    done: Union[bool, int, None] = None


class ExportNode(BaseModel):
    """A single exported document."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    props: ExportProps
    children: Optional[list[str]] = None
    modified_ts: Optional[list[int]] = Field(default=None, alias="modifiedTs")
    touch_counts: Optional[list[int]] = Field(default=None, alias="touchCounts")
    color: Optional[str] = None

    @field_validator("modified_ts", "touch_counts", mode="before")
    @classmethod
    def parse_json_list(cls, v: Any) -> Any:
        """Some exports store timestamp arrays as JSON strings."""
        if isinstance(v, str):
            if not v.strip():
                return None
            try:
                return json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"invalid JSON array string: {e}") from e
        return v

    @property
    def name(self) -> Optional[str]:
        return self.props.name

    @property
    def child_ids(self) -> list[str]:
        return self.children or []

    @property
    def first_modified(self) -> Optional[int]:
        """First entry of modifiedTs, used as the node's update timestamp."""
        if self.modified_ts:
            return self.modified_ts[0]
        return None

    @property
    def done_at(self) -> Optional[int]:
        """Completion timestamp. Boolean completion flags carry no time and map to None."""
        value = self.props.done_marker
        if isinstance(value, bool):
            return None
        return value

    def to_raw_json(self) -> str:
        """Serialize the node back to its export shape."""
        return json.dumps(self.model_dump(by_alias=True, exclude_none=True), ensure_ascii=False)


class ExportDocument(BaseModel):
    """Top-level export document."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    docs: list[ExportNode]
    format_version: Optional[int] = Field(default=None, alias="formatVersion")
    editors: Optional[list[Any]] = None
    workspaces: Optional[dict[str, Any]] = None


def parse_export(data: Any, source: Optional[str] = None) -> ExportDocument:
    """
    Validate already-decoded export data.

    Accepts both the direct format and the API wrapper format
    ``{"storeData": {...}}``.

    Raises:
        ExportParseError: If the data does not match the export schema
    """
    if isinstance(data, dict) and isinstance(data.get("storeData"), dict):
        data = data["storeData"]

    try:
        return ExportDocument.model_validate(data)
    except ValidationError as e:
        raise ExportParseError(f"Invalid export document: {e}", path=source) from e


def load_export(path: Path | str) -> ExportDocument:
    """
    Read and validate an export file.

    Args:
        path: Path to the JSON export

    Returns:
        Validated ExportDocument

    Raises:
        ExportParseError: If the file is missing, unreadable, or invalid
    """
    path = Path(path)
    if not path.is_file():
        raise ExportParseError(f"Export file not found: {path}", path=str(path))

    try:
        content = path.read_text(encoding="utf-8")
        data = json.loads(content)
    except (OSError, UnicodeDecodeError) as e:
        raise ExportParseError(f"Failed to read export file: {e}", path=str(path)) from e
    except json.JSONDecodeError as e:
        raise ExportParseError(f"Export file is not valid JSON: {e}", path=str(path)) from e

    document = parse_export(data, source=str(path))
    logger.debug(f"Loaded export {path.name} with {len(document.docs)} docs")
    return document
