"""
Record and script models.

ScriptUnit, InputRecord, BinaryAttachment, OutputRecord, ErrorRecord.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class GuestLanguage(str, Enum):
    """Guest scripting languages a Script Unit may be written in."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"


class ExecutionMode(str, Enum):
    """Run once over the whole batch, or once per record."""

    ALL_ITEMS = "AllItems"
    PER_ITEM = "PerItem"


class RunMode(str, Enum):
    """Workflow run mode: decides where guest log calls end up."""

    MANUAL = "manual"
    PRODUCTION = "production"


# Top-level keys a guest may put on a returned record.
OUTPUT_KEYS = frozenset({"data", "attachments", "lineage", "errorInfo", "legacyIndex"})


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class ScriptUnit(BaseModel):
    """Author-supplied source plus its language and execution mode."""

    model_config = ConfigDict(frozen=True)

    source: str
    language: GuestLanguage = GuestLanguage.PYTHON
    mode: ExecutionMode = ExecutionMode.ALL_ITEMS


class BinaryAttachment(BaseModel):
    """
    Binary payload attached to a record.

    Either ``data`` (base64) or ``handle`` (a reference resolved by the host's
    binary resolver) is set. Bytes are not copied into the sandbox unless guest
    code asks for them.
    """

    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field(alias="mimeType")
    file_name: str | None = Field(default=None, alias="fileName")
    data: str | None = None
    handle: str | None = None
    size: int | None = None


class InputRecord(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    attachments: dict[str, BinaryAttachment] = Field(default_factory=dict)
    lineage: int | None = None


class OutputRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: dict[str, Any] = Field(default_factory=dict)
    attachments: dict[str, BinaryAttachment] = Field(default_factory=dict)
    lineage: int | None = None
    error_info: Any = Field(default=None, alias="errorInfo")
    legacy_index: int | None = Field(default=None, alias="legacyIndex")

    def to_input(self) -> InputRecord:
        """Feed this record to a downstream step."""
        return InputRecord(data=self.data, attachments=self.attachments, lineage=self.lineage)


class ErrorRecord(BaseModel):
    """Synthetic record emitted in place of a failed execution when continuing on failure."""

    model_config = ConfigDict(populate_by_name=True)

    data: dict[str, Any]
    lineage: int | None = None
    error_info: dict[str, Any] | None = Field(default=None, alias="errorInfo")

    @property
    def error(self) -> str:
        return str(self.data.get("error", ""))
