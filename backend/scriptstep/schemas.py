"""
Pydantic schemas for the external worker wire contract.

Request:  {scriptUnit, capabilityContextProjection, inputRecords, indexes, mode, invocationId}
Response: {invocationId, outcome, rawReturnValue | errorDetail, logs, staticDataChanges}
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from scriptstep.models import ExecutionMode, InputRecord, ScriptUnit


class WorkerOutcome(str, Enum):
    SUCCESS = "Success"
    GUEST_ERROR = "GuestError"
    VALIDATION_ERROR = "ValidationError"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class CapabilityProjection(_WireModel):
    """Transport-safe part of a CapabilityContext."""

    # {str(record index): {parameter name: value}}
    parameters: dict[str, dict[str, Any]] = Field(default_factory=dict)
    static_data: dict[str, Any] = Field(default_factory=dict, alias="staticData")
    helpers: dict[str, bool] = Field(default_factory=dict)


class WorkerRequest(_WireModel):
    script_unit: ScriptUnit = Field(alias="scriptUnit")
    capability_context: CapabilityProjection = Field(
        default_factory=CapabilityProjection, alias="capabilityContextProjection"
    )
    input_records: list[InputRecord] = Field(default_factory=list, alias="inputRecords")
    indexes: list[int] = Field(default_factory=list)
    mode: ExecutionMode
    invocation_id: str = Field(alias="invocationId", min_length=1)


class LogEntry(_WireModel):
    level: str = "info"
    message: str = ""


class StaticDataChanges(_WireModel):
    set: dict[str, Any] = Field(default_factory=dict)
    deleted: list[str] = Field(default_factory=list)


class WorkerResponse(_WireModel):
    invocation_id: str = Field(alias="invocationId")
    outcome: WorkerOutcome
    raw_return_value: Any = Field(default=None, alias="rawReturnValue")
    error_detail: dict[str, Any] | None = Field(default=None, alias="errorDetail")
    logs: list[LogEntry] = Field(default_factory=list)
    static_data_changes: StaticDataChanges | None = Field(default=None, alias="staticDataChanges")
