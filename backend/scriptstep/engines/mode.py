"""
Execution mode resolution.

Turns a Script Unit and its input records into execution requests: one
request carrying every record (AllItems), or one request per record, in
input order (PerItem).
"""

from dataclasses import dataclass, field
from uuid import uuid4

from scriptstep.models import ExecutionMode, InputRecord, ScriptUnit


def new_invocation_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class ExecutionRequest:
    script: ScriptUnit
    records: tuple[InputRecord, ...]
    # Position of each record in the step's input
    indexes: tuple[int, ...]
    invocation_id: str = field(default_factory=new_invocation_id)

    @property
    def mode(self) -> ExecutionMode:
        return self.script.mode

    @property
    def item_index(self) -> int | None:
        """Index of the single record in PerItem mode; None for AllItems."""
        if self.script.mode == ExecutionMode.PER_ITEM:
            return self.indexes[0]
        return None

    def records_by_index(self) -> dict[int, InputRecord]:
        return dict(zip(self.indexes, self.records))


def resolve_requests(script: ScriptUnit, records: list[InputRecord]) -> list[ExecutionRequest]:
    """
    AllItems: exactly one request with every record (even when there are none).
    PerItem: one request per record, same order as the input.
    """
    if script.mode == ExecutionMode.PER_ITEM:
        return [
            ExecutionRequest(script=script, records=(record,), indexes=(i,))
            for i, record in enumerate(records)
        ]
    return [
        ExecutionRequest(
            script=script,
            records=tuple(records),
            indexes=tuple(range(len(records))),
        )
    ]
