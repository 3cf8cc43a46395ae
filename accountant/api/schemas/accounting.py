"""
Schemas for the accounting trigger routes.

Inputs arrive as query parameters, a JSON body, or both; they are merged
with the body taking precedence. Base-unit amounts are returned as strings
because they exceed the JSON-safe integer range.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from accountant.ledger.types import CurrentStatus, ReconciliationRecord


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserInput(CamelModel):
    """Merged trigger input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    epoch: Optional[int] = None
    from_epoch: Optional[int] = None
    to_epoch: Optional[int] = None
    addresses: Optional[Dict[str, Any]] = None

    @field_validator("epoch", "from_epoch", "to_epoch", mode="before")
    @classmethod
    def coerce_epoch(cls, v: Any) -> Optional[int]:
        if v is None or v == "":
            return None
        if isinstance(v, bool) or not isinstance(v, (int, float, str)):
            raise ValueError("Epoch must be a number")
        number = float(v)
        if not number.is_integer() or number < 0:
            raise ValueError("Epoch must be a non-negative whole number")
        return int(number)


class CurrentStatusResponse(CamelModel):
    current_revision: int = 0
    latest_epoch: int = 0
    all_epochs: List[int] = Field(default_factory=list)
    error: Optional[bool] = None

    @classmethod
    def from_status(cls, status: CurrentStatus) -> "CurrentStatusResponse":
        return cls(
            current_revision=status.current_revision,
            latest_epoch=status.latest_epoch,
            all_epochs=status.all_epochs,
        )


class ReconciliationRecordResponse(CamelModel):
    address: str
    alias: str
    on_chain_total: str
    calculated_total: str
    on_chain_liquid: str
    on_chain_locked: str
    difference: str
    on_chain_stable: str
    calculated_stable: str
    stable_difference: str
    mismatch: bool
    epoch: int

    @classmethod
    def from_record(cls, record: ReconciliationRecord) -> "ReconciliationRecordResponse":
        return cls(**record.to_dict())
