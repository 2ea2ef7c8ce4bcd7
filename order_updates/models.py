"""Data models for order update jobs and best-order recomputation."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


# Orders with this id are placeholders emitted by producers and never recomputed
HASH_ZERO = "0x" + "0" * 64


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class JobStatus(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class OrderUpdateTrigger(BaseModel):
    """Chain event that caused the update, kept for diagnostics."""
    model_config = ConfigDict(populate_by_name=True)

    kind: str
    tx_hash: Optional[str] = Field(default=None, alias="txHash")
    tx_timestamp: Optional[int] = Field(default=None, alias="txTimestamp")
    log_index: Optional[int] = Field(default=None, alias="logIndex")
    batch_index: Optional[int] = Field(default=None, alias="batchIndex")


class OrderInfo(BaseModel):
    """A request to recompute the best orders touched by one order."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    # Deterministic context that triggered the job
    context: str
    order_id: str = Field(alias="orderId")
    trigger: Optional[OrderUpdateTrigger] = None

    @property
    def job_id(self) -> str:
        return f"{self.context}-{self.order_id}"


class Job(BaseModel):
    id: str
    name: str
    data: OrderInfo
    status: JobStatus
    attempts_made: int
    max_attempts: int
    run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class TokenPointer(BaseModel):
    contract: str
    token_id: Decimal
    order_id: Optional[str] = None
    value: Optional[Decimal] = None


class RecomputeResult(BaseModel):
    order_id: str
    side: Optional[Side] = None
    token_set_id: Optional[str] = None
    token_set_updated: bool = False
    tokens_updated: List[TokenPointer] = Field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.side is None
