from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncCounts(CamelModel):
    entries: int = 0
    draws: int = 0
    winners: int = 0
    cancellations: int = 0


class SyncErrorItem(CamelModel):
    event_ref: str = Field(description="`<EventName>:<txHash>` or `Raffle:<raffleId>`")
    message: str


class SyncResult(CamelModel):
    from_block: int
    to_block: int
    counts: SyncCounts = Field(default_factory=SyncCounts)
    errors: list[SyncErrorItem] = Field(default_factory=list)
    duration_ms: int = 0
    success: bool


class SyncFailureResponse(BaseModel):
    success: bool = False
    error: str


class UnauthorizedResponse(BaseModel):
    error: str = "Unauthorized"


class SyncProbe(BaseModel):
    status: str = "ready"
    message: str
