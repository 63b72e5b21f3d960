import typing as t
from enum import IntEnum, StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class IntelligenceLevel(StrEnum):
    realtime = "realtime"
    high = "high"
    standard = "standard"
    deep = "deep"

    @property
    def memory_depth(self) -> "AIMemoryDepth":
        return AIMemoryDepth[self.name.upper()]


class AIMemoryDepth(IntEnum):
    """Memory depth behind each intelligence level, deeper may hallucinate slightly."""

    REALTIME = 1
    HIGH = 2
    STANDARD = 3
    DEEP = 4


class KnowledgeResult(BaseModel):
    """
    Answer to "does the service know this URL".

    ``known=False`` without ``fallback`` is an authoritative miss. ``fallback=True``
    is a degraded default (circuit open, timeout, failed batch) and never claims
    knowledge.
    """

    model_config = ConfigDict(populate_by_name=True)

    known: bool
    data: dict[str, t.Any] | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    learned_at: str | None = Field(
        default=None, validation_alias=AliasChoices("learned_at", "learnedAt")
    )
    fallback: bool = False

    @classmethod
    def unknown(cls) -> "KnowledgeResult":
        return cls(known=False)

    @classmethod
    def degraded(cls) -> "KnowledgeResult":
        return cls(known=False, fallback=True)


class QueryResultItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    known: bool = True
    data: dict[str, t.Any] = Field(default_factory=dict)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    learned_at: str | None = Field(default=None, alias="learnedAt")


class QueryRequest(BaseModel):
    urls: list[str]
    intelligence: IntelligenceLevel = IntelligenceLevel.high


class QueryResponse(BaseModel):
    known: list[QueryResultItem] = Field(default_factory=list)
    unknown: list[str] = Field(default_factory=list)


class TeachEntry(BaseModel):
    url: str
    data: dict[str, t.Any]


class TeachRequest(BaseModel):
    entries: list[TeachEntry]


class TeachVerification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_valid: bool = Field(alias="schemaValid")
    values_valid: bool = Field(alias="valuesValid")
    duplicate: bool = False
    warnings: list[str] = Field(default_factory=list)


class TeachResponse(BaseModel):
    status: t.Literal["accepted", "rejected", "flagged"]
    learned: int = 0
    verification: TeachVerification | None = None

    @property
    def accepted(self) -> bool:
        return self.status == "accepted"

    @classmethod
    def rejected(cls) -> "TeachResponse":
        return cls(status="rejected", learned=0)


class StatsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    queries: int
    recognized: int
    recognition_rate: float = Field(alias="recognitionRate")
    learned: int
    period: str


class UsageStats(BaseModel):
    """Process-lifetime counters kept by a knowledge backend."""

    queries: int = 0
    recognized: int = 0
    learned: int = 0

    @property
    def recognition_rate(self) -> float:
        return self.recognized / self.queries if self.queries else 0.0

    def reset(self) -> None:
        self.queries = 0
        self.recognized = 0
        self.learned = 0
