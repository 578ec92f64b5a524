"""Read-only queue rollups served to operational dashboards."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorCluster(BaseModel):
    error: str  # normalised error text
    count: int


class CountByKey(BaseModel):
    key: str
    count: int


class ProviderQueueStats(BaseModel):
    provider: str
    pending: int = 0
    succeeded: int = 0
    stuck: int = 0
    dead: int = 0


class AdvancedStats(BaseModel):
    throughput: int = 0  # items succeeded within the last hour
    max_lag_ms: int = 0  # age of the oldest pending item
    retry_histogram: Dict[str, int] = Field(default_factory=dict)
    top_errors: List[ErrorCluster] = Field(default_factory=list)


class DeadLetterStats(BaseModel):
    total: int = 0
    by_context: List[CountByKey] = Field(default_factory=list)
    by_provider: List[CountByKey] = Field(default_factory=list)


class QueueStats(BaseModel):
    pending: int = 0
    succeeded: int = 0
    stuck: int = 0
    providers: List[ProviderQueueStats] = Field(default_factory=list)
    advanced: AdvancedStats = Field(default_factory=AdvancedStats)
    dlq: DeadLetterStats = Field(default_factory=DeadLetterStats)
    generated_at: Optional[int] = None
