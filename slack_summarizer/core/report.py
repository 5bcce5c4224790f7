"""
Pydantic schemas for the summary report.

The report is the only artifact the pipeline emits; ``SummaryOutput.model_dump()``
produces the JSON document written by the CLI.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = "2.0.0"


class ReportRequest(BaseModel):
    """Parameters the report was generated for."""

    user_id: str
    period_start: str
    period_end: str
    timezone: str


class ReportMetadata(BaseModel):
    generated_at: str
    schema_version: str = SCHEMA_VERSION
    request: ReportRequest


class ReportTotals(BaseModel):
    """Activity totals across all channels."""

    total_channels: int = 0
    total_messages: int = 0
    mentions_received: int = 0
    threads_participated: int = 0
    reactions_given: int = 0


class ChannelInteractions(BaseModel):
    messages_sent: int = 0
    mentions_received: int = 0
    threads: int = 0

    @property
    def total(self) -> int:
        return self.messages_sent + self.mentions_received + self.threads


class ConsolidationStats(BaseModel):
    """Consolidator counters surfaced per channel."""

    original_segments: int = 0
    consolidated_topics: int = 0
    bot_messages_merged: int = 0
    trivial_messages_merged: int = 0
    adjacent_merged: int = 0
    proximity_merged: int = 0
    same_author_merged: int = 0


class TopicSummary(BaseModel):
    """Narrative summary of one consolidated topic."""

    model_config = ConfigDict(from_attributes=True)

    narrative_summary: str
    start_time: str
    end_time: str
    message_count: int
    user_messages: int
    participants: List[str] = Field(default_factory=list)
    key_events: List[str] = Field(default_factory=list)
    references: List[str] = Field(default_factory=list)
    outcome: Optional[str] = None
    next_actions: List[str] = Field(default_factory=list)
    timesheet_entry: str = ""
    slack_link: str = ""
    slack_links: List[str] = Field(default_factory=list)
    segments_merged: int = 1


class ChannelSummary(BaseModel):
    channel_id: str
    channel_name: str
    channel_type: str
    interactions: ChannelInteractions = Field(default_factory=ChannelInteractions)
    topics: List[TopicSummary] = Field(default_factory=list)
    consolidation_stats: Optional[ConsolidationStats] = None


class SummaryOutput(BaseModel):
    """Top-level report document."""

    metadata: ReportMetadata
    summary: ReportTotals
    channels: List[ChannelSummary] = Field(default_factory=list)

    def topic_count(self) -> int:
        return sum(len(c.topics) for c in self.channels)
