"""Leaderboard query DTO."""
from enum import Enum

from pydantic import BaseModel, Field


class LeaderboardPeriod(str, Enum):
    """Window the ranking metric is computed over."""
    ALL = "all"
    MONTH = "month"  # last 30 days
    QUARTER = "quarter"  # last 90 days


class LeaderboardMetric(str, Enum):
    """What affiliates are ranked by."""
    EARNINGS = "earnings"
    REFERRALS = "referrals"
    CONVERSION = "conversion"


class LeaderboardQueryDTO(BaseModel):
    """DTO for a leaderboard request."""

    period: LeaderboardPeriod = Field(LeaderboardPeriod.ALL)
    limit: int = Field(10, ge=1, le=1000)
    metric: LeaderboardMetric = Field(LeaderboardMetric.EARNINGS)
    reveal_earnings: bool = Field(False)
