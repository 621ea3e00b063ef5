# src/fujical/pipeline/reports.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class StageTiming(BaseModel):
    stage: str
    time_ms: float
    count: int = 0
    detail: Dict[str, Any] = Field(default_factory=dict)


class PrecomputeResult(BaseModel):
    success: bool
    year: int
    total_data_points: int = Field(default=0, description="Stage-1 snapshot rows for the year")
    total_events: int = Field(default=0, description="Stage-3 events written for the year")
    time_ms: float = 0.0
    stage_breakdown: Dict[str, StageTiming] = Field(default_factory=dict)
    failed_stage: Optional[str] = None
    error: Optional[str] = None


class RecomputeResult(BaseModel):
    success: bool
    location_id: int
    year: int
    event_count: int = 0
    time_ms: float = 0.0
    error: Optional[str] = None


class HealthCheckItem(BaseModel):
    stage: str
    ok: bool
    actual: float
    expected: float
    detail: str = ""


class HealthReport(BaseModel):
    healthy: bool
    year: int
    checks: List[HealthCheckItem] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class YearStatistics(BaseModel):
    year: int
    snapshots: int
    candidates: int
    events: int
    locations_with_events: int
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_tier: Dict[str, int] = Field(default_factory=dict)
    by_month: Dict[int, int] = Field(default_factory=dict)
    average_quality: Optional[float] = None
