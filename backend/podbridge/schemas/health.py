from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

HealthStatus = Literal["excellent", "good", "warning", "critical", "offline"]


class HealthMetric(BaseModel):
    name: str
    status: HealthStatus
    value: float = Field(ge=0.0, le=100.0)
    weight: int
    message: str = ""


class HealthReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    overall_score: int = Field(alias="overallScore", ge=0, le=100)
    overall_status: HealthStatus = Field(alias="overallStatus")
    metrics: List[HealthMetric] = Field(default_factory=list)
    critical_issues: List[str] = Field(default_factory=list, alias="criticalIssues")
    warnings: List[str] = Field(default_factory=list)


class MetricInfo(BaseModel):
    metric_id: str
    name: str
    weight: int
    description: str
