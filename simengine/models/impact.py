"""
What-if models: projected impact of a pivot recommendation, combination
scenarios and side-by-side comparisons.
"""

from typing import Any

from pydantic import BaseModel, Field

from .prediction import TrajectoryPoint
from .results import PivotRecommendation


class EstimatedImpact(BaseModel):
    """Average of the primary metric with and without the recommendation."""

    metric: str
    baseline_value: float = 0.0
    projected_value: float = 0.0
    improvement: float = Field(default=0.0, description="Relative change (0.1 = 10%)")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class UncertaintyBounds(BaseModel):
    lower: list[TrajectoryPoint] = Field(default_factory=list)
    upper: list[TrajectoryPoint] = Field(default_factory=list)


class ImplementationComplexity(BaseModel):
    score: float = Field(ge=0.0, le=10.0)
    factors: list[str] = Field(default_factory=list)
    timeline: str


class ImpactEstimationResult(BaseModel):
    """
    Projected effect of applying one recommendation.

    Attributes:
        estimated_impact: Primary metric before and after
        simulation_preview: Baseline projection with the recommendation applied
        uncertainty_bounds: Preview scaled down and up by the uncertainty factor
        risk_factors: Implementation risks
        implementation_complexity: Score 0-10 with a timeline band
    """

    recommendation: PivotRecommendation
    estimated_impact: EstimatedImpact
    simulation_preview: list[TrajectoryPoint] = Field(default_factory=list)
    uncertainty_bounds: UncertaintyBounds = Field(default_factory=UncertaintyBounds)
    risk_factors: list[str] = Field(default_factory=list)
    implementation_complexity: ImplementationComplexity


class BaselineComparison(BaseModel):
    improvement: float = 0.0
    significance: float = Field(default=0.0, ge=0.0, le=1.0, description="Share of points improved")


class WhatIfScenario(BaseModel):
    """A single recommendation or a feasible pair applied to the baseline."""

    scenario_id: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    projected_outcome: list[TrajectoryPoint] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    comparison_to_baseline: BaselineComparison = Field(default_factory=BaselineComparison)


class RecommendationComparison(BaseModel):
    recommendation: PivotRecommendation
    impact: ImpactEstimationResult
    ranking: int = Field(ge=1)
    ranking_score: float
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)
