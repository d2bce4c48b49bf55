"""
Analytical core of the simulation engine.

This package contains the components that turn provider predictions into a
finished simulation:

- Trend analysis: least-squares slopes, p-values and inflection points
- Ensemble: weighted merge of provider predictions
- Scenarios: percentile, lever and market-factor variants of a trajectory
- Risks: performance dips, audience fatigue, competitor threats, budget overrun
- Recommendations: ranked budget, creative, audience, channel and timing pivots
- Impact estimation: what-if projections of recommendations against a baseline
- Performance tracking: prediction accuracy against observed actuals
- Validation, error taxonomy, retry helpers and circuit breaking

Every component is a plain class with injected collaborators and no module
state, so each orchestrator owns its own instances.
"""

__all__ = [
    "EnsembleCoordinator",
    "ErrorTracker",
    "ModelPerformanceTracker",
    "PivotRecommendationEngine",
    "RecommendationImpactEstimator",
    "RiskDetector",
    "ScenarioGenerator",
    "TrendAnalyzer",
]

from simengine.engine.ensemble import EnsembleCoordinator
from simengine.engine.error_tracker import ErrorTracker
from simengine.engine.impact_estimator import RecommendationImpactEstimator
from simengine.engine.performance_tracker import ModelPerformanceTracker
from simengine.engine.recommendations import PivotRecommendationEngine
from simengine.engine.risk_detector import RiskDetector
from simengine.engine.scenario_generator import ScenarioGenerator
from simengine.engine.trend_analyzer import TrendAnalyzer
