"""
Campaign simulation engine.

Predicts marketing-campaign trajectories by merging pluggable prediction
providers, expands them into scenarios, flags risks and produces ranked
pivot recommendations under caching and tiered queue control.
"""

__version__ = "1.0.0"
