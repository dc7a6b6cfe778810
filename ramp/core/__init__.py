"""Core lifecycle engine for ramp."""

from .orchestrator import FeatureOrchestrator, validate_feature_name
from .pruner import FeaturePruner
from .rollback import RollbackLog

__all__ = ["FeatureOrchestrator", "FeaturePruner", "RollbackLog", "validate_feature_name"]
