"""
ramp - multi-repository feature worktree manager
"""

from .__version__ import __version__
from .core import FeatureOrchestrator, FeaturePruner

__all__ = ["FeatureOrchestrator", "FeaturePruner", "__version__"]
