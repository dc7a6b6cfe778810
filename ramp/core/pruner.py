"""Pruning of features whose branches are merged everywhere."""

from typing import List, Optional

from ramp.core.orchestrator import FeatureOrchestrator
from ramp.exceptions import RampError
from ramp.logging_config import get_logger
from ramp.models.feature import DownOptions, FeatureCategory, FeatureStatus, PruneResult
from ramp.services.display_service import Reporter
from ramp.services.status_service import FeatureStatusService

logger = get_logger(__name__)


class FeaturePruner:
    """Find merged features and remove them after one batch confirmation."""

    def __init__(
        self,
        orchestrator: FeatureOrchestrator,
        status_service: Optional[FeatureStatusService] = None,
        reporter: Optional[Reporter] = None,
    ):
        self.orchestrator = orchestrator
        self.status_service = status_service or FeatureStatusService(orchestrator.project)
        self.reporter = reporter or orchestrator.reporter

    def find_merged_features(self) -> List[FeatureStatus]:
        """Only features classified MERGED are eligible; CLEAN ones never are."""
        return [
            feature
            for feature in self.status_service.scan_features()
            if feature.category == FeatureCategory.MERGED
        ]

    def prune(self, force: bool = False) -> PruneResult:
        """Remove every merged feature, continuing past individual failures.

        Args:
            force: Skip the batch confirmation

        Returns:
            Tally of succeeded and failed feature names
        """
        merged = self.find_merged_features()
        result = PruneResult(candidates=[feature.name for feature in merged])
        if not merged:
            self.reporter.info("No merged features to prune")
            return result

        self.reporter.info("The following merged features will be removed:")
        for feature in merged:
            label = f"{feature.display_name} ({feature.name})" if feature.display_name else feature.name
            self.reporter.info(f"  • {label}")

        if not force and not self.reporter.confirm(f"Remove {len(merged)} merged feature(s)?"):
            result.cancelled = True
            return result

        for feature in merged:
            try:
                # Merged features have no uncommitted work, so skip the per-feature gate
                self.orchestrator.down(DownOptions(feature_name=feature.name, force=True))
                result.succeeded.append(feature.name)
            except RampError as e:
                logger.error(f"Failed to prune '{feature.name}': {e}")
                self.reporter.error(f"{feature.name}: {e}")
                result.failed[feature.name] = str(e)

        logger.info(
            f"Pruned {len(result.succeeded)} of {len(merged)} merged features, {len(result.failed)} failed"
        )
        return result
