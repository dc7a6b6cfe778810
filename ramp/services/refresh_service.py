"""Concurrent refresh (fetch + pull) of source repositories."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from threading import Lock
from typing import Callable, List, Optional

from ramp.config import Project
from ramp.exceptions import GitOperationError
from ramp.logging_config import get_logger
from ramp.models.feature import RefreshResult, RefreshStatus
from ramp.services.git.operations import GitOperations
from ramp.utils.threading import get_optimal_worker_count

logger = get_logger(__name__)


class RefreshService:
    """Fetch and fast-forward every source repository, one thread per repository.

    A failing repository is reported in its own result and never stops the others.
    """

    def __init__(self, project: Project, workers: Optional[int] = None):
        self.project = project
        self.workers = workers
        self._results: List[RefreshResult] = []
        self._results_lock = Lock()

    def _record(self, result: RefreshResult) -> None:
        with self._results_lock:
            self._results.append(result)

    def refresh_repo(self, repo_name: str) -> RefreshResult:
        """Fetch all remotes, then pull when the current branch has an upstream."""
        source = self.project.repo_paths()[repo_name]
        if not GitOperations.is_git_repo(source):
            return RefreshResult(repo_name, RefreshStatus.SKIPPED, f"source repo not found at {source}")

        git_ops = GitOperations(source, repo_name)
        try:
            git_ops.fetch_all()
            if not git_ops.has_upstream():
                return RefreshResult(repo_name, RefreshStatus.FETCHED, "no upstream branch, pull skipped")
            git_ops.pull()
        except GitOperationError as e:
            return RefreshResult(repo_name, RefreshStatus.FAILED, str(e))

        branch = git_ops.get_current_branch() or "HEAD"
        return RefreshResult(repo_name, RefreshStatus.UPDATED, f"updated {branch}")

    def _refresh_task(self, repo_name: str) -> RefreshResult:
        """Worker body: refresh one repository and record the outcome."""
        try:
            result = self.refresh_repo(repo_name)
        except Exception as e:
            # Unexpected errors stay scoped to their repository
            logger.error(f"Error refreshing {repo_name}: {e}")
            result = RefreshResult(repo_name, RefreshStatus.FAILED, str(e))

        if result.status == RefreshStatus.FAILED:
            logger.warning(f"{repo_name}: {result.message}")
        self._record(result)
        return result

    def refresh(
        self,
        repo_filter: Optional[Callable[[str], bool]] = None,
        on_result: Optional[Callable[[RefreshResult], None]] = None,
    ) -> List[RefreshResult]:
        """Refresh the selected repositories concurrently.

        Args:
            repo_filter: Predicate on repository name; all repositories when None
            on_result: Called from the collecting thread as each result arrives

        Returns:
            Results in configuration order
        """
        names = [name for name in self.project.config.get_repos() if repo_filter is None or repo_filter(name)]
        if not names:
            return []

        with self._results_lock:
            self._results = []

        max_workers = get_optimal_worker_count(len(names), self.workers)
        logger.debug(f"Refreshing {len(names)} repositories with {max_workers} workers")

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(self._refresh_task, name) for name in names]

            for future in as_completed(futures):
                result = future.result()
                if on_result:
                    on_result(result)

        order = {name: index for index, name in enumerate(names)}
        with self._results_lock:
            return sorted(self._results, key=lambda r: order[r.repo_name])

    def refresh_for_up(self, force: bool = False, skip: bool = False) -> List[RefreshResult]:
        """Refresh before creating a feature, honouring each repository's auto_refresh flag."""
        if skip:
            return []
        repos = self.project.config.get_repos()
        return self.refresh(lambda name: force or repos[name].auto_refresh)
