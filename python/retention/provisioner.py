"""
Retention run lifecycle: prepare, provision, cancel.

This mirrors how an image-building pipeline drives a provisioner step:
``prepare`` validates configuration without touching AWS, ``provision`` does
one synchronous query/plan/delete pass, and ``cancel`` stops a run that has
not started deleting yet. A run that is already deleting is not interrupted
cooperatively; the host terminates the process and any partial batch stands.
"""

import threading
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from retention.config_manager import ConfigManager, RetentionConfig
from retention.errors import CancelledError, RetentionError
from retention.executor import DeletionSummary, execute
from retention.images import images_from_raw
from retention.logging_utils import get_logger
from retention.planner import RetentionPlan, plan
from retention.registry import ImageRegistry, open_registry
from retention.reporter import Reporter

logger = get_logger(__name__)

RegistryFactory = Callable[[RetentionConfig], AbstractContextManager]


class RunState(Enum):
    IDLE = "idle"
    QUERYING = "querying"
    PLANNING = "planning"
    NOOP_DONE = "noop_done"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RetentionRun:
    """Outcome of one provision pass"""

    def __init__(self, config: RetentionConfig):
        self.config = config
        self.state = RunState.IDLE
        self.plan: Optional[RetentionPlan] = None
        self.summary: Optional[DeletionSummary] = None
        self.error: Optional[BaseException] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"state": self.state.value, "dry_run": self.config.dry_run}
        if self.plan is not None:
            result["kept"] = [image.image_id for image in self.plan.keep]
            result["deleted"] = [image.image_id for image in self.plan.delete]
        if self.summary is not None:
            result["images_deleted"] = self.summary.images_deleted
            result["snapshots_deleted"] = self.summary.artifacts_deleted
        if self.error is not None:
            result["error"] = getattr(self.error, "message", str(self.error))
        return result


def run_retention(config: RetentionConfig, registry: ImageRegistry, reporter: Reporter,
                  run: Optional[RetentionRun] = None,
                  should_continue: Callable[[], bool] = lambda: True) -> RetentionRun:
    """Query, plan and delete for one owner and role

    Args:
        config: Resolved configuration
        registry: Open registry to query and delete from
        reporter: Sink for status lines
        run: Run record to update, created if not given
        should_continue: Checked once before deletion starts; False cancels the run

    Returns:
        The completed RetentionRun

    Raises:
        RetentionError: Any failure, unchanged, after recording it on the run
    """
    run = run or RetentionRun(config)
    try:
        run.state = RunState.QUERYING
        reporter.searching(config.region, config.owner, config.role)
        images = images_from_raw(registry.list_images(config.owner, config.role))

        run.state = RunState.PLANNING
        run.plan = retention_plan = plan(images, config.keep_count)
        reporter.found(retention_plan.total, config.keep_count)
        if retention_plan.is_noop:
            run.summary = DeletionSummary(dry_run=config.dry_run)
            run.state = RunState.NOOP_DONE
            return run

        for image in retention_plan.keep:
            reporter.keeping(image)

        if not should_continue():
            raise CancelledError("Retention run cancelled before deletion started")

        run.state = RunState.EXECUTING
        run.summary = summary = execute(retention_plan.delete, config.dry_run, registry, reporter)
        if config.dry_run:
            reporter.summary(len(retention_plan.keep), summary.would_delete, summary.would_delete_artifacts,
                             dry_run=True)
        else:
            reporter.summary(len(retention_plan.keep), summary.images_deleted, summary.artifacts_deleted)
        run.state = RunState.DONE
        return run
    except CancelledError as e:
        run.state = RunState.CANCELLED
        run.error = e
        raise
    except RetentionError as e:
        run.state = RunState.FAILED
        run.error = e
        raise


class RetentionProvisioner:
    """Pipeline step that deletes old AMIs for a role"""

    def __init__(self, registry_factory: RegistryFactory = open_registry, config_file: Optional[str] = None,
                 load_file: bool = False):
        self.registry_factory = registry_factory
        self.config_file = config_file
        self.load_file = load_file
        self.config: Optional[RetentionConfig] = None
        self.config_manager: Optional[ConfigManager] = None
        self.last_run: Optional[RetentionRun] = None
        self._cancelled = threading.Event()

    def prepare(self, *raw: Mapping[str, Any], user_vars: Optional[Mapping[str, str]] = None,
                config_manager: Optional[ConfigManager] = None) -> RetentionConfig:
        """Merge raw configuration dicts in order and validate them

        An already loaded ``config_manager`` is reused instead of reading the
        file and environment again.

        Raises:
            ConfigurationError: With every problem found in the merged configuration
        """
        manager = config_manager
        if manager is None:
            manager = ConfigManager(config_file=self.config_file, user_vars=user_vars, load_file=self.load_file)
        elif user_vars:
            manager.user_vars.update(user_vars)
        for values in raw:
            manager.merge(values)
        self.config_manager = manager
        self.config = manager.resolve()
        logger.debug(f"Prepared {self.config!r}")
        return self.config

    def provision(self, reporter: Reporter) -> RetentionRun:
        """Run one retention pass with the prepared configuration"""
        if self.config is None:
            raise RuntimeError("prepare() must succeed before provision()")

        run = RetentionRun(self.config)
        self.last_run = run
        if self._cancelled.is_set():
            run.state = RunState.CANCELLED
            run.error = CancelledError("Retention run cancelled before it started")
            raise run.error

        with self.registry_factory(self.config) as registry:
            return run_retention(self.config, registry, reporter, run=run,
                                 should_continue=lambda: not self._cancelled.is_set())

    def cancel(self) -> None:
        logger.info("Cancelled")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()
