"""
Human-readable progress output for retention runs.

The core never prints directly; it calls a Reporter so that every simulated
or destructive action leaves a line behind, in the order it happened.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from tabulate import tabulate

from retention.images import ImageRecord
from retention.logging_utils import get_logger

DRY_RUN_PREFIX = "DRY RUN: "


class Reporter(ABC):
    """Sink for status lines, with helpers for each kind of announcement"""

    @abstractmethod
    def say(self, message: str) -> None:
        """Emit one status line"""

    def searching(self, region: str, owner: str, role: str) -> None:
        self.say(f"Searching for AMIs in {region!r} belonging to owner {owner!r} with tagged role {role!r}")

    def found(self, total: int, keep_count: int) -> None:
        if total <= keep_count:
            self.say(f"Found {total} AMIs. Keeping all of them.")
        else:
            self.say(f"Found {total} AMIs. Keeping most recent {keep_count}.")

    def keeping(self, image: ImageRecord) -> None:
        self.say(f"Keeping {image.image_id}, created at {image.created_display}")

    def would_delete(self, image: ImageRecord) -> None:
        self.say(f"{DRY_RUN_PREFIX}Would delete {image.image_id}, created at {image.created_display}")

    def deleting(self, image: ImageRecord) -> None:
        self.say(f"Deleting {image.image_id}, created at {image.created_display}")

    def deregistering(self, image_id: str) -> None:
        self.say(f"\t* deregistering image {image_id}")

    def deleting_artifact(self, artifact_id: str) -> None:
        self.say(f"\t* deleting snapshot {artifact_id}")

    def summary(self, kept: int, deleted: int, artifacts: int, dry_run: bool = False) -> None:
        """Final counts for the run"""
        if dry_run:
            self.say(f"{DRY_RUN_PREFIX}Kept {kept} AMIs, would delete {deleted} AMIs "
                     f"and {artifacts} snapshots")
        else:
            self.say(f"Kept {kept} AMIs, deleted {deleted} AMIs and {artifacts} snapshots")


class LoggingReporter(Reporter):
    """Reporter that writes status lines to a logger"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger("rmami")

    def say(self, message: str) -> None:
        self.logger.info(message)


class ListReporter(Reporter):
    """Reporter that keeps status lines in memory"""

    def __init__(self):
        self.lines: List[str] = []

    def say(self, message: str) -> None:
        self.lines.append(message)


def plan_table(plan, dry_run: bool = False) -> str:
    """Render a RetentionPlan as a grid table, newest first"""
    delete_action = "would delete" if dry_run else "delete"
    rows = []
    for image in plan.keep:
        rows.append([image.image_id, image.name or "", image.created_display, "keep",
                     ", ".join(image.artifact_ids)])
    for image in plan.delete:
        rows.append([image.image_id, image.name or "", image.created_display, delete_action,
                     ", ".join(image.artifact_ids)])
    headers = ["Image ID", "Name", "Created", "Action", "Snapshots"]
    return tabulate(rows, headers=headers, tablefmt="grid")
