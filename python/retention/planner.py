"""Decide which images to keep and which to delete."""

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Tuple

from retention.errors import ValidationError
from retention.images import ImageRecord

# Keeping fewer than two images risks deleting one that is still rolling out.
MIN_KEEP = 2


@dataclass(frozen=True)
class RetentionPlan:
    """Ordered partition of the images, most recent first"""

    keep: Tuple[ImageRecord, ...]
    delete: Tuple[ImageRecord, ...]

    @property
    def total(self) -> int:
        return len(self.keep) + len(self.delete)

    @property
    def is_noop(self) -> bool:
        return not self.delete


def sort_key(image: ImageRecord):
    # newest first; equal timestamps fall back to ascending image id
    return (-image.created_at.timestamp(), image.image_id)


def plan(images: Iterable[ImageRecord], keep_count: int) -> RetentionPlan:
    """Split images into the most recent ``keep_count`` and the rest.

    Args:
        images: Image records for a single owner and role, in any order
        keep_count: Number of most recent images to keep (at least MIN_KEEP)

    Returns:
        RetentionPlan with both partitions sorted newest first

    Raises:
        ValidationError: If keep_count is too small or an image id appears twice
    """
    if isinstance(keep_count, bool) or not isinstance(keep_count, int):
        raise ValidationError(f"keep must be an integer, got: {keep_count!r}")
    if keep_count < MIN_KEEP:
        raise ValidationError(f"keep must be at least {MIN_KEEP}, got: {keep_count}")

    images = list(images)
    duplicates = sorted(image_id for image_id, n in Counter(i.image_id for i in images).items() if n > 1)
    if duplicates:
        raise ValidationError(
            f"duplicate image ids in registry response: {', '.join(duplicates)}",
            suggestions=["Re-run rmami; the registry returned an inconsistent image listing"],
        )

    ordered = sorted(images, key=sort_key)
    if len(ordered) <= keep_count:
        return RetentionPlan(keep=tuple(ordered), delete=())
    return RetentionPlan(keep=tuple(ordered[:keep_count]), delete=tuple(ordered[keep_count:]))
