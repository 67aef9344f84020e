"""
Delete the images a RetentionPlan marked for deletion.

Images are processed one at a time in plan order, newest first. For each
image the AMI is deregistered and then its snapshots are deleted in the
order recorded on the image. The first failed registry call stops the whole
batch: nothing after it is attempted and nothing before it is rolled back.
"""

from dataclasses import dataclass
from typing import Iterable

from retention.errors import DeletionError, RegistryError
from retention.images import ImageRecord
from retention.logging_utils import get_logger
from retention.registry import ImageRegistry
from retention.reporter import Reporter

logger = get_logger(__name__)


@dataclass
class DeletionSummary:
    """Counts for one execution pass"""
    images_deleted: int = 0
    artifacts_deleted: int = 0
    would_delete: int = 0
    would_delete_artifacts: int = 0
    dry_run: bool = False


def execute(delete: Iterable[ImageRecord], dry_run: bool, registry: ImageRegistry,
            reporter: Reporter) -> DeletionSummary:
    """Deregister each image and delete its snapshots, stopping at the first failure

    Args:
        delete: Images to remove, in the order they should be processed
        dry_run: If True, only report what would be deleted
        registry: Registry to issue deletion calls against
        reporter: Sink for status lines

    Returns:
        DeletionSummary for the pass

    Raises:
        DeletionError: On the first failed deregistration or snapshot deletion
    """
    summary = DeletionSummary(dry_run=dry_run)

    for image in delete:
        if dry_run:
            reporter.would_delete(image)
            summary.would_delete += 1
            summary.would_delete_artifacts += len(image.artifact_ids)
            continue

        reporter.deleting(image)
        reporter.deregistering(image.image_id)
        try:
            registry.deregister_image(image.image_id)
        except RegistryError as e:
            logger.error(f"Deregistering {image.image_id} failed, not attempting remaining images")
            raise DeletionError(e, image_id=image.image_id, images_deleted=summary.images_deleted,
                                artifacts_deleted=summary.artifacts_deleted) from e

        for artifact_id in image.artifact_ids:
            reporter.deleting_artifact(artifact_id)
            try:
                registry.delete_artifact(artifact_id)
            except RegistryError as e:
                logger.error(f"Deleting snapshot {artifact_id} of {image.image_id} failed, "
                             f"not attempting remaining snapshots or images")
                raise DeletionError(e, image_id=image.image_id, artifact_id=artifact_id,
                                    images_deleted=summary.images_deleted,
                                    artifacts_deleted=summary.artifacts_deleted) from e
            summary.artifacts_deleted += 1

        summary.images_deleted += 1
        logger.debug(f"Deleted {image.image_id} and {len(image.artifact_ids)} snapshot(s)")

    return summary
