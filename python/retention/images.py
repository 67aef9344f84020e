"""
Image records built from EC2 ``describe_images`` responses.

An ImageRecord is only valid for EBS-backed AMIs: the snapshots listed in the
image's block device mappings must be deleted along with the image, so an
image with no snapshot IDs is rejected rather than silently tracked.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from retention.errors import RecordConstructionError

# EC2 reports CreationDate as e.g. "2024-01-15T10:30:00.000Z"
CREATION_DATE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%SZ",
)


def parse_creation_date(value: Optional[str], image_id: Optional[str] = None) -> datetime:
    """Parse an EC2 creation timestamp into an aware UTC datetime.

    Args:
        value: Timestamp string as returned by the registry
        image_id: Image the timestamp belongs to, for error messages

    Returns:
        datetime with tzinfo=UTC

    Raises:
        RecordConstructionError: If the value is missing or not in a supported layout
    """
    if not value or not isinstance(value, str):
        raise RecordConstructionError(f"Image {image_id} has no creation date", image_id=image_id)

    text = value.strip()
    for fmt in CREATION_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    # RFC 3339 with an explicit offset, e.g. "2024-01-15T10:30:00+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
    if parsed is None or parsed.tzinfo is None:
        raise RecordConstructionError(
            f"Image {image_id} has an unparsable creation date: {value!r}", image_id=image_id
        )
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class ImageRecord:
    """One AMI and the snapshots that must be deleted with it"""

    image_id: str
    created_at: datetime
    artifact_ids: Tuple[str, ...]
    name: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.image_id:
            raise RecordConstructionError("Image record has no image id")
        if self.created_at.tzinfo is None:
            raise RecordConstructionError(
                f"Image {self.image_id} creation time must be timezone-aware", image_id=self.image_id
            )
        # normalise to UTC and a tuple so the record stays hashable
        object.__setattr__(self, "created_at", self.created_at.astimezone(timezone.utc))
        object.__setattr__(self, "artifact_ids", tuple(self.artifact_ids))
        if not self.artifact_ids:
            raise RecordConstructionError(
                f"AMI {self.image_id} does not have any associated snapshot IDs. "
                f"rmami only supports EBS-based AMIs right now.",
                image_id=self.image_id,
            )

    @property
    def created_display(self) -> str:
        return self.created_at.strftime("%Y-%m-%d %H:%M:%S UTC")


def snapshot_ids_from_mappings(mappings: Optional[Iterable[Dict[str, Any]]]) -> List[str]:
    """Collect snapshot IDs from BlockDeviceMappings, in mapping order.

    Mappings without an EBS snapshot (ephemeral/instance-store volumes) are skipped.
    """
    snapshot_ids = []
    for mapping in mappings or []:
        ebs = mapping.get("Ebs") or {}
        snapshot_id = ebs.get("SnapshotId")
        if snapshot_id:
            snapshot_ids.append(snapshot_id)
    return snapshot_ids


def image_from_raw(raw: Dict[str, Any]) -> ImageRecord:
    """Build an ImageRecord from one ``describe_images`` entry"""
    image_id = raw.get("ImageId")
    if not image_id:
        raise RecordConstructionError("no image id in registry response")
    created_at = parse_creation_date(raw.get("CreationDate"), image_id=image_id)
    return ImageRecord(
        image_id=image_id,
        created_at=created_at,
        artifact_ids=tuple(snapshot_ids_from_mappings(raw.get("BlockDeviceMappings"))),
        name=raw.get("Name"),
    )


def images_from_raw(raws: Iterable[Dict[str, Any]]) -> List[ImageRecord]:
    """Convert every raw image; the first malformed one aborts the whole conversion"""
    return [image_from_raw(raw) for raw in raws]
