"""
Image registry access.

ImageRegistry is the interface the retention core talks to. EC2ImageRegistry
binds it to the EC2 API through boto3; tests bind it to an in-memory fake.
Registries are context managers so the underlying client is released on
every exit path, including failures part-way through a deletion batch.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from retention.errors import create_registry_error
from retention.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_ROLE_TAG = "Role"


class ImageRegistry(ABC):
    """Operations the retention core needs from an image registry"""

    @abstractmethod
    def list_images(self, owner: str, role: str) -> List[Dict[str, Any]]:
        """Return raw image descriptions owned by ``owner`` and tagged with ``role``"""

    @abstractmethod
    def deregister_image(self, image_id: str) -> None:
        """Deregister one image. Raises RegistryError on failure."""

    @abstractmethod
    def delete_artifact(self, artifact_id: str) -> None:
        """Delete one backing snapshot. Raises RegistryError on failure."""

    def close(self) -> None:
        """Release any connection held by the registry"""

    def __enter__(self) -> "ImageRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class EC2ImageRegistry(ImageRegistry):
    """ImageRegistry backed by the EC2 API"""

    def __init__(self, region: str, access_key: Optional[str] = None, secret_key: Optional[str] = None,
                 role_tag: str = DEFAULT_ROLE_TAG, client=None):
        """Create an EC2 registry for one region

        Args:
            region: AWS region holding the AMIs
            access_key: Explicit access key (default: boto3 credential chain)
            secret_key: Explicit secret key (default: boto3 credential chain)
            role_tag: Tag key whose value selects the role
            client: Pre-built EC2 client, mainly for tests
        """
        self.region = region
        self.role_tag = role_tag
        self.session = None
        if client is None:
            self.session = session = boto3.session.Session(
                aws_access_key_id=access_key or None,
                aws_secret_access_key=secret_key or None,
                region_name=region,
            )
            client = session.client("ec2", config=Config(user_agent_extra="rmami"))
        self._client = client

    def list_images(self, owner: str, role: str) -> List[Dict[str, Any]]:
        filters = [{"Name": f"tag:{self.role_tag}", "Values": [role]}]
        images: List[Dict[str, Any]] = []
        try:
            paginator = self._client.get_paginator("describe_images")
            for page in paginator.paginate(Owners=[owner], Filters=filters):
                images.extend(page.get("Images", []))
        except (ClientError, BotoCoreError) as e:
            raise create_registry_error("DescribeImages", None, e) from e
        logger.debug(f"DescribeImages returned {len(images)} images for owner={owner} {self.role_tag}={role}")
        return images

    def deregister_image(self, image_id: str) -> None:
        try:
            self._client.deregister_image(ImageId=image_id)
        except (ClientError, BotoCoreError) as e:
            raise create_registry_error("DeregisterImage", image_id, e) from e

    def delete_artifact(self, artifact_id: str) -> None:
        try:
            self._client.delete_snapshot(SnapshotId=artifact_id)
        except (ClientError, BotoCoreError) as e:
            raise create_registry_error("DeleteSnapshot", artifact_id, e) from e

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
        logger.debug(f"Closed EC2 client for {self.region}")


@contextmanager
def open_registry(config) -> Iterator[ImageRegistry]:
    """Open an EC2 registry for a resolved RetentionConfig and close it afterwards"""
    registry = EC2ImageRegistry(
        region=config.region,
        access_key=config.access_key,
        secret_key=config.secret_key,
        role_tag=config.role_tag,
    )
    with registry:
        yield registry
