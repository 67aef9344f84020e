"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides an in-memory image registry for exercising the retention core.
"""
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

from retention.errors import RegistryError  # noqa: E402
from retention.registry import ImageRegistry  # noqa: E402


def raw_image(image_id: str, day: int, snapshots: Optional[List[str]] = None, hour: int = 12) -> Dict:
    """A describe_images entry created on 2024-01-<day>"""
    if snapshots is None:
        snapshots = [f"snap-{image_id}"]
    mappings = [{"DeviceName": f"/dev/sd{chr(ord('a') + i)}", "Ebs": {"SnapshotId": s}}
                for i, s in enumerate(snapshots)]
    return {
        "ImageId": image_id,
        "Name": f"image-{image_id}",
        "CreationDate": f"2024-01-{day:02d}T{hour:02d}:00:00.000Z",
        "BlockDeviceMappings": mappings,
    }


class FakeRegistry(ImageRegistry):
    """Scripted registry that records every call in order"""

    def __init__(self, images: Optional[List[Dict]] = None, fail_on: Optional[set] = None,
                 list_error: Optional[RegistryError] = None):
        self.images = images or []
        self.fail_on = set(fail_on or ())
        self.list_error = list_error
        self.calls: List[tuple] = []
        self.closed = False

    def list_images(self, owner, role):
        self.calls.append(("list", owner, role))
        if self.list_error is not None:
            raise self.list_error
        return list(self.images)

    def deregister_image(self, image_id):
        self.calls.append(("deregister", image_id))
        if image_id in self.fail_on:
            raise RegistryError(f"deregister {image_id} failed", operation="DeregisterImage",
                                resource_id=image_id)

    def delete_artifact(self, artifact_id):
        self.calls.append(("delete_snapshot", artifact_id))
        if artifact_id in self.fail_on:
            raise RegistryError(f"delete {artifact_id} failed", operation="DeleteSnapshot",
                                resource_id=artifact_id)

    def close(self):
        self.closed = True

    @property
    def destructive_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("deregister", "delete_snapshot")]



@pytest.fixture(autouse=True)
def clean_rmami_env(monkeypatch):
    """Keep the developer's environment out of configuration tests"""
    for name in ("RMAMI_CONFIG_FILE", "RMAMI_REGION", "RMAMI_OWNER", "RMAMI_ROLE", "RMAMI_KEEP",
                 "RMAMI_DRY_RUN", "RMAMI_ROLE_TAG", "RMAMI_LOG_LEVEL", "AWS_REGION", "AWS_DEFAULT_REGION",
                 "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN"):
        monkeypatch.delenv(name, raising=False)
