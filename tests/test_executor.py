"""Unit tests for retention/executor.py"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeRegistry
from retention.errors import DeletionError, RegistryError
from retention.executor import execute
from retention.images import ImageRecord
from retention.reporter import DRY_RUN_PREFIX, ListReporter

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def image(image_id, day, snapshots=None):
    return ImageRecord(image_id, BASE + timedelta(days=day), snapshots or [f"{image_id}-snap"])


@pytest.fixture
def doomed():
    return [
        image("ami-3", 3, ["snap-3a", "snap-3b"]),
        image("ami-2", 2, ["snap-2a", "snap-2b"]),
        image("ami-1", 1, ["snap-1a"]),
    ]


class TestDryRun:
    """Tests for simulation mode"""

    def test_no_registry_calls(self, doomed):
        """Dry run never deregisters or deletes"""
        registry = FakeRegistry()
        reporter = ListReporter()
        summary = execute(doomed, True, registry, reporter)

        assert registry.calls == []
        assert summary.dry_run
        assert summary.would_delete == 3
        assert summary.would_delete_artifacts == 5
        assert summary.images_deleted == 0

    def test_reports_are_marked_as_dry_run(self, doomed):
        """Every dry-run line is distinguishable from a real deletion"""
        reporter = ListReporter()
        execute(doomed, True, FakeRegistry(), reporter)

        assert len(reporter.lines) == 3
        assert all(line.startswith(DRY_RUN_PREFIX) for line in reporter.lines)
        assert "ami-3" in reporter.lines[0]
        assert "2024-01-04" in reporter.lines[0]

    def test_failing_registry_is_never_touched(self, doomed):
        """Scripted failures are irrelevant in dry run"""
        registry = FakeRegistry(fail_on={"ami-3", "snap-2a"})
        execute(doomed, True, registry, ListReporter())
        assert registry.destructive_calls == []


class TestDeletion:
    """Tests for real deletion"""

    def test_deletes_in_plan_order(self, doomed):
        """Each image is deregistered before its snapshots, images in given order"""
        registry = FakeRegistry()
        summary = execute(doomed, False, registry, ListReporter())

        assert registry.calls == [
            ("deregister", "ami-3"),
            ("delete_snapshot", "snap-3a"),
            ("delete_snapshot", "snap-3b"),
            ("deregister", "ami-2"),
            ("delete_snapshot", "snap-2a"),
            ("delete_snapshot", "snap-2b"),
            ("deregister", "ami-1"),
            ("delete_snapshot", "snap-1a"),
        ]
        assert summary.images_deleted == 3
        assert summary.artifacts_deleted == 5
        assert not summary.dry_run

    def test_reports_each_action(self, doomed):
        """Image and snapshot deletions are all reported"""
        reporter = ListReporter()
        execute(doomed[:1], False, FakeRegistry(), reporter)
        assert reporter.lines[0].startswith("Deleting ami-3")
        assert reporter.lines[1] == "\t* deregistering image ami-3"
        assert reporter.lines[2] == "\t* deleting snapshot snap-3a"
        assert reporter.lines[3] == "\t* deleting snapshot snap-3b"

    def test_empty_batch(self):
        """Nothing to delete is a success with zero counts"""
        registry = FakeRegistry()
        summary = execute([], False, registry, ListReporter())
        assert registry.calls == []
        assert summary.images_deleted == 0


class TestFailFast:
    """Tests for stopping at the first failure"""

    def test_deregister_failure_stops_everything(self, doomed):
        """A failed deregistration skips its snapshots and later images"""
        registry = FakeRegistry(fail_on={"ami-2"})
        with pytest.raises(DeletionError) as exc_info:
            execute(doomed, False, registry, ListReporter())

        assert registry.calls == [
            ("deregister", "ami-3"),
            ("delete_snapshot", "snap-3a"),
            ("delete_snapshot", "snap-3b"),
            ("deregister", "ami-2"),
        ]
        error = exc_info.value
        assert error.image_id == "ami-2"
        assert error.artifact_id is None
        assert error.images_deleted == 1
        assert error.artifacts_deleted == 2
        assert error.operation == "DeregisterImage"

    def test_snapshot_failure_stops_everything(self, doomed):
        """A failed snapshot deletion skips remaining snapshots and images, nothing is rolled back"""
        registry = FakeRegistry(fail_on={"snap-2a"})
        with pytest.raises(DeletionError) as exc_info:
            execute(doomed, False, registry, ListReporter())

        assert registry.calls == [
            ("deregister", "ami-3"),
            ("delete_snapshot", "snap-3a"),
            ("delete_snapshot", "snap-3b"),
            ("deregister", "ami-2"),
            ("delete_snapshot", "snap-2a"),
        ]
        error = exc_info.value
        assert error.image_id == "ami-2"
        assert error.artifact_id == "snap-2a"
        assert error.images_deleted == 1
        assert error.artifacts_deleted == 2

    def test_deletion_error_keeps_registry_failure(self, doomed):
        """The underlying registry error is chained and available"""
        registry = FakeRegistry(fail_on={"ami-3"})
        with pytest.raises(DeletionError) as exc_info:
            execute(doomed, False, registry, ListReporter())
        assert isinstance(exc_info.value, RegistryError)
        assert isinstance(exc_info.value.failure, RegistryError)
        assert exc_info.value.__cause__ is exc_info.value.failure

    def test_failure_is_reported_before_the_call(self, doomed):
        """The trail shows the action that failed as the last line"""
        reporter = ListReporter()
        with pytest.raises(DeletionError):
            execute(doomed, False, FakeRegistry(fail_on={"snap-3b"}), reporter)
        assert reporter.lines[-1] == "\t* deleting snapshot snap-3b"
