"""
Error types for AMI retention runs, with actionable guidance for operators.

Every failure that can end a run is one of the RetentionError subclasses
below. They carry suggested fixes so the CLI can print something more
useful than a bare AWS error code.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONFIGURATION = "configuration"
    RECORD = "record"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    RESOURCE = "resource"
    THROTTLING = "throttling"
    NETWORK = "network"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Error that tells the operator what to check before running rmami again.

    ``str(error)`` is the full multi-line report (category, message, numbered
    fixes and context) so it can be logged as-is by the CLI.
    """

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.category = category
        self.suggestions = list(suggestions or [])
        self.details = dict(details or {})
        super().__init__(self.format_message())

    def format_message(self) -> str:
        lines = [f"❌ [{self.category.value}] {self.message}"]

        if self.suggestions:
            lines.append("💡 What to check:")
            lines.extend(f"   {i}. {suggestion}" for i, suggestion in enumerate(self.suggestions, 1))

        if self.details:
            lines.append("📋 Context:")
            width = max(len(key) for key in self.details)
            lines.extend(f"   {key.ljust(width)} : {value}" for key, value in self.details.items())

        return "\n".join(lines)


class RetentionError(ActionableError):
    """Base class for every error a retention run can surface"""


class ConfigurationError(RetentionError):
    """One or more configuration problems, reported together"""

    def __init__(self, errors: List[str], suggestions: Optional[List[str]] = None):
        self.errors = list(errors)
        if len(self.errors) == 1:
            message = f"Configuration error: {self.errors[0]}"
        else:
            message = "Configuration validation failed:\n  " + "\n  ".join(self.errors)
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            suggestions=suggestions or [
                "Check the 'rmami' section of your config.yaml",
                "Compare against config-example.yaml",
                "Command line flags override values from the config file",
            ],
        )


class ValidationError(ConfigurationError):
    """Invalid arguments passed to the retention planner"""

    def __init__(self, error: str, suggestions: Optional[List[str]] = None):
        super().__init__([error], suggestions=suggestions or ["Set keep to 2 or more"])


class RecordConstructionError(RetentionError):
    """An image returned by the registry cannot be tracked"""

    def __init__(self, message: str, image_id: Optional[str] = None):
        self.image_id = image_id
        details = {"image_id": image_id} if image_id else None
        super().__init__(
            message,
            category=ErrorCategory.RECORD,
            suggestions=[
                "Only EBS-backed AMIs with at least one snapshot are supported",
                "Remove the role tag from images that should not be managed by rmami",
            ],
            details=details,
        )


class RegistryError(RetentionError):
    """A call to the image registry failed"""

    def __init__(self, message: str, operation: str, resource_id: Optional[str] = None,
                 cause: Optional[BaseException] = None, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None):
        self.operation = operation
        self.resource_id = resource_id
        self.cause = cause
        details: Dict[str, Any] = {"operation": operation}
        if resource_id:
            details["resource_id"] = resource_id
        if cause is not None:
            details["error_type"] = type(cause).__name__
            details["error_message"] = str(cause)
        super().__init__(message, category=category, suggestions=suggestions, details=details)


class DeletionError(RegistryError):
    """Deletion stopped at the first failed registry call"""

    def __init__(self, failure: RegistryError, image_id: str, artifact_id: Optional[str] = None,
                 images_deleted: int = 0, artifacts_deleted: int = 0):
        self.failure = failure
        self.image_id = image_id
        self.artifact_id = artifact_id
        self.images_deleted = images_deleted
        self.artifacts_deleted = artifacts_deleted
        if artifact_id:
            message = f"Failed to delete snapshot {artifact_id} of image {image_id}"
        else:
            message = f"Failed to deregister image {image_id}"
        message += (f"; stopped after {images_deleted} image(s) and "
                    f"{artifacts_deleted} snapshot(s) were deleted")
        super().__init__(
            message,
            operation=failure.operation,
            resource_id=failure.resource_id,
            cause=failure.cause,
            category=failure.category,
            suggestions=failure.suggestions,
        )


class CancelledError(RetentionError):
    """The run was cancelled before it started deleting"""

    def __init__(self, message: str = "Retention run cancelled"):
        super().__init__(message, category=ErrorCategory.CANCELLED)


def _error_code(error: BaseException) -> str:
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        return response.get("Error", {}).get("Code", "") or ""
    return ""


def create_registry_error(operation: str, resource_id: Optional[str], error: BaseException) -> RegistryError:
    """Create actionable error for a failed EC2 call"""
    code = _error_code(error)
    error_str = f"{code} {error}".lower()

    suggestions = [
        "Check the AWS region is correct",
        "Verify AWS credentials are configured (aws configure, or access_key/secret_key)",
    ]
    category = ErrorCategory.UNKNOWN

    if "credentials" in error_str or "authfailure" in error_str or "expired" in error_str:
        category = ErrorCategory.AUTHENTICATION
        suggestions.insert(0, "Refresh or rotate the AWS credentials used by rmami")
        suggestions.insert(1, "Or export AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY (and AWS_SESSION_TOKEN "
                              "for temporary credentials) with access_key/secret_key left empty")
    elif "unauthorized" in error_str or "403" in error_str or "accessdenied" in error_str:
        category = ErrorCategory.PERMISSION
        suggestions.insert(0, "Check the IAM policy allows ec2:DescribeImages, ec2:DeregisterImage "
                              "and ec2:DeleteSnapshot")
    elif "notfound" in error_str or "not found" in error_str or "does not exist" in error_str:
        category = ErrorCategory.RESOURCE
        suggestions.insert(0, f"Verify {resource_id or 'the resource'} still exists in this region")
    elif "inuse" in error_str or "in use" in error_str:
        category = ErrorCategory.RESOURCE
        suggestions.insert(0, f"{resource_id or 'The resource'} is still in use by another image or volume")
    elif "throttl" in error_str or "requestlimitexceeded" in error_str or "rate exceeded" in error_str:
        category = ErrorCategory.THROTTLING
        suggestions.insert(0, "The EC2 API is rate limiting requests; wait and run again")
    elif "timeout" in error_str or "timed out" in error_str or "connect" in error_str:
        category = ErrorCategory.NETWORK
        suggestions.insert(0, "Check network connectivity to the EC2 endpoint")

    target = f" {resource_id}" if resource_id else ""
    return RegistryError(
        message=f"EC2 operation failed: {operation}{target}",
        operation=operation,
        resource_id=resource_id,
        cause=error,
        category=category,
        suggestions=suggestions,
    )
