"""Publish records for uploaded template artifacts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from stackdeploy.errors import ErrorClass
from stackdeploy.models.findings import ValidationFinding


@dataclass(frozen=True)
class PublishRecord:
    """
    Outcome of publishing one document.

    Attributes:
        document: Document name
        local_size: Bytes on disk
        remote_size: ContentLength reported by the store (None if not found)
        remote_location: HTTPS URL CloudFormation will fetch
        verified: True only when the object exists and the sizes match
        attempts: Upload attempts made
        key: Object key in the bucket
        error_class: Classified failure, if the upload failed
        error_message: Raw failure text
        remediation: Hint for the failure class
        reachable: HTTPS probe result (None when not probed)
        last_modified: LastModified of the remote object
    """

    document: str
    local_size: int
    remote_size: Optional[int]
    remote_location: str
    verified: bool
    attempts: int
    key: str = ""
    error_class: Optional[ErrorClass] = None
    error_message: Optional[str] = None
    remediation: Optional[str] = None
    reachable: Optional[bool] = None
    last_modified: Optional[datetime] = None

    @property
    def size_mismatch(self) -> bool:
        return self.remote_size is not None and self.remote_size != self.local_size

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "document": self.document,
            "key": self.key,
            "local_size": self.local_size,
            "remote_size": self.remote_size,
            "remote_location": self.remote_location,
            "verified": self.verified,
            "attempts": self.attempts,
            "error_class": self.error_class.value if self.error_class else None,
            "error_message": self.error_message,
            "remediation": self.remediation,
            "reachable": self.reachable,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
        }

    def __str__(self) -> str:
        if self.verified:
            return f"{self.document}: verified at {self.remote_location} ({self.local_size} bytes)"
        if self.size_mismatch:
            return (
                f"{self.document}: size mismatch (local {self.local_size}, "
                f"remote {self.remote_size})"
            )
        reason = self.error_message or "not verified"
        text = f"{self.document}: {reason} after {self.attempts} attempt(s)"
        if self.remediation:
            text += f" (hint: {self.remediation})"
        return text


@dataclass(frozen=True)
class PublishReport:
    """All publish records plus advisory findings from the probe."""

    records: tuple[PublishRecord, ...] = ()
    warnings: tuple[ValidationFinding, ...] = ()
    main_location: Optional[str] = None

    @property
    def passed(self) -> bool:
        """True only if every record is verified."""
        return bool(self.records) and all(r.verified for r in self.records)

    @property
    def failed_records(self) -> list[PublishRecord]:
        return [r for r in self.records if not r.verified]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "passed": self.passed,
            "main_location": self.main_location,
            "records": [r.to_dict() for r in self.records],
            "warnings": [w.to_dict() for w in self.warnings],
        }
