"""Snapshots of remote entities returned by the app generation API.

Snapshots are immutable: every poll produces a new one and the previous one is
dropped. Status values outside the known enums are kept as plain strings so an
API that grows new states does not break parsing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

__all__ = [
    "ApplicationDetails",
    "JobSnapshot",
    "JobStatus",
    "PublicationSnapshot",
    "PublicationStatus",
    "TokenGrant",
]


class JobStatus(str, Enum):
    """States of a generation job. Terminal: DONE, FAILED."""

    PENDING = "Pending"
    READY_TO_GENERATE = "ReadyToGenerate"
    GENERATING = "Generating"
    DONE = "Done"
    FAILED = "Failed"


class PublicationStatus(str, Enum):
    """States of a publication. Terminal: FINISHED, FAILED."""

    QUEUED = "Queued"
    RUNNING = "Running"
    FINISHED = "Finished"
    FAILED = "Failed"


def _parse_status(enum_cls: type[Enum], value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return str(value)


@dataclass(frozen=True)
class TokenGrant:
    """Result of one authentication exchange."""

    access_token: str = field(repr=False)
    expires_in: int


@dataclass(frozen=True)
class JobSnapshot:
    """One observed state of a generation job.

    Attributes:
        key: Job id
        status: JobStatus, or the raw string for an unrecognized value
        app_key: Application key from ``appSpec.appKey`` once generated
        raw: The response payload as received
    """

    key: str
    status: JobStatus | str
    app_key: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "JobSnapshot":
        app_spec = data.get("appSpec") or {}
        return cls(
            key=data.get("key", ""),
            status=_parse_status(JobStatus, data.get("status")),
            app_key=app_spec.get("appKey") or None,
            raw=data,
        )

    @property
    def is_known_status(self) -> bool:
        return isinstance(self.status, JobStatus)


@dataclass(frozen=True)
class PublicationSnapshot:
    """One observed state of a publication."""

    key: str
    status: PublicationStatus | str
    application_key: str | None = None
    application_revision: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PublicationSnapshot":
        return cls(
            key=data.get("key", ""),
            status=_parse_status(PublicationStatus, data.get("status")),
            application_key=data.get("applicationKey"),
            application_revision=data.get("applicationRevision"),
            raw=data,
        )

    @property
    def is_known_status(self) -> bool:
        return isinstance(self.status, PublicationStatus)


@dataclass(frozen=True)
class ApplicationDetails:
    """Application metadata, fetched once after publication succeeds."""

    key: str
    name: str
    url_path: str | None

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> "ApplicationDetails":
        data = data or {}
        return cls(
            key=data.get("key", ""),
            name=data.get("name", ""),
            url_path=data.get("urlPath") or None,
        )
