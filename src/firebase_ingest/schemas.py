"""
Pydantic schemas for the structures attached to emitted events.

MetadataEnvelope: provenance attached under the metadata target of every event
FailureRecord: the failure field of events produced for failed retrievals
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MetadataEnvelope(BaseModel):
    """Provenance of an emitted event.

    ``event`` is the retrieval kind: "get" for pulls, the stream event kind
    ("put", "patch", ...) for pushes, "error" for failures. ``runtime_seconds``
    is None for pushed events.
    """

    model_config = ConfigDict(frozen=True)

    host: str
    event: str
    query_name: str
    query_spec: dict[str, Any] = Field(default_factory=dict)
    runtime_seconds: float | None = None


class FailureRecord(BaseModel):
    """Details of a failed retrieval stored on the failure event."""

    model_config = ConfigDict(frozen=True)

    query: dict[str, Any] = Field(default_factory=dict)
    query_name: str
    error: str
    backtrace: list[str] = Field(default_factory=list)
    runtime_seconds: float = 0.0
