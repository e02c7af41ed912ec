"""Pydantic request/response schemas for the FaceSeq API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ProcessRequest(BaseModel):
    """Containers or directories to process."""

    locations: list[str] = Field(min_length=1, description="Container or directory URIs (hdfs://, s3n://, or paths)")
    extension: str = Field(default="seq", description="File name suffix used when a location is a directory")


class OutcomeModel(BaseModel):
    """One processed image."""

    source_key: str
    face_count: int = Field(ge=0)
    container: str
    position: int


class SkippedModel(BaseModel):
    """One record that produced no outcome."""

    source_key: str
    reason: str = Field(description="empty_payload, invalid_key, unsupported_format, decode_error, detection_failure")
    detail: str
    container: str
    position: int


class FailureModel(BaseModel):
    """A location or container that could not be read."""

    location: str
    detail: str


class ProcessResponse(BaseModel):
    """Result of a batch run."""

    outcomes: list[OutcomeModel]
    skipped: list[SkippedModel]
    failures: list[FailureModel]
    skip_count: int
    total_faces: int
    cancelled: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    detector_target: str
    cascades_loaded: list[str]
    active_batches: int
    queue_depth: int


class CascadeInfo(BaseModel):
    """Information about an available cascade."""

    name: str
    target: str = Field(description="Detection target: 'face' or 'eye'")
    status: str = Field(description="Cascade status: 'active', 'loaded', or 'available'")


class CascadesResponse(BaseModel):
    """Response for the cascade listing endpoint."""

    cascades: list[CascadeInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
