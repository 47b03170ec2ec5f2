"""Pydantic schemas for the PKI backend's HTTP API."""

from pydantic import BaseModel, Field


class IssueRequestBody(BaseModel):
    """Request body for ``pki/{domain}/issue/cert``."""

    common_name: str = Field(..., min_length=1)
    ttl: str
    alt_names: str | None = None
    ip_sans: str | None = None
    format: str = "pem"


class IssuedCertificateData(BaseModel):
    certificate: str = Field(..., min_length=1)
    private_key: str = Field(..., min_length=1)
    serial_number: str = Field(..., min_length=1)
    issuing_ca: str | None = None
    ca_chain: list[str] | None = None
    private_key_type: str | None = None
    expiration: int | None = None


class IssueResponse(BaseModel):
    """Response model for a successful issue call."""

    request_id: str | None = None
    lease_id: str | None = None
    renewable: bool | None = None
    lease_duration: int | None = None
    data: IssuedCertificateData
    warnings: list[str] | None = None


class ErrorResponse(BaseModel):
    """Standard backend error body."""

    errors: list[str] = []
