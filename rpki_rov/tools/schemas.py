"""
RPKI ROV Tool Schemas
Request/Response models for the tool operations
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts field names or their camelCase aliases"""
    model_config = ConfigDict(populate_by_name=True)


class VRPModel(CamelModel):
    """Validated ROA Payload as rendered to callers"""
    asn: int = Field(..., ge=0, le=4294967295)
    prefix: str
    max_length: int = Field(..., alias="maxLength")
    ta: Optional[str] = None


class ROAPrefixModel(CamelModel):
    prefix: str
    max_length: int = Field(..., alias="maxLength")


class CertificateInfo(CamelModel):
    subject: str
    serial_number: str = Field(..., alias="serialNumber")
    not_before: datetime = Field(..., alias="notBefore")
    not_after: datetime = Field(..., alias="notAfter")
    subject_key_identifier: Optional[str] = Field(default=None, alias="subjectKeyIdentifier")


class ParseROARequest(BaseModel):
    """parse_roa_file request body"""
    path: str = Field(..., min_length=1)


class ParseROAResponse(CamelModel):
    as_id: int = Field(..., alias="asID")
    address_family: List[str] = Field(..., alias="addressFamily")
    vrps: List[ROAPrefixModel]
    signing_certificate_present: bool = Field(default=True, alias="signingCertificatePresent")
    signing_certificate: CertificateInfo = Field(..., alias="signingCertificate")
    signing_time: Optional[datetime] = Field(default=None, alias="signingTime")


class SnapshotInfo(CamelModel):
    """Freshness of the VRP snapshot an answer was computed from"""
    source: str
    source_format: str = Field(..., alias="sourceFormat")
    fetched_at: datetime = Field(..., alias="fetchedAt")
    generated: Optional[datetime] = None
    vrp_count: int = Field(..., alias="vrpCount")
    rejected: int = 0


class RouteModel(CamelModel):
    origin_asn: int = Field(..., alias="originAsn")
    prefix: str


class ValidityResponse(CamelModel):
    route: RouteModel
    state: str
    reason: Optional[str] = None
    vrps: List[VRPModel] = Field(default_factory=list)
    snapshot: Optional[SnapshotInfo] = None


class ROAsResponse(CamelModel):
    asn: int
    snapshot: Optional[SnapshotInfo] = None
    vrps: List[VRPModel] = Field(default_factory=list)


class StatusResponse(CamelModel):
    version: str
    serial: int
    now: Optional[str] = None
    last_update_start: Optional[str] = Field(default=None, alias="lastUpdateStart")
    last_update_done: Optional[str] = Field(default=None, alias="lastUpdateDone")
    last_update_duration: Optional[float] = Field(default=None, alias="lastUpdateDuration")


class ToolDescription(BaseModel):
    name: str
    description: str


class ServerInfo(BaseModel):
    name: str
    title: str
    version: str
    instructions: str
    tools: List[ToolDescription]

