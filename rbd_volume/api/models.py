"""
Pydantic models for the Docker volume plugin protocol.

Field names follow the protocol's capitalised JSON keys.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# Requests


class NameRequest(BaseModel):
    """Request carrying only a volume name (Remove, Path, Get)."""

    Name: str = Field(..., description="Volume name")


class CreateRequest(NameRequest):
    """Request model for VolumeDriver.Create."""

    Opts: Optional[Dict[str, str]] = Field(None, description="Driver options given with --opt")


class MountRequest(NameRequest):
    """Request model for VolumeDriver.Mount and VolumeDriver.Unmount."""

    ID: Optional[str] = Field(None, description="Unique ID of the caller")


# Responses


class ErrorResponse(BaseModel):
    """Response carrying only an error string; empty on success."""

    Err: str = ""


class MountpointResponse(ErrorResponse):
    """Response model for VolumeDriver.Mount and VolumeDriver.Path."""

    Mountpoint: str = ""


class VolumeInfo(BaseModel):
    """Volume as reported to Docker."""

    Name: str
    Mountpoint: str = ""
    Status: Optional[Dict[str, Any]] = None


class GetResponse(ErrorResponse):
    """Response model for VolumeDriver.Get."""

    Volume: Optional[VolumeInfo] = None


class ListResponse(ErrorResponse):
    """Response model for VolumeDriver.List."""

    Volumes: List[VolumeInfo] = Field(default_factory=list)


class Capability(BaseModel):
    Scope: str


class CapabilitiesResponse(BaseModel):
    """Response model for VolumeDriver.Capabilities."""

    Capabilities: Capability


class ActivateResponse(BaseModel):
    """Response model for Plugin.Activate."""

    Implements: List[str]
