"""
Pydantic models for the HTTP API request and response bodies.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from provenance import config


class PlatformItem(BaseModel):
    """A platform locator to bind."""
    platform: str = Field(..., description="Platform name, e.g. youtube")
    locator: str = Field(..., description="Raw identifier or absolute URL")


class BindRequest(BaseModel):
    """Bind (or unbind) one platform locator."""
    fingerprint: str = Field(..., description="0x-prefixed SHA-256 fingerprint")
    platform: str = Field(..., description="Platform name")
    locator: str = Field(..., description="Raw identifier or absolute URL")
    network: str = Field(default=config.DEFAULT_NETWORK, description="Ledger network")


class BindManyRequest(BaseModel):
    """Bind several platform locators in one call."""
    fingerprint: str = Field(..., description="0x-prefixed SHA-256 fingerprint")
    items: List[PlatformItem] = Field(..., description="Locators to bind")
    network: str = Field(default=config.DEFAULT_NETWORK, description="Ledger network")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")
