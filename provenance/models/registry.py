"""
Pydantic models for ledger records: registry entries, bindings and receipts.
"""

from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LookupStatus(str, Enum):
    """Outcome of a registry read."""
    PRESENT = "present"
    ABSENT = "absent"
    PENDING = "pending"


class RegistryEntry(BaseModel):
    """Ledger record anchoring a fingerprint to a claimant and manifest locator."""
    fingerprint: str = Field(..., description="Fingerprint of the claimed content")
    claimant: str = Field(..., description="Identity recorded as owner")
    manifest_locator: str = Field(..., description="Blob locator of the signed manifest")
    network: str = Field(..., description="Ledger network the entry lives on")
    anchored_at: datetime = Field(default_factory=utcnow, description="Ledger-assigned, authoritative time")
    confirmed: bool = Field(default=True, description="False while the ledger write is pending")
    tx_id: Optional[str] = Field(None, description="Ledger transaction identifier")

    class Config:
        frozen = True


class RegistryLookup(BaseModel):
    """Result of Registry.read for one (fingerprint, network)."""
    fingerprint: str
    network: str
    status: LookupStatus
    entries: List[RegistryEntry] = Field(default_factory=list)

    class Config:
        frozen = True

    @property
    def entry(self) -> Optional[RegistryEntry]:
        return self.entries[0] if len(self.entries) == 1 else None

    @property
    def is_duplicated(self) -> bool:
        return len(self.entries) > 1


class Binding(BaseModel):
    """Secondary association of a fingerprint with a platform locator."""
    fingerprint: str = Field(..., description="Bound fingerprint")
    platform: str = Field(..., description="Canonical platform name")
    locator: str = Field(..., description="Canonical platform locator")
    claimant: str = Field(..., description="Owner who created the binding")
    network: str = Field(..., description="Ledger network")
    bound_at: datetime = Field(default_factory=utcnow)

    class Config:
        frozen = True

    def key(self):
        return (self.fingerprint, self.platform, self.locator)


class Receipt(BaseModel):
    """Ledger acknowledgement of a write."""
    tx_id: str = Field(..., description="Ledger transaction identifier")
    network: str = Field(..., description="Ledger network")
    recorded_at: datetime = Field(default_factory=utcnow)

    class Config:
        frozen = True
