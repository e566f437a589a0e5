"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models.profiles import UserProfile
from models.records import HistoryState, Reading


class ReadingOut(BaseModel):
    """One normalized sample from a device's history."""

    id: str
    measurements: Dict[str, float]
    raw_timestamp: str
    timestamp: datetime
    timestamp_fallback: bool = Field(
        default=False,
        description="True when the stored timestamp could not be parsed and the read time was used.",
    )

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingOut":
        return cls(
            id=reading.id,
            measurements=dict(reading.measurements),
            raw_timestamp=reading.raw_timestamp,
            timestamp=reading.timestamp,
            timestamp_fallback=reading.timestamp_fallback,
        )


class HistoryResponse(BaseModel):
    """Current state of a device history subscription."""

    device_id: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    readings: List[ReadingOut] = Field(default_factory=list)
    loading: bool
    error: Optional[str] = None

    @classmethod
    def from_state(
        cls,
        device_id: str,
        state: HistoryState,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> "HistoryResponse":
        return cls(
            device_id=device_id,
            start_date=start_date,
            end_date=end_date,
            readings=[ReadingOut.from_reading(reading) for reading in state.readings],
            loading=state.loading,
            error=state.error,
        )


class ReadingPayload(BaseModel):
    """Raw sample as written by a device; field names match the stored record."""

    model_config = ConfigDict(extra="forbid")

    BOD: Optional[float] = None
    COD: Optional[float] = None
    Flow: Optional[float] = None
    PH: Optional[float] = None
    TSS: Optional[float] = None
    Timestamp: Optional[Union[str, float]] = None


class Credentials(BaseModel):
    email: str
    password: str


class EmailRequest(BaseModel):
    email: str


class AuthResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class SessionResponse(BaseModel):
    uid: str
    email: str
    profile: Optional[UserProfile] = None
    needs_onboarding: bool


class PermissionResponse(BaseModel):
    permission: str
    granted: bool


class EmailNotificationRequest(BaseModel):
    subject: str
    text: str
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    level: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class EmailNotificationResponse(BaseModel):
    success: bool
    recipients: int = Field(..., ge=0)
