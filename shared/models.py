# shared/models.py
"""
Shared Data Models (Pydantic)

Defines the data structures exchanged between the perception client, the
server and any dashboard reading from it.

These models are used for:
- Serialization/deserialization in the API
- The risk assessment returned by the classifier
- Read views of stored drivers, sessions and events
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DriverState(str, Enum):
    """States reported by the perception pipeline."""
    NORMAL = "NORMAL"          # Driver is alert and focused
    DISTRACTED = "DISTRACTED"  # Driver is not looking at the road
    DROWSY = "DROWSY"          # Driver appears sleepy or fatigued


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# ----------------------------------------------------------------------
# Inbound payloads (client → server)
# ----------------------------------------------------------------------

class ClientEvent(BaseModel):
    """
    Payload sent to POST /api/detection-event.
    `state` is kept as a raw string so the core can report exactly
    what was wrong with it.
    """
    model_config = ConfigDict(populate_by_name=True)

    driver_id: str = Field(..., alias="driverId")
    session_id: Optional[int] = Field(None, alias="sessionId")
    state: Optional[str] = None
    duration: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None


class DriverLogin(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    driver_id: str = Field(..., alias="driverId")
    driver_name: str = Field(..., alias="driverName", min_length=1)


class SessionRequest(BaseModel):
    """Body of POST /api/sessions/start and /api/sessions/end."""
    model_config = ConfigDict(populate_by_name=True)

    driver_id: str = Field(..., alias="driverId")


# ----------------------------------------------------------------------
# Risk assessment (classifier output)
# ----------------------------------------------------------------------

class RiskAssessment(BaseModel):
    """Derived fatigue risk. Never persisted."""
    model_config = ConfigDict(frozen=True)

    risk_level: RiskLevel
    probability: float = Field(..., ge=0.0, le=1.0)
    minutes_until_high: int = Field(..., ge=0)
    recommendation: str


# ----------------------------------------------------------------------
# Read views (server → client)
# ----------------------------------------------------------------------

class DriverOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    driver_id: str
    driver_name: str


class DriverSummary(DriverOut):
    rating: str


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: int
    driver_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    total_driving_time_seconds: Optional[int] = None
    active: bool


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: int
    session_id: int
    driver_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: float
    event_type: str
    metadata_json: Optional[str] = None
    ear_value: Optional[float] = None
    left_ear: Optional[float] = None
    right_ear: Optional[float] = None
    head_direction: Optional[str] = None
    face_detected: Optional[bool] = None
    feature_source: Optional[str] = None


class EventResponse(BaseModel):
    """Response from the server after processing a detection event."""
    received: bool
    event_id: Optional[int] = None
    message: str


class DriverStatistics(BaseModel):
    driver_id: str
    total_events: int
    drowsy_percent: float
    distracted_percent: float
    normal_percent: float
    avg_ear: float
    avg_blink_rate: float
    session_count: int
    avg_session_duration: float


class MetadataSummary(BaseModel):
    session_id: int
    average_ear: Optional[float] = None
    metadata_fields: List[str]
    source_distribution: Dict[str, int]
    event_type_distribution: Dict[str, int]


class MaintenanceResult(BaseModel):
    operation: str
    affected: int
