"""
Garment Model

One uploaded item. Created in UPLOADED on upload and mutated exactly once by
garment intake, which sets its category and mask (SEGMENTED) or marks it FAILED.
"""

import uuid
from enum import Enum
from sqlmodel import SQLModel, Field, Column, JSON
from typing import Optional, Dict, Any, TYPE_CHECKING
from datetime import datetime

from airchives.core.exceptions import InvalidStatusTransitionError

if TYPE_CHECKING:
    from airchives.engines.garment.intake import IntakeOutcome


class GarmentStatus(str, Enum):
    """Garment lifecycle states."""
    UPLOADED = "UPLOADED"     # Stored, intake not finished
    SEGMENTED = "SEGMENTED"   # Mask available, ready for generation
    FAILED = "FAILED"         # Segmentation failed, no mask


class GarmentCategory(str, Enum):
    TOP = "TOP"
    BOTTOM = "BOTTOM"
    DRESS = "DRESS"
    OUTERWEAR = "OUTERWEAR"


class Garment(SQLModel, table=True):
    __tablename__ = "garments"

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )
    owner_id: str = Field(index=True)

    # Original upload
    original_image_url: str
    original_storage_key: Optional[str] = None
    original_filename: Optional[str] = None

    # Intake results
    category: str = Field(default=GarmentCategory.TOP.value)
    detected_color: Optional[str] = None
    detection_confidence: Optional[float] = None
    bounding_box: Dict[str, Any] = Field(default={}, sa_column=Column(JSON))
    mask_image_url: Optional[str] = None
    segmentation_confidence: Optional[float] = None

    status: str = Field(default=GarmentStatus.UPLOADED.value)
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_ready_for_generation(self) -> bool:
        return self.status == GarmentStatus.SEGMENTED.value and bool(self.mask_image_url)

    def apply_intake(self, outcome: "IntakeOutcome"):
        """Record the intake outcome. A garment is only processed once."""
        if self.status != GarmentStatus.UPLOADED.value:
            raise InvalidStatusTransitionError(self.status, outcome.status.value, job_id=self.id)

        detection = outcome.detection
        self.category = outcome.category.value
        self.detection_confidence = detection.confidence
        self.bounding_box = dict(detection.bounding_box)

        if outcome.status == GarmentStatus.SEGMENTED:
            self.mask_image_url = outcome.mask_url
            self.segmentation_confidence = outcome.segmentation.confidence
        else:
            self.error_message = outcome.error

        self.status = outcome.status.value
        self.updated_at = datetime.utcnow()

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "original_image_url": self.original_image_url,
            "mask_image_url": self.mask_image_url,
            "category": self.category.lower(),
            "detected_color": self.detected_color,
            "detection_confidence": self.detection_confidence,
            "segmentation_confidence": self.segmentation_confidence,
            "status": self.status.lower(),
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }
