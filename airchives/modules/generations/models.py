"""
Generation & OutputImage Models with Status Tracking

A Generation moves PENDING -> PROCESSING -> COMPLETED | FAILED. Transitions
are monotonic and terminal states are final; the mark_* methods enforce it.
"""

import uuid
from enum import Enum
from sqlmodel import SQLModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime

from airchives.core.exceptions import InvalidStatusTransitionError


class GenerationStatus(str, Enum):
    PENDING = "PENDING"         # Created by the request, not picked up
    PROCESSING = "PROCESSING"   # Worker is synthesizing
    COMPLETED = "COMPLETED"     # All requested poses stored
    FAILED = "FAILED"           # Unrecovered error, see error_message


ALLOWED_TRANSITIONS: Dict[GenerationStatus, tuple] = {
    GenerationStatus.PENDING: (GenerationStatus.PROCESSING, GenerationStatus.FAILED),
    GenerationStatus.PROCESSING: (GenerationStatus.COMPLETED, GenerationStatus.FAILED),
    GenerationStatus.COMPLETED: (),
    GenerationStatus.FAILED: (),
}

PROGRESS_BY_STATUS: Dict[GenerationStatus, int] = {
    GenerationStatus.PENDING: 0,
    GenerationStatus.PROCESSING: 50,
    GenerationStatus.COMPLETED: 100,
    GenerationStatus.FAILED: 0,
}


class Background(str, Enum):
    WHITE = "white"
    GREY = "grey"
    BEIGE = "beige"
    STREETWEAR = "streetwear"
    INDOOR_LOFT = "indoor_loft"


class AspectRatio(str, Enum):
    SQUARE = "1:1"
    PORTRAIT = "4:5"
    TALL = "3:4"


MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 10
DEFAULT_BATCH_SIZE = 3
AUTO_PROMPT_PLACEHOLDER = "Auto-generated prompt"


class Generation(SQLModel, table=True):
    """One request to synthesize a batch of images for a garment and model."""
    __tablename__ = "generations"

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )
    garment_id: str = Field(foreign_key="garments.id", index=True)
    target_model_id: str = Field(foreign_key="virtual_models.id")

    # Request inputs
    background: str = Field(default=Background.WHITE.value)
    custom_prompt: Optional[str] = None
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE)

    # Prompt actually sent to the provider
    prompt_used: str = Field(default=AUTO_PROMPT_PLACEHOLDER)
    negative_prompt: Optional[str] = None

    status: str = Field(default=GenerationStatus.PENDING.value, index=True)
    error_message: Optional[str] = None

    provider: Optional[str] = None
    task_id: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (GenerationStatus.COMPLETED.value, GenerationStatus.FAILED.value)

    @property
    def progress(self) -> int:
        return PROGRESS_BY_STATUS[GenerationStatus(self.status)]

    def _transition(self, target: GenerationStatus):
        current = GenerationStatus(self.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(current.value, target.value, job_id=self.id)
        self.status = target.value
        self.updated_at = datetime.utcnow()

    def mark_processing(self, provider: Optional[str] = None):
        self._transition(GenerationStatus.PROCESSING)
        self.started_at = datetime.utcnow()
        if provider:
            self.provider = provider

    def mark_completed(self):
        self._transition(GenerationStatus.COMPLETED)
        self.completed_at = datetime.utcnow()

    def mark_failed(self, error_message: str):
        self._transition(GenerationStatus.FAILED)
        # A failed record always carries a message
        self.error_message = error_message or "Generation failed"
        self.completed_at = datetime.utcnow()

    def to_status_dict(self, images: List["OutputImage"]) -> Dict[str, Any]:
        """Status response: lower-case status, coarse progress, stored images."""
        return {
            "id": self.id,
            "garment_id": self.garment_id,
            "target_model_id": self.target_model_id,
            "status": self.status.lower(),
            "progress": self.progress,
            "images": [image.to_response_dict() for image in images],
            "prompt": self.prompt_used,
            "negative_prompt": self.negative_prompt,
            "background": self.background,
            "batch_size": self.batch_size,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message
        }


class OutputImage(SQLModel, table=True):
    """One synthesized photograph."""
    __tablename__ = "output_images"

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )
    generation_id: str = Field(foreign_key="generations.id", index=True)

    image_url: str
    storage_key: Optional[str] = None
    pose: Optional[str] = None
    aspect_ratio: str = Field(default=AspectRatio.SQUARE.value)
    provider_image_id: Optional[str] = None

    # Consumer-facing counters
    is_favorite: bool = Field(default=False)
    download_count: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "generation_id": self.generation_id,
            "image_url": self.image_url,
            "pose": self.pose,
            "aspect_ratio": self.aspect_ratio,
            "is_favorite": self.is_favorite,
            "download_count": self.download_count,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }
