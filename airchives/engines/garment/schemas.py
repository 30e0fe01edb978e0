from typing import Dict, Optional
from pydantic import BaseModel, Field

DEFAULT_BOUNDING_BOX: Dict[str, float] = {"x": 0, "y": 0, "width": 100, "height": 100}


class DetectionResult(BaseModel):
    """Classifier outcome. `category` is one of top/bottom/dress/outerwear."""
    category: str
    confidence: float
    bounding_box: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_BOUNDING_BOX))
    raw_label: Optional[str] = None
    is_fallback: bool = False


class SegmentationResult(BaseModel):
    mask_url: str
    confidence: float
    garment_detected: bool
