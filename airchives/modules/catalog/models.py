"""
Virtual Model Catalog

Named synthesis subjects whose attributes feed the prompt builder.
Reference data only: seeded at startup, never written by the pipeline.
"""

from sqlmodel import SQLModel, Field, Column, JSON
from typing import Optional, List, Dict, Any


class VirtualModel(SQLModel, table=True):
    __tablename__ = "virtual_models"

    id: str = Field(primary_key=True)
    name: str
    gender: str
    body_type: str
    ethnicity: str
    style_tags: List[str] = Field(default=[], sa_column=Column(JSON))
    preview_image_url: Optional[str] = None
    is_active: bool = Field(default=True)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "gender": self.gender,
            "body_type": self.body_type,
            "ethnicity": self.ethnicity,
            "style_tags": list(self.style_tags or []),
            "preview_image_url": self.preview_image_url
        }


def model_id_for(name: str) -> str:
    """Catalog ids are the lower-cased name with underscores, suffixed _01."""
    return f"{name.lower().replace(' ', '_')}_01"


SEED_MODELS: List[Dict[str, Any]] = [
    {
        "name": "Sienna",
        "gender": "female",
        "body_type": "athletic",
        "ethnicity": "mediterranean",
        "style_tags": ["streetwear", "urban"],
    },
    {
        "name": "Alex",
        "gender": "non_binary",
        "body_type": "slim",
        "ethnicity": "east asian",
        "style_tags": ["minimalist", "luxury"],
    },
    {
        "name": "Marcus",
        "gender": "male",
        "body_type": "muscular",
        "ethnicity": "african american",
        "style_tags": ["athletic", "streetwear", "urban"],
    },
    {
        "name": "Ghost Mannequin",
        "gender": "non_binary",
        "body_type": "standard",
        "ethnicity": "n/a",
        "style_tags": ["invisible", "mannequin"],
    },
]


def build_seed_models() -> List[VirtualModel]:
    return [VirtualModel(id=model_id_for(entry["name"]), **entry) for entry in SEED_MODELS]
