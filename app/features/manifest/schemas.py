# app/features/manifest/schemas.py
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

CharacterType = Literal["human", "animal", "fantasy", "other"]
PriceTier = Literal["standard", "premium"]

class OrderInput(BaseModel):
    """What the customer typed. Parsed once, at the controller boundary."""
    description: str = Field(..., min_length=1, description="Freeform description of the main character")
    character_name: Optional[str] = Field(None, description="Name, if the customer gave one")
    theme: Optional[str] = Field(None, description="Theme / adventure for the whole book")

    @field_validator("description")
    @classmethod
    def _strip_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be blank")
        return v

class Hair(BaseModel):
    style: str
    color: str
    length: Literal["short", "medium", "long"]
    texture: Literal["straight", "wavy", "curly", "coily"]

class Outfit(BaseModel):
    top: str
    bottom: str
    shoes: str
    accessories: List[str] = Field(default_factory=list)

class CharacterManifest(BaseModel):
    character_name: str
    character_type: CharacterType
    species: Optional[str] = None
    physical_description: Optional[str] = None
    age_range: Optional[str] = None
    hair: Optional[Hair] = None
    skin_tone: Optional[str] = None
    outfit: Optional[Outfit] = None
    character_key_features: List[str] = Field(default_factory=list)
    character_props: List[str] = Field(default_factory=list)
    theme: str
    style_tags: List[str] = Field(..., min_length=3)
    negative_tags: List[str] = Field(default_factory=list)

    @property
    def is_human(self) -> bool:
        return self.character_type == "human"

    @property
    def species_label(self) -> str:
        if self.species:
            return self.species
        return "human child" if self.is_human else self.character_type
