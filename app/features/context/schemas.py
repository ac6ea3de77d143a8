# app/features/context/schemas.py
from typing import List

from pydantic import BaseModel, Field

class GlobalThemeContext(BaseModel):
    theme_description: str
    default_background_hints: List[str] = Field(default_factory=list)
    default_negatives: List[str] = Field(default_factory=list)

class BackgroundElements(BaseModel):
    foreground: List[str] = Field(default_factory=list)
    midground: List[str] = Field(default_factory=list)
    background: List[str] = Field(default_factory=list)

class PageContext(BaseModel):
    background_elements: BackgroundElements = Field(default_factory=BackgroundElements)
    scene_specific_negatives: List[str] = Field(default_factory=list)
