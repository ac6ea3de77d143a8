# app/features/manifest/service.py
from __future__ import annotations

from typing import Any, Dict, Tuple

from pydantic import ValidationError

from app.config import Config
from app.lib.llm import STRING, LLMClient, arr, enum, nullable, obj
from app.lib.steps import NonRetriableError
from app.logger import get_logger
from .prompt import MANIFEST_SYSTEM_PROMPT, build_manifest_user_prompt
from .schemas import CharacterManifest, OrderInput

log = get_logger(__name__)

def manifest_json_schema() -> dict:
    hair = obj({
        "style": STRING,
        "color": STRING,
        "length": enum("short", "medium", "long"),
        "texture": enum("straight", "wavy", "curly", "coily"),
    })
    outfit = obj({
        "top": STRING,
        "bottom": STRING,
        "shoes": STRING,
        "accessories": arr(STRING),
    })
    return obj({
        "character_name": STRING,
        "character_type": enum("human", "animal", "fantasy", "other"),
        "species": nullable(STRING),
        "physical_description": nullable(STRING),
        "age_range": nullable(STRING),
        "hair": nullable(hair),
        "skin_tone": nullable(STRING),
        "outfit": nullable(outfit),
        "character_key_features": arr(STRING),
        "character_props": arr(STRING),
        "theme": STRING,
        "style_tags": arr(STRING),
        "negative_tags": arr(STRING),
    })


class ManifestStage:
    """Freeform order input -> typed CharacterManifest (one structured call)."""

    def __init__(self, cfg: Config, llm: LLMClient):
        self.cfg = cfg
        self.llm = llm

    def generate(self, order_input: OrderInput, *, price_tier: str = "standard") -> Tuple[CharacterManifest, Dict[str, Any]]:
        model = self.llm.model_for("high", price_tier)
        raw = self.llm.structured(
            model=model,
            system=MANIFEST_SYSTEM_PROMPT,
            user=build_manifest_user_prompt(
                order_input.description,
                character_name=order_input.character_name,
                theme=order_input.theme,
            ),
            schema_name="character_manifest",
            schema=manifest_json_schema(),
            temperature=0.4,
        )
        if order_input.character_name and raw.get("character_name") in (None, "", "the character"):
            raw["character_name"] = order_input.character_name
        try:
            manifest = CharacterManifest.model_validate(raw)
        except ValidationError as e:
            raise NonRetriableError(f"manifest failed validation: {e}") from e
        log.info(
            f"manifest: {manifest.character_name} ({manifest.character_type}"
            f"{', ' + manifest.species if manifest.species else ''}) theme={manifest.theme!r} via {model}"
        )
        return manifest, raw
