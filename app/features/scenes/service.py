# app/features/scenes/service.py
from __future__ import annotations

from typing import List

from app.config import Config
from app.features.manifest.schemas import CharacterManifest
from app.lib.llm import INTEGER, STRING, LLMClient, arr, obj
from app.logger import get_logger
from .prompt import (
    POSE_GENERATION_PROMPT,
    POSE_ROLES,
    build_pose_user_prompt,
    build_scene_system_prompt,
    describe_character,
)

log = get_logger(__name__)

POSE_SCHEMA = obj({"poses": arr(STRING)})
SCENES_SCHEMA = obj({"scenes": arr(obj({"page_number": INTEGER, "description": STRING}))})


class SceneStage:
    """Pose palette (one call), then exactly `page_count` scene descriptions (one call)."""

    def __init__(self, cfg: Config, llm: LLMClient):
        self.cfg = cfg
        self.llm = llm

    def pose_palette(self, manifest: CharacterManifest, *, price_tier: str = "standard") -> List[str]:
        data = self.llm.structured(
            model=self.llm.model_for("low", price_tier),
            system=POSE_GENERATION_PROMPT,
            user=build_pose_user_prompt(manifest),
            schema_name="pose_palette",
            schema=POSE_SCHEMA,
            temperature=0.8,
        )
        poses = [p.strip() for p in data.get("poses", []) if isinstance(p, str) and p.strip()]
        if len(poses) < len(POSE_ROLES):
            raise ValueError(f"pose palette returned {len(poses)} poses, expected {len(POSE_ROLES)}")
        return poses[: len(POSE_ROLES)]

    def generate(self, manifest: CharacterManifest, *, price_tier: str = "standard") -> List[str]:
        count = self.cfg.page_count
        poses = self.pose_palette(manifest, price_tier=price_tier)
        for role, pose in zip(POSE_ROLES, poses):
            log.debug(f"pose {role}: {pose}")

        data = self.llm.structured(
            model=self.llm.model_for("low", price_tier),
            system=build_scene_system_prompt(poses, count),
            user=f"Character Manifest:\n\n{describe_character(manifest)}",
            schema_name="scene_descriptions",
            schema=SCENES_SCHEMA,
            temperature=0.8,
        )
        scenes = sorted(data.get("scenes", []), key=lambda s: s.get("page_number", 0))
        if len(scenes) != count:
            # retried by the step runner
            raise ValueError(f"scene stage returned {len(scenes)} scenes, expected {count}")
        out = [s["description"].strip() for s in scenes]
        log.info(f"scenes generated for {manifest.character_name}: {len(out)}")
        return out
