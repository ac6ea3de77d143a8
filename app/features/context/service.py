# app/features/context/service.py
from __future__ import annotations

from typing import List, Sequence

from app.config import Config
from app.features.manifest.schemas import CharacterManifest
from app.lib.llm import STRING, LLMClient, arr, obj
from app.logger import get_logger
from .prompt import (
    GLOBAL_CONTEXT_SYSTEM,
    PAGE_CONTEXT_SYSTEM,
    build_global_context_prompt,
    build_page_contexts_prompt,
)
from .schemas import GlobalThemeContext, PageContext

log = get_logger(__name__)

GLOBAL_CONTEXT_SCHEMA = obj({
    "theme_description": STRING,
    "default_background_hints": arr(STRING),
    "default_negatives": arr(STRING),
})

PAGE_CONTEXT_SCHEMA = obj({
    "background_elements": obj({
        "foreground": arr(STRING),
        "midground": arr(STRING),
        "background": arr(STRING),
    }),
    "scene_specific_negatives": arr(STRING),
})

BATCH_SCHEMA = obj({"pages": arr(PAGE_CONTEXT_SCHEMA)})


class ContextMismatchError(ValueError):
    """The batched context call returned a different number of pages than scenes."""


class ContextStage:
    def __init__(self, cfg: Config, llm: LLMClient):
        self.cfg = cfg
        self.llm = llm

    def global_context(self, manifest: CharacterManifest, *, price_tier: str = "standard") -> GlobalThemeContext:
        data = self.llm.structured(
            model=self.llm.model_for("low", price_tier),
            system=GLOBAL_CONTEXT_SYSTEM,
            user=build_global_context_prompt(manifest),
            schema_name="global_theme_context",
            schema=GLOBAL_CONTEXT_SCHEMA,
        )
        ctx = GlobalThemeContext.model_validate(data)
        log.debug(f"global context: {ctx.theme_description!r} hints={len(ctx.default_background_hints)}")
        return ctx

    def page_contexts(
        self,
        manifest: CharacterManifest,
        scenes: Sequence[str],
        global_ctx: GlobalThemeContext,
        *,
        price_tier: str = "standard",
    ) -> List[PageContext]:
        """One batched call for every scene; result order matches `scenes`."""
        if not scenes:
            return []
        data = self.llm.structured(
            model=self.llm.model_for("low", price_tier),
            system=PAGE_CONTEXT_SYSTEM,
            user=build_page_contexts_prompt(manifest, scenes, global_ctx),
            schema_name="page_contexts",
            schema=BATCH_SCHEMA,
        )
        pages = data.get("pages") or []
        if len(pages) != len(scenes):
            raise ContextMismatchError(f"page context batch returned {len(pages)} entries for {len(scenes)} scenes")
        return [PageContext.model_validate(p) for p in pages]
