# app/pipeline.py
"""Wires the stages together around one Config."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from app.config import Config, config as default_config
from app.features.assembly.service import AssemblyStage
from app.features.context.service import ContextStage
from app.features.manifest.service import ManifestStage
from app.features.pages.images import OpenAIImageProvider
from app.features.pages.quality import QualityGate
from app.features.pages.refine import PromptRefiner
from app.features.pages.synthesis import PageSynthesizer
from app.features.scenes.service import SceneStage
from app.lib.gcs_inventory import DocumentStore
from app.lib.llm import LLMClient


@dataclass
class Pipeline:
    cfg: Config
    store: DocumentStore
    images: OpenAIImageProvider
    manifest: ManifestStage
    scenes: SceneStage
    context: ContextStage
    synthesizer: PageSynthesizer
    assembly: AssemblyStage


def build_pipeline(
    cfg: Config = default_config,
    *,
    store: Any = None,
    llm: Optional[LLMClient] = None,
    images: Optional[OpenAIImageProvider] = None,
) -> Pipeline:
    store = store or DocumentStore(cfg)
    llm = llm or LLMClient(cfg)
    images = images or OpenAIImageProvider(cfg)
    return Pipeline(
        cfg=cfg,
        store=store,
        images=images,
        manifest=ManifestStage(cfg, llm),
        scenes=SceneStage(cfg, llm),
        context=ContextStage(cfg, llm),
        synthesizer=PageSynthesizer(cfg, images, store, QualityGate(cfg, llm), PromptRefiner(cfg, llm)),
        assembly=AssemblyStage(cfg, store),
    )


_default: Optional[Pipeline] = None

def get_pipeline() -> Pipeline:
    """Process-wide pipeline for the request handlers and worker endpoints (FastAPI dependency)."""
    global _default
    if _default is None:
        _default = build_pipeline()
    return _default
