# app/features/pages/refine.py
from __future__ import annotations

from app.config import Config
from app.lib.llm import LLMClient
from app.logger import get_logger

log = get_logger(__name__)

REFINER_SYSTEM = """
You are an image prompt engineer for children's coloring book pages.
A generated image failed quality review. Rewrite the prompt to fix that specific failure while keeping everything else: character description, scene, theme, style anchor.

RULES:
- Fix ONLY what the feedback identifies. Do not remove content that is working.
- Empty background: strengthen the background with more specific, detailed elements.
- Color or fill violations: add stronger, more explicit line art instructions.
- Anatomy: add clearer anatomical constraints and reinforce the reference image anchor.
- Composition: adjust the scene description for clarity and balance.
- Keep the prompt roughly the same length. Return ONLY the revised prompt text, no explanation.
""".strip()


class PromptRefiner:
    """Critic feedback -> revised page prompt (cheap text model)."""

    def __init__(self, cfg: Config, llm: LLMClient):
        self.cfg = cfg
        self.llm = llm

    def refine(self, prompt: str, feedback: str) -> str:
        revised = self.llm.text(
            model=self.cfg.ai_model_manifest,
            system=REFINER_SYSTEM,
            user=f"ORIGINAL PROMPT:\n{prompt}\n\nCRITIC FEEDBACK:\n{feedback}\n\nRevised prompt:",
            temperature=0.3,
        )
        if not revised:
            log.warning("refiner returned an empty prompt; keeping the original")
            return prompt
        return revised
