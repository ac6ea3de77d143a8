# app/features/pages/synthesis.py
"""
Critic -> refine -> evaluate loop for a single page.

The loop is an explicit state machine over SynthesisState. Every side effect
(render, evaluate, refine) runs through a checkpoint callable, normally
StepRunner.run, under a name that encodes page and attempt:

    {prefix}:attempt-{i}:render | evaluate | refine

so a replayed run walks the same transitions from recorded results without
calling any provider again.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Optional, TypeVar

from app.config import Config
from app.lib.gcs_inventory import DocumentStore
from app.lib.seed import perturb_seed
from app.lib.steps import NonRetriableError, direct
from app.logger import get_logger
from .images import OpenAIImageProvider
from .quality import Evaluation, QualityGate, QualityThresholds
from .refine import PromptRefiner

log = get_logger(__name__)

T = TypeVar("T")
Checkpoint = Callable[[str, Callable[[], T]], T]

ACCEPT = "accept"
RETRY = "retry"
HARD_FAIL = "hard_fail"


class QualityHardFailure(NonRetriableError):
    """Line art stayed at or below the hard floor after the last attempt."""

    def __init__(self, page_number: int, evaluation: Evaluation, attempts: int):
        super().__init__(
            f"page {page_number} produced colored output after {attempts} attempts "
            f"(lineArt={evaluation.line_art}/5)"
        )
        self.page_number = page_number
        self.evaluation = evaluation
        self.attempts = attempts

# -------------------------------------------------------------------
# State machine
# -------------------------------------------------------------------

def is_exhausted(attempt: int, max_retries: int) -> bool:
    """`attempt` is 1-based; the first render plus `max_retries` refinements."""
    return attempt >= max_retries + 1


@dataclass
class SynthesisState:
    attempt: int
    prompt: str
    seed: int
    last_evaluation: Optional[Evaluation] = None
    image: Optional[Dict[str, str]] = field(default=None)

    @classmethod
    def start(cls, prompt: str, seed: int) -> "SynthesisState":
        return cls(attempt=1, prompt=prompt, seed=seed)

    def verdict(self, max_retries: int, thresholds: QualityThresholds) -> str:
        ev = self.last_evaluation
        if ev is None:
            raise ValueError("verdict requires an evaluation")
        if ev.passed:
            return ACCEPT
        if not is_exhausted(self.attempt, max_retries):
            return RETRY
        if ev.line_art <= thresholds.hard_floor_line_art:
            return HARD_FAIL
        # budget spent, quality degraded but printable: keep the last image
        return ACCEPT

    def next(self, refined_prompt: str, seed_offset: int) -> "SynthesisState":
        return replace(
            self,
            attempt=self.attempt + 1,
            prompt=refined_prompt,
            seed=perturb_seed(self.seed, seed_offset),
            last_evaluation=None,
            image=None,
        )


@dataclass
class SynthesisResult:
    image_url: str
    provider_id: str
    seed: int
    prompt: str
    attempts: int
    evaluation: Evaluation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_url": self.image_url,
            "provider_id": self.provider_id,
            "seed": self.seed,
            "prompt": self.prompt,
            "attempts": self.attempts,
            "evaluation": self.evaluation.to_dict(),
        }

# -------------------------------------------------------------------
# Driver
# -------------------------------------------------------------------

def page_object_name(order_id: str, page_number: int, seed: int) -> str:
    return f"books/{order_id}/pages/page-{page_number}-seed-{seed}.png"


class PageSynthesizer:
    def __init__(
        self,
        cfg: Config,
        provider: OpenAIImageProvider,
        store: DocumentStore,
        gate: QualityGate,
        refiner: PromptRefiner,
    ):
        self.cfg = cfg
        self.provider = provider
        self.store = store
        self.gate = gate
        self.refiner = refiner

    @property
    def thresholds(self) -> QualityThresholds:
        return self.gate.thresholds

    def _render(self, order_id: str, page_number: int, state: SynthesisState, reference_url: str) -> Dict[str, str]:
        reference = self.store.get(reference_url)
        img = self.provider.generate(state.prompt, seed=state.seed, reference=reference)
        location = self.store.put(page_object_name(order_id, page_number, state.seed), img.data, img.content_type)
        return {"image_url": location, "provider_id": img.provider_id}

    def run(
        self,
        *,
        order_id: str,
        page_number: int,
        prompt: str,
        seed: int,
        reference_url: str,
        checkpoint: Checkpoint = direct,
        step_prefix: Optional[str] = None,
    ) -> SynthesisResult:
        prefix = step_prefix or f"generate-page-{page_number}"
        label = f"[{order_id}] page {page_number}"
        max_retries = self.cfg.max_quality_retries
        state = SynthesisState.start(prompt, seed)

        while True:
            name = f"{prefix}:attempt-{state.attempt}"
            current = state
            state.image = checkpoint(
                f"{name}:render",
                lambda: self._render(order_id, page_number, current, reference_url),
            )
            image_url = state.image["image_url"]
            state.last_evaluation = Evaluation.from_dict(checkpoint(
                f"{name}:evaluate",
                lambda: self.gate.evaluate(self.store.url_for(image_url), label=label).to_dict(),
            ))

            verdict = state.verdict(max_retries, self.thresholds)
            if verdict == ACCEPT:
                if state.last_evaluation.passed:
                    log.info(f"{label} passed quality gate (attempt {state.attempt})")
                else:
                    log.warning(f"{label} kept after {state.attempt} attempts: {state.last_evaluation.feedback}")
                return SynthesisResult(
                    image_url=image_url,
                    provider_id=state.image["provider_id"],
                    seed=state.seed,
                    prompt=state.prompt,
                    attempts=state.attempt,
                    evaluation=state.last_evaluation,
                )
            if verdict == HARD_FAIL:
                log.error(f"{label} hard quality failure: lineArt={state.last_evaluation.line_art}/5")
                raise QualityHardFailure(page_number, state.last_evaluation, state.attempt)

            log.warning(
                f"{label} failed quality gate (attempt {state.attempt}/{max_retries + 1}): "
                f"{state.last_evaluation.feedback}"
            )
            feedback = state.last_evaluation.feedback
            refined = checkpoint(f"{name}:refine", lambda: self.refiner.refine(current.prompt, feedback))
            state = state.next(refined, self.cfg.seed_retry_offset)
