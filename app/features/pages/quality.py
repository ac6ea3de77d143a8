# app/features/pages/quality.py
"""
Vision quality gate for rendered pages.

The model only scores (1-5 per dimension). Pass/fail is decided here, in code,
from QualityThresholds; hands are scored and logged but never gate.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

from app.config import Config
from app.lib.llm import INTEGER, STRING, LLMClient, obj
from app.logger import get_logger

log = get_logger(__name__)

QUALITY_GATE_PROMPT = """
You are a quality inspector for children's coloring book pages. Score the image on five dimensions, 1-5 each. Do NOT give a pass/fail verdict; score only.

1. line_art (LINE ART PURITY)
   5: pure black outlines on white only; no color, fill, gray or shading anywhere.
   4: nearly pure; faint anti-aliasing only, no fills.
   3: some gray tones or minor shading, no color fills.
   2: gray shading or washes across several areas.
   1: visible color fills, colored areas, gradients or painted regions anywhere.

2. background (BACKGROUND RICHNESS)
   5: the full page is packed with detailed, theme-appropriate, colorable elements; no large empty areas.
   3-4: background present and detailed enough, a few areas could be fuller.
   1-2: sparse or nearly absent; the character floats on white.

3. anatomy
   5: correct proportions, no deformities.
   3-4: minor issues only.
   1-2: obvious defects: extra or missing limbs, two heads, fused parts, melted face.

4. hands
   5: hands (or paws) look correct, OR they are small, gripping something or not clearly visible.
   3: one clearly extra or missing finger, minor deformity.
   1-2: clearly malformed or unrecognisable hands.
   Only penalise hands that are large, prominent and clearly wrong.

5. composition
   5: clear layout; a child can easily find and color distinct areas.
   3-4: minor overcrowding in one area.
   1-2: overlapping chaos that cannot be colored, OR a nearly blank page.

feedback: one specific sentence naming the single worst problem, or an empty string if everything looks good.

Score strictly. A colored or shaded image must score 1-2 on line_art even if its outlines are bold.
""".strip()

QUALITY_SCHEMA = obj({
    "line_art": INTEGER,
    "background": INTEGER,
    "anatomy": INTEGER,
    "hands": INTEGER,
    "composition": INTEGER,
    "feedback": STRING,
})


@dataclass(frozen=True)
class QualityThresholds:
    min_line_art: int = 4
    min_background: int = 3
    min_anatomy: int = 3
    min_composition: int = 3
    hard_floor_line_art: int = 2

    @classmethod
    def from_config(cls, cfg: Config) -> "QualityThresholds":
        return cls(
            min_line_art=cfg.quality_min_line_art,
            min_background=cfg.quality_min_background,
            min_anatomy=cfg.quality_min_anatomy,
            min_composition=cfg.quality_min_composition,
            hard_floor_line_art=cfg.quality_hard_floor_line_art,
        )


@dataclass
class Evaluation:
    line_art: int
    background: int
    anatomy: int
    hands: int
    composition: int
    passed: bool
    feedback: str = ""
    fail_open: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Evaluation":
        return cls(**d)

    def summary(self) -> str:
        return (
            f"lineArt:{self.line_art} background:{self.background} anatomy:{self.anatomy} "
            f"hands:{self.hands} composition:{self.composition} pass:{self.passed}"
        )


def _clamp(v: Any) -> int:
    try:
        return max(1, min(5, int(v)))
    except (TypeError, ValueError):
        return 1

def judge(scores: Dict[str, Any], t: QualityThresholds) -> Evaluation:
    """Apply thresholds; synthesise feedback from the first failing dimension when the model gave none."""
    line_art = _clamp(scores.get("line_art"))
    background = _clamp(scores.get("background"))
    anatomy = _clamp(scores.get("anatomy"))
    hands = _clamp(scores.get("hands", 5))
    composition = _clamp(scores.get("composition"))

    passed = (
        line_art >= t.min_line_art
        and background >= t.min_background
        and anatomy >= t.min_anatomy
        and composition >= t.min_composition
    )

    feedback = (scores.get("feedback") or "").strip()
    if passed:
        feedback = ""
    elif not feedback:
        if line_art < t.min_line_art:
            feedback = (
                f"Line art has color fills or shading (score {line_art}/5): the image must use only bold black "
                "outlines on a white background with no color or gray anywhere."
            )
        elif background < t.min_background:
            feedback = (
                f"Background is too sparse (score {background}/5): fill the entire page with detailed, "
                "theme-appropriate elements."
            )
        elif anatomy < t.min_anatomy:
            feedback = (
                f"Anatomy has obvious defects (score {anatomy}/5): correct the character proportions and remove "
                "extra limbs or deformities."
            )
        else:
            feedback = (
                f"Composition is too cluttered or nearly blank (score {composition}/5): ensure clear, colorable "
                "areas throughout."
            )

    return Evaluation(
        line_art=line_art,
        background=background,
        anatomy=anatomy,
        hands=hands,
        composition=composition,
        passed=passed,
        feedback=feedback,
    )

def cautious_pass(t: QualityThresholds) -> Evaluation:
    return Evaluation(
        line_art=t.min_line_art,
        background=t.min_background,
        anatomy=t.min_anatomy,
        hands=5,
        composition=t.min_composition,
        passed=True,
        feedback="",
        fail_open=True,
    )


class QualityGate:
    def __init__(self, cfg: Config, llm: LLMClient, thresholds: QualityThresholds | None = None):
        self.cfg = cfg
        self.llm = llm
        self.thresholds = thresholds or QualityThresholds.from_config(cfg)

    def evaluate(self, image_url: str, *, label: str = "") -> Evaluation:
        try:
            scores = self.llm.structured_about_image(
                model=self.cfg.ai_model_complex,
                system=QUALITY_GATE_PROMPT,
                image_url=image_url,
                instruction="Score this coloring book page across all five dimensions.",
                schema_name="quality_scores",
                schema=QUALITY_SCHEMA,
            )
        except Exception as e:
            if not self.cfg.quality_gate_fail_open:
                raise
            log.warning(f"{label} quality gate unavailable, cautious pass: {e}")
            return cautious_pass(self.thresholds)

        ev = judge(scores, self.thresholds)
        log.info(f"{label} quality scores {ev.summary()}")
        if not ev.passed:
            log.warning(f"{label} quality gate FAIL: {ev.feedback}")
        return ev
