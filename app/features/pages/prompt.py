# app/features/pages/prompt.py
"""
Page prompt composition.

The image model is reference-conditioned (the selected preview supplies the
character's face and costume), so prompts are written as calm art-direction
prose: line-art mandate first, then the page's body pose, then style, scene,
character and anatomy reminders.
"""
from __future__ import annotations

import re
from typing import List, Optional

from app.features.context.schemas import PageContext
from app.features.manifest.schemas import CharacterManifest

STYLE_ANCHOR = (
    "A page from a children's coloring book, illustrated in bold pen-and-ink style. "
    "The artwork uses only black ink lines on a white background, with no shading, no gray tones and no color fills of any kind. "
    "Every shape is outlined with a clean contour line so a child can color the page with crayons."
)

LINE_ART_MANDATE = (
    "Illustration style: black ink outlines on white paper only. "
    "The image should look like a printed coloring book page: clean black lines, white background, nothing colored in."
)

ANATOMY_CONSTRAINT = (
    "The character has correct anatomy: one head, one body, the right number of limbs for their species."
)

CLOSING_LINE = (
    "The finished illustration should look like a coloring book page fresh from the printer: "
    "bold black outlines, white background, ready for a child to color."
)

DOG_ANATOMY = "Any dog must have correct canine anatomy: four legs, canine muzzle, dog ears."
CAT_ANATOMY = "Any cat must have correct feline anatomy: four legs, feline face, cat ears."

PREVIEW_STYLE = "bold outlines, no shading, pure black and white line art, whimsical, detailed coloring book style"
PREVIEW_NEGATIVES = (
    "realistic, photographic, color, coloured, shading, gradient, gray, grey, greyscale, fill, filled, painted, 3D render"
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def narrate_background(ctx: PageContext) -> str:
    bg = ctx.background_elements
    parts: List[str] = []
    if bg.foreground:
        parts.append(f"In the foreground: {', '.join(bg.foreground)}.")
    if bg.midground:
        parts.append(f"The middle ground features {', '.join(bg.midground)}.")
    if bg.background:
        parts.append(f"Behind everything: {', '.join(bg.background)}.")
    return " ".join(parts)

def action_sentence(scene: str, character_name: str) -> str:
    """The sentence that names the character, else the second sentence, else ''."""
    sentences = [s for s in _SENTENCE_SPLIT.split(scene) if s.strip()]
    name = character_name.lower()
    for s in sentences:
        if name and name in s.lower():
            return s.strip()
    return sentences[1].strip() if len(sentences) > 1 else ""

def _character_block(m: CharacterManifest) -> str:
    name = m.character_name
    pose_note = (
        f"Copy {name}'s face and costume from the reference image. "
        "The body position is completely redrawn to show the action above; "
        "do not replicate the neutral or standing pose from the reference."
    )
    if m.is_human:
        bits = [f"a {m.age_range}-year-old" if m.age_range else "a child"]
        if m.hair:
            bits.append(f"{m.hair.texture} {m.hair.color} {m.hair.style} hair")
        if m.outfit:
            outfit = ", ".join(x for x in (m.outfit.top, m.outfit.bottom, m.outfit.shoes) if x)
            if outfit:
                bits.append(f"wearing {outfit}")
        return f"The character is {name}, {', '.join(bits)}. one head, one body. {pose_note}"
    species = m.species or m.character_type
    desc = f", {m.physical_description}" if m.physical_description else ""
    return f"The character is {name}, a {species}{desc}. one head, one body, correct {species} anatomy. {pose_note}"

# -------------------------------------------------------------------
# Public
# -------------------------------------------------------------------

def compose_page_prompt(manifest: CharacterManifest, scene: str, ctx: PageContext) -> str:
    parts: List[str] = [LINE_ART_MANDATE]

    action = action_sentence(scene, manifest.character_name)
    if action:
        parts.append(
            f"BODY POSE FOR THIS PAGE: {action} "
            "The reference image supplies the character's face and costume details ONLY; "
            "the body must be completely redrawn to show this action."
        )

    parts.append(STYLE_ANCHOR)
    parts.append(f"Theme: {manifest.theme}.")

    background = narrate_background(ctx)
    parts.append(
        f"Scene: {scene} {background} The entire page (background, midground and foreground) must be filled "
        "with detailed, theme-appropriate line-drawn elements that invite coloring. No area should be left empty or white."
    )

    parts.append(_character_block(manifest))

    features = ", ".join(manifest.character_key_features)
    props = ", ".join(manifest.character_props)
    if features or props:
        elements = "; props: ".join(x for x in (features, props) if x)
        parts.append(f"Key visual elements that must appear: {elements}.")

    parts.append(ANATOMY_CONSTRAINT)

    everything = [f.lower() for f in manifest.character_key_features + manifest.character_props]
    if any("dog" in f for f in everything):
        parts.append(DOG_ANATOMY)
    if any("cat" in f for f in everything):
        parts.append(CAT_ANATOMY)

    parts.append(CLOSING_LINE)
    return " ".join(p for p in parts if p)

def compose_preview_prompt(description: str, character_name: Optional[str] = None, theme: Optional[str] = None) -> str:
    """Character-only prompt for the pre-purchase preview (no manifest yet)."""
    parts = [
        "Pure black and white line art coloring book. ONLY black lines on white background. "
        "NO color, NO shading, NO gradients, NO gray tones, NO fills. Bold clean outlines only.",
        "Include the main character. If the description mentions a pet or companion animal, draw them together "
        "so both are visible, with correct anatomy for their species.",
        "If the description mentions props the character carries, include them so they appear in the reference.",
        f"Character: {description.strip()}.",
    ]
    if character_name and character_name.strip():
        parts.append(f"Name: {character_name.strip()}.")
    if theme and theme.strip():
        parts.append(f"Theme hint: {theme.strip()}.")
    parts.append(f"Style: {PREVIEW_STYLE}.")
    parts.append(f"Negative: {PREVIEW_NEGATIVES}.")
    return " ".join(parts)
