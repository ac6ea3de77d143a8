# app/features/context/prompt.py
from typing import Sequence

from app.features.manifest.schemas import CharacterManifest
from .schemas import GlobalThemeContext

GLOBAL_CONTEXT_SYSTEM = (
    "You are a children's coloring book art director. Given a Character Manifest, output a brief global "
    "theme context that is reused on every page of the book: theme_description (one sentence), "
    "default_background_hints (theme-appropriate background elements, e.g. lily pads, stars, vines) and "
    "default_negatives (things to avoid, e.g. wrong species, realistic). Keep each list to 5-10 items."
)

PAGE_CONTEXT_SYSTEM = (
    "You are a children's coloring book art director. Given a theme, global hints and scene descriptions, "
    "output for each scene:\n"
    "1. background_elements: foreground, midground and background lists, 3-6 items each. Elements must fit "
    "the theme and work as black-and-white line art.\n"
    "2. scene_specific_negatives: 3-8 things to avoid in this particular setting.\n"
    "Use the global hints for inspiration. Output ONLY JSON matching the schema."
)

def build_global_context_prompt(manifest: CharacterManifest) -> str:
    out = f"Character: {manifest.character_name}, Type: {manifest.character_type}, Theme: {manifest.theme}"
    if manifest.species:
        out += f", Species: {manifest.species}"
    return out

def build_page_contexts_prompt(manifest: CharacterManifest, scenes: Sequence[str], global_ctx: GlobalThemeContext) -> str:
    scene_list = "\n\n".join(f"Scene {i + 1}: {s}" for i, s in enumerate(scenes))
    return f"""Theme: {manifest.theme}
Global hints: {", ".join(global_ctx.default_background_hints)}

Scenes:
{scene_list}

For each scene, produce background_elements (foreground, midground, background) and scene_specific_negatives. Output a "pages" array with exactly {len(scenes)} objects, one per scene, in order."""
