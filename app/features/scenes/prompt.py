# app/features/scenes/prompt.py
from typing import List, Sequence

from app.features.manifest.schemas import CharacterManifest

POSE_ROLES = ("arriving", "doing", "reacting")
COMPOSITIONS = ("establishing shot", "medium action shot", "close-up detail shot")

POSE_GENERATION_PROMPT = """
You are an expert children's book illustrator who specialises in dynamic character poses.

Given a character's species and description, write exactly 3 body pose descriptions, one per coloring book page.

ONE POSE PER ROLE:
- Pose 0 (ARRIVING): energetic motion, entering or approaching a new place with excitement.
- Pose 1 (DOING): actively engaged in a hands-on activity such as building, playing or digging.
- Pose 2 (REACTING): a vivid emotional reaction such as surprise, wonder, delight or triumph.

SPECIES-AUTHENTIC SILHOUETTES:
Think about what dramatic visual contrast looks like for THIS creature's anatomy. Do not fall back on humanoid vocabulary for non-human characters.
- Seahorse: vertical vs horizontal body axis; tail coiled tight vs stretched straight.
- Fish: darting forward; curling into a tight C-shape; floating upright.
- Bird: wings spread soaring; wings folded while perching; one wing fanned out.
- Dragon: coiled low around something; neck stretched long; rearing up with wings open.
- Quadruped (dog, cat): flat and low stalking; full gallop; sitting upright and attentive.
- Human: sprinting; crouching; leaping; reaching overhead; stumbling backward.
- Object or food character: tilted forward eagerly; rocking back on its base; spinning.

REQUIREMENTS:
1. The 3 poses must have CLEARLY DIFFERENT SILHOUETTES.
2. Each pose is 1-2 sentences about OVERALL BODY SHAPE and MOVEMENT ENERGY.
3. Never describe joint angles, exact limb positions or measurements.
4. Joyful, child-friendly, physically plausible for this species.

Return exactly 3 pose strings.
""".strip()

def describe_character(manifest: CharacterManifest) -> str:
    lines = [
        f"Name: {manifest.character_name}",
        f"Character Type: {manifest.character_type}",
    ]
    if manifest.species:
        lines.append(f"Species: {manifest.species}")
    if manifest.is_human:
        if manifest.age_range:
            lines.append(f"Age: {manifest.age_range}")
        if manifest.hair:
            h = manifest.hair
            lines.append(f"Hair: {h.texture} {h.color} {h.style} ({h.length})")
        if manifest.outfit:
            o = manifest.outfit
            lines.append(f"Outfit: {o.top}, {o.bottom}, {o.shoes}")
            if o.accessories:
                lines.append(f"Accessories: {', '.join(o.accessories)}")
    elif manifest.physical_description:
        lines.append(f"Physical Description: {manifest.physical_description}")
    if manifest.character_key_features:
        lines.append(f"Key Features: {', '.join(manifest.character_key_features)}")
    lines.append(f"Theme: {manifest.theme}")
    return "\n".join(lines)

def build_pose_user_prompt(manifest: CharacterManifest) -> str:
    lines = [
        f"Name: {manifest.character_name}",
        f"Species / type: {manifest.species_label}",
    ]
    if manifest.physical_description:
        lines.append(f"Physical description: {manifest.physical_description}")
    if manifest.character_key_features:
        lines.append(f"Key features: {', '.join(manifest.character_key_features)}")
    if manifest.is_human:
        if manifest.age_range:
            lines.append(f"Age: {manifest.age_range}")
        if manifest.hair:
            lines.append(f"Hair: {manifest.hair.texture} {manifest.hair.color} {manifest.hair.style}")
    summary = "\n".join(lines)
    return f"Character:\n{summary}\n\nGenerate 3 body poses with maximum visual contrast for this specific character type."

def build_scene_system_prompt(poses: Sequence[str], scene_count: int) -> str:
    pose_lines: List[str] = []
    arc_lines: List[str] = []
    for i in range(scene_count):
        role = POSE_ROLES[i % len(POSE_ROLES)]
        pose_lines.append(f"   - Scene {i + 1} ({role}): {poses[i % len(poses)]}")
        arc_lines.append(f"- Scene {i + 1} ({COMPOSITIONS[i % len(COMPOSITIONS)]}): the character is {role.upper()}.")
    pose_block = "\n".join(pose_lines)
    arc_block = "\n".join(arc_lines)
    return f"""
You are a children's coloring book story designer and illustrator. Given a Character Manifest, write exactly {scene_count} scene descriptions, one per page.

CHARACTER RULE: the same character appears in every scene (same species, same face, same outfit) but in a COMPLETELY DIFFERENT BODY POSE and a COMPLETELY DIFFERENT ACTIVITY each time.

LANGUAGE RULE: scenes are rendered as BLACK AND WHITE LINE ART. Describe shapes, structures and textures, never colors. Write "striped candy canes", not "red-and-white candy canes". Never use color adjectives.

POSE LANGUAGE: describe overall body energy and movement. Never use phrases like "foot lifted", "mid-stride", "knee raised" or joint angles.

EACH SCENE MUST INCLUDE:
1. COMPOSITION: one of "establishing shot", "medium action shot", "close-up detail shot"; use each once where possible.
2. BODY POSE: use EXACTLY the pose given for the scene:
{pose_block}
3. ACTIVITY: a specific, vivid action happening right now; never repeat an activity.
4. LOCATION: a distinct setting described by shapes and structures; never repeat a location.
5. BACKGROUND DEPTH: name what fills the foreground, midground AND background.

NARRATIVE ARC:
{arc_block}

Keep every scene child-friendly and joyful. Never change the character's type or species.

Return exactly {scene_count} scene objects numbered 1-{scene_count} in the provided JSON schema.
""".strip()
