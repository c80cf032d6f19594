"""
System and user prompts for the Claude text generations.

User prompts take the raw Supabase rows (dicts) so callers can pass whatever
columns they selected; missing values render as "N/A".
"""

from typing import Optional


def _v(row: Optional[dict], key: str, default: str = "N/A") -> str:
    value = (row or {}).get(key)
    return str(value) if value not in (None, "") else default


# ── Shot visual prompt ───────────────────────────────────────────────────────

VISUAL_PROMPT_SYSTEM = """You are an expert visual director translating script details into concise, powerful image generation prompts for an AI model like Luma Dream Machine.
Focus ONLY on visual elements derived from the provided shot idea, scene context, and project style.
Prioritize:
- Shot type (e.g. 'wide shot', 'medium close-up').
- Subject(s) and action (from the shot idea).
- Key environment/location elements (from the scene context).
- Lighting and mood (from the scene context and project tone).
- Visual style (e.g. 'cinematic lighting', 'film noir shadows', 'photorealistic').
Use concrete visual descriptors. Keep it under ~150 words.
Example output: medium shot, woman looking out rainy window, melancholic mood, cinematic lighting, bokeh background, photorealistic
Output *only* the comma-separated prompt string. No extra text or formatting."""


def shot_visual_prompt(shot: dict, scene: Optional[dict], project: Optional[dict]) -> str:
    return f"""Generate an image prompt based on these details:
--- Shot ---
Idea: {_v(shot, 'prompt_idea')}
Type: {_v(shot, 'shot_type', 'medium')}
--- Scene Context ---
Description: {_v(scene, 'description')}
Location: {_v(scene, 'location')}
Lighting: {_v(scene, 'lighting')}
Weather: {_v(scene, 'weather')}
--- Project Context ---
Genre: {_v(project, 'genre')}
Tone: {_v(project, 'tone')}
Video Style: {_v(project, 'video_style')}
Inspiration: {_v(project, 'cinematic_inspiration')}
---
Generate the visual prompt string:"""


# ── Character visual prompt ──────────────────────────────────────────────────

CHARACTER_PROMPT_SYSTEM = """You are a character designer writing image generation prompts for a consistent character reference portrait.
Describe only what can be seen: apparent age, build, face, hair, wardrobe, expression, and a neutral studio background.
Match the project's visual style. Keep it under ~100 words.
Output *only* the comma-separated prompt string. No extra text or formatting."""


def character_visual_prompt(character: dict, project: Optional[dict]) -> str:
    return f"""Character: {_v(character, 'name', 'Unnamed')}
Description: {_v(character, 'description')}
Project Genre: {_v(project, 'genre')}
Project Tone: {_v(project, 'tone')}
Video Style: {_v(project, 'video_style')}

Generate the character portrait prompt string:"""


# ── Scene voiceover ──────────────────────────────────────────────────────────

VOICEOVER_SYSTEM = """You are a screenwriter writing narration for a short video.
Write a voiceover for the scene that a narrator can read aloud in 10-20 seconds.
Match the project's tone. Do not describe camera directions.
Output *only* the narration text."""


def scene_voiceover_prompt(scene: dict, project: Optional[dict]) -> str:
    return f"""Scene {_v(scene, 'scene_number', '?')}: {_v(scene, 'title', '')}
Description: {_v(scene, 'description')}
Location: {_v(scene, 'location')}
Project Genre: {_v(project, 'genre')}
Project Tone: {_v(project, 'tone')}

Write the voiceover:"""


# ── Storylines ───────────────────────────────────────────────────────────────

STORYLINES_SYSTEM = """You are a professional screenwriter specialized in creative storytelling and video production planning.
Generate THREE distinct storylines based on the provided project details. Each must align with the concept, genre, tone, and format and have a clear beginning, middle, and end.
Your entire response MUST be a single JSON object with this exact structure:
```json
{
  "storylines": [
    {
      "title": "Storyline Title",
      "description": "One-paragraph summary (max 200 characters).",
      "tags": ["relevant", "keyword", "tags"],
      "full_story": "Detailed story outline (3-5 paragraphs)."
    }
  ]
}
```
Do NOT include any text outside the JSON structure."""


def storylines_prompt(project: dict) -> str:
    lines = [
        "Generate three storylines for the following project:",
        "",
        f"Project Title: {_v(project, 'title', 'Untitled Project')}",
        f"Concept/Input: {_v(project, 'concept_text', 'No concept provided. Create something imaginative based on other details.')}",
        f"Genre: {_v(project, 'genre', 'Not specified')}",
        f"Tone: {_v(project, 'tone', 'Not specified')}",
        f"Format: {_v(project, 'format', 'Not specified')}",
    ]
    for key, label in (
        ("custom_format_description", "Custom Format Details"),
        ("special_requests", "Special Requests"),
        ("product_name", "Product/Service"),
        ("target_audience", "Target Audience"),
        ("main_message", "Main Message"),
        ("call_to_action", "Call to Action"),
    ):
        if project.get(key):
            lines.append(f"{label}: {project[key]}")
    return "\n".join(lines)


# ── Scene breakdown ──────────────────────────────────────────────────────────

SCENES_SYSTEM = """You are a professional screenwriter. Break the provided storyline into a detailed scene breakdown.
Number the scenes sequentially starting from 1 and generate between 5 and 10 scenes, appropriate for the story's length and format.
Your entire response MUST be a single JSON object with this exact structure:
```json
{
  "scenes": [
    {
      "scene_number": 1,
      "title": "Scene 1 Title",
      "description": "Detailed scene description...",
      "location": "Location details...",
      "lighting": "Lighting details...",
      "weather": "Weather details..."
    }
  ]
}
```"""


def scenes_prompt(storyline: dict, project: dict) -> str:
    return f"""Storyline: {_v(storyline, 'title')}
Summary: {_v(storyline, 'description')}
Full Story:
{_v(storyline, 'full_story')}

Genre: {_v(project, 'genre', 'Not specified')}
Tone: {_v(project, 'tone', 'Not specified')}
Format: {_v(project, 'format', 'Not specified')}

Generate the scene breakdown in the specified JSON format."""


# ── Shot breakdown ───────────────────────────────────────────────────────────

SHOTS_SYSTEM = """You are a film director's assistant AI. Analyze the provided scene description and context, then break it down into 2-5 distinct, logical camera shots.
For each shot, provide:
- `shot_number`: Sequential number starting from 1 within this scene.
- `shot_type`: Standard cinematography term (e.g. "wide", "medium", "close_up", "over_the_shoulder", "pov", "tracking", "insert").
- `prompt_idea`: A concise conceptual description of the main visual element or action for this shot. This is NOT the final image prompt, but the core idea.
- `dialogue`: Any dialogue spoken during this shot (null if none).
- `sound_effects`: Key sound effects relevant to this shot (null if none).
Output ONLY a single JSON object matching this structure:
```json
{
  "shots": [
    {"shot_number": 1, "shot_type": "...", "prompt_idea": "...", "dialogue": null, "sound_effects": null}
  ]
}
```"""


def shots_prompt(scene: dict, project: Optional[dict]) -> str:
    title = (scene or {}).get("title") or f"Scene {_v(scene, 'scene_number', '?')}"
    return f"""Scene Context:
Title: {title}
Description: {_v(scene, 'description', 'No description.')}
Location: {_v(scene, 'location', 'Not specified.')}
Lighting: {_v(scene, 'lighting', 'Not specified.')}
Weather: {_v(scene, 'weather', 'Not specified.')}
Project Style/Tone: {_v(project, 'video_style')}, {_v(project, 'genre')}, {_v(project, 'tone')}

Break this scene down into 2-5 logical shots in the specified JSON format."""
