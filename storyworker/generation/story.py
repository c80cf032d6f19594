"""
Story breakdown: storylines → scenes → shots.

These call Claude synchronously and create owner entities; they are not
tracked generation jobs.
"""

import json
import logging
import re
from typing import Optional

from pydantic import ValidationError

from ..claude import ClaudeTextAdapter
from ..errors import EntityNotFound, StoryParseError
from ..store import JobStore
from . import prompts
from .models import JobStatus, SceneDefinition, ShotDefinition, StorylineOption

logger = logging.getLogger(__name__)

STORYLINE_COUNT = 3
DEFAULT_SHOT_TYPE = "medium"

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_json_object(text: str) -> dict:
    """
    Parse a JSON object out of model output.

    Accepts bare JSON, JSON inside a markdown fence, or JSON surrounded by
    prose (the outermost {...} span is used).
    """
    candidates = [text.strip()]
    fenced = _FENCE.search(text)
    if fenced:
        candidates.insert(0, fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    raise StoryParseError(f"Could not parse JSON from model output: {text[:200]!r}")


def _parse_list(text: str, key: str, model):
    data = parse_json_object(text)
    items = data.get(key)
    if not isinstance(items, list) or not items:
        raise StoryParseError(f"Model output has no '{key}' list")
    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as e:
        raise StoryParseError(f"Invalid {key} in model output: {e.error_count()} error(s)")


class StoryService:
    def __init__(self, store: JobStore, claude: Optional[ClaudeTextAdapter] = None):
        self.store = store
        self.claude = claude or ClaudeTextAdapter()

    def _require(self, table: str, row_id: str) -> dict:
        row = self.store.get_row(table, row_id)
        if row is None:
            raise EntityNotFound(f"{table[:-1]} {row_id} not found")
        return row

    # ── Storylines ──────────────────────────────────────────────────────

    def generate_storylines(self, project_id: str) -> list[dict]:
        project = self._require("projects", project_id)
        text = self.claude.complete(prompts.STORYLINES_SYSTEM, prompts.storylines_prompt(project), max_tokens=4000)
        options = _parse_list(text, "storylines", StorylineOption)[:STORYLINE_COUNT]

        rows = [
            {
                "project_id": project_id,
                "title": option.title,
                "description": option.description,
                "tags": option.tags,
                "full_story": option.full_story,
                "is_selected": index == 0,
                "generated_by": "ai",
            }
            for index, option in enumerate(options)
        ]
        saved = self.store.insert_rows("storylines", rows)
        logger.info(f"[project {project_id}] saved {len(saved)} storyline options")
        return saved

    # ── Scenes ──────────────────────────────────────────────────────────

    def generate_scenes(self, project_id: str, storyline_id: str) -> list[dict]:
        project = self._require("projects", project_id)
        storyline = self._require("storylines", storyline_id)
        if storyline.get("project_id") != project_id:
            raise EntityNotFound(f"storyline {storyline_id} does not belong to project {project_id}")

        text = self.claude.complete(prompts.SCENES_SYSTEM, prompts.scenes_prompt(storyline, project), max_tokens=4000)
        scenes = sorted(_parse_list(text, "scenes", SceneDefinition), key=lambda s: s.scene_number)

        self.store.update_where("storylines", {"is_selected": False}, project_id=project_id)
        self.store.update_where("storylines", {"is_selected": True}, id=storyline_id)

        saved = self.store.insert_rows("scenes", [
            {
                "project_id": project_id,
                "storyline_id": storyline_id,
                **scene.model_dump(),
            }
            for scene in scenes
        ])
        # One starter shot per scene so the storyboard has something to render
        self.store.insert_rows("shots", [
            {
                "scene_id": scene["id"],
                "project_id": project_id,
                "shot_number": 1,
                "shot_type": DEFAULT_SHOT_TYPE,
                "prompt_idea": scene.get("description") or "",
                "image_status": JobStatus.PENDING.value,
            }
            for scene in saved
        ])
        logger.info(f"[project {project_id}] saved {len(saved)} scenes for storyline {storyline_id}")
        return saved

    # ── Shots ───────────────────────────────────────────────────────────

    def generate_shots_for_scene(self, scene_id: str) -> list[dict]:
        scene = self._require("scenes", scene_id)
        project = self.store.get_row("projects", scene["project_id"]) if scene.get("project_id") else None

        text = self.claude.complete(prompts.SHOTS_SYSTEM, prompts.shots_prompt(scene, project), max_tokens=1500)
        shots = _parse_list(text, "shots", ShotDefinition)

        saved = self.store.insert_rows("shots", [
            {
                "scene_id": scene_id,
                "project_id": scene.get("project_id"),
                **shot.model_dump(),
                "image_status": JobStatus.PENDING.value,
            }
            for shot in shots
        ])
        logger.info(f"[scene {scene_id}] saved {len(saved)} shots")
        return saved
