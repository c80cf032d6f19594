"""
Generation targets: which (entity type, kind) pairs can be generated and the
owner-row columns each one mirrors.
"""

from ..errors import PreconditionFailed
from .models import EntityType, GenerationKind, GenerationTarget, JobStatus


def _target(entity_type, kind, prefix, result_column, required_column, required_status=None):
    return GenerationTarget(
        entity_type=entity_type,
        kind=kind,
        status_column=f"{prefix}_status",
        result_column=result_column,
        tracked_column=f"{prefix}_generation_id",
        failure_column=f"{prefix}_failure_reason",
        required_column=required_column,
        required_status=required_status,
    )


TARGETS: dict[tuple[EntityType, GenerationKind], GenerationTarget] = {
    (EntityType.SHOT, GenerationKind.TEXT): _target(
        EntityType.SHOT, GenerationKind.TEXT, "prompt", "visual_prompt", "prompt_idea"
    ),
    (EntityType.SHOT, GenerationKind.IMAGE): _target(
        EntityType.SHOT, GenerationKind.IMAGE, "image", "image_url", "visual_prompt"
    ),
    (EntityType.SHOT, GenerationKind.VIDEO): _target(
        EntityType.SHOT, GenerationKind.VIDEO, "video", "video_url", "image_url",
        required_status=("image_status", JobStatus.COMPLETED.value),
    ),
    (EntityType.CHARACTER, GenerationKind.TEXT): _target(
        EntityType.CHARACTER, GenerationKind.TEXT, "prompt", "visual_prompt", "description"
    ),
    (EntityType.CHARACTER, GenerationKind.IMAGE): _target(
        EntityType.CHARACTER, GenerationKind.IMAGE, "image", "image_url", "visual_prompt"
    ),
    (EntityType.SCENE, GenerationKind.TEXT): _target(
        EntityType.SCENE, GenerationKind.TEXT, "voiceover", "voiceover", "description"
    ),
}


def resolve_target(entity_type: EntityType, kind: GenerationKind) -> GenerationTarget:
    target = TARGETS.get((EntityType(entity_type), GenerationKind(kind)))
    if target is None:
        raise PreconditionFailed(f"Cannot generate {kind.value} for a {entity_type.value}")
    return target


def check_precondition(target: GenerationTarget, row: dict) -> None:
    """Raise PreconditionFailed when the owner lacks the upstream artifact."""
    value = row.get(target.required_column)
    if not value or not str(value).strip():
        raise PreconditionFailed(
            f"{target.entity_type.value} {row.get('id')} has no {target.required_column}; "
            f"generate or enter it before requesting {target.kind.value}"
        )
    if target.required_status:
        column, expected = target.required_status
        if row.get(column) != expected:
            raise PreconditionFailed(
                f"{target.entity_type.value} {row.get('id')} needs {column} == {expected} "
                f"(currently {row.get(column)!r})"
            )
