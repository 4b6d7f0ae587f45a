from fastapi import APIRouter, status

from api.deps import CurrentActorDep, DbDep
from schemas.exercise import ExerciseCreate, ExerciseSnapshot, FieldUpdate
from services.exercise_service import create_exercise, get_snapshot, update_field

router = APIRouter()


@router.post("", response_model=ExerciseSnapshot, status_code=status.HTTP_201_CREATED)
def create(payload: ExerciseCreate, db: DbDep, actor: CurrentActorDep):
    return create_exercise(db, payload, owner=actor)


@router.get("/{exercise_id}", response_model=ExerciseSnapshot)
def read(exercise_id: str, db: DbDep, actor: CurrentActorDep):
    return get_snapshot(db, exercise_id)


@router.patch("/{exercise_id}/fields/{field}", response_model=ExerciseSnapshot)
def patch_field(exercise_id: str, field: str, payload: FieldUpdate, db: DbDep, actor: CurrentActorDep):
    # Single-field write backing one inline editor; guarded by the edit pseudo-transition.
    return update_field(db, exercise_id, field, payload.value, actor, expected_version=payload.expected_version)
