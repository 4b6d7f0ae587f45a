from fastapi import APIRouter

from api.deps import DbDep, ReviewerDep
from schemas.relations import RelationChange, RelationSetRequest, RelationsResponse, RelationType
from services import relation_service
from services.relationship_graph import validate_difficulty

router = APIRouter()


def _relations_response(db, exercise_id: str) -> RelationsResponse:
    change = relation_service.get_neighbourhood(db, exercise_id)
    pair = change.slots[exercise_id]
    source = change.summaries[exercise_id]
    regression = change.summaries.get(pair.regression) if pair.regression else None
    progression = change.summaries.get(pair.progression) if pair.progression else None
    return RelationsResponse(
        exercise_id=exercise_id,
        regression=regression,
        progression=progression,
        regression_warning=validate_difficulty(source, regression, RelationType.REGRESSION) if regression else None,
        progression_warning=validate_difficulty(source, progression, RelationType.PROGRESSION) if progression else None,
        regression_edge=change.edge(exercise_id, RelationType.REGRESSION),
        progression_edge=change.edge(exercise_id, RelationType.PROGRESSION),
    )


@router.get("/{exercise_id}/relations", response_model=RelationsResponse)
def read_relations(exercise_id: str, db: DbDep, actor: ReviewerDep):
    return _relations_response(db, exercise_id)


@router.put("/{exercise_id}/relations/{relation_type}", response_model=RelationChange)
def put_relation(
    exercise_id: str, relation_type: RelationType, payload: RelationSetRequest, db: DbDep, actor: ReviewerDep
):
    return relation_service.set_relation(db, exercise_id, payload.target_id, relation_type, payload.provenance)


@router.post("/{exercise_id}/relations/{relation_type}/confirm", response_model=RelationChange)
def confirm_relation(exercise_id: str, relation_type: RelationType, db: DbDep, actor: ReviewerDep):
    return relation_service.confirm_relation(db, exercise_id, relation_type)


@router.delete("/{exercise_id}/relations/{relation_type}", response_model=RelationChange)
def delete_relation(exercise_id: str, relation_type: RelationType, db: DbDep, actor: ReviewerDep):
    return relation_service.remove_relation(db, exercise_id, relation_type)
