from enum import Enum

from pydantic import BaseModel, Field

from schemas.exercise import DifficultyLevel


class RelationType(str, Enum):
    REGRESSION = "regression"  # easier variant
    PROGRESSION = "progression"  # harder variant

    @property
    def inverse(self) -> "RelationType":
        return RelationType.PROGRESSION if self is RelationType.REGRESSION else RelationType.REGRESSION


class RelationProvenance(str, Enum):
    HUMAN = "human"
    SUGGESTED = "suggested"  # machine-suggested, awaiting confirmation


class RelationEdge(BaseModel):
    source_id: str
    target_id: str
    relation_type: RelationType
    provenance: RelationProvenance = RelationProvenance.HUMAN
    confirmed: bool = True


class ExerciseSummary(BaseModel):
    id: str
    name: str
    difficulty_level: DifficultyLevel | None = None


class EdgePair(BaseModel):
    regression: str | None = None
    progression: str | None = None

    def get(self, relation_type: RelationType) -> str | None:
        return getattr(self, relation_type.value)


class RelationChange(BaseModel):
    """Authoritative slot values for every exercise a relation mutation touched."""

    slots: dict[str, EdgePair] = Field(default_factory=dict)
    summaries: dict[str, ExerciseSummary] = Field(default_factory=dict)
    # Outgoing edges of every exercise in `slots`, with provenance and confirmation.
    edges: list[RelationEdge] = Field(default_factory=list)

    def edge(self, source_id: str, relation_type: RelationType) -> RelationEdge | None:
        return next((e for e in self.edges if e.source_id == source_id and e.relation_type is relation_type), None)


class RelationSetRequest(BaseModel):
    target_id: str
    provenance: RelationProvenance = RelationProvenance.HUMAN


class RelationsResponse(BaseModel):
    exercise_id: str
    regression: ExerciseSummary | None = None
    progression: ExerciseSummary | None = None
    regression_warning: str | None = None
    progression_warning: str | None = None
    regression_edge: RelationEdge | None = None
    progression_edge: RelationEdge | None = None
