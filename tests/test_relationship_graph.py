import asyncio

import pytest

from core.errors import ConflictError, GuardViolation, TransientError
from schemas.exercise import DifficultyLevel
from schemas.relations import ExerciseSummary, RelationProvenance, RelationType
from services import relation_service
from services.optimistic_field import CommitOutcome
from services.relationship_graph import RelationshipGraph, validate_difficulty

PROGRESSION, REGRESSION = RelationType.PROGRESSION, RelationType.REGRESSION


class FlakyBackend:
    """Wraps the real gateway; can fail or hold the next mutation."""

    def __init__(self, inner):
        self.inner = inner
        self.fail_next: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.mutations = 0

    async def get_neighbourhood(self, exercise_id):
        return await self.inner.get_neighbourhood(exercise_id)

    async def _mutate(self, call):
        self.mutations += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc
        return await call()

    async def set_relation(self, *args):
        return await self._mutate(lambda: self.inner.set_relation(*args))

    async def remove_relation(self, *args):
        return await self._mutate(lambda: self.inner.remove_relation(*args))

    async def confirm_relation(self, *args):
        return await self._mutate(lambda: self.inner.confirm_relation(*args))


@pytest.fixture
def backend(gateway):
    return FlakyBackend(gateway)


@pytest.fixture
def graph(backend):
    return RelationshipGraph(backend, success_grace=0, error_grace=0)


def assert_symmetric(graph):
    edges = graph.local_edges()
    for source, rtype, target in edges:
        assert (target, rtype.inverse, source) in edges


@pytest.mark.asyncio
async def test_set_relation_shows_both_directions(graph, make_exercise):
    a, b = make_exercise(name="Quad set", difficulty_level="easy"), make_exercise(difficulty_level="medium")

    outcome = await graph.set_relation(a, b, PROGRESSION)

    assert outcome.ok and outcome.warning is None
    assert graph.get_edges(a).progression == b
    assert graph.get_edges(b).regression == a
    assert_symmetric(graph)


@pytest.mark.asyncio
async def test_inverse_is_visible_while_the_save_is_in_flight(graph, backend, make_exercise):
    a, b = make_exercise(), make_exercise()
    backend.gate = asyncio.Event()

    task = asyncio.create_task(graph.set_relation(a, b, REGRESSION))
    await asyncio.sleep(0.01)

    assert graph.get_edges(a).regression == b
    assert graph.get_edges(b).progression == a
    backend.gate.set()
    assert (await task).outcome is CommitOutcome.SAVED


@pytest.mark.asyncio
async def test_replacing_a_target_releases_the_old_one(graph, db, make_exercise):
    a, b, c, d = (make_exercise(name=n) for n in "ABCD")
    await graph.set_relation(a, b, PROGRESSION)
    await graph.set_relation(c, d, PROGRESSION)

    await graph.set_relation(a, c, PROGRESSION)

    assert graph.get_edges(b).regression is None
    assert graph.get_edges(c).regression == a
    assert graph.get_edges(c).progression == d
    assert graph.get_edges(d).regression == c
    assert_symmetric(graph)
    assert graph.local_edges() == set(relation_service.list_edges(db))


@pytest.mark.asyncio
async def test_failed_replace_restores_every_slot(graph, backend, make_exercise):
    a, b, c = (make_exercise(name=n) for n in "ABC")
    await graph.set_relation(a, b, PROGRESSION)
    backend.fail_next = TransientError("network down")

    outcome = await graph.set_relation(a, c, PROGRESSION)

    assert outcome.outcome is CommitOutcome.ROLLED_BACK
    assert outcome.error == "network down"
    assert graph.get_edges(a).progression == b
    assert graph.get_edges(b).regression == a
    assert graph.get_edges(c).regression is None
    assert_symmetric(graph)


@pytest.mark.asyncio
async def test_failed_displacement_restores_the_displaced_source(graph, backend, make_exercise):
    a, b, c = (make_exercise(name=n) for n in "ABC")
    await graph.set_relation(a, c, PROGRESSION)
    backend.fail_next = ConflictError("moved")

    with pytest.raises(ConflictError):
        await graph.set_relation(b, c, PROGRESSION)

    assert graph.get_edges(a).progression == c
    assert graph.get_edges(c).regression == a
    assert graph.get_edges(b).progression is None


@pytest.mark.asyncio
async def test_overlapping_links_settle_in_the_order_they_were_made(graph, backend, db, make_exercise):
    a, b, c = (make_exercise(name=n) for n in "ABC")
    backend.gate = asyncio.Event()

    first = asyncio.create_task(graph.set_relation(a, c, PROGRESSION))
    await asyncio.sleep(0.01)
    second = asyncio.create_task(graph.set_relation(b, c, PROGRESSION))
    await asyncio.sleep(0.01)

    assert backend.mutations == 1
    assert graph.get_edges(c).regression == a
    assert_symmetric(graph)

    backend.gate.set()
    await asyncio.gather(first, second)

    assert graph.get_edges(c).regression == b
    assert graph.get_edges(a).progression is None
    assert_symmetric(graph)
    assert graph.local_edges() == set(relation_service.list_edges(db))


@pytest.mark.asyncio
async def test_suggested_link_stays_unconfirmed_until_confirmed(graph, make_exercise):
    a, b = make_exercise(), make_exercise()

    outcome = await graph.set_relation(a, b, PROGRESSION, RelationProvenance.SUGGESTED)

    assert outcome.edge.provenance is RelationProvenance.SUGGESTED
    assert outcome.edge.confirmed is False
    assert graph.edge(b, REGRESSION).confirmed is False

    confirmed = await graph.confirm_relation(a, PROGRESSION)

    assert confirmed.edge.confirmed is True
    assert graph.edge(b, REGRESSION).confirmed is True
    assert graph.get_edges(a).progression == b


@pytest.mark.asyncio
async def test_remove_relation_clears_the_inverse(graph, make_exercise):
    a, b = make_exercise(), make_exercise()
    await graph.set_relation(a, b, PROGRESSION)

    outcome = await graph.remove_relation(a, PROGRESSION)

    assert outcome.outcome is CommitOutcome.SAVED
    assert graph.get_edges(a).progression is None
    assert graph.get_edges(b).regression is None
    assert graph.local_edges() == set()


@pytest.mark.asyncio
async def test_relinking_the_same_target_is_a_noop(graph, backend, make_exercise):
    a, b = make_exercise(), make_exercise()
    await graph.set_relation(a, b, PROGRESSION)

    outcome = await graph.set_relation(a, b, PROGRESSION)

    assert outcome.outcome is CommitOutcome.NOOP
    assert backend.mutations == 1


@pytest.mark.asyncio
async def test_difficulty_mismatch_is_a_warning_not_a_failure(graph, make_exercise):
    a = make_exercise(difficulty_level="medium")
    b = make_exercise(difficulty_level="easy")

    outcome = await graph.set_relation(a, b, PROGRESSION)

    assert outcome.ok
    assert outcome.warning == "Progression should be harder than the exercise"
    assert graph.get_edges(a).progression == b


@pytest.mark.asyncio
async def test_self_link_and_contradictory_pair_are_refused(graph, backend, make_exercise):
    a, b = make_exercise(), make_exercise()
    with pytest.raises(GuardViolation):
        await graph.set_relation(a, a, PROGRESSION)

    await graph.set_relation(a, b, PROGRESSION)
    with pytest.raises(GuardViolation):
        await graph.set_relation(a, b, REGRESSION)
    assert backend.mutations == 1


@pytest.mark.asyncio
async def test_load_reads_the_server_neighbourhood(gateway, db, make_exercise):
    a, b, c = (make_exercise(name=n) for n in "ABC")
    relation_service.set_relation(db, b, a, REGRESSION)
    relation_service.set_relation(db, b, c, PROGRESSION)

    graph = RelationshipGraph(gateway, success_grace=0, error_grace=0)
    edges = await graph.load(b)

    assert edges.regression == a and edges.progression == c
    assert graph.get_edges(a).progression == b
    assert graph.summary(c).name == "C"


@pytest.mark.asyncio
async def test_set_relations_updates_both_slots(graph, make_exercise):
    a, b, c = (make_exercise(name=n) for n in "ABC")
    await graph.set_relation(a, b, REGRESSION)

    outcomes = await graph.set_relations(a, regression=None, progression=c)

    assert set(outcomes) == {REGRESSION, PROGRESSION}
    assert graph.get_edges(a).regression is None
    assert graph.get_edges(a).progression == c
    assert graph.get_edges(b).progression is None
    assert_symmetric(graph)


@pytest.mark.parametrize(
    "source, target, relation_type, expected",
    [
        ("medium", "easy", REGRESSION, None),
        ("medium", "medium", REGRESSION, "Regression should be easier than the exercise"),
        ("medium", "hard", PROGRESSION, None),
        ("medium", "beginner", PROGRESSION, "Progression should be harder than the exercise"),
        (None, "hard", PROGRESSION, None),
    ],
)
def test_validate_difficulty(source, target, relation_type, expected):
    assert validate_difficulty(source, target, relation_type) == expected


def test_validate_difficulty_accepts_summaries():
    source = ExerciseSummary(id="a", name="A", difficulty_level=DifficultyLevel.HARD)
    target = ExerciseSummary(id="b", name="B", difficulty_level=DifficultyLevel.EXPERT)
    assert validate_difficulty(source, target, REGRESSION) == "Regression should be easier than the exercise"
