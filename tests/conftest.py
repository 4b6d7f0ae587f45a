import os

os.environ["SEED_DEMO_DATA"] = "false"
os.environ["FIELD_SUCCESS_GRACE_SECONDS"] = "0"
os.environ["FIELD_ERROR_GRACE_SECONDS"] = "0"
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import models.exercise  # noqa: F401
from api.deps import get_db, get_gateway
from main import create_app
from models.base import Base
from models.exercise import Exercise
from models.user import User
from schemas.exercise import Actor, ActorRole
from services.auth_service import create_access_token, hash_password
from services.gateway import SqlGateway

ORG_ID = "org-1"

READY_FIELDS = dict(
    patient_description="Lie on your back with one knee bent. Tighten the thigh and lift the straight leg "
    "to the height of the other knee, then lower slowly.",
    clinical_description="Open-chain quadriceps activation without knee flexion load.",
    type="reps",
    difficulty_level="medium",
    main_tags=["knee"],
    additional_tags=["quadriceps", "post-op"],
    image_url="https://media.example/slr.jpg",
    video_url="https://media.example/slr.mp4",
    default_sets=3,
    default_reps=10,
    default_rest_between_sets=30,
    tempo="2-0-2",
)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway(session_factory):
    return SqlGateway(session_factory)


@pytest.fixture
def users(session_factory):
    with session_factory() as s:
        author = User(
            email="author@example.com",
            name="Author",
            role="author",
            organization_id=ORG_ID,
            hashed_password=hash_password("secret"),
        )
        reviewer = User(email="reviewer@example.com", name="Reviewer", role="reviewer", hashed_password=hash_password("secret"))
        s.add_all([author, reviewer])
        s.commit()
        return {"author": str(author.id), "reviewer": str(reviewer.id)}


@pytest.fixture
def author(users):
    return Actor(id=users["author"], role=ActorRole.AUTHOR, organization_id=ORG_ID)


@pytest.fixture
def reviewer(users):
    return Actor(id=users["reviewer"], role=ActorRole.REVIEWER)


@pytest.fixture
def make_exercise(session_factory, users):
    """Create an exercise row; `ready=True` fills every field the default rules want."""

    def _make(ready: bool = True, **overrides) -> str:
        values = dict(READY_FIELDS) if ready else {}
        values.setdefault("name", "Straight leg raise")
        values.update(owner_id=users["author"], organization_id=ORG_ID)
        values.update(overrides)
        with session_factory() as s:
            ex = Exercise(**values)
            s.add(ex)
            s.commit()
            return str(ex.id)

    return _make


@pytest.fixture
def load_exercise(session_factory):
    def _load(exercise_id: str) -> Exercise:
        with session_factory() as s:
            ex = s.get(Exercise, exercise_id)
            s.expunge(ex)
            return ex

    return _load


@pytest.fixture
def client(session_factory):
    app = create_app(with_db_init=False)

    def override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: SqlGateway(session_factory)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(users):
    def _headers(role: str) -> dict[str, str]:
        token = create_access_token(
            sub=users[role],
            role=role,
            email=f"{role}@example.com",
            organization_id=ORG_ID if role == "author" else None,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
