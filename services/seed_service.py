from sqlalchemy.orm import Session

from models.exercise import Exercise
from models.user import User
from schemas.relations import RelationType
from services.auth_service import hash_password
from services.relation_service import set_relation

DEMO_PASSWORD = "Password123!"
DEMO_AUTHOR_EMAIL = "demo.author@physioverify.dev"
DEMO_REVIEWER_EMAIL = "demo.reviewer@physioverify.dev"
DEMO_ORGANIZATION_ID = "demo-clinic"


def seed_demo_data(db: Session) -> None:
    # Users
    author = db.query(User).filter(User.email == DEMO_AUTHOR_EMAIL).first()
    if not author:
        author = User(
            email=DEMO_AUTHOR_EMAIL,
            name="Demo Author",
            role="author",
            organization_id=DEMO_ORGANIZATION_ID,
            hashed_password=hash_password(DEMO_PASSWORD),
        )
        db.add(author)

    reviewer = db.query(User).filter(User.email == DEMO_REVIEWER_EMAIL).first()
    if not reviewer:
        reviewer = User(
            email=DEMO_REVIEWER_EMAIL,
            name="Demo Reviewer",
            role="reviewer",
            hashed_password=hash_password(DEMO_PASSWORD),
        )
        db.add(reviewer)

    db.commit()
    db.refresh(author)

    # A small knee ladder waiting for review (idempotent).
    if db.query(Exercise).filter(Exercise.owner_id == author.id).count() > 0:
        return

    seeds = [
        ("Quad set", "beginner", "hold"),
        ("Straight leg raise", "easy", "reps"),
        ("Wall sit", "medium", "hold"),
    ]
    created = []
    for name, level, kind in seeds:
        ex = Exercise(
            name=name,
            patient_description=f"{name}: move slowly, keep breathing, stop if pain rises above 5/10. "
            "Keep the knee aligned over the toes throughout the movement.",
            type=kind,
            difficulty_level=level,
            main_tags=["knee"],
            additional_tags=["quadriceps", "post-op"],
            image_url=f"https://media.example/{name.lower().replace(' ', '-')}.jpg",
            default_sets=3,
            default_reps=10 if kind == "reps" else None,
            default_duration=30 if kind == "hold" else None,
            status="pending_review",
            owner_id=author.id,
            organization_id=DEMO_ORGANIZATION_ID,
        )
        db.add(ex)
        created.append(ex)
    db.commit()

    for easier, harder in zip(created, created[1:]):
        set_relation(db, easier.id, harder.id, RelationType.PROGRESSION)
