from fastapi import APIRouter

from api.deps import CurrentActorDep, DbDep, GatewayDep, ReviewerDep, StateMachineDep
from schemas.verification import (
    AllowedEventsResponse,
    BulkDispatchRequest,
    BulkOperationResult,
    DecisionItem,
    DispatchPayload,
    DispatchRequest,
    ReadinessResponse,
    TransitionResult,
    ValidationResultItem,
    VerificationStats,
)
from services.content_state_machine import can_edit
from services.exercise_service import list_decisions, verification_stats

router = APIRouter()


@router.get("/stats", response_model=VerificationStats)
def stats(db: DbDep, actor: ReviewerDep):
    return verification_stats(db)


@router.post("/bulk", response_model=BulkOperationResult)
async def bulk_dispatch(payload: BulkDispatchRequest, machine: StateMachineDep, actor: ReviewerDep):
    return await machine.dispatch_many(
        payload.event,
        payload.exercise_ids,
        DispatchPayload(notes=payload.notes, reason_code=payload.reason_code, idempotency_key=payload.idempotency_key),
        actor=actor,
    )


@router.get("/{exercise_id}/readiness", response_model=ReadinessResponse)
async def readiness(exercise_id: str, gateway: GatewayDep, machine: StateMachineDep, actor: CurrentActorDep):
    snapshot = await gateway.get_snapshot(exercise_id)
    report = machine.engine.report(snapshot)
    return ReadinessResponse(
        exercise_id=exercise_id,
        score=report.score,
        can_publish=report.can_publish,
        errors=len(report.errors),
        warnings=len(report.warnings),
        results=[
            ValidationResultItem(
                id=r.rule.id,
                label=r.rule.label,
                description=r.rule.description,
                severity=r.rule.severity.value,
                category=r.rule.category.value,
                passed=r.passed,
            )
            for r in report.results
        ],
    )


@router.get("/{exercise_id}/events", response_model=AllowedEventsResponse)
async def allowed_events(exercise_id: str, gateway: GatewayDep, machine: StateMachineDep, actor: CurrentActorDep):
    snapshot = await gateway.get_snapshot(exercise_id)
    return AllowedEventsResponse(
        exercise_id=exercise_id,
        status=snapshot.status,
        can_edit=can_edit(snapshot, actor),
        events=machine.allowed_events(snapshot, actor),
    )


@router.post("/{exercise_id}/dispatch", response_model=TransitionResult)
async def dispatch(
    exercise_id: str, payload: DispatchRequest, gateway: GatewayDep, machine: StateMachineDep, actor: CurrentActorDep
):
    snapshot = await gateway.get_snapshot(exercise_id)
    return await machine.dispatch(
        payload.event,
        snapshot,
        DispatchPayload(**payload.model_dump(exclude={"event", "expected_version"})),
        actor=actor,
        expected_version=payload.expected_version,
    )


@router.get("/{exercise_id}/decisions", response_model=list[DecisionItem])
def decisions(exercise_id: str, db: DbDep, actor: CurrentActorDep):
    return list_decisions(db, exercise_id)
