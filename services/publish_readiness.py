"""
Publish-readiness rules.

Rules are plain records (id, severity, category, predicate) kept in a table so a
deployment can disable, re-grade or extend them without touching the engine:

- error   -> blocks approve
- warning -> shown, does not block
- info    -> advisory only

The score (passed / total) is for display; gating is strictly "no failing errors".
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from core.config import settings
from schemas.exercise import ExerciseSnapshot


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class RuleCategory(str, Enum):
    CONTENT = "content"
    MEDIA = "media"
    TAGS = "tags"
    PARAMETERS = "parameters"


@dataclass(frozen=True)
class ValidationRule:
    id: str
    label: str
    description: str
    severity: Severity
    category: RuleCategory
    check: Callable[[ExerciseSnapshot], bool]


@dataclass(frozen=True)
class ValidationResult:
    rule: ValidationRule
    passed: bool

    @property
    def blocking(self) -> bool:
        return not self.passed and self.rule.severity is Severity.ERROR


@dataclass(frozen=True)
class ReadinessReport:
    results: list[ValidationResult]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def score(self) -> int:
        if not self.results:
            return 100
        return round(self.passed / self.total * 100)

    def failing(self, severity: Severity) -> list[ValidationResult]:
        return [r for r in self.results if not r.passed and r.rule.severity is severity]

    @property
    def errors(self) -> list[ValidationResult]:
        return self.failing(Severity.ERROR)

    @property
    def warnings(self) -> list[ValidationResult]:
        return self.failing(Severity.WARNING)

    @property
    def infos(self) -> list[ValidationResult]:
        return self.failing(Severity.INFO)

    @property
    def can_publish(self) -> bool:
        return not self.errors

    def by_category(self) -> dict[RuleCategory, list[ValidationResult]]:
        groups: dict[RuleCategory, list[ValidationResult]] = {c: [] for c in RuleCategory}
        for result in self.results:
            groups[result.rule.category].append(result)
        return groups


# Predicate builders used by the rule table.


def _text(e: ExerciseSnapshot, attr: str) -> str:
    return (getattr(e, attr) or "").strip()


def _non_blank(attr: str) -> Callable[[ExerciseSnapshot], bool]:
    return lambda e: bool(_text(e, attr))


def _min_length(attr: str, n: int) -> Callable[[ExerciseSnapshot], bool]:
    return lambda e: len(_text(e, attr)) >= n


def _present(attr: str) -> Callable[[ExerciseSnapshot], bool]:
    return lambda e: getattr(e, attr) is not None


def _any_of(*attrs: str) -> Callable[[ExerciseSnapshot], bool]:
    return lambda e: any(bool(getattr(e, a)) for a in attrs)


def _tag_count(*attrs: str, at_least: int = 0, at_most: int | None = None) -> Callable[[ExerciseSnapshot], bool]:
    def check(e: ExerciseSnapshot) -> bool:
        count = sum(len(getattr(e, a) or []) for a in attrs)
        return count >= at_least and (at_most is None or count <= at_most)

    return check


def _positive(attr: str) -> Callable[[ExerciseSnapshot], bool]:
    return lambda e: (getattr(e, attr) or 0) > 0


def _rule(id: str, label: str, description: str, severity: Severity, category: RuleCategory, check) -> ValidationRule:
    return ValidationRule(id=id, label=label, description=description, severity=severity, category=category, check=check)


ERROR, WARNING, INFO = Severity.ERROR, Severity.WARNING, Severity.INFO
CONTENT, MEDIA, TAGS, PARAMS = RuleCategory.CONTENT, RuleCategory.MEDIA, RuleCategory.TAGS, RuleCategory.PARAMETERS

DEFAULT_RULES: tuple[ValidationRule, ...] = (
    _rule("name-required", "Exercise name", "Exercise must have a name", ERROR, CONTENT, _non_blank("name")),
    _rule(
        "patient-description-required",
        "Patient description",
        "Patient description must be at least 50 characters",
        ERROR,
        CONTENT,
        _min_length("patient_description", 50),
    ),
    _rule(
        "description-quality",
        "Description quality",
        "Patient description should be at least 100 characters",
        WARNING,
        CONTENT,
        _min_length("patient_description", 100),
    ),
    _rule(
        "clinical-description",
        "Clinical description",
        "A clinician-facing description (20+ characters) is recommended",
        INFO,
        CONTENT,
        _min_length("clinical_description", 20),
    ),
    _rule(
        "has-media",
        "Visual media",
        "Exercise must have an image, animation or video",
        ERROR,
        MEDIA,
        _any_of("video_url", "gif_url", "image_url", "images"),
    ),
    _rule(
        "has-video-or-gif",
        "Animation or video",
        "An animation or video showing the movement is recommended",
        WARNING,
        MEDIA,
        _any_of("video_url", "gif_url"),
    ),
    _rule("has-main-tags", "Main tags", "Exercise must have at least one main tag", ERROR, TAGS, _tag_count("main_tags", at_least=1)),
    _rule(
        "main-tags-within-limit",
        "Main tag limit",
        f"At most {settings.max_main_tags} main tags are allowed",
        ERROR,
        TAGS,
        _tag_count("main_tags", at_most=settings.max_main_tags),
    ),
    _rule(
        "has-multiple-tags",
        "Complete tagging",
        "At least 3 tags in total are recommended for search",
        WARNING,
        TAGS,
        _tag_count("main_tags", "additional_tags", at_least=3),
    ),
    _rule("has-type", "Exercise type", "Exercise must declare a type (reps / time / hold)", ERROR, PARAMS, _present("type")),
    _rule(
        "has-difficulty-level",
        "Difficulty level",
        "Exercise must declare a difficulty level",
        ERROR,
        PARAMS,
        _present("difficulty_level"),
    ),
    _rule(
        "has-parameters",
        "Default parameters",
        "Exercise should define sets, reps or duration",
        WARNING,
        PARAMS,
        _any_of("default_sets", "default_reps", "default_duration"),
    ),
    _rule("has-tempo", "Tempo", "Specifying a tempo (e.g. 2-0-2) is recommended", INFO, PARAMS, _non_blank("tempo")),
    _rule(
        "has-rest-times",
        "Rest between sets",
        "Specifying rest between sets is recommended",
        INFO,
        PARAMS,
        _positive("default_rest_between_sets"),
    ),
)


class PublishReadinessEngine:
    def __init__(self, rules: Iterable[ValidationRule] = DEFAULT_RULES):
        self.rules: tuple[ValidationRule, ...] = tuple(rules)
        ids = [r.id for r in self.rules]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate rule ids in readiness rule set")

    @classmethod
    def from_settings(
        cls,
        rules: Iterable[ValidationRule] = DEFAULT_RULES,
        disabled: Iterable[str] | None = None,
        severity_overrides: Mapping[str, str] | None = None,
    ) -> "PublishReadinessEngine":
        disabled = set(settings.readiness_disabled_rules if disabled is None else disabled)
        overrides = dict(settings.readiness_severity_overrides if severity_overrides is None else severity_overrides)
        selected = []
        for rule in rules:
            if rule.id in disabled:
                continue
            if rule.id in overrides:
                rule = replace(rule, severity=Severity(overrides[rule.id]))
            selected.append(rule)
        return cls(selected)

    def extended(self, *extra: ValidationRule) -> "PublishReadinessEngine":
        return PublishReadinessEngine((*self.rules, *extra))

    def evaluate(self, exercise: ExerciseSnapshot, pending: dict[str, Any] | None = None) -> list[ValidationResult]:
        snapshot = exercise.with_pending(pending)
        return [ValidationResult(rule=rule, passed=bool(rule.check(snapshot))) for rule in self.rules]

    def report(self, exercise: ExerciseSnapshot, pending: dict[str, Any] | None = None) -> ReadinessReport:
        return ReadinessReport(self.evaluate(exercise, pending))
