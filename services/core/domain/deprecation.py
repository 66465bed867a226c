"""
Similar-failure detection

Warns when a new decision looks like a retired decision whose outcome was
``failed``: category match is worth 40% of the score, matching values on
shared parameter keys the remaining 60%.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Optional

SIMILARITY_THRESHOLD = 0.6
CATEGORY_WEIGHT = 0.4
PARAMETER_WEIGHT = 0.6
LIST_OVERLAP_RATIO = 0.7


@dataclass(frozen=True)
class FailedDecisionSnapshot:
    id: Any
    title: str
    category: Optional[str] = None
    parameters: dict = field(default_factory=dict)
    conclusions: dict = field(default_factory=dict)


@dataclass
class SimilarityWarning:
    decision_id: str
    decision_title: str
    similarity_score: float
    matching_parameters: list
    failure_reasons: list
    lessons: list
    recommendations: list
    message: str

    def to_dict(self) -> dict:
        return {
            "deprecatedDecisionId": self.decision_id,
            "deprecatedDecisionTitle": self.decision_title,
            "similarityScore": self.similarity_score,
            "matchingParameters": self.matching_parameters,
            "failureReasons": self.failure_reasons,
            "lessons": self.lessons,
            "recommendations": self.recommendations,
            "warningMessage": self.message,
        }


def values_match(left: Any, right: Any) -> bool:
    if left == right:
        return True
    if isinstance(left, str) and isinstance(right, str):
        return left.lower() == right.lower()
    if isinstance(left, list) and isinstance(right, list):
        overlap = [v for v in left if v in right]
        return len(overlap) >= min(len(left), len(right)) * LIST_OVERLAP_RATIO
    if isinstance(left, dict) and isinstance(right, dict):
        return json.dumps(left, sort_keys=True, default=str) == json.dumps(right, sort_keys=True, default=str)
    return False


def similarity(category: Optional[str], parameters: Optional[dict], failed: FailedDecisionSnapshot) -> tuple[float, list]:
    score = 0.0
    matching = []
    checks = 0

    if category and failed.category:
        checks += 1
        if category == failed.category:
            score += CATEGORY_WEIGHT
            matching.append(f"category: {category}")

    if parameters and failed.parameters:
        common = [key for key in parameters if key in failed.parameters]
        if common:
            hits = 0
            for key in common:
                checks += 1
                if values_match(parameters[key], failed.parameters[key]):
                    hits += 1
                    matching.append(f"{key}: {json.dumps(parameters[key], default=str)}")
            score += hits / len(common) * PARAMETER_WEIGHT

    if checks == 0:
        return 0.0, []
    return round(score, 4), matching


def _warning_message(failed: FailedDecisionSnapshot, score: float, matching: list) -> str:
    message = (
        f'This decision is {round(score * 100)}% similar to a previous decision '
        f'that failed: "{failed.title}"'
    )
    if matching:
        message += f"\n\nMatching parameters: {', '.join(matching[:3])}"
        if len(matching) > 3:
            message += f", and {len(matching) - 3} more"

    conclusions = failed.conclusions or {}
    if conclusions.get("failureReasons"):
        message += "\n\nThe previous decision failed because:\n" + "\n".join(
            f"- {r}" for r in conclusions["failureReasons"]
        )
    elif conclusions.get("keyIssues"):
        message += "\n\nKey issues from the previous decision:\n" + "\n".join(
            f"- {i}" for i in conclusions["keyIssues"]
        )
    elif conclusions.get("whyOutcome"):
        message += f"\n\nReason: {conclusions['whyOutcome']}"

    if conclusions.get("recommendations"):
        message += "\n\nRecommendations:\n" + "\n".join(f"- {r}" for r in conclusions["recommendations"])
    return message


def find_similar_failures(
    category: Optional[str],
    parameters: Optional[dict],
    failed_decisions
) -> list[SimilarityWarning]:
    """Warnings for every failed decision at or above the similarity threshold, most similar first."""
    warnings = []
    for failed in failed_decisions:
        score, matching = similarity(category, parameters, failed)
        if score < SIMILARITY_THRESHOLD:
            continue
        conclusions = failed.conclusions or {}
        warnings.append(SimilarityWarning(
            decision_id=str(failed.id),
            decision_title=failed.title,
            similarity_score=score,
            matching_parameters=matching,
            failure_reasons=conclusions.get("failureReasons") or conclusions.get("keyIssues") or [],
            lessons=conclusions.get("lessonsLearned") or [],
            recommendations=conclusions.get("recommendations") or [],
            message=_warning_message(failed, score, matching),
        ))

    warnings.sort(key=lambda w: w.similarity_score, reverse=True)
    return warnings
