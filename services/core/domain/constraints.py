"""
Constraint Validator - pure domain rules
=========================================

Organization constraints apply to every decision. A constraint may carry a
machine rule (``rule`` dict) of one of the supported types:

    budget_threshold            {"type": "budget_threshold", "field": "parameters.budget",
                                 "operator": "<=", "value": 500000}
    policy_regex                {"type": "policy_regex", "pattern": "approved by .*manager",
                                 "field": "description", "flags": "i"}
    technical_compatibility     {"type": "technical_compatibility",
                                 "field": "parameters.stack", "allowed_values": ["postgres"]}
    compliance_required_fields  {"type": "compliance_required_fields",
                                 "fields": ["parameters.owner"]}

Constraints without a rule, or with an unreadable rule, pass.
"""
import operator
import re
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class ConstraintSnapshot:
    id: Any
    name: str
    rule: Optional[dict] = None
    constraint_type: str = "OTHER"
    is_immutable: bool = True


@dataclass(frozen=True)
class ConstraintViolationFinding:
    constraint_id: Any
    constraint_name: str
    reason: str
    details: dict = field(default_factory=dict)


_OPERATORS = {
    "<=": operator.le,
    "<": operator.lt,
    ">=": operator.ge,
    ">": operator.gt,
    "==": operator.eq,
}


RULE_TYPES = frozenset({
    "budget_threshold",
    "policy_regex",
    "technical_compatibility",
    "compliance_required_fields",
})


class ConstraintValidator:
    """Evaluates a constraint rule against a decision context dict."""

    def validate(self, constraint: ConstraintSnapshot, context: dict) -> Optional[ConstraintViolationFinding]:
        rule = constraint.rule or {}
        rule_type = rule.get("type")
        if not rule_type:
            return None

        handler = {
            "budget_threshold": self._budget_threshold,
            "policy_regex": self._policy_regex,
            "technical_compatibility": self._technical_compatibility,
            "compliance_required_fields": self._required_fields,
        }.get(rule_type)

        if handler is None:
            return None
        return handler(constraint, context, rule)

    def validate_all(self, constraints, context: dict) -> list[ConstraintViolationFinding]:
        violations = []
        for constraint in constraints:
            finding = self.validate(constraint, context)
            if finding is not None:
                violations.append(finding)
        return violations

    def _budget_threshold(self, constraint, context, rule):
        field_path = rule.get("field", "parameters.cost")
        threshold = rule.get("value")
        op_symbol = rule.get("operator", "<=")
        compare = _OPERATORS.get(op_symbol)
        if compare is None or threshold is None:
            return None

        actual = get_nested_value(context, field_path)
        if isinstance(actual, bool) or not isinstance(actual, (int, float)):
            return ConstraintViolationFinding(
                constraint_id=constraint.id,
                constraint_name=constraint.name,
                reason=f'Budget field "{field_path}" not found or not a number',
                details={"field": field_path, "threshold": threshold}
            )

        if compare(actual, threshold):
            return None
        return ConstraintViolationFinding(
            constraint_id=constraint.id,
            constraint_name=constraint.name,
            reason=f"Budget constraint violated: {actual} {op_symbol} {threshold} is false",
            details={"field": field_path, "actual": actual, "operator": op_symbol, "threshold": threshold}
        )

    def _policy_regex(self, constraint, context, rule):
        pattern = rule.get("pattern")
        if not pattern:
            return None
        field_path = rule.get("field", "description")
        flags = re.IGNORECASE if "i" in rule.get("flags", "i") else 0

        text = get_nested_value(context, field_path)
        if not isinstance(text, str):
            return ConstraintViolationFinding(
                constraint_id=constraint.id,
                constraint_name=constraint.name,
                reason=f'Field "{field_path}" must be a string for pattern matching',
                details={"field": field_path, "pattern": pattern}
            )

        try:
            matched = re.search(pattern, text, flags) is not None
        except re.error:
            return None

        if matched:
            return None
        return ConstraintViolationFinding(
            constraint_id=constraint.id,
            constraint_name=constraint.name,
            reason=f"Decision {field_path} does not match required pattern: {pattern}",
            details={"field": field_path, "pattern": pattern, "text": text[:200]}
        )

    def _technical_compatibility(self, constraint, context, rule):
        field_path = rule.get("field")
        if not field_path:
            return None
        allowed = rule.get("allowed_values", [])
        actual = get_nested_value(context, field_path)
        if actual in allowed:
            return None
        return ConstraintViolationFinding(
            constraint_id=constraint.id,
            constraint_name=constraint.name,
            reason=f'Value "{actual}" not in allowed list for {field_path}',
            details={"field": field_path, "actual": actual, "allowed_values": allowed}
        )

    def _required_fields(self, constraint, context, rule):
        required = rule.get("fields") or []
        missing = [
            path for path in required
            if get_nested_value(context, path) in (None, "")
        ]
        if not missing:
            return None
        return ConstraintViolationFinding(
            constraint_id=constraint.id,
            constraint_name=constraint.name,
            reason=f"Missing required fields: {', '.join(missing)}",
            details={"missing_fields": missing, "required_fields": required}
        )


def get_nested_value(obj: Any, path: str) -> Any:
    """Dot-path lookup: get_nested_value(ctx, 'parameters.cost')"""
    current = obj
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


constraint_validator = ConstraintValidator()
