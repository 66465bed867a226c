"""
Conflict Detection Oracle

The engine does not decide what "contradicts" means; it asks an oracle.
Interface: given a set of assumptions (or decisions), return zero or more
ConflictFinding(entity_a_id, entity_b_id, conflict_type, confidence_score,
explanation).

Two implementations:
- RuleBasedConflictOracle: deterministic rules (structured parameters,
  negation, antonyms, shared resources, superseding language). Default.
- HttpConflictOracle: posts the candidates to an external (possibly
  AI-assisted) service at CONFLICT_ORACLE_URL.

Adapters raise DetectionOracleUnavailable; the ConflictRegistry turns that
into "zero new conflicts".
"""

import re
from datetime import datetime
from itertools import combinations
from typing import Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from config import CONFLICT_ORACLE_TIMEOUT_SECONDS, CONFLICT_ORACLE_URL
from domain.enums import AssumptionConflictType, DecisionConflictType, TERMINAL_LIFECYCLES, DecisionLifecycle
from exceptions import DetectionOracleUnavailable
from logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# Pydantic Schemas (oracle wire contract)
# =============================================================================

class AssumptionCandidate(BaseModel):
    id: str
    description: str
    status: str
    scope: str
    category: Optional[str] = None
    parameters: Dict = Field(default_factory=dict)


class DecisionCandidate(BaseModel):
    id: str
    title: str
    description: str = ""
    lifecycle: str
    category: Optional[str] = None
    parameters: Dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @property
    def full_text(self) -> str:
        return f"{self.title} {self.description or ''}".lower()


class ConflictFinding(BaseModel):
    """One detected contradiction between two entities"""
    entity_a_id: str
    entity_b_id: str
    conflict_type: str
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    explanation: str
    metadata: Dict = Field(default_factory=dict)


class OracleResponse(BaseModel):
    conflicts: List[ConflictFinding] = Field(default_factory=list)


# Rule result: (conflict_type, confidence, explanation, strategy)
RuleHit = Tuple[str, float, str, str]


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}", text) is not None


def _either_way(text_a: str, text_b: str, word_1: str, word_2: str) -> bool:
    return (
        (_has_word(text_a, word_1) and _has_word(text_b, word_2))
        or (_has_word(text_a, word_2) and _has_word(text_b, word_1))
    )


def _tokens(text: str) -> set:
    return {t for t in re.split(r"\s+", text.strip()) if t}


def jaccard(text_a: str, text_b: str) -> float:
    tokens_a, tokens_b = _tokens(text_a), _tokens(text_b)
    union = tokens_a | tokens_b
    return len(tokens_a & tokens_b) / len(union) if union else 0.0


def _number(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^0-9.\-]", "", str(value or ""))
    try:
        return float(cleaned)
    except ValueError:
        return None


# =============================================================================
# Assumption rules
# =============================================================================

class AssumptionConflictRules:
    """Pairwise checks, most specific first"""

    ANTONYM_PAIRS = [
        ("increase", "decrease"), ("more", "less"), ("higher", "lower"),
        ("grow", "shrink"), ("rise", "fall"), ("expand", "contract"),
        ("improve", "worsen"), ("gain", "lose"), ("add", "remove"),
        ("include", "exclude"), ("enable", "disable"), ("allow", "prevent"),
        ("accept", "reject"), ("success", "failure"), ("positive", "negative"),
        ("always", "never"),
    ]

    OPPOSITE_DIRECTIONS = [
        ("increase", "decrease"), ("improve", "worsen"), ("positive", "negative"), ("up", "down"),
    ]

    MUTUALLY_EXCLUSIVE_WORDS = [
        ("always", "sometimes"), ("always", "rarely"), ("never", "sometimes"),
        ("only", "multiple"), ("single", "multiple"),
        ("mandatory", "optional"), ("required", "optional"),
    ]

    STATE_WORDS = [
        ("active", "inactive"), ("enabled", "disabled"), ("online", "offline"),
        ("open", "closed"), ("public", "private"),
    ]

    FILLER = re.compile(r"\b(the|a|an|will|would|should|could|may|might|can|must|is|are|was|were|be|been|being)\b")
    NEGATION = re.compile(r"\bnot\b|n't\b")
    STOP_WORDS = {
        "the", "will", "would", "should", "could", "might", "must", "were", "been", "being",
        "have", "does", "with", "from", "that", "this",
    }

    def check(self, a: AssumptionCandidate, b: AssumptionCandidate) -> Optional[RuleHit]:
        if a.id == b.id:
            return None

        if a.category and a.category == b.category:
            hit = self._structured(a, b)
            if hit:
                return hit

        text_a, text_b = a.description.lower(), b.description.lower()
        return (
            self._negation(text_a, text_b)
            or self._antonyms(text_a, text_b)
            or self._contextual(text_a, text_b)
        )

    def _structured(self, a: AssumptionCandidate, b: AssumptionCandidate) -> Optional[RuleHit]:
        pa, pb = a.parameters or {}, b.parameters or {}
        category = (a.category or "").upper()
        contradictory = AssumptionConflictType.CONTRADICTORY.value

        if category == "BUDGET" and pa.get("type") and pb.get("type"):
            budget_a, budget_b = _number(pa.get("budget")), _number(pb.get("budget"))
            if budget_a is not None and budget_b is not None:
                for (x, bx), (y, by) in (((pa, budget_a), (pb, budget_b)), ((pb, budget_b), (pa, budget_a))):
                    if x["type"] == "maximum" and y["type"] == "minimum" and bx < by:
                        return (contradictory, 0.99,
                                f"Maximum budget ({bx:g}) is less than minimum budget ({by:g})", "structured")
                if pa["type"] == "fixed" and pb["type"] == "fixed" and budget_a != budget_b:
                    return (contradictory, 0.95,
                            f"Conflicting fixed budgets: {budget_a:g} vs {budget_b:g}", "structured")

        if category == "TIMELINE" and pa.get("unit") == pb.get("unit"):
            dur_a, dur_b = _number(pa.get("duration")), _number(pb.get("duration"))
            if dur_a is not None and dur_b is not None:
                unit = pa.get("unit") or ""
                for (x, dx), (y, dy) in (((pa, dur_a), (pb, dur_b)), ((pb, dur_b), (pa, dur_a))):
                    if x.get("type") == "minimum" and y.get("type") == "deadline" and dx > dy:
                        return (contradictory, 0.98,
                                f"Minimum duration ({dx:g} {unit}) exceeds deadline ({dy:g} {unit})", "structured")
                    if x.get("type") == "minimum" and y.get("type") == "maximum" and dx > dy:
                        return (contradictory, 0.97,
                                f"Minimum duration ({dx:g} {unit}) exceeds maximum duration ({dy:g} {unit})",
                                "structured")

        if category == "RESOURCE" and pa.get("resourceType") == pb.get("resourceType"):
            qty_a, qty_b = _number(pa.get("quantity")), _number(pb.get("quantity"))
            if qty_a is not None and qty_b is not None:
                resource = pa.get("resourceType")
                for (x, qx), (y, qy) in (((pa, qty_a), (pb, qty_b)), ((pb, qty_b), (pa, qty_a))):
                    if x.get("type") == "required" and y.get("type") == "available" and qx > qy:
                        return (AssumptionConflictType.INCOMPATIBLE.value, 0.96,
                                f"Required {resource} ({qx:g}) exceeds available ({qy:g})", "structured")
                    if x.get("type") == "minimum" and y.get("type") == "maximum" and qx > qy:
                        return (contradictory, 0.95,
                                f"Minimum {resource} ({qx:g}) exceeds maximum ({qy:g})", "structured")

        if pa.get("amount") and pb.get("amount") and pa.get("timeframe") == pb.get("timeframe"):
            if _number(pa["amount"]) != _number(pb["amount"]):
                return (contradictory, 0.95,
                        f"Different amounts specified for {pa.get('timeframe')}: {pa['amount']} vs {pb['amount']}",
                        "structured")

        impact = pa.get("impactArea")
        if impact and impact == pb.get("impactArea") and pa.get("direction") and pb.get("direction"):
            dir_a, dir_b = str(pa["direction"]).lower(), str(pb["direction"]).lower()
            for word_1, word_2 in self.OPPOSITE_DIRECTIONS:
                if (word_1 in dir_a and word_2 in dir_b) or (word_2 in dir_a and word_1 in dir_b):
                    return (contradictory, 0.94,
                            f"Opposite impact directions on {impact}: {pa['direction']} vs {pb['direction']}",
                            "structured")
        return None

    def _negation(self, text_a: str, text_b: str) -> Optional[RuleHit]:
        negated_a = self.NEGATION.search(text_a) is not None
        negated_b = self.NEGATION.search(text_b) is not None
        if negated_a == negated_b:
            return None

        core_a = self.NEGATION.sub("", self.FILLER.sub("", text_a))
        core_b = self.NEGATION.sub("", self.FILLER.sub("", text_b))
        similarity = jaccard(core_a, core_b)
        if similarity > 0.6:
            return (AssumptionConflictType.CONTRADICTORY.value,
                    round(min(0.95, 0.7 + similarity * 0.25), 4),
                    "One assumption negates the other with a similar core statement", "negation")
        return None

    def _antonyms(self, text_a: str, text_b: str) -> Optional[RuleHit]:
        for word_1, word_2 in self.ANTONYM_PAIRS:
            if _has_word(text_a, word_1) and _has_word(text_b, word_2):
                used_a, used_b = word_1, word_2
            elif _has_word(text_a, word_2) and _has_word(text_b, word_1):
                used_a, used_b = word_2, word_1
            else:
                continue

            similarity = jaccard(self._context(text_a, used_a), self._context(text_b, used_b))
            if similarity > 0.5:
                return (AssumptionConflictType.CONTRADICTORY.value,
                        round(min(0.9, 0.6 + similarity * 0.3), 4),
                        f'Contradictory keywords "{used_a}" vs "{used_b}" in similar context', "antonym")
        return None

    @staticmethod
    def _context(text: str, keyword: str, window: int = 3) -> str:
        words = text.split()
        for index, word in enumerate(words):
            if keyword in word:
                return " ".join(words[max(0, index - window):index] + words[index + 1:index + window + 1])
        return ""

    def _contextual(self, text_a: str, text_b: str) -> Optional[RuleHit]:
        shared = sorted(self._entities(text_a) & self._entities(text_b))
        if not shared:
            return None

        score = 0.0
        for word_1, word_2 in self.MUTUALLY_EXCLUSIVE_WORDS:
            if _either_way(text_a, text_b, word_1, word_2):
                score += 0.3
        for word_1, word_2 in self.STATE_WORDS:
            if _either_way(text_a, text_b, word_1, word_2):
                score += 0.4
        score = min(score, 1.0)

        if score > 0.6:
            return (AssumptionConflictType.INCOMPATIBLE.value, min(0.8, score),
                    f"Potentially incompatible assertions about: {', '.join(shared)}", "contextual")
        return None

    def _entities(self, text: str) -> set:
        words = (re.sub(r"[^a-z]", "", w) for w in text.split())
        return {w for w in words if len(w) > 3 and w not in self.STOP_WORDS}


# =============================================================================
# Decision rules
# =============================================================================

class DecisionConflictRules:

    RESOURCE_KEYWORDS = [
        "budget", "money", "cost", "spending", "expense", "investment", "fund",
        "hire", "headcount", "staff", "team", "employee", "personnel",
        "resource", "capacity", "bandwidth", "office", "facility", "equipment",
    ]
    ALLOCATION_KEYWORDS = ["allocate", "use", "spend", "invest", "assign", "dedicate", "commit"]

    ACTION_CONFLICTS = [
        ("increase", "decrease"), ("reduce", "expand"), ("hire", "layoff"),
        ("add", "remove"), ("start", "stop"), ("create", "delete"),
        ("build", "dismantle"), ("grow", "shrink"), ("accelerate", "slow"),
        ("prioritize", "deprioritize"), ("invest", "divest"), ("acquire", "sell"),
        ("centralize", "decentralize"),
    ]
    GOAL_KEYWORDS = ["goal", "objective", "target", "aim", "purpose", "outcome", "achieve"]
    UNDERMINING_PATTERNS = [
        ("improve", "reduce"), ("enhance", "cut"), ("optimize", "sacrifice"),
        ("quality", "speed"), ("growth", "stability"), ("innovation", "standardize"),
    ]
    INVALIDATION_KEYWORDS = [
        "replace", "supersede", "cancel", "reverse", "obsolete", "deprecate",
        "override", "nullify", "void", "abandon",
    ]
    NEGATION_WORDS = ["not", "never", "cannot", "won't", "don't", "shouldn't"]
    FILLER = {"will", "should", "would", "could", "that", "this", "with", "from", "decision", "which", "there"}

    OPPOSITE_DIRECTIONS = [
        ("increase", "decrease"), ("expand", "reduce"), ("approve", "reject"),
        ("improve", "reduce"), ("expand", "contract"), ("grow", "shrink"),
    ]
    OPPOSITE_RESOURCE_ACTIONS = [
        ("allocate", "deallocate"), ("add", "remove"), ("hire", "layoff"), ("increase", "decrease"),
    ]
    OPPOSITE_APPROACHES = [
        ("monolith", "microservices"), ("centralized", "distributed"),
        ("sql", "nosql"), ("synchronous", "asynchronous"),
    ]

    def check(self, a: DecisionCandidate, b: DecisionCandidate) -> Optional[RuleHit]:
        if a.id == b.id:
            return None
        if DecisionLifecycle(a.lifecycle) in TERMINAL_LIFECYCLES or DecisionLifecycle(b.lifecycle) in TERMINAL_LIFECYCLES:
            return None

        if a.category and a.category == b.category:
            hit = self._structured(a, b)
            if hit:
                return hit

        text_a, text_b = a.full_text, b.full_text
        return (
            self._resource_competition(a, b, text_a, text_b)
            or self._contradictory_actions(a, b, text_a, text_b)
            or self._objective_undermining(a, b, text_a, text_b)
            or self._premise_invalidation(a, b, text_a, text_b)
        )

    @staticmethod
    def _opposite(value_a, value_b, pairs) -> bool:
        left, right = str(value_a or "").lower(), str(value_b or "").lower()
        if not left or not right:
            return False
        return any(
            (w1 in left and w2 in right) or (w2 in left and w1 in right)
            for w1, w2 in pairs
        )

    def _structured(self, a: DecisionCandidate, b: DecisionCandidate) -> Optional[RuleHit]:
        pa, pb = a.parameters or {}, b.parameters or {}
        contradictory = DecisionConflictType.CONTRADICTORY.value

        if pa.get("amount") and pb.get("amount") and pa.get("timeframe") == pb.get("timeframe"):
            amount_a, amount_b = _number(pa["amount"]), _number(pb["amount"])
            if amount_a is not None and amount_b is not None and amount_a != amount_b:
                return (contradictory, 0.92,
                        f'Conflicting allocations for {pa.get("timeframe")}: "{a.title}" specifies {pa["amount"]} '
                        f'while "{b.title}" specifies {pb["amount"]}', "structured")

        if pa.get("impactArea") == pb.get("impactArea") and self._opposite(pa.get("direction"), pb.get("direction"), self.OPPOSITE_DIRECTIONS):
            area = pa.get("impactArea") or a.category
            return (contradictory, 0.96,
                    f'Direct conflict on {area}: "{a.title}" aims to {pa["direction"]} '
                    f'while "{b.title}" aims to {pb["direction"]}', "structured")

        if pa.get("resourceType") and pa.get("resourceType") == pb.get("resourceType") and pa.get("timeframe") == pb.get("timeframe"):
            if self._opposite(pa.get("action"), pb.get("action"), self.OPPOSITE_RESOURCE_ACTIONS):
                return (DecisionConflictType.RESOURCE_COMPETITION.value, 0.94,
                        f'Contradictory actions on {pa["resourceType"]}: "{a.title}" plans to {pa["action"]} '
                        f'while "{b.title}" plans to {pb["action"]}', "structured")
            if pa.get("quantity") and pb.get("quantity"):
                return (DecisionConflictType.RESOURCE_COMPETITION.value, 0.82,
                        f'Both "{a.title}" and "{b.title}" compete for {pa["resourceType"]}', "structured")

        if pa.get("milestone") and pa.get("milestone") == pb.get("milestone"):
            if pa.get("targetDate") and pb.get("targetDate") and pa["targetDate"] != pb["targetDate"]:
                return (contradictory, 0.9,
                        f'Conflicting target dates for {pa["milestone"]}: {pa["targetDate"]} vs {pb["targetDate"]}',
                        "structured")

        if pa.get("component") and pa.get("component") == pb.get("component"):
            if pa.get("technology") and pb.get("technology") and pa["technology"] != pb["technology"]:
                return (DecisionConflictType.MUTUALLY_EXCLUSIVE.value, 0.91,
                        f'Conflicting technology for {pa["component"]}: "{a.title}" chooses {pa["technology"]} '
                        f'while "{b.title}" chooses {pb["technology"]}', "structured")

        if self._opposite(pa.get("approach"), pb.get("approach"), self.OPPOSITE_APPROACHES):
            return (contradictory, 0.89,
                    f'Incompatible approaches: {pa["approach"]} vs {pb["approach"]}', "structured")
        return None

    def _resource_competition(self, a, b, text_a, text_b) -> Optional[RuleHit]:
        shared = [k for k in self.RESOURCE_KEYWORDS if _has_word(text_a, k) and _has_word(text_b, k)]
        if not shared:
            return None
        if not (any(_has_word(text_a, k) for k in self.ALLOCATION_KEYWORDS)
                and any(_has_word(text_b, k) for k in self.ALLOCATION_KEYWORDS)):
            return None

        confidence = 0.7
        if re.search(r"\d", text_a) and re.search(r"\d", text_b):
            confidence = 0.85
        if len(shared) >= 2:
            confidence += 0.05
        return (DecisionConflictType.RESOURCE_COMPETITION.value, round(min(confidence, 1.0), 4),
                f'"{a.title}" and "{b.title}" compete for limited {", ".join(shared)} resources',
                "resource_competition")

    def _shared_words(self, text_a: str, text_b: str, min_length: int) -> list:
        words_b = set(text_b.split())
        return [w for w in text_a.split() if len(w) >= min_length and w in words_b and w not in self.FILLER]

    def _contradictory_actions(self, a, b, text_a, text_b) -> Optional[RuleHit]:
        for action_1, action_2 in self.ACTION_CONFLICTS:
            if _has_word(text_a, action_1) and _has_word(text_b, action_2):
                action, opposing = action_1, action_2
            elif _has_word(text_a, action_2) and _has_word(text_b, action_1):
                action, opposing = action_2, action_1
            else:
                continue
            if len(set(self._shared_words(text_a, text_b, 5))) >= 2:
                return (DecisionConflictType.CONTRADICTORY.value, 0.8,
                        f'"{a.title}" aims to {action} while "{b.title}" aims to {opposing} in the same context',
                        "contradictory_actions")
        return None

    def _objective_undermining(self, a, b, text_a, text_b) -> Optional[RuleHit]:
        if not any(_has_word(t, k) for t in (text_a, text_b) for k in self.GOAL_KEYWORDS):
            return None
        for goal, underminer in self.UNDERMINING_PATTERNS:
            if _either_way(text_a, text_b, goal, underminer):
                return (DecisionConflictType.OBJECTIVE_UNDERMINING.value, 0.75,
                        f'"{a.title}" and "{b.title}" may have competing priorities', "objective_undermining")
        return None

    def _premise_invalidation(self, a, b, text_a, text_b) -> Optional[RuleHit]:
        if a.created_at and b.created_at and b.created_at < a.created_at:
            older, newer, older_text, newer_text = b, a, text_b, text_a
        else:
            older, newer, older_text, newer_text = a, b, text_a, text_b

        if any(_has_word(newer_text, k) for k in self.INVALIDATION_KEYWORDS):
            if len(set(self._shared_words(older_text, newer_text, 6))) >= 2:
                return (DecisionConflictType.PREMISE_INVALIDATION.value, 0.8,
                        f'The newer decision "{newer.title}" may invalidate the premise of "{older.title}"',
                        "premise_invalidation")

        if any(_has_word(newer_text, k) for k in self.NEGATION_WORDS):
            if len(set(self._shared_words(older_text, newer_text, 6))) >= 3:
                return (DecisionConflictType.PREMISE_INVALIDATION.value, 0.7,
                        f'"{newer.title}" appears to negate aspects of "{older.title}"', "premise_invalidation")
        return None


# =============================================================================
# Oracles
# =============================================================================

class ConflictOracle:
    """Oracle interface"""

    name = "oracle"

    async def detect_assumption_conflicts(self, assumptions: List[AssumptionCandidate]) -> List[ConflictFinding]:
        raise NotImplementedError

    async def detect_decision_conflicts(self, decisions: List[DecisionCandidate]) -> List[ConflictFinding]:
        raise NotImplementedError


class RuleBasedConflictOracle(ConflictOracle):

    name = "rule_based"

    def __init__(self):
        self.assumption_rules = AssumptionConflictRules()
        self.decision_rules = DecisionConflictRules()

    async def detect_assumption_conflicts(self, assumptions):
        findings = []
        for a, b in combinations(assumptions, 2):
            hit = self.assumption_rules.check(a, b)
            if hit:
                findings.append(self._finding(a.id, b.id, hit))
        return findings

    async def detect_decision_conflicts(self, decisions):
        findings = []
        for a, b in combinations(decisions, 2):
            hit = self.decision_rules.check(a, b)
            if hit:
                findings.append(self._finding(a.id, b.id, hit))
        return findings

    @staticmethod
    def _finding(a_id: str, b_id: str, hit: RuleHit) -> ConflictFinding:
        conflict_type, confidence, explanation, strategy = hit
        return ConflictFinding(
            entity_a_id=a_id,
            entity_b_id=b_id,
            conflict_type=conflict_type,
            confidence_score=confidence,
            explanation=explanation,
            metadata={"strategy": strategy, "oracle": "rule_based"}
        )


class HttpConflictOracle(ConflictOracle):
    """
    External detector.

    POST {base_url}/assumption-conflicts  {"assumptions": [...]}
    POST {base_url}/decision-conflicts    {"decisions": [...]}
    → {"conflicts": [ConflictFinding, ...]}
    """

    name = "http"

    def __init__(self, base_url: str, timeout: float = CONFLICT_ORACLE_TIMEOUT_SECONDS, transport=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> List[ConflictFinding]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload)
                response.raise_for_status()
                return OracleResponse.model_validate(response.json()).conflicts
        except httpx.HTTPError as e:
            raise DetectionOracleUnavailable(f"{type(e).__name__}: {e}") from e
        except (ValueError, PydanticValidationError) as e:
            raise DetectionOracleUnavailable(f"Malformed oracle response: {e}") from e

    async def detect_assumption_conflicts(self, assumptions):
        payload = {"assumptions": [a.model_dump(mode="json") for a in assumptions]}
        return await self._post("/assumption-conflicts", payload)

    async def detect_decision_conflicts(self, decisions):
        payload = {"decisions": [d.model_dump(mode="json") for d in decisions]}
        return await self._post("/decision-conflicts", payload)


_oracle: Optional[ConflictOracle] = None


def get_conflict_oracle() -> ConflictOracle:
    """Singleton: HTTP oracle when CONFLICT_ORACLE_URL is set, rules otherwise"""
    global _oracle
    if _oracle is None:
        if CONFLICT_ORACLE_URL:
            _oracle = HttpConflictOracle(CONFLICT_ORACLE_URL)
        else:
            _oracle = RuleBasedConflictOracle()
        logger.info("conflict_oracle_selected", oracle=_oracle.name)
    return _oracle
