"""
DECISION SERVICE FLOW TESTS
===========================

Service-level scenarios against a real (SQLite) database: evaluation,
retirement, review, governance and the references around a decision.
Every operation runs in its own UnitOfWork, as the HTTP layer does.
"""
from datetime import timedelta

import pytest

from decision_service import decision_service, parse_uuid
from exceptions import (
    DecisionNotFound,
    EditRequestAlreadyResolved,
    InsufficientPrivilege,
    InvalidLifecycleTransition,
    LockedError,
    ValidationError,
)

pytestmark = pytest.mark.asyncio(loop_scope="function")

FAILED_CONCLUSIONS = {
    "whatHappened": "The vendor missed every SLA in the first quarter",
    "whyOutcome": "Support quality collapsed after the hand-over",
    "failureReasons": ["SLA never met", "No escalation path"],
    "recommendations": ["Pilot with one region first"],
}


class TestEvaluation:

    async def test_specific_assumption_penalty(self, make_decision, make_assumption, uow_factory, member, now):
        """
        SCENARIO: One of two decision-specific assumptions is broken
        EXPECTED: health 70 (penalty 30), stored lifecycle UNDER_REVIEW
        """
        broken = await make_assumption("Vendor keeps pricing flat for two years", status="BROKEN")
        valid = await make_assumption("The platform team has spare capacity")
        decision = await make_decision(assumption_ids=[broken["id"], valid["id"]])

        async with uow_factory() as uow:
            result = await decision_service.evaluate_now(uow, decision["id"], member, now)

        assert result["previousHealth"] == 100
        assert result["newHealth"] == 70
        assert result["healthChange"] == -30
        assert result["previousLifecycle"] == "STABLE"
        assert result["newLifecycle"] == "UNDER_REVIEW"
        assert result["lifecycleChanged"] is True
        assert [s["step"] for s in result["trace"]] == [
            "constraint_validation", "dependency_evaluation", "assumption_check", "health_decay",
        ]

        async with uow_factory() as uow:
            view = await decision_service.get(uow, decision["id"], now)
            history = await decision_service.evaluations(uow, decision["id"])

        assert view["health_signal"] == 70
        assert view["effective_lifecycle"] == "UNDER_REVIEW"
        assert view["needs_evaluation"] is False
        assert sorted(view["assumption_ids"]) == sorted([broken["id"], valid["id"]])
        assert history[0]["triggered_by"] == "manual"
        assert history[0]["new_health"] == 70

    async def test_broken_universal_assumption_never_invalidates(self, make_decision, make_assumption,
                                                                 uow_factory, member, now):
        """
        SCENARIO: A universal assumption breaks
        EXPECTED: health 0 and AT_RISK; INVALIDATED is administrative only
        """
        decision = await make_decision()
        await make_assumption("Interest rates stay below five percent", scope="UNIVERSAL", status="BROKEN")

        async with uow_factory() as uow:
            result = await decision_service.evaluate_now(uow, decision["id"], member, now)

        assert result["newHealth"] == 0
        assert result["newLifecycle"] == "AT_RISK"

    async def test_constraint_violation_recorded_once(self, make_decision, uow_factory, member, lead, now):
        decision = await make_decision(parameters={"budget": 5000})
        async with uow_factory() as uow:
            await decision_service.create_constraint(uow, {
                "name": "Budget cap",
                "rule": {"type": "budget_threshold", "field": "parameters.budget", "operator": "<=", "value": 1000},
            }, lead, now)

        for _ in range(2):
            async with uow_factory() as uow:
                result = await decision_service.evaluate_now(uow, decision["id"], member, now)
            assert result["newHealth"] == 0

        async with uow_factory() as uow:
            open_violations = await decision_service.violations(uow, decision["id"], resolved=False)
            constraints = await decision_service.constraints(uow, decision["id"])

        assert len(open_violations) == 1
        assert constraints[0]["satisfied"] is False
        assert "5000" in constraints[0]["violation_reason"]

        async with uow_factory() as uow:
            resolved = await decision_service.resolve_violation(uow, open_violations[0]["id"], member, now)
        assert resolved["resolved"] is True

        async with uow_factory() as uow:
            assert await decision_service.violations(uow, decision["id"], resolved=False) == []

    async def test_constraints_are_managed_by_leads(self, uow_factory, member, lead, now):
        with pytest.raises(InsufficientPrivilege):
            async with uow_factory() as uow:
                await decision_service.create_constraint(uow, {"name": "No vendors"}, member, now)

        with pytest.raises(ValidationError):
            async with uow_factory() as uow:
                await decision_service.create_constraint(uow, {"name": "Odd", "rule": {"type": "vibes"}}, lead, now)

        async with uow_factory() as uow:
            assert await decision_service.list_constraints(uow) == []

    async def test_new_constraint_flags_every_decision(self, make_decision, uow_factory, member, lead, now,
                                                       load_decision):
        decision = await make_decision()
        async with uow_factory() as uow:
            await decision_service.evaluate_now(uow, decision["id"], member, now)
        assert (await load_decision(decision["id"])).needs_evaluation is False

        async with uow_factory() as uow:
            await decision_service.create_constraint(uow, {"name": "Owner required"}, lead, now)

        assert (await load_decision(decision["id"])).needs_evaluation is True


class TestRetirement:

    async def test_failed_retirement_requires_conclusions(self, make_decision, uow_factory, member, now,
                                                          load_decision):
        """
        SCENARIO: Retire as failed without failure reasons
        EXPECTED: rejected, nothing written, decision still STABLE
        """
        decision = await make_decision()

        with pytest.raises(ValidationError):
            async with uow_factory() as uow:
                await decision_service.retire(uow, decision["id"], "failed",
                                              {"whyOutcome": "Too slow"}, member, now)

        row = await load_decision(decision["id"])
        assert row.lifecycle == "STABLE"
        async with uow_factory() as uow:
            assert await uow.decisions.get_retirement(uow.session, row.id) is None

    async def test_retirement_is_irreversible(self, make_decision, uow_factory, member, lead, now):
        decision = await make_decision()

        async with uow_factory() as uow:
            retired = await decision_service.retire(uow, decision["id"], "failed", FAILED_CONCLUSIONS, member, now)

        assert retired["lifecycle"] == "RETIRED"
        assert retired["effective_lifecycle"] == "RETIRED"
        assert retired["retirement"]["outcome"] == "failed"

        later = now + timedelta(days=1)
        attempts = [
            lambda uow: decision_service.retire(uow, decision["id"], "succeeded", {}, lead, later),
            lambda uow: decision_service.update(uow, decision["id"], {"title": "Revive it"}, lead, later),
            lambda uow: decision_service.review(uow, decision["id"], lead, later, "routine", "reaffirmed"),
            lambda uow: decision_service.evaluate_now(uow, decision["id"], lead, later),
            lambda uow: decision_service.invalidate(uow, decision["id"], "Cleanup", lead, later),
        ]
        for attempt in attempts:
            with pytest.raises(InvalidLifecycleTransition):
                async with uow_factory() as uow:
                    await attempt(uow)

        async with uow_factory() as uow:
            view = await decision_service.get(uow, decision["id"], later)
        assert view["lifecycle"] == "RETIRED"
        assert view["retirement"]["conclusions"]["failureReasons"] == ["SLA never met", "No escalation path"]

    async def test_similar_failed_decision_warning(self, make_decision, uow_factory, member, now):
        """
        SCENARIO: A new decision repeats the category and parameters of one that failed
        EXPECTED: creation succeeds and carries a similarity warning
        """
        parameters = {"vendor": "Acme", "regions": ["eu", "us"]}
        failed = await make_decision(title="Outsource support to Acme", category="vendor", parameters=parameters)
        async with uow_factory() as uow:
            await decision_service.retire(uow, failed["id"], "failed", FAILED_CONCLUSIONS, member, now)

        repeat = await make_decision(title="Outsource tier-1 support", category="vendor", parameters=parameters)

        assert len(repeat["warnings"]) == 1
        warning = repeat["warnings"][0]
        assert warning["deprecatedDecisionId"] == failed["id"]
        assert warning["similarityScore"] == 1.0
        assert "SLA never met" in warning["warningMessage"]

        unrelated = await make_decision(title="Hire a designer", category="hiring")
        assert unrelated["warnings"] == []


class TestReview:

    async def test_deferral_requires_reason(self, make_decision, uow_factory, member, now):
        decision = await make_decision()

        with pytest.raises(ValidationError) as exc_info:
            async with uow_factory() as uow:
                await decision_service.review(uow, decision["id"], member, now, "routine", "deferred")
        assert exc_info.value.details["field"] == "deferral_reason"

        with pytest.raises(ValidationError):
            async with uow_factory() as uow:
                await decision_service.review(uow, decision["id"], member, now, "casual", "reaffirmed")

    async def test_consecutive_deferrals(self, make_decision, uow_factory, member, now):
        """
        SCENARIO: Deferred twice, then reaffirmed
        EXPECTED: counter 1, 2, then reset; last review time moves, health untouched
        """
        decision = await make_decision(health_signal=80)
        counts = []
        for day, outcome in ((10, "deferred"), (20, "deferred"), (30, "reaffirmed")):
            when = now + timedelta(days=day)
            async with uow_factory() as uow:
                result = await decision_service.review(
                    uow, decision["id"], member, when,
                    review_type="routine",
                    review_outcome=outcome,
                    deferral_reason="Waiting on Q3 numbers" if outcome == "deferred" else None,
                    next_review_date=(when + timedelta(days=14)).isoformat(),
                )
            counts.append(result["decision"]["consecutive_deferrals"])
            assert result["decision"]["health_signal"] == 80
            assert result["decision"]["metrics"]["days_since_review"] == 0

        assert counts == [1, 2, 0]
        async with uow_factory() as uow:
            reviews = await decision_service.reviews(uow, decision["id"])
        assert [r["review_outcome"] for r in reviews] == ["reaffirmed", "deferred", "deferred"]
        assert reviews[-1]["deferral_reason"] == "Waiting on Q3 numbers"


class TestGovernance:

    async def test_lock_blocks_members_until_unlocked(self, make_decision, uow_factory, member, lead, now):
        decision = await make_decision()

        with pytest.raises(InsufficientPrivilege):
            async with uow_factory() as uow:
                await decision_service.set_lock(uow, decision["id"], True, "Board freeze", member, now)

        async with uow_factory() as uow:
            locked = await decision_service.set_lock(uow, decision["id"], True, "Board freeze", lead, now)
        assert locked["lock_reason"] == "Board freeze"

        with pytest.raises(LockedError):
            async with uow_factory() as uow:
                await decision_service.update(uow, decision["id"], {"title": "Member edit"}, member, now)

        async with uow_factory() as uow:
            result = await decision_service.update(uow, decision["id"], {"title": "Lead edit"}, lead, now)
        assert result["decision"]["title"] == "Lead edit"

        async with uow_factory() as uow:
            await decision_service.set_lock(uow, decision["id"], False, "Freeze lifted", lead, now)
        async with uow_factory() as uow:
            result = await decision_service.update(uow, decision["id"], {"title": "Member edit"}, member, now)
        assert result["status"] == "updated"

        async with uow_factory() as uow:
            actions = [e["action"] for e in await decision_service.audit_log(uow, decision["id"])]
        assert sorted(actions) == ["decision_locked", "decision_unlocked"]

    async def test_gated_edit_waits_for_approval(self, make_decision, uow_factory, member, lead, now):
        """
        SCENARIO: Member edits a critical decision
        EXPECTED: pending edit request; applied only when a lead approves it
        """
        decision = await make_decision(title="Single sign-on for all tools", governance_tier="critical")

        async with uow_factory() as uow:
            pending = await decision_service.update(uow, decision["id"], {"title": "SSO for internal tools"},
                                                    member, now, justification="Scope was too wide")
        assert pending["status"] == "pending_approval"

        async with uow_factory() as uow:
            assert (await decision_service.get(uow, decision["id"], now))["title"] == "Single sign-on for all tools"

        with pytest.raises(InsufficientPrivilege):
            async with uow_factory() as uow:
                await decision_service.pending_approvals(uow, member)

        async with uow_factory() as uow:
            queue = await decision_service.pending_approvals(uow, lead)
        assert len(queue) == 1
        assert queue[0]["audit_id"] == pending["audit_id"]
        assert queue[0]["decision_title"] == "Single sign-on for all tools"
        assert queue[0]["justification"] == "Scope was too wide"

        async with uow_factory() as uow:
            approved = await decision_service.resolve_edit_request(uow, pending["audit_id"], True, lead, now)
        assert approved["status"] == "approved"
        assert approved["decision"]["title"] == "SSO for internal tools"

        with pytest.raises(EditRequestAlreadyResolved):
            async with uow_factory() as uow:
                await decision_service.resolve_edit_request(uow, pending["audit_id"], False, lead, now)

        async with uow_factory() as uow:
            assert await decision_service.pending_approvals(uow, lead) == []
            actions = [e["action"] for e in await decision_service.audit_log(uow, decision["id"])]
        assert sorted(actions) == ["edit_approved", "edit_requested"]

    async def test_rejected_edit_is_discarded(self, make_decision, uow_factory, member, lead, now):
        decision = await make_decision(governance_tier="high_impact")
        async with uow_factory() as uow:
            pending = await decision_service.update(uow, decision["id"], {"description": "Rewritten"}, member, now)

        async with uow_factory() as uow:
            rejected = await decision_service.resolve_edit_request(uow, pending["audit_id"], False, lead, now,
                                                                   notes="Keep the original rationale")
        assert rejected["status"] == "rejected"
        assert rejected["decision"]["description"] == ""
        assert rejected["edit_request"]["resolution_notes"] == "Keep the original rationale"

    async def test_edit_validation(self, make_decision, uow_factory, member, now):
        decision = await make_decision()
        for changes in ({"lifecycle": "RETIRED"}, {}, {"title": "  "}, {"governance_tier": "supreme"}):
            with pytest.raises(ValidationError):
                async with uow_factory() as uow:
                    await decision_service.update(uow, decision["id"], changes, member, now)

    async def test_invalidation_is_terminal(self, make_decision, uow_factory, member, lead, now):
        decision = await make_decision()

        with pytest.raises(InsufficientPrivilege):
            async with uow_factory() as uow:
                await decision_service.invalidate(uow, decision["id"], "Superseded", member, now)

        async with uow_factory() as uow:
            invalidated = await decision_service.invalidate(uow, decision["id"], "Superseded by SSO rollout", lead, now)
        assert invalidated["lifecycle"] == "INVALIDATED"

        attempts = [
            lambda uow: decision_service.evaluate_now(uow, decision["id"], lead, now),
            lambda uow: decision_service.update(uow, decision["id"], {"title": "Revived"}, lead, now),
            lambda uow: decision_service.review(uow, decision["id"], lead, now, "routine", "reaffirmed"),
            lambda uow: decision_service.retire(uow, decision["id"], "superseded", {}, lead, now),
        ]
        for attempt in attempts:
            with pytest.raises(InvalidLifecycleTransition):
                async with uow_factory() as uow:
                    await attempt(uow)

        async with uow_factory() as uow:
            view = await decision_service.get(uow, decision["id"], now)
        assert view["lifecycle"] == "INVALIDATED"
        assert view["title"] != "Revived"

    async def test_pending_edit_cannot_be_approved_after_invalidation(self, make_decision, uow_factory,
                                                                      member, lead, now):
        decision = await make_decision(governance_tier="critical")
        async with uow_factory() as uow:
            pending = await decision_service.update(uow, decision["id"], {"title": "Renamed"}, member, now)
        async with uow_factory() as uow:
            await decision_service.invalidate(uow, decision["id"], "Superseded", lead, now)

        with pytest.raises(InvalidLifecycleTransition):
            async with uow_factory() as uow:
                await decision_service.resolve_edit_request(uow, pending["audit_id"], True, lead, now)

        async with uow_factory() as uow:
            rejected = await decision_service.resolve_edit_request(uow, pending["audit_id"], False, lead, now)
        assert rejected["status"] == "rejected"


class TestReferences:

    async def test_dependency_on_retired_decision_is_deprecated(self, make_decision, uow_factory, member, now,
                                                                load_decision):
        upstream = await make_decision(title="Standardize on Kubernetes")
        downstream = await make_decision(title="Adopt Helm charts",
                                         dependencies=[{"decision_id": upstream["id"]}])

        async with uow_factory() as uow:
            deps = await decision_service.dependencies(uow, downstream["id"])
            await decision_service.evaluate_now(uow, downstream["id"], member, now)
        assert deps[0]["decision_id"] == upstream["id"]
        assert deps[0]["is_deprecated"] is False

        async with uow_factory() as uow:
            await decision_service.retire(uow, upstream["id"], "superseded", {}, member, now)

        async with uow_factory() as uow:
            deps = await decision_service.dependencies(uow, downstream["id"])
        assert deps[0]["is_deprecated"] is True
        assert "Standardize on Kubernetes" in deps[0]["deprecation_warning"]
        assert (await load_decision(downstream["id"])).needs_evaluation is True

    async def test_delete_flags_dependents(self, make_decision, uow_factory, member, now, load_decision):
        upstream = await make_decision()
        downstream = await make_decision(dependencies=[{"decision_id": upstream["id"], "relation": "DEPENDS_ON"}])
        async with uow_factory() as uow:
            await decision_service.evaluate_now(uow, downstream["id"], member, now)

        async with uow_factory() as uow:
            await decision_service.delete(uow, upstream["id"], member, now)

        assert (await load_decision(downstream["id"])).needs_evaluation is True
        async with uow_factory() as uow:
            assert await decision_service.dependencies(uow, downstream["id"]) == []
        with pytest.raises(DecisionNotFound):
            async with uow_factory() as uow:
                await decision_service.get(uow, upstream["id"], now)

    async def test_unknown_dependency_rolls_back_creation(self, make_decision, uow_factory, now):
        missing = "0b7c4a52-5f1d-4a59-9a3e-6f1f2f8c1d11"
        with pytest.raises(DecisionNotFound):
            await make_decision(dependencies=[{"decision_id": missing}])

        async with uow_factory() as uow:
            assert await decision_service.list_decisions(uow, now) == []

    async def test_list_filters(self, make_decision, uow_factory, member, now):
        keep = await make_decision(title="Keep")
        gone = await make_decision(title="Gone")
        async with uow_factory() as uow:
            await decision_service.retire(uow, gone["id"], "no_longer_relevant", {}, member, now)

        async with uow_factory() as uow:
            active = await decision_service.list_decisions(uow, now, include_retired=False)
            retired = await decision_service.list_decisions(uow, now, lifecycle="RETIRED")

        assert [d["id"] for d in active] == [keep["id"]]
        assert [d["id"] for d in retired] == [gone["id"]]

        with pytest.raises(ValidationError):
            async with uow_factory() as uow:
                await decision_service.list_decisions(uow, now, lifecycle="ZOMBIE")

    async def test_malformed_id(self, uow_factory, now):
        with pytest.raises(ValidationError):
            async with uow_factory() as uow:
                await decision_service.get(uow, "not-a-uuid", now)

        assert parse_uuid("0b7c4a52-5f1d-4a59-9a3e-6f1f2f8c1d11", "id").version == 4

    async def test_health_signal_must_be_a_plain_integer(self, make_decision):
        for health in (True, False, 101, "90"):
            with pytest.raises(ValidationError) as exc:
                await make_decision(health_signal=health)
            assert exc.value.details["field"] == "health_signal"

        assert (await make_decision(health_signal=0))["health_signal"] == 0


class TestAssumptionOwnership:

    async def test_specific_assumption_has_one_owner(self, make_decision, make_assumption, uow_factory,
                                                     member, now):
        """
        SCENARIO: A decision-specific assumption is linked to a second decision
        EXPECTED: rejected, naming the decision that already owns it
        """
        latency = await make_assumption("p99 latency stays under 200ms", scope="DECISION_SPECIFIC")
        owner = await make_decision(title="Cache reads in Redis", assumption_ids=[latency["id"]])

        with pytest.raises(ValidationError) as exc:
            await make_decision(title="Move reads to replicas", assumption_ids=[latency["id"]])
        assert exc.value.details["owner_decision_id"] == owner["id"]

        other = await make_decision(title="Move reads to replicas")
        with pytest.raises(ValidationError):
            async with uow_factory() as uow:
                await decision_service.update(uow, other["id"], {"assumption_ids": [latency["id"]]}, member, now)

        # re-sending the owner's own links is not a conflict
        async with uow_factory() as uow:
            result = await decision_service.update(uow, owner["id"], {"assumption_ids": [latency["id"]],
                                                                      "title": "Cache hot reads in Redis"},
                                                   member, now)
        assert result["decision"]["assumption_ids"] == [latency["id"]]

    async def test_universal_assumptions_are_never_linked(self, make_decision, make_assumption, uow_factory,
                                                          member, now):
        market = await make_assumption("Interest rates stay below 5%", scope="UNIVERSAL")

        with pytest.raises(ValidationError) as exc:
            await make_decision(assumption_ids=[market["id"]])
        assert exc.value.details["assumption_id"] == market["id"]

        decision = await make_decision()
        with pytest.raises(ValidationError):
            await make_assumption("FX hedging remains available", scope="UNIVERSAL", decision_id=decision["id"])

    async def test_widening_scope_drops_existing_link(self, make_decision, make_assumption, uow_factory,
                                                      member, now):
        from assumption_service import assumption_service

        vendor = await make_assumption("Vendor keeps the current SLA")
        decision = await make_decision(assumption_ids=[vendor["id"]])

        async with uow_factory() as uow:
            await assumption_service.update(uow, vendor["id"], {"scope": "UNIVERSAL"}, member, now)
        async with uow_factory() as uow:
            view = await decision_service.get(uow, decision["id"], now)
        assert view["assumption_ids"] == []


class TestVersionHistory:

    async def test_create_and_edit_are_versioned(self, make_decision, uow_factory, member, now):
        decision = await make_decision(title="Adopt PostgreSQL for reporting", category="data")

        later = now + timedelta(hours=2)
        async with uow_factory() as uow:
            await decision_service.update(uow, decision["id"], {"title": "Adopt PostgreSQL for analytics"},
                                          member, later)

        async with uow_factory() as uow:
            versions = await decision_service.versions(uow, decision["id"])

        assert [v["version_number"] for v in versions] == [2, 1]
        edit, created = versions
        assert created["change_type"] == "created"
        assert created["after"]["title"] == "Adopt PostgreSQL for reporting"
        assert created["before"] == {}
        assert edit["change_type"] == "field_updated"
        assert edit["changed_fields"] == ["title"]
        assert edit["before"] == {"title": "Adopt PostgreSQL for reporting"}
        assert edit["after"] == {"title": "Adopt PostgreSQL for analytics"}
        assert edit["changed_by"] == member.id
        assert edit["edit_request_id"] is None

    async def test_no_op_edit_adds_no_version(self, make_decision, uow_factory, member, now):
        decision = await make_decision(title="Same title")
        async with uow_factory() as uow:
            await decision_service.update(uow, decision["id"], {"title": "Same title"}, member, now)
        async with uow_factory() as uow:
            assert len(await decision_service.versions(uow, decision["id"])) == 1

    async def test_approved_edit_records_its_request(self, make_decision, uow_factory, member, lead, now):
        decision = await make_decision(governance_tier="critical", description="Initial rationale")
        async with uow_factory() as uow:
            pending = await decision_service.update(uow, decision["id"], {"description": "Revised rationale"},
                                                    member, now)
        async with uow_factory() as uow:
            assert len(await decision_service.versions(uow, decision["id"])) == 1

        async with uow_factory() as uow:
            await decision_service.resolve_edit_request(uow, pending["audit_id"], True, lead, now)
        async with uow_factory() as uow:
            latest = (await decision_service.versions(uow, decision["id"]))[0]

        assert latest["edit_request_id"] == pending["audit_id"]
        assert latest["changed_by"] == lead.id
        assert latest["before"] == {"description": "Initial rationale"}
        assert latest["after"] == {"description": "Revised rationale"}


class TestDependencyEditing:

    async def test_edit_replaces_dependencies(self, make_decision, uow_factory, member, now, load_decision):
        platform = await make_decision(title="Standardize on Kubernetes")
        service = await make_decision(title="Adopt Helm charts")
        async with uow_factory() as uow:
            await decision_service.evaluate_now(uow, service["id"], member, now)
        assert (await load_decision(service["id"])).needs_evaluation is False

        async with uow_factory() as uow:
            await decision_service.update(uow, service["id"],
                                          {"dependencies": [{"decision_id": platform["id"]}]}, member, now)

        assert (await load_decision(service["id"])).needs_evaluation is True
        async with uow_factory() as uow:
            deps = await decision_service.dependencies(uow, service["id"])
            latest = (await decision_service.versions(uow, service["id"]))[0]
        assert [d["decision_id"] for d in deps] == [platform["id"]]
        assert latest["changed_fields"] == ["dependencies"]
        assert latest["before"] == {"dependencies": []}
        assert latest["after"] == {"dependencies": [{"decision_id": platform["id"], "relation": "DEPENDS_ON"}]}

        async with uow_factory() as uow:
            await decision_service.update(uow, service["id"], {"dependencies": []}, member, now)
        async with uow_factory() as uow:
            assert await decision_service.dependencies(uow, service["id"]) == []

    async def test_self_and_cyclic_dependencies_rejected(self, make_decision, uow_factory, member, now):
        upstream = await make_decision(title="Upstream")
        downstream = await make_decision(title="Downstream", dependencies=[{"decision_id": upstream["id"]}])

        with pytest.raises(ValidationError):
            async with uow_factory() as uow:
                await decision_service.add_dependency(uow, upstream["id"], upstream["id"], "DEPENDS_ON",
                                                      member, now)

        with pytest.raises(ValidationError) as exc:
            async with uow_factory() as uow:
                await decision_service.add_dependency(uow, upstream["id"], downstream["id"], "DEPENDS_ON",
                                                      member, now)
        assert exc.value.details["target_decision_id"] == downstream["id"]

        async with uow_factory() as uow:
            assert await decision_service.dependencies(uow, upstream["id"]) == []
            assert len(await decision_service.versions(uow, upstream["id"])) == 1

    async def test_add_dependency_respects_governance(self, make_decision, uow_factory, member, lead, now):
        target = await make_decision(title="Single region deployment")
        source = await make_decision(title="Active-active database", governance_tier="critical")

        async with uow_factory() as uow:
            pending = await decision_service.add_dependency(uow, source["id"], target["id"], "BLOCKS",
                                                            member, now, justification="Shares the same DC")
        assert pending["status"] == "pending_approval"
        async with uow_factory() as uow:
            assert await decision_service.dependencies(uow, source["id"]) == []

        async with uow_factory() as uow:
            await decision_service.resolve_edit_request(uow, pending["audit_id"], True, lead, now)
        async with uow_factory() as uow:
            deps = await decision_service.dependencies(uow, source["id"])
        assert [(d["decision_id"], d["relation"]) for d in deps] == [(target["id"], "BLOCKS")]

    async def test_unknown_target_rejected(self, make_decision, uow_factory, member, now):
        source = await make_decision()
        with pytest.raises(DecisionNotFound):
            async with uow_factory() as uow:
                await decision_service.add_dependency(uow, source["id"], "0b7c4a52-5f1d-4a59-9a3e-6f1f2f8c1d11",
                                                      "DEPENDS_ON", member, now)
