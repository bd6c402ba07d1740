"""Tests for EnforcementOrchestrator — batch evaluation and aggregation."""

import asyncio
import time
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from dependency_policy_engine.core.models import EvaluationContext
from dependency_policy_engine.engine.actions import ActionExecutor
from dependency_policy_engine.engine.evaluator import DependencyEvaluator
from dependency_policy_engine.engine.orchestrator import (
    DEADLINE_EXCEEDED,
    EnforcementOrchestrator,
    build_summary,
)
from tests.conftest import (
    NOW,
    TENANT_ID,
    fixed_clock,
    make_action,
    make_condition,
    make_dependency,
    make_exception,
    make_maintenance_rule,
    make_policy,
    make_rule,
    make_vulnerability,
)

CONTEXT = EvaluationContext(project="checkout", environment="production")


class SlowPublisher:
    """Records each event, then holds the publish call open past short deadlines."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.events: list = []

    async def publish(self, event) -> None:
        self.events.append(event)
        await asyncio.sleep(self.delay)


def build_orchestrator(policy_repo, publisher, history_repo=None, enrichers=(), action_publisher=None, **kwargs):
    return EnforcementOrchestrator(
        policy_repository=policy_repo,
        dependency_evaluator=DependencyEvaluator(enrichers=enrichers, clock=fixed_clock),
        action_executor=ActionExecutor(action_publisher or publisher, clock=fixed_clock),
        publisher=publisher,
        history_repository=history_repo,
        clock=fixed_clock,
        **kwargs,
    )


def vulnerable(name: str = "lodash", severity: str = "CRITICAL"):
    return make_dependency(name=name, vulnerabilities=[make_vulnerability(severity)])


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_critical_vulnerability_is_blocked(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy())
    orchestrator = build_orchestrator(policy_repo, publisher)

    result = await orchestrator.evaluate_policies([vulnerable()], TENANT_ID, CONTEXT)

    [evaluation] = result.evaluations
    assert evaluation.status == "VIOLATION"
    assert evaluation.actions_executed == 1
    assert result.violating_dependencies == 1
    assert result.summary.blocked_dependencies == 1
    assert result.summary.violations_detected == 1
    assert [a.action_type for a in result.executed_actions] == ["BLOCK"]
    assert len(publisher.of_type("dependencyBlocked")) == 1


@pytest.mark.asyncio()
async def test_active_exception_yields_exception_status(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy(exceptions=[make_exception(expires_at=NOW + timedelta(days=365))]))
    orchestrator = build_orchestrator(policy_repo, publisher)

    result = await orchestrator.evaluate_policies([vulnerable()], TENANT_ID, CONTEXT)

    [evaluation] = result.evaluations
    assert evaluation.status == "EXCEPTION"
    assert evaluation.violations == ()
    assert result.compliant_dependencies == 1
    assert result.executed_actions == ()


@pytest.mark.asyncio()
async def test_stale_dependency_only_warns(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy(rules=[make_maintenance_rule()]))
    orchestrator = build_orchestrator(policy_repo, publisher)
    stale = make_dependency(last_update=NOW - timedelta(days=800))

    result = await orchestrator.evaluate_policies([stale], TENANT_ID, CONTEXT)

    [evaluation] = result.evaluations
    assert evaluation.status == "WARNING"
    assert result.warning_dependencies == 1
    assert result.summary.blocked_dependencies == 0
    assert result.summary.violations_detected == 0
    assert result.executed_actions == ()


@pytest.mark.asyncio()
async def test_enrichment_failure_skips_only_that_dependency(policy_repo, publisher) -> None:
    def flaky_enricher(dependency, context):
        if dependency.name == "left-pad":
            raise RuntimeError("registry lookup failed")
        return {}

    await policy_repo.put(make_policy())
    orchestrator = build_orchestrator(policy_repo, publisher, enrichers=[flaky_enricher])
    batch = [vulnerable("lodash"), make_dependency(name="left-pad"), make_dependency(name="express")]

    result = await orchestrator.evaluate_policies(batch, TENANT_ID, CONTEXT)

    assert result.skipped_dependencies == 1
    assert [e.status for e in result.evaluations] == ["VIOLATION", "SKIPPED", "COMPLIANT"]
    assert result.evaluations[1].error == "registry lookup failed"
    [error_event] = publisher.of_type("dependencyEvaluationError")
    assert error_event.dependency == "left-pad"
    assert len(publisher.of_type("policyEvaluationCompleted")) == 1


# ---------------------------------------------------------------------------
# Completeness and ordering
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_counts_partition_the_batch(policy_repo, publisher) -> None:
    await policy_repo.put(
        make_policy(rules=[make_rule(), make_maintenance_rule()], exceptions=[make_exception(dependency="moment")])
    )
    orchestrator = build_orchestrator(policy_repo, publisher, max_concurrency=2)
    batch = [
        vulnerable("lodash"),
        make_dependency(name="request", last_update=NOW - timedelta(days=900)),
        vulnerable("moment"),
        make_dependency(name="express"),
        vulnerable("minimist"),
    ]

    result = await orchestrator.evaluate_policies(batch, TENANT_ID, CONTEXT)

    assert result.total_dependencies == len(batch)
    assert [e.dependency_name for e in result.evaluations] == [d.name for d in batch]
    assert result.total_dependencies == result.evaluated_dependencies + result.skipped_dependencies
    assert result.evaluated_dependencies == (
        result.compliant_dependencies + result.violating_dependencies + result.warning_dependencies
    )
    assert result.violating_dependencies == 2
    assert result.warning_dependencies == 1
    assert result.compliant_dependencies == 2


@pytest.mark.asyncio()
async def test_duplicate_entries_get_distinct_violation_ids(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy())
    orchestrator = build_orchestrator(policy_repo, publisher)
    batch = [
        make_dependency(scope="development", vulnerabilities=[make_vulnerability("CRITICAL")]),
        make_dependency(scope="production", vulnerabilities=[make_vulnerability("CRITICAL")]),
    ]

    result = await orchestrator.evaluate_policies(batch, TENANT_ID, CONTEXT)

    ids = [v.id for e in result.evaluations for v in e.violations]
    assert len(ids) == 2
    assert len(set(ids)) == 2


@pytest.mark.asyncio()
async def test_empty_batch(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy())
    orchestrator = build_orchestrator(policy_repo, publisher)

    result = await orchestrator.evaluate_policies([], TENANT_ID)

    assert result.total_dependencies == 0
    assert result.evaluations == ()
    assert result.summary.policies_evaluated == 1


def test_max_concurrency_must_be_positive(policy_repo, publisher) -> None:
    with pytest.raises(ValueError, match="max_concurrency"):
        build_orchestrator(policy_repo, publisher, max_concurrency=0)


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_expired_deadline_skips_everything(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy())
    orchestrator = build_orchestrator(policy_repo, publisher, deadline_seconds=0)

    result = await orchestrator.evaluate_policies([vulnerable(), make_dependency(name="express")], TENANT_ID)

    assert result.skipped_dependencies == 2
    assert all(e.error == DEADLINE_EXCEEDED for e in result.evaluations)
    [completed] = publisher.of_type("policyEvaluationCompleted")
    assert completed.skipped_count == 2


@pytest.mark.asyncio()
async def test_dispatched_actions_are_reported_past_deadline(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy())
    action_publisher = SlowPublisher(delay=0.2)
    orchestrator = build_orchestrator(
        policy_repo,
        publisher,
        action_publisher=action_publisher,
        max_concurrency=1,
        deadline_seconds=0.05,
    )

    result = await orchestrator.evaluate_policies([vulnerable("lodash"), vulnerable("minimist")], TENANT_ID)

    assert [e.status for e in result.evaluations] == ["VIOLATION", "SKIPPED"]
    assert result.evaluations[1].error == DEADLINE_EXCEEDED
    assert [e.dependency for e in action_publisher.events] == ["lodash"]
    assert [a.action_type for a in result.executed_actions] == ["BLOCK"]
    assert result.summary.blocked_dependencies == 1


@pytest.mark.asyncio()
async def test_evaluation_finishing_past_deadline_is_discarded(policy_repo, publisher) -> None:
    def slow_enricher(dependency, context):
        time.sleep(0.1)
        return {}

    await policy_repo.put(make_policy())
    orchestrator = build_orchestrator(
        policy_repo, publisher, enrichers=[slow_enricher], deadline_seconds=0.05
    )

    result = await orchestrator.evaluate_policies([vulnerable()], TENANT_ID)

    [evaluation] = result.evaluations
    assert evaluation.status == "SKIPPED"
    assert evaluation.error == DEADLINE_EXCEEDED
    assert evaluation.violations == ()
    assert result.executed_actions == ()
    assert publisher.of_type("dependencyBlocked") == []


# ---------------------------------------------------------------------------
# Policy loading
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_policy_load_failure_is_fatal(publisher) -> None:
    broken_repo = AsyncMock()
    broken_repo.list_all.side_effect = RuntimeError("database unavailable")
    orchestrator = build_orchestrator(broken_repo, publisher)

    with pytest.raises(RuntimeError, match="database unavailable"):
        await orchestrator.evaluate_policies([vulnerable()], TENANT_ID)

    assert [e.event_type for e in publisher.events] == ["policyEvaluationStarted", "policyEvaluationFailed"]
    assert publisher.events[1].error == "database unavailable"


@pytest.mark.asyncio()
async def test_disabled_and_foreign_policies_are_ignored(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy(policy_id="p-off", enabled=False))
    await policy_repo.put(make_policy(policy_id="p-disabled-mode", mode="DISABLED"))
    await policy_repo.put(make_policy(policy_id="p-other", tenant_id="tenant-2"))
    orchestrator = build_orchestrator(policy_repo, publisher)

    result = await orchestrator.evaluate_policies([vulnerable()], TENANT_ID)

    assert result.evaluations[0].status == "COMPLIANT"
    assert result.evaluations[0].policy_ids == ()
    assert result.summary.policies_evaluated == 0


@pytest.mark.asyncio()
async def test_permissive_policy_classifies_but_does_not_block(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy(mode="PERMISSIVE"))
    orchestrator = build_orchestrator(policy_repo, publisher)

    result = await orchestrator.evaluate_policies([vulnerable()], TENANT_ID)

    assert result.evaluations[0].status == "VIOLATION"
    assert [a.status for a in result.executed_actions] == ["SKIPPED"]
    assert publisher.of_type("dependencyBlocked") == []


# ---------------------------------------------------------------------------
# Summary, history and actions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_summary_breakdowns(policy_repo, publisher) -> None:
    high_rule = make_rule(
        rule_id="rule-high",
        name="Warn on high vulnerabilities",
        severity="HIGH",
        conditions=[make_condition("vulnerability.severity", "equals", "HIGH")],
        actions=[make_action("WARN")],
    )
    await policy_repo.put(make_policy(policy_id="p-sec", priority=200))
    await policy_repo.put(
        make_policy(policy_id="p-maint", priority=50, rules=[make_maintenance_rule(), make_rule(enabled=False)])
    )
    await policy_repo.put(make_policy(policy_id="p-high", rules=[high_rule]))
    orchestrator = build_orchestrator(policy_repo, publisher)
    batch = [vulnerable("lodash"), make_dependency(name="request", last_update=NOW - timedelta(days=900))]

    result = await orchestrator.evaluate_policies(batch, TENANT_ID)
    summary = result.summary

    assert summary.policies_evaluated == 3
    assert summary.rules_evaluated == 3
    assert summary.violations_detected == 1
    assert summary.blocked_dependencies == 1
    assert summary.severity_breakdown == {"CRITICAL": 1, "HIGH": 0, "MEDIUM": 1, "LOW": 0, "INFO": 0}
    assert summary.policy_breakdown == {"p-sec": 1, "p-maint": 1}
    assert result.evaluations[0].policy_ids == ("p-sec", "p-high", "p-maint")


def test_build_summary_counts_executed_actions() -> None:
    summary = build_summary([make_policy()], [], [])
    assert summary.actions_executed == 0
    assert summary.rules_evaluated == 1


@pytest.mark.asyncio()
async def test_result_is_recorded_in_history(policy_repo, publisher, history_repo) -> None:
    await policy_repo.put(make_policy())
    orchestrator = build_orchestrator(policy_repo, publisher, history_repo=history_repo)

    result = await orchestrator.evaluate_policies([vulnerable()], TENANT_ID)

    assert await history_repo.get(result.evaluation_id) == result
    started, *_, completed = publisher.events
    assert started.event_type == "policyEvaluationStarted"
    assert started.dependency_count == 1
    assert completed.event_type == "policyEvaluationCompleted"
    assert completed.evaluation_id == result.evaluation_id
    assert completed.violations_count == 1
    assert completed.blocked_count == 1


@pytest.mark.asyncio()
async def test_warning_actions_run_only_when_enabled(policy_repo, publisher) -> None:
    await policy_repo.put(make_policy(rules=[make_maintenance_rule()]))
    stale = make_dependency(last_update=NOW - timedelta(days=800))

    default = build_orchestrator(policy_repo, publisher)
    assert (await default.evaluate_policies([stale], TENANT_ID)).executed_actions == ()

    eager = build_orchestrator(policy_repo, publisher, execute_warning_actions=True)
    result = await eager.evaluate_policies([stale], TENANT_ID)

    assert [a.action_type for a in result.executed_actions] == ["WARN"]
    assert result.evaluations[0].actions_executed == 1
    assert len(publisher.of_type("dependencyWarning")) == 1
