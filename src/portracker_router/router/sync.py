"""Reconciling caller-held rules with the router.

The caller owns rule persistence. These helpers take the caller's rules,
apply the matching router operations one at a time through a single
:class:`RouterClient`, and report per-rule outcomes so the caller can
update its own storage. Operations never run concurrently against the
router; a failure on one rule is recorded and the next rule is tried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from portracker_router.errors import RouterError, RouterUnreachableError
from portracker_router.models import BatchAction, PortForwardingRule, RuleInput
from portracker_router.router.client import RouterClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleFailure:
    """A rule the router operation failed for."""

    rule_id: int | str | None
    name: str
    error: str
    native_id: str | None = None


@dataclass
class SyncReport:
    """Outcome of :func:`push_rules` or :func:`apply_batch`.

    ``rules`` holds the caller's rules with ``native_id`` and ``enabled``
    updated to reflect what succeeded on the router.
    """

    succeeded: int = 0
    failed: int = 0
    failures: list[RuleFailure] = field(default_factory=list)
    rules: list[PortForwardingRule] = field(default_factory=list)

    def record_failure(self, rule: PortForwardingRule, exc: RouterError) -> None:
        self.failed += 1
        self.failures.append(
            RuleFailure(
                rule_id=rule.id,
                name=rule.name,
                error=str(exc),
                native_id=exc.native_id,
            )
        )


async def import_rules(
    client: RouterClient, known: Iterable[PortForwardingRule],
) -> list[PortForwardingRule]:
    """Return router rules whose section id is not among *known* rules."""
    known_ids = {rule.native_id for rule in known if rule.native_id}
    imported = [rule for rule in await client.list_rules() if rule.native_id not in known_ids]
    logger.info("Found %d router rules not yet tracked", len(imported))
    return imported


async def push_rules(
    client: RouterClient, rules: Iterable[PortForwardingRule],
) -> SyncReport:
    """Create every rule that has no ``native_id`` yet on the router.

    Rules that already have a ``native_id`` are passed through unchanged.
    :class:`RouterUnreachableError` is raised rather than recorded, since no
    later rule could succeed either.
    """
    report = SyncReport()
    for rule in rules:
        if rule.native_id is not None:
            report.rules.append(rule)
            continue
        try:
            result = await client.add_rule(RuleInput.from_rule(rule))
        except RouterUnreachableError:
            raise
        except RouterError as exc:
            report.record_failure(rule, exc)
            # A partially created section is still tracked for cleanup.
            report.rules.append(
                rule.model_copy(update={"native_id": exc.native_id}) if exc.native_id else rule
            )
            continue
        report.succeeded += 1
        report.rules.append(rule.model_copy(update={"native_id": result.native_id}))

    logger.info("Router sync completed: %d added, %d failed", report.succeeded, report.failed)
    return report


async def apply_batch(
    client: RouterClient,
    rules: Iterable[PortForwardingRule],
    action: BatchAction | str,
) -> SyncReport:
    """Enable, disable or delete *rules* one after another.

    Rules without a ``native_id`` exist only on the caller's side; they
    count as succeeded without a router call. Deleted rules are left out of
    ``report.rules``.
    """
    action = BatchAction(action)
    report = SyncReport()
    for rule in rules:
        try:
            if rule.native_id is not None:
                if action is BatchAction.DELETE:
                    await client.delete_rule(rule.native_id)
                else:
                    await client.set_enabled(rule.native_id, action is BatchAction.ENABLE)
        except RouterUnreachableError:
            raise
        except RouterError as exc:
            report.record_failure(rule, exc)
            report.rules.append(rule)
            continue

        report.succeeded += 1
        if action is not BatchAction.DELETE:
            report.rules.append(
                rule.model_copy(update={"enabled": action is BatchAction.ENABLE})
            )

    logger.info(
        "Batch %s completed: %d succeeded, %d failed",
        action.value, report.succeeded, report.failed,
    )
    return report
