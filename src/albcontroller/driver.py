"""Two-phase reconciliation pass over one load balancer aggregate.

Rules resolve their forward targets from target-group ARNs, and those ARNs
only exist once the target groups have been created. A pass therefore runs
in two phases:

1. the load balancer, then its target groups, then its listeners,
   one after another;
2. the rules of every listener, concurrently.

Phase 2 starts only when phase 1 has finished, so rules read fully
populated target-group and listener collections. A failure aborts only the
subtree of the entity that failed; siblings carry on. Nothing is retried
here: the next pass retries whatever is still out of sync.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .config import DEFAULT_MAX_CONCURRENT_RULE_RECONCILES
from .elbv2 import Elbv2Client
from .events import EventRecorder
from .loadbalancer import (
    ChildReconcileOptions,
    Listener,
    LoadBalancer,
    LoadBalancerReconcileOptions,
)
from .rule import ReconcileOptions, Rule
from .state import ReconcileError

logger = logging.getLogger(__name__)


@dataclass
class ReconcilePassResult:
    """Outcome of one pass over a load balancer aggregate."""

    load_balancer_id: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    rules_reconciled: int = 0
    errors: dict[str, ReconcileError] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return not self.errors


async def reconcile_pass(
    load_balancer: LoadBalancer,
    elbv2: Elbv2Client,
    eventf: EventRecorder | None = None,
    max_concurrency: int = DEFAULT_MAX_CONCURRENT_RULE_RECONCILES,
) -> ReconcilePassResult:
    """Reconcile a load balancer and everything it owns.

    Entity failures are collected in the result, never raised.
    """
    result = ReconcilePassResult(load_balancer_id=load_balancer.id)

    try:
        await asyncio.to_thread(
            load_balancer.reconcile, LoadBalancerReconcileOptions(elbv2=elbv2, eventf=eventf)
        )
    except ReconcileError as e:
        result.errors[f"loadbalancer/{load_balancer.id}"] = e
        return _finish(result)

    if load_balancer.deleted or load_balancer.current_arn() is None:
        return _finish(result)

    # Phase 1: target groups, then listeners
    child_options = ChildReconcileOptions(
        elbv2=elbv2,
        load_balancer_arn=load_balancer.current_arn(),
        target_groups=load_balancer.target_groups,
        eventf=eventf,
    )

    for tg in load_balancer.target_groups:
        try:
            await asyncio.to_thread(tg.reconcile, child_options)
        except ReconcileError as e:
            result.errors[f"targetgroup/{tg.svc_name}:{tg.svc_port}"] = e

    ready: list[Listener] = []
    for i, listener in enumerate(load_balancer.listeners):
        try:
            await asyncio.to_thread(listener.reconcile, child_options)
        except ReconcileError as e:
            result.errors[f"listener/{i}"] = e
            continue
        if listener.current_arn() is not None:
            ready.append(listener)

    # Phase 2: rules of every listener that is in place
    semaphore = asyncio.Semaphore(max_concurrency)

    async def reconcile_rule(rule: Rule, options: ReconcileOptions) -> None:
        async with semaphore:
            try:
                await asyncio.to_thread(rule.reconcile, options)
            except ReconcileError as e:
                result.errors[f"rule/{options.listener_arn}/{rule.priority}"] = e
            else:
                result.rules_reconciled += 1

    tasks = []
    for listener in ready:
        options = ReconcileOptions(
            elbv2=elbv2,
            listener_arn=listener.current_arn(),
            target_groups=load_balancer.target_groups,
            eventf=eventf,
        )
        tasks.extend(reconcile_rule(rule, options) for rule in listener.rules)

    await asyncio.gather(*tasks)

    for listener in ready:
        listener.rules[:] = [r for r in listener.rules if not r.deleted]

    return _finish(result)


def _finish(result: ReconcilePassResult) -> ReconcilePassResult:
    result.end_time = datetime.now(UTC)
    log = logger.warning if result.errors else logger.info
    log(
        "Reconcile pass finished",
        extra={
            "load_balancer": result.load_balancer_id,
            "rules_reconciled": result.rules_reconciled,
            "errors": {k: str(v) for k, v in result.errors.items()},
            "duration_seconds": result.duration_seconds,
        },
    )
    return result
