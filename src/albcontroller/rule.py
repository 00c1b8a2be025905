"""Listener rule reconciliation.

A ``Rule`` pairs the cloud-reported rule with the rule routing intent asks
for and converges the two with at most one cloud call per pass:

    desired  current  default  needs mod   action
    -------  -------  -------  ---------   ------------------------------
    None     None                          nothing
    None     set      yes                  nothing (listener owns it)
    None     set      no                   delete
    set               yes                  adopt desired, no call
    set      None     no                   create
    set      set      no       yes         modify
    set      set      no       no          nothing

Default rules are bound to their listener by ELBv2 and any attempt to
mutate them is rejected, so they are never created, modified or deleted
from here.

A failed call leaves ``current`` untouched, so the next pass reaches the
same verdict and retries. There is no retry inside this module.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .change import conditions_equal
from .elbv2 import CloudAPIError, Elbv2Client
from .events import EventReason, EventRecorder, EventType, emit
from .log import prettify
from .models import (
    DEFAULT_PRIORITY,
    FORWARD_ACTION,
    HOST_HEADER_FIELD,
    PATH_PATTERN_FIELD,
    CurrentRuleOptions,
    DesiredRuleOptions,
    ElbRule,
    RuleAction,
    RuleCondition,
    ServiceBinding,
)
from .state import DualState, ReconcileError
from .targetgroup import TargetGroups

logger = logging.getLogger(__name__)


class RuleReconcileError(ReconcileError):
    """Raised when a create, modify or delete call for a rule fails."""

    pass


class PlannedAction(str, Enum):
    """What a reconcile pass will do with one rule."""

    NONE = "none"
    ADOPT_DEFAULT = "adopt-default"
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


def encode_priority(priority: str) -> int:
    """Numeric priority for API calls; the default rule is 0."""
    if priority == DEFAULT_PRIORITY:
        return 0
    return int(priority)


def decode_priority(value: int) -> str:
    """Inverse of ``encode_priority``."""
    if value == 0:
        return DEFAULT_PRIORITY
    return str(value)


@dataclass
class ReconcileOptions:
    """Context shared by every rule of one listener during a pass.

    Attributes:
        elbv2: Cloud API client.
        listener_arn: ARN of the listener owning the rules.
        target_groups: Target groups of the owning load balancer, used to
            resolve forward targets.
        eventf: Audit event recorder.
    """

    elbv2: Elbv2Client
    listener_arn: str | None
    target_groups: TargetGroups
    eventf: EventRecorder | None = None


class Rule:
    """One listener rule with its current and desired state."""

    def __init__(
        self,
        state: DualState[ElbRule] | None = None,
        service: DualState[ServiceBinding] | None = None,
    ) -> None:
        self.state: DualState[ElbRule] = state or DualState()
        self.service: DualState[ServiceBinding] = service or DualState(
            current=ServiceBinding(), desired=ServiceBinding()
        )
        self.deleted = False

    @classmethod
    def new_desired(cls, o: DesiredRuleOptions) -> Rule:
        """Build a desired-only rule from routing intent.

        Priority 0 yields the listener default rule, which never carries
        conditions. The forward target is left empty until reconcile time,
        because target groups may not have been created yet.
        """
        is_default = o.priority == 0
        conditions: list[RuleCondition] = []

        if not is_default:
            if o.hostname and o.ignore_host_header is False:
                conditions.append(RuleCondition(field=HOST_HEADER_FIELD, values=[o.hostname]))
            if o.path:
                conditions.append(RuleCondition(field=PATH_PATTERN_FIELD, values=[o.path]))

        desired = ElbRule(
            priority=decode_priority(o.priority),
            is_default=is_default,
            conditions=conditions,
            actions=[RuleAction(type=FORWARD_ACTION, target_group_arn=None)],
        )
        binding = ServiceBinding(name=o.svc_name, port=o.svc_port, target_port=o.target_port)
        return cls(
            state=DualState(desired=desired),
            service=DualState(current=ServiceBinding(), desired=binding),
        )

    @classmethod
    def new_current(cls, o: CurrentRuleOptions) -> Rule:
        """Wrap a cloud-reported rule as a current-only rule."""
        binding = ServiceBinding(name=o.svc_name, port=o.svc_port, target_port=o.target_port)
        return cls(
            state=DualState(current=o.rule),
            service=DualState(current=binding, desired=ServiceBinding()),
        )

    def __repr__(self) -> str:
        return (
            f"Rule(priority={self.priority!r}, current={self.state.current is not None}, "
            f"desired={self.state.desired is not None}, deleted={self.deleted})"
        )

    @property
    def priority(self) -> str | None:
        snapshot = self.state.desired or self.state.current
        return snapshot.priority if snapshot else None

    @property
    def is_desired_default(self) -> bool:
        return self.state.desired is not None and self.state.desired.is_default

    def strip_current_state(self) -> None:
        self.state.current = None

    def target_group_arn(self, target_groups: TargetGroups) -> str | None:
        """Resolve the forward target for the desired service binding.

        A miss is logged and yields ``None``: the rule is still written, just
        without a target, rather than aborting the pass.
        """
        svc = self.service.desired
        i = target_groups.lookup_by_backend(svc.name, svc.port)
        if i < 0:
            logger.error(
                "Failed to locate TargetGroup related to this service: %s:%s",
                svc.name,
                svc.port,
            )
            return None
        arn = target_groups[i].current_arn()
        if arn is None:
            logger.error(
                "Located TargetGroup but no known (current) state found: %s:%s",
                svc.name,
                svc.port,
            )
        return arn

    def resolve_targets(self, target_groups: TargetGroups) -> None:
        """Fill the target ARN into every desired action."""
        desired = self.state.desired
        if desired is None:
            return
        arn = self.target_group_arn(target_groups)
        self.state.desired = desired.model_copy(
            update={
                "actions": [
                    a.model_copy(update={"target_group_arn": arn}) for a in desired.actions
                ]
            }
        )

    def needs_modification(self) -> bool:
        """Whether an existing rule differs from its desired state.

        A current target port of 0 never triggers a change: rules recorded
        before target ports were tracked carry 0.
        """
        current = self.state.current
        desired = self.state.desired
        svc = self.service

        if current is None:
            logger.debug("Current is nil")
            return True
        if desired is None:
            return False
        if current.actions != desired.actions:
            logger.debug(
                "Actions needs to be changed (%s != %s)",
                prettify(current.actions),
                prettify(desired.actions),
            )
            return True
        if not conditions_equal(current.conditions, desired.conditions):
            logger.debug(
                "Conditions needs to be changed (%s != %s)",
                prettify(current.conditions),
                prettify(desired.conditions),
            )
            return True
        if svc.current.name != svc.desired.name:
            logger.debug(
                "SvcName needs to be changed (%s != %s)", svc.current.name, svc.desired.name
            )
            return True
        if svc.current.target_port != svc.desired.target_port and svc.current.target_port != 0:
            logger.debug(
                "Target port needs to be changed (%s != %s)",
                svc.current.target_port,
                svc.desired.target_port,
            )
            return True
        return False

    def planned_action(self) -> PlannedAction:
        current = self.state.current
        desired = self.state.desired

        if desired is None:
            if current is None or current.is_default:
                return PlannedAction.NONE
            return PlannedAction.DELETE
        if desired.is_default:
            return PlannedAction.ADOPT_DEFAULT
        if current is None:
            return PlannedAction.CREATE
        if self.needs_modification():
            return PlannedAction.MODIFY
        return PlannedAction.NONE

    def reconcile(self, options: ReconcileOptions) -> PlannedAction:
        """Converge this rule, issuing at most one cloud call.

        Returns:
            The action that was taken.

        Raises:
            RuleReconcileError: If the cloud call fails.
        """
        self.resolve_targets(options.target_groups)
        action = self.planned_action()

        if action is PlannedAction.DELETE:
            logger.info("Start Rule deletion.")
            self._delete(options)
            emit(
                options.eventf,
                EventType.NORMAL,
                EventReason.DELETE,
                "%s rule deleted",
                self.state.current.priority,
            )
            self._log_completed("deletion", self.state.current)

        elif action is PlannedAction.ADOPT_DEFAULT:
            self.state.adopt_desired()

        elif action is PlannedAction.CREATE:
            logger.info("Start Rule creation.")
            self._create(options)
            emit(
                options.eventf,
                EventType.NORMAL,
                EventReason.CREATE,
                "%s rule created",
                self.state.current.priority,
            )
            self._log_completed("creation", self.state.current)

        elif action is PlannedAction.MODIFY:
            logger.info("Start Rule modification.")
            self._modify(options)
            emit(
                options.eventf,
                EventType.NORMAL,
                EventReason.MODIFY,
                "%s rule modified",
                self.state.current.priority,
            )
            self._log_completed("modification", self.state.current)

        return action

    def _log_completed(self, what: str, snapshot: ElbRule) -> None:
        logger.info(
            "Completed Rule %s. Rule Priority: %s | Condition: %s",
            what,
            prettify(snapshot.priority),
            prettify(snapshot.conditions),
            extra={"rule_arn": snapshot.rule_arn, "priority": snapshot.priority},
        )

    def _create(self, options: ReconcileOptions) -> None:
        desired = self.state.desired
        priority = encode_priority(desired.priority)
        try:
            created = options.elbv2.create_rule(
                desired.actions, desired.conditions, options.listener_arn, priority
            )
        except CloudAPIError as e:
            emit(
                options.eventf,
                EventType.WARNING,
                EventReason.ERROR,
                "Error creating %s rule: %s",
                priority,
                e,
            )
            raise RuleReconcileError(
                f"Failed Rule creation. Rule: {prettify(desired)} | Error: {e}"
            ) from e

        self.state.adopt(created)
        self.service.adopt_desired()

    def _modify(self, options: ReconcileOptions) -> None:
        desired = self.state.desired
        rule_arn = self.state.current.rule_arn
        try:
            modified = options.elbv2.modify_rule(rule_arn, desired.actions, desired.conditions)
        except CloudAPIError as e:
            msg = f"Error modifying rule {rule_arn}: {e}"
            emit(options.eventf, EventType.WARNING, EventReason.ERROR, msg)
            raise RuleReconcileError(msg) from e

        # An empty response is not an error; current stays as it was
        if modified:
            self.state.adopt(modified[0])
        self.service.adopt_desired()

    def _delete(self, options: ReconcileOptions) -> None:
        current = self.state.current
        try:
            options.elbv2.delete_rule(current.rule_arn)
        except CloudAPIError as e:
            emit(
                options.eventf,
                EventType.WARNING,
                EventReason.ERROR,
                "Error deleting %s rule: %s",
                current.priority,
                e,
            )
            raise RuleReconcileError(f"Failed Rule deletion. Error: {e}") from e

        self.deleted = True


class Rules(list[Rule]):
    """Rules of one listener."""

    @classmethod
    def from_options(
        cls,
        desired: Iterable[DesiredRuleOptions] = (),
        current: Iterable[CurrentRuleOptions] = (),
    ) -> Rules:
        """Build desired rules and pair them with cloud-reported ones."""
        rules = cls(Rule.new_desired(o) for o in desired)
        rules.merge(Rule.new_current(o) for o in current)
        return rules

    def find_by_priority(self, priority: str) -> Rule | None:
        for rule in self:
            if rule.priority == priority:
                return rule
        return None

    def merge(self, current: Iterable[Rule]) -> None:
        """Pair current-only rules with the desired rule of the same priority.

        Current rules nobody asks for are kept so the next pass deletes them.
        """
        for c in current:
            if c.state.current is None:
                continue
            match = self.find_by_priority(c.state.current.priority)
            if match is None or match.state.current is not None:
                self.append(c)
                continue
            match.state.current = c.state.current
            match.service.current = c.service.current

    def reconcile(self, options: ReconcileOptions) -> None:
        """Reconcile every rule; one failure does not stop its siblings.

        Deleted rules are dropped afterwards.

        Raises:
            RuleReconcileError: The first failure, after all rules were attempted.
        """
        first_error: RuleReconcileError | None = None
        for rule in self:
            try:
                rule.reconcile(options)
            except RuleReconcileError as e:
                logger.error("Rule reconcile failed", extra={"error": str(e)})
                if first_error is None:
                    first_error = e

        self[:] = [r for r in self if not r.deleted]

        if first_error is not None:
            raise first_error
