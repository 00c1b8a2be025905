"""Load balancer aggregate reconciliation.

Unlike a rule, a load balancer cannot be modified in one call: security
groups, subnets, IP address type, tags, attributes, managed ingress and WAF
association each have their own API. The reconciler classifies which
aspects differ (``planned_changes``) and issues one call per aspect. Calls
are independent: a failure is recorded and the remaining calls still run,
and only aspects whose call succeeded adopt their desired value.

A scheme change cannot be applied in place, so it replaces the load
balancer (delete, then create).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .change import (
    MANAGED_ATTRIBUTE_DEFAULTS,
    LoadBalancerChange,
    attributes_equal,
    filtered_attributes,
    options_changed,
    tags_equal,
    web_acl_changed,
)
from .elbv2 import CloudAPIError, Elbv2Client
from .events import EventReason, EventRecorder, EventType, emit
from .log import prettify
from .models import (
    LoadBalancerAttribute,
    LoadBalancerDocument,
    LoadBalancerOptions,
    LoadBalancerSnapshot,
    Tag,
)
from .rule import Rules
from .state import DualState, ReconcileError
from .targetgroup import TargetGroup, TargetGroups

logger = logging.getLogger(__name__)


class LoadBalancerReconcileError(ReconcileError):
    """Raised when one or more load balancer calls fail."""

    pass


class PlannedLoadBalancerAction(str, Enum):
    """What a reconcile pass will do with the load balancer object."""

    NONE = "none"
    CREATE = "create"
    MODIFY = "modify"
    REPLACE = "replace"
    DELETE = "delete"


@dataclass
class LoadBalancerReconcileOptions:
    """Context for reconciling the load balancer object itself."""

    elbv2: Elbv2Client
    eventf: EventRecorder | None = None


@dataclass
class ChildReconcileOptions:
    """Context handed to target groups and listeners of a load balancer."""

    elbv2: Elbv2Client
    load_balancer_arn: str | None
    target_groups: TargetGroups
    eventf: EventRecorder | None = None


class Listener(Protocol):
    """Listener collaborator. Listeners own the rules reconciled after them."""

    rules: Rules

    def current_arn(self) -> str | None: ...

    def reconcile(self, options: ChildReconcileOptions) -> None: ...

    def strip_current_state(self) -> None: ...


class LoadBalancer:
    """A load balancer with its tags, attributes, options and children."""

    def __init__(
        self,
        id: str,
        lb: DualState[LoadBalancerSnapshot] | None = None,
        tags: DualState[list[Tag]] | None = None,
        attributes: DualState[list[LoadBalancerAttribute]] | None = None,
        options: DualState[LoadBalancerOptions] | None = None,
        target_groups: Iterable[TargetGroup] = (),
        listeners: Iterable[Listener] = (),
    ) -> None:
        self.id = id
        self.lb: DualState[LoadBalancerSnapshot] = lb or DualState()
        self.tags: DualState[list[Tag]] = tags or DualState(current=[], desired=[])
        self.attributes: DualState[list[LoadBalancerAttribute]] = attributes or DualState(
            current=[], desired=[]
        )
        self.options: DualState[LoadBalancerOptions] = options or DualState(
            current=LoadBalancerOptions(), desired=LoadBalancerOptions()
        )
        self.target_groups = TargetGroups(target_groups)
        self.listeners: list[Listener] = list(listeners)
        self.deleted = False

    @classmethod
    def from_document(cls, doc: LoadBalancerDocument) -> LoadBalancer:
        current = doc.current
        desired = doc.desired
        return cls(
            id=doc.id,
            lb=DualState(
                current=current.load_balancer if current else None,
                desired=desired.load_balancer if desired else None,
            ),
            tags=DualState(
                current=list(current.tags) if current else [],
                desired=list(desired.tags) if desired else [],
            ),
            attributes=DualState(
                current=list(current.attributes) if current else [],
                desired=list(desired.attributes) if desired else [],
            ),
            options=DualState(
                current=current.options if current else LoadBalancerOptions(),
                desired=desired.options if desired else LoadBalancerOptions(),
            ),
        )

    def __repr__(self) -> str:
        return (
            f"LoadBalancer(id={self.id!r}, arn={self.current_arn()!r}, "
            f"deleted={self.deleted})"
        )

    def current_arn(self) -> str | None:
        current = self.lb.current
        return current.load_balancer_arn if current else None

    def planned_changes(self) -> LoadBalancerChange:
        """Aspects that differ between current and desired.

        Empty unless both sides exist.
        """
        current = self.lb.current
        desired = self.lb.desired
        if current is None or desired is None:
            return LoadBalancerChange.NONE

        changes = options_changed(self.options.current, self.options.desired)

        if current.scheme != desired.scheme:
            changes |= LoadBalancerChange.SCHEME
        if sorted(current.security_groups) != sorted(desired.security_groups):
            changes |= LoadBalancerChange.SECURITY_GROUPS
        if sorted(current.subnets) != sorted(desired.subnets):
            changes |= LoadBalancerChange.SUBNETS
        if current.ip_address_type != desired.ip_address_type:
            changes |= LoadBalancerChange.IP_ADDRESS_TYPE
        if not tags_equal(self.tags.current, self.tags.desired):
            changes |= LoadBalancerChange.TAGS
        if not attributes_equal(self.attributes.current, self.attributes.desired):
            changes |= LoadBalancerChange.ATTRIBUTES

        return changes

    def planned_action(self) -> PlannedLoadBalancerAction:
        if self.lb.desired is None:
            if self.lb.current is None:
                return PlannedLoadBalancerAction.NONE
            return PlannedLoadBalancerAction.DELETE
        if self.lb.current is None:
            return PlannedLoadBalancerAction.CREATE

        changes = self.planned_changes()
        if LoadBalancerChange.SCHEME in changes:
            return PlannedLoadBalancerAction.REPLACE
        if changes:
            return PlannedLoadBalancerAction.MODIFY
        return PlannedLoadBalancerAction.NONE

    def reconcile(self, options: LoadBalancerReconcileOptions) -> PlannedLoadBalancerAction:
        """Converge the load balancer object, its tags, attributes and options.

        Children are not touched here; the reconcile pass drives them.

        Raises:
            LoadBalancerReconcileError: If any call failed. All independent
                calls are attempted before raising the first failure.
        """
        action = self.planned_action()

        if action is PlannedLoadBalancerAction.DELETE:
            logger.info("Start ELBV2 (ALB) deletion.", extra={"load_balancer": self.id})
            self._delete(options)
            self.deleted = True
            emit(options.eventf, EventType.NORMAL, EventReason.DELETE, "%s deleted", self.id)
            logger.info("Completed ELBV2 (ALB) deletion.", extra={"load_balancer": self.id})

        elif action is PlannedLoadBalancerAction.CREATE:
            self._create(options)

        elif action is PlannedLoadBalancerAction.REPLACE:
            logger.info(
                "Scheme changed, replacing ELBV2 (ALB).",
                extra={
                    "load_balancer": self.id,
                    "current_scheme": self.lb.current.scheme,
                    "desired_scheme": self.lb.desired.scheme,
                },
            )
            self._delete(options)
            self._forget_current()
            self._create(options)

        elif action is PlannedLoadBalancerAction.MODIFY:
            changes = self.planned_changes()
            logger.info(
                "Start ELBV2 (ALB) modification.",
                extra={"load_balancer": self.id, "changes": change_names(changes)},
            )
            self._apply_changes(options, changes)
            emit(options.eventf, EventType.NORMAL, EventReason.MODIFY, "%s modified", self.id)

        return action

    def _create(self, options: LoadBalancerReconcileOptions) -> None:
        desired = self.lb.desired
        logger.info("Start ELBV2 (ALB) creation.", extra={"load_balancer": self.id})
        try:
            created = options.elbv2.create_load_balancer(desired, self.tags.desired or [])
        except CloudAPIError as e:
            emit(
                options.eventf,
                EventType.WARNING,
                EventReason.ERROR,
                "Error creating %s: %s",
                desired.load_balancer_name,
                e,
            )
            raise LoadBalancerReconcileError(
                f"Failed ELBV2 (ALB) creation. Load balancer: {prettify(desired)} | Error: {e}"
            ) from e

        self.lb.adopt(created)
        self.tags.adopt_desired()
        emit(
            options.eventf,
            EventType.NORMAL,
            EventReason.CREATE,
            "%s created",
            created.load_balancer_name,
        )
        logger.info(
            "Completed ELBV2 (ALB) creation. Name: %s | ARN: %s",
            created.load_balancer_name,
            created.load_balancer_arn,
        )

        # A new load balancer starts with default attributes and no WAF
        changes = LoadBalancerChange.NONE
        if not attributes_equal(self.attributes.current, self.attributes.desired):
            changes |= LoadBalancerChange.ATTRIBUTES
        if web_acl_changed(self.options.current.web_acl_id, self.options.desired.web_acl_id):
            changes |= LoadBalancerChange.WEB_ACL_ASSOCIATION
        if changes:
            self._apply_changes(options, changes)

    def _delete(self, options: LoadBalancerReconcileOptions) -> None:
        arn = self.current_arn()
        try:
            options.elbv2.delete_load_balancer(arn)
        except CloudAPIError as e:
            emit(
                options.eventf,
                EventType.WARNING,
                EventReason.ERROR,
                "Error deleting %s: %s",
                self.id,
                e,
            )
            raise LoadBalancerReconcileError(
                f"Failed ELBV2 (ALB) deletion. ARN: {arn} | Error: {e}"
            ) from e

    def _forget_current(self) -> None:
        """Reset every current aspect after the cloud object is gone."""
        self.lb.adopt(None)
        self.tags.adopt([])
        self.attributes.adopt([])
        self.options.adopt(LoadBalancerOptions())
        for listener in self.listeners:
            listener.strip_current_state()

    def _apply_changes(
        self, options: LoadBalancerReconcileOptions, changes: LoadBalancerChange
    ) -> None:
        """Issue one call per changed aspect, adopting only what succeeded."""
        arn = self.current_arn()
        desired_lb = self.lb.desired
        desired_opts = self.options.desired
        failures: list[tuple[LoadBalancerChange, CloudAPIError]] = []
        adopted = LoadBalancerChange.NONE

        def attempt(
            aspect: LoadBalancerChange, call: Callable[[], None], adopt: Callable[[], None]
        ) -> None:
            nonlocal adopted
            try:
                call()
            except CloudAPIError as e:
                logger.error(
                    "Failed ELBV2 (ALB) %s update",
                    change_names(aspect)[0],
                    extra={"load_balancer": self.id, "error": str(e)},
                )
                emit(
                    options.eventf,
                    EventType.WARNING,
                    EventReason.ERROR,
                    "Error modifying %s %s: %s",
                    self.id,
                    change_names(aspect)[0],
                    e,
                )
                failures.append((aspect, e))
                return
            adopt()
            adopted |= aspect
            logger.info(
                "Completed ELBV2 (ALB) %s update",
                change_names(aspect)[0],
                extra={"load_balancer": self.id},
            )

        if LoadBalancerChange.SECURITY_GROUPS in changes:
            attempt(
                LoadBalancerChange.SECURITY_GROUPS,
                lambda: options.elbv2.set_security_groups(arn, desired_lb.security_groups),
                lambda: self._adopt_lb_fields(security_groups=list(desired_lb.security_groups)),
            )

        if LoadBalancerChange.SUBNETS in changes:
            attempt(
                LoadBalancerChange.SUBNETS,
                lambda: options.elbv2.set_subnets(arn, desired_lb.subnets),
                lambda: self._adopt_lb_fields(subnets=list(desired_lb.subnets)),
            )

        if LoadBalancerChange.IP_ADDRESS_TYPE in changes:
            attempt(
                LoadBalancerChange.IP_ADDRESS_TYPE,
                lambda: options.elbv2.set_ip_address_type(arn, desired_lb.ip_address_type),
                lambda: self._adopt_lb_fields(ip_address_type=desired_lb.ip_address_type),
            )

        if LoadBalancerChange.TAGS in changes:
            attempt(
                LoadBalancerChange.TAGS,
                lambda: self._update_tags(options.elbv2, arn),
                self.tags.adopt_desired,
            )

        if LoadBalancerChange.ATTRIBUTES in changes:
            attempt(
                LoadBalancerChange.ATTRIBUTES,
                lambda: options.elbv2.modify_load_balancer_attributes(
                    arn, self._attributes_to_apply()
                ),
                self.attributes.adopt_desired,
            )

        ingress = LoadBalancerChange.INBOUND_CIDRS | LoadBalancerChange.PORTS
        if changes & ingress:
            current_opts = self.options.current
            attempt(
                changes & ingress,
                lambda: options.elbv2.update_security_group_ingress(
                    current_opts.managed_sg, current_opts, desired_opts
                ),
                lambda: self._adopt_options_fields(
                    ports=list(desired_opts.ports or []),
                    inbound_cidrs=list(desired_opts.inbound_cidrs),
                ),
            )

        if LoadBalancerChange.WEB_ACL_ASSOCIATION in changes:
            attempt(
                LoadBalancerChange.WEB_ACL_ASSOCIATION,
                lambda: self._update_web_acl(options.elbv2, arn),
                lambda: self._adopt_options_fields(web_acl_id=desired_opts.web_acl_id),
            )

        if failures:
            if adopted:
                emit(options.eventf, EventType.NORMAL, EventReason.MODIFY, "%s modified", self.id)
            aspect, first = failures[0]
            raise LoadBalancerReconcileError(
                f"Failed ELBV2 (ALB) modification for {self.id}: "
                f"{len(failures)} call(s) failed, first ({change_names(aspect)[0]}): {first}"
            ) from first

    def _adopt_lb_fields(self, **fields: object) -> None:
        self.lb.adopt(self.lb.current.model_copy(update=fields))

    def _adopt_options_fields(self, **fields: object) -> None:
        self.options.adopt(self.options.current.model_copy(update=fields))

    def _update_tags(self, elbv2: Elbv2Client, arn: str) -> None:
        current = {t.key: t.value for t in self.tags.current or []}
        desired = {t.key: t.value for t in self.tags.desired or []}

        to_add = [Tag(key=k, value=v) for k, v in sorted(desired.items()) if current.get(k) != v]
        to_remove = sorted(k for k in current if k not in desired)

        if to_add:
            elbv2.add_tags(arn, to_add)
        if to_remove:
            elbv2.remove_tags(arn, to_remove)

    def _update_web_acl(self, elbv2: Elbv2Client, arn: str) -> None:
        web_acl_id = self.options.desired.web_acl_id
        if web_acl_id is None:
            elbv2.disassociate_web_acl(arn)
        else:
            elbv2.associate_web_acl(arn, web_acl_id)

    def _attributes_to_apply(self) -> list[LoadBalancerAttribute]:
        """Desired managed attributes, with unset keys reset to their default."""
        desired = {a.key: a.value for a in filtered_attributes(self.attributes.desired)}
        return [
            LoadBalancerAttribute(key=k, value=desired.get(k, default))
            for k, default in sorted(MANAGED_ATTRIBUTE_DEFAULTS.items())
        ]


def change_names(changes: LoadBalancerChange) -> list[str]:
    return [
        member.name.lower()
        for member in LoadBalancerChange
        if member is not LoadBalancerChange.NONE and member in changes
    ]
