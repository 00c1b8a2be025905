"""In-memory ELBv2 client.

Implements the ``Elbv2Client`` protocol against dictionaries, recording
every call so tests can assert on exactly what was sent.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from albcontroller.elbv2 import CloudAPIError
from albcontroller.models import (
    ElbRule,
    LoadBalancerAttribute,
    LoadBalancerOptions,
    LoadBalancerSnapshot,
    RuleAction,
    RuleCondition,
    Tag,
)

ACCOUNT_PREFIX = "arn:aws:elasticloadbalancing:us-east-1:123456789012"
LISTENER_ARN = f"{ACCOUNT_PREFIX}:listener/app/test-alb/50dc6c495c0c9188/f2f7dc8efc522ab2"


@dataclass
class MockCall:
    """One recorded API call."""

    operation: str
    params: dict[str, Any] = field(default_factory=dict)


class MockElbv2Client:
    """In-memory ``Elbv2Client``.

    Thread-safe so the async reconcile pass can drive it from worker threads.
    """

    def __init__(self, *, fail_operations: dict[str, str] | None = None) -> None:
        self.calls: list[MockCall] = []
        self.rules: dict[str, ElbRule] = {}
        self.load_balancers: dict[str, LoadBalancerSnapshot] = {}
        self.tags: dict[str, dict[str, str]] = {}
        self.attributes: dict[str, list[LoadBalancerAttribute]] = {}
        self.web_acls: dict[str, str] = {}
        self.ingress: dict[str, LoadBalancerOptions] = {}
        self.modify_returns_empty = False
        self._fail: dict[str, str] = dict(fail_operations or {})
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # Test helpers

    def fail(self, operation: str, message: str = "Simulated failure") -> None:
        """Make every subsequent call to ``operation`` raise CloudAPIError."""
        self._fail[operation] = message

    def operations(self) -> list[str]:
        return [c.operation for c in self.calls]

    def calls_for(self, operation: str) -> list[MockCall]:
        return [c for c in self.calls if c.operation == operation]

    def put_rule(self, rule: ElbRule) -> ElbRule:
        """Seed a rule as if it already existed in AWS."""
        self.rules[rule.rule_arn] = rule
        return rule

    def _record(self, operation: str, **params: Any) -> None:
        with self._lock:
            self.calls.append(MockCall(operation, params))
        if operation in self._fail:
            raise CloudAPIError(operation, self._fail[operation], code="ValidationError")

    def _next_id(self) -> str:
        with self._lock:
            return f"{next(self._ids):016x}"

    # Rules

    def create_rule(
        self,
        actions: Sequence[RuleAction],
        conditions: Sequence[RuleCondition],
        listener_arn: str | None,
        priority: int,
    ) -> ElbRule:
        self._record(
            "CreateRule",
            actions=list(actions),
            conditions=list(conditions),
            listener_arn=listener_arn,
            priority=priority,
        )
        arn = (listener_arn or LISTENER_ARN).replace(":listener/", ":listener-rule/")
        rule = ElbRule(
            rule_arn=f"{arn}/{self._next_id()}",
            priority=str(priority),
            conditions=list(conditions),
            actions=list(actions),
            is_default=False,
        )
        self.rules[rule.rule_arn] = rule
        return rule

    def modify_rule(
        self,
        rule_arn: str | None,
        actions: Sequence[RuleAction],
        conditions: Sequence[RuleCondition],
    ) -> list[ElbRule]:
        self._record(
            "ModifyRule", rule_arn=rule_arn, actions=list(actions), conditions=list(conditions)
        )
        existing = self.rules.get(rule_arn)
        if existing is None:
            raise CloudAPIError("ModifyRule", f"Rule '{rule_arn}' not found", code="RuleNotFound")
        modified = existing.model_copy(
            update={"actions": list(actions), "conditions": list(conditions)}
        )
        self.rules[rule_arn] = modified
        if self.modify_returns_empty:
            return []
        return [modified]

    def delete_rule(self, rule_arn: str | None) -> None:
        self._record("DeleteRule", rule_arn=rule_arn)
        self.rules.pop(rule_arn, None)

    # Load balancers

    def create_load_balancer(
        self, desired: LoadBalancerSnapshot, tags: Sequence[Tag]
    ) -> LoadBalancerSnapshot:
        self._record("CreateLoadBalancer", desired=desired, tags=list(tags))
        name = desired.load_balancer_name
        created = desired.model_copy(
            update={
                "load_balancer_arn": f"{ACCOUNT_PREFIX}:loadbalancer/app/{name}/{self._next_id()}",
                "dns_name": f"{name}-1234567890.us-east-1.elb.amazonaws.com",
            }
        )
        self.load_balancers[created.load_balancer_arn] = created
        self.tags[created.load_balancer_arn] = {t.key: t.value for t in tags}
        return created

    def delete_load_balancer(self, load_balancer_arn: str) -> None:
        self._record("DeleteLoadBalancer", load_balancer_arn=load_balancer_arn)
        self.load_balancers.pop(load_balancer_arn, None)

    def set_security_groups(self, load_balancer_arn: str, security_groups: Sequence[str]) -> None:
        self._record(
            "SetSecurityGroups",
            load_balancer_arn=load_balancer_arn,
            security_groups=list(security_groups),
        )

    def set_subnets(self, load_balancer_arn: str, subnets: Sequence[str]) -> None:
        self._record("SetSubnets", load_balancer_arn=load_balancer_arn, subnets=list(subnets))

    def set_ip_address_type(self, load_balancer_arn: str, ip_address_type: str) -> None:
        self._record(
            "SetIpAddressType",
            load_balancer_arn=load_balancer_arn,
            ip_address_type=ip_address_type,
        )

    def add_tags(self, resource_arn: str, tags: Sequence[Tag]) -> None:
        self._record("AddTags", resource_arn=resource_arn, tags=list(tags))
        self.tags.setdefault(resource_arn, {}).update({t.key: t.value for t in tags})

    def remove_tags(self, resource_arn: str, keys: Sequence[str]) -> None:
        self._record("RemoveTags", resource_arn=resource_arn, keys=list(keys))
        for key in keys:
            self.tags.get(resource_arn, {}).pop(key, None)

    def modify_load_balancer_attributes(
        self, load_balancer_arn: str, attributes: Sequence[LoadBalancerAttribute]
    ) -> None:
        self._record(
            "ModifyLoadBalancerAttributes",
            load_balancer_arn=load_balancer_arn,
            attributes=list(attributes),
        )
        self.attributes[load_balancer_arn] = list(attributes)

    def associate_web_acl(self, load_balancer_arn: str, web_acl_id: str) -> None:
        self._record("AssociateWebACL", load_balancer_arn=load_balancer_arn, web_acl_id=web_acl_id)
        self.web_acls[load_balancer_arn] = web_acl_id

    def disassociate_web_acl(self, load_balancer_arn: str) -> None:
        self._record("DisassociateWebACL", load_balancer_arn=load_balancer_arn)
        self.web_acls.pop(load_balancer_arn, None)

    def update_security_group_ingress(
        self, group_id: str, current: LoadBalancerOptions, desired: LoadBalancerOptions
    ) -> None:
        self._record(
            "UpdateSecurityGroupIngress", group_id=group_id, current=current, desired=desired
        )
        self.ingress[group_id] = desired
