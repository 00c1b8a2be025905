"""Cloud API collaborator for ELBv2 and the services around it.

Reconcilers talk to the cloud only through the ``Elbv2Client`` protocol.
``Boto3Elbv2Client`` implements it on top of boto3; tests substitute an
in-memory fake. Every botocore failure leaves this module as a
``CloudAPIError`` so callers catch one exception type.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .models import (
    ElbRule,
    LoadBalancerAttribute,
    LoadBalancerOptions,
    LoadBalancerSnapshot,
    RuleAction,
    RuleCondition,
    Tag,
)

logger = logging.getLogger(__name__)


class CloudAPIError(Exception):
    """Raised when a cloud API call fails.

    Attributes:
        operation: API operation name, e.g. ``CreateRule``.
        code: AWS error code when the service returned one.
    """

    def __init__(self, operation: str, message: str, code: str | None = None) -> None:
        super().__init__(f"{operation} failed: {code + ': ' if code else ''}{message}")
        self.operation = operation
        self.code = code
        self.message = message


class Elbv2Client(Protocol):
    """Cloud calls the reconcilers depend on."""

    def create_rule(
        self,
        actions: Sequence[RuleAction],
        conditions: Sequence[RuleCondition],
        listener_arn: str | None,
        priority: int,
    ) -> ElbRule: ...

    def modify_rule(
        self,
        rule_arn: str | None,
        actions: Sequence[RuleAction],
        conditions: Sequence[RuleCondition],
    ) -> list[ElbRule]: ...

    def delete_rule(self, rule_arn: str | None) -> None: ...

    def create_load_balancer(
        self, desired: LoadBalancerSnapshot, tags: Sequence[Tag]
    ) -> LoadBalancerSnapshot: ...

    def delete_load_balancer(self, load_balancer_arn: str) -> None: ...

    def set_security_groups(
        self, load_balancer_arn: str, security_groups: Sequence[str]
    ) -> None: ...

    def set_subnets(self, load_balancer_arn: str, subnets: Sequence[str]) -> None: ...

    def set_ip_address_type(self, load_balancer_arn: str, ip_address_type: str) -> None: ...

    def add_tags(self, resource_arn: str, tags: Sequence[Tag]) -> None: ...

    def remove_tags(self, resource_arn: str, keys: Sequence[str]) -> None: ...

    def modify_load_balancer_attributes(
        self, load_balancer_arn: str, attributes: Sequence[LoadBalancerAttribute]
    ) -> None: ...

    def associate_web_acl(self, load_balancer_arn: str, web_acl_id: str) -> None: ...

    def disassociate_web_acl(self, load_balancer_arn: str) -> None: ...

    def update_security_group_ingress(
        self, group_id: str, current: LoadBalancerOptions, desired: LoadBalancerOptions
    ) -> None: ...


def _call(operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
    """Invoke a boto3 operation, translating botocore errors."""
    try:
        return fn(**kwargs)
    except ClientError as e:
        error = e.response.get("Error", {})
        raise CloudAPIError(
            operation, error.get("Message", str(e)), code=error.get("Code")
        ) from e
    except BotoCoreError as e:
        raise CloudAPIError(operation, str(e)) from e


def _ip_permissions(ports: Sequence[int], cidrs: Sequence[str]) -> list[dict[str, Any]]:
    ipv4 = [{"CidrIp": c} for c in cidrs if ":" not in c]
    ipv6 = [{"CidrIpv6": c} for c in cidrs if ":" in c]
    return [
        {"IpProtocol": "tcp", "FromPort": p, "ToPort": p, "IpRanges": ipv4, "Ipv6Ranges": ipv6}
        for p in sorted(ports)
    ]


class Boto3Elbv2Client:
    """``Elbv2Client`` backed by boto3 clients for elbv2, ec2 and waf-regional."""

    def __init__(self, elbv2: Any, ec2: Any = None, waf: Any = None) -> None:
        self._elbv2 = elbv2
        self._ec2 = ec2
        self._waf = waf

    @classmethod
    def for_region(cls, region: str) -> Boto3Elbv2Client:
        """Build clients for one region using the default credential chain."""
        session = boto3.Session(region_name=region)
        return cls(
            elbv2=session.client("elbv2"),
            ec2=session.client("ec2"),
            waf=session.client("waf-regional"),
        )

    # Rules

    def create_rule(
        self,
        actions: Sequence[RuleAction],
        conditions: Sequence[RuleCondition],
        listener_arn: str | None,
        priority: int,
    ) -> ElbRule:
        response = _call(
            "CreateRule",
            self._elbv2.create_rule,
            ListenerArn=listener_arn,
            Priority=priority,
            Actions=[a.to_api() for a in actions],
            Conditions=[c.to_api() for c in conditions],
        )
        return ElbRule.model_validate(response["Rules"][0])

    def modify_rule(
        self,
        rule_arn: str | None,
        actions: Sequence[RuleAction],
        conditions: Sequence[RuleCondition],
    ) -> list[ElbRule]:
        response = _call(
            "ModifyRule",
            self._elbv2.modify_rule,
            RuleArn=rule_arn,
            Actions=[a.to_api() for a in actions],
            Conditions=[c.to_api() for c in conditions],
        )
        return [ElbRule.model_validate(r) for r in response.get("Rules", [])]

    def delete_rule(self, rule_arn: str | None) -> None:
        _call("DeleteRule", self._elbv2.delete_rule, RuleArn=rule_arn)

    # Load balancers

    def create_load_balancer(
        self, desired: LoadBalancerSnapshot, tags: Sequence[Tag]
    ) -> LoadBalancerSnapshot:
        response = _call(
            "CreateLoadBalancer",
            self._elbv2.create_load_balancer,
            Name=desired.load_balancer_name,
            Subnets=list(desired.subnets),
            SecurityGroups=list(desired.security_groups),
            Scheme=desired.scheme,
            IpAddressType=desired.ip_address_type,
            Tags=[t.to_api() for t in tags],
        )
        return LoadBalancerSnapshot.model_validate(response["LoadBalancers"][0])

    def delete_load_balancer(self, load_balancer_arn: str) -> None:
        _call(
            "DeleteLoadBalancer",
            self._elbv2.delete_load_balancer,
            LoadBalancerArn=load_balancer_arn,
        )

    def set_security_groups(self, load_balancer_arn: str, security_groups: Sequence[str]) -> None:
        _call(
            "SetSecurityGroups",
            self._elbv2.set_security_groups,
            LoadBalancerArn=load_balancer_arn,
            SecurityGroups=list(security_groups),
        )

    def set_subnets(self, load_balancer_arn: str, subnets: Sequence[str]) -> None:
        _call(
            "SetSubnets",
            self._elbv2.set_subnets,
            LoadBalancerArn=load_balancer_arn,
            Subnets=list(subnets),
        )

    def set_ip_address_type(self, load_balancer_arn: str, ip_address_type: str) -> None:
        _call(
            "SetIpAddressType",
            self._elbv2.set_ip_address_type,
            LoadBalancerArn=load_balancer_arn,
            IpAddressType=ip_address_type,
        )

    def add_tags(self, resource_arn: str, tags: Sequence[Tag]) -> None:
        _call(
            "AddTags",
            self._elbv2.add_tags,
            ResourceArns=[resource_arn],
            Tags=[t.to_api() for t in tags],
        )

    def remove_tags(self, resource_arn: str, keys: Sequence[str]) -> None:
        _call(
            "RemoveTags",
            self._elbv2.remove_tags,
            ResourceArns=[resource_arn],
            TagKeys=list(keys),
        )

    def modify_load_balancer_attributes(
        self, load_balancer_arn: str, attributes: Sequence[LoadBalancerAttribute]
    ) -> None:
        _call(
            "ModifyLoadBalancerAttributes",
            self._elbv2.modify_load_balancer_attributes,
            LoadBalancerArn=load_balancer_arn,
            Attributes=[a.to_api() for a in attributes],
        )

    # WAF

    def associate_web_acl(self, load_balancer_arn: str, web_acl_id: str) -> None:
        if self._waf is None:
            raise CloudAPIError("AssociateWebACL", "no waf-regional client configured")
        _call(
            "AssociateWebACL",
            self._waf.associate_web_acl,
            WebACLId=web_acl_id,
            ResourceArn=load_balancer_arn,
        )

    def disassociate_web_acl(self, load_balancer_arn: str) -> None:
        if self._waf is None:
            raise CloudAPIError("DisassociateWebACL", "no waf-regional client configured")
        _call(
            "DisassociateWebACL",
            self._waf.disassociate_web_acl,
            ResourceArn=load_balancer_arn,
        )

    # Managed security group

    def update_security_group_ingress(
        self, group_id: str, current: LoadBalancerOptions, desired: LoadBalancerOptions
    ) -> None:
        """Replace the ingress permissions of the managed security group."""
        if self._ec2 is None:
            raise CloudAPIError("AuthorizeSecurityGroupIngress", "no ec2 client configured")

        old = _ip_permissions(current.ports or [], current.inbound_cidrs)
        new = _ip_permissions(desired.ports or [], desired.inbound_cidrs)

        if old:
            _call(
                "RevokeSecurityGroupIngress",
                self._ec2.revoke_security_group_ingress,
                GroupId=group_id,
                IpPermissions=old,
            )
        if new:
            _call(
                "AuthorizeSecurityGroupIngress",
                self._ec2.authorize_security_group_ingress,
                GroupId=group_id,
                IpPermissions=new,
            )
        logger.debug(
            "Updated managed security group ingress",
            extra={"group_id": group_id, "revoked": len(old), "authorized": len(new)},
        )
