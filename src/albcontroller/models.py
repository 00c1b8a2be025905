"""Pydantic snapshots of ELBv2 objects and routing intent.

Field aliases are the ELBv2 API member names, so a boto3 response dict
validates directly into a snapshot and ``to_api()`` produces request
parameters. Unknown response members are ignored: only what the controller
manages takes part in comparisons.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_PRIORITY = "default"

FORWARD_ACTION = "forward"

HOST_HEADER_FIELD = "host-header"
PATH_PATTERN_FIELD = "path-pattern"

VALID_SCHEMES = {"internet-facing", "internal"}
VALID_IP_ADDRESS_TYPES = {"ipv4", "dualstack"}

ServicePort = int | str


class ApiModel(BaseModel):
    """Base for snapshots exchanged with the ELBv2 API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        """Convert to ELBv2 request parameters."""
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Rules
# =============================================================================


class RuleCondition(ApiModel):
    """One rule condition. Order of ``values`` is significant."""

    field: str = Field(alias="Field")
    values: list[str] = Field(default_factory=list, alias="Values")


class RuleAction(ApiModel):
    """Rule action. The controller only ever writes forward actions."""

    type: str = Field(FORWARD_ACTION, alias="Type")
    target_group_arn: str | None = Field(None, alias="TargetGroupArn")


class ElbRule(ApiModel):
    """A listener rule as reported by, or sent to, ELBv2."""

    rule_arn: str | None = Field(None, alias="RuleArn")
    priority: str = Field(alias="Priority")
    conditions: list[RuleCondition] = Field(default_factory=list, alias="Conditions")
    actions: list[RuleAction] = Field(default_factory=list, alias="Actions")
    is_default: bool = Field(False, alias="IsDefault")

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: Any) -> str:
        text = str(v)
        if text == DEFAULT_PRIORITY:
            return text
        if not text.isdigit() or int(text) < 1:
            raise ValueError(f"priority must be 'default' or a positive integer: {v!r}")
        return str(int(text))


class ServiceBinding(BaseModel):
    """Cluster service a rule forwards to.

    ``target_port`` 0 is the unset value carried by rules created before
    target ports were recorded.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str = ""
    port: ServicePort = 0
    target_port: int = Field(0, alias="targetPort")


class DesiredRuleOptions(BaseModel):
    """Routing intent for one rule. Priority 0 denotes the listener default rule."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    priority: Annotated[int, Field(ge=0, le=50000)]
    hostname: str = ""
    ignore_host_header: bool | None = Field(None, alias="ignoreHostHeader")
    path: str = ""
    svc_name: str = Field(alias="serviceName")
    svc_port: ServicePort = Field(alias="servicePort")
    target_port: int = Field(0, alias="targetPort")


class CurrentRuleOptions(BaseModel):
    """A cloud-reported rule plus the service binding recorded for it."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    rule: ElbRule
    svc_name: str = Field("", alias="serviceName")
    svc_port: ServicePort = Field(0, alias="servicePort")
    target_port: int = Field(0, alias="targetPort")


# =============================================================================
# Load balancer
# =============================================================================


class Tag(ApiModel):
    """Resource tag."""

    key: str = Field(alias="Key")
    value: str = Field("", alias="Value")


class LoadBalancerAttribute(ApiModel):
    """Load balancer attribute. ELBv2 reports every value as a string."""

    key: str = Field(alias="Key")
    value: str = Field(alias="Value")

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str:
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)


class LoadBalancerSnapshot(ApiModel):
    """The ARN-bearing load balancer object."""

    load_balancer_arn: str | None = Field(None, alias="LoadBalancerArn")
    load_balancer_name: str = Field(alias="LoadBalancerName")
    dns_name: str | None = Field(None, alias="DNSName")
    scheme: str = Field("internet-facing", alias="Scheme")
    ip_address_type: str = Field("ipv4", alias="IpAddressType")
    security_groups: list[str] = Field(default_factory=list, alias="SecurityGroups")
    subnets: list[str] = Field(default_factory=list, alias="Subnets")

    @model_validator(mode="before")
    @classmethod
    def subnets_from_availability_zones(cls, data: Any) -> Any:
        # describe_load_balancers reports subnets only inside AvailabilityZones
        if isinstance(data, dict) and "Subnets" not in data and "subnets" not in data:
            zones = data.get("AvailabilityZones") or []
            subnet_ids = [z["SubnetId"] for z in zones if "SubnetId" in z]
            if subnet_ids:
                data = {**data, "Subnets": subnet_ids}
        return data

    @field_validator("scheme")
    @classmethod
    def validate_scheme(cls, v: str) -> str:
        if v not in VALID_SCHEMES:
            raise ValueError(f"scheme must be one of {sorted(VALID_SCHEMES)}")
        return v

    @field_validator("ip_address_type")
    @classmethod
    def validate_ip_address_type(cls, v: str) -> str:
        if v not in VALID_IP_ADDRESS_TYPES:
            raise ValueError(f"ipAddressType must be one of {sorted(VALID_IP_ADDRESS_TYPES)}")
        return v


class LoadBalancerOptions(BaseModel):
    """Connectivity options not carried on the load balancer object itself.

    ``ports`` is ``None`` until the managed security group has been read.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    ports: list[int] | None = None
    inbound_cidrs: list[str] = Field(default_factory=list, alias="inboundCidrs")
    web_acl_id: str | None = Field(None, alias="webAclId")
    managed_sg: str | None = Field(None, alias="managedSecurityGroup")
    managed_instance_sg: str | None = Field(None, alias="managedInstanceSecurityGroup")


class LoadBalancerSide(BaseModel):
    """Everything known about one side (current or desired) of a load balancer."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    load_balancer: LoadBalancerSnapshot = Field(alias="loadBalancer")
    tags: list[Tag] = Field(default_factory=list)
    attributes: list[LoadBalancerAttribute] = Field(default_factory=list)
    options: LoadBalancerOptions = Field(default_factory=LoadBalancerOptions)


class LoadBalancerDocument(BaseModel):
    """Current and desired state of one load balancer aggregate.

    A missing side carries the usual meaning: no ``current`` means not yet
    created, no ``desired`` means it should be deleted.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Annotated[str, Field(min_length=1)]
    current: LoadBalancerSide | None = None
    desired: LoadBalancerSide | None = None

    @model_validator(mode="after")
    def require_one_side(self) -> LoadBalancerDocument:
        if self.current is None and self.desired is None:
            raise ValueError("at least one of current or desired is required")
        return self


class KnownTargetGroup(BaseModel):
    """A target group whose cloud state is already settled.

    Satisfies the target-group contract with a fixed ARN; reconciling it is
    a no-op. Used when target groups are read from a snapshot file.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    svc_name: str = Field(alias="serviceName")
    svc_port: ServicePort = Field(alias="servicePort")
    arn: str | None = Field(None, alias="targetGroupArn")

    def current_arn(self) -> str | None:
        return self.arn

    def reconcile(self, options: Any) -> None:
        return None


class RulesDocument(BaseModel):
    """Rules of one listener: routing intent, cloud-reported state, targets."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    listener_arn: str | None = Field(None, alias="listenerArn")
    desired: list[DesiredRuleOptions] = Field(default_factory=list)
    current: list[CurrentRuleOptions] = Field(default_factory=list)
    target_groups: list[KnownTargetGroup] = Field(default_factory=list, alias="targetGroups")
