"""Change classification between current and desired snapshots.

Pure functions: no cloud calls, no logging. Each one answers "does this
aspect need a cloud call?" so reconcilers can issue only the calls that are
actually required.

UNORDERED COLLECTIONS:
Tags and inbound CIDRs are compared through a content hash computed over the
sorted members, so cloud-assigned ordering never reads as drift. Attributes
are compared over a filtered, sorted projection that ignores keys the
controller does not manage and values sitting at their cloud default.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from enum import Flag, auto

from .models import LoadBalancerAttribute, LoadBalancerOptions, RuleCondition, Tag

# Attributes the controller manages, with the value ELBv2 reports when unset
MANAGED_ATTRIBUTE_DEFAULTS: dict[str, str] = {
    "access_logs.s3.bucket": "",
    "access_logs.s3.enabled": "false",
    "access_logs.s3.prefix": "",
    "deletion_protection.enabled": "false",
    "idle_timeout.timeout_seconds": "60",
    "routing.http2.enabled": "true",
}


class LoadBalancerChange(Flag):
    """Independently actionable aspects of a load balancer.

    Each member maps to its own cloud call, so a change set tells the
    reconciler exactly which calls to issue and which to skip.
    """

    NONE = 0
    SECURITY_GROUPS = auto()
    SUBNETS = auto()
    TAGS = auto()
    SCHEME = auto()
    ATTRIBUTES = auto()
    INBOUND_CIDRS = auto()
    PORTS = auto()
    IP_ADDRESS_TYPE = auto()
    WEB_ACL_ASSOCIATION = auto()


def content_hash(items: Iterable[str]) -> str:
    """Order-independent SHA-256 over a collection of strings."""
    digest = hashlib.sha256()
    for item in sorted(items):
        digest.update(item.encode("utf-8"))
        # Separator keeps ["ab", "c"] and ["a", "bc"] apart
        digest.update(b"\x00")
    return digest.hexdigest()


def tags_hash(tags: Iterable[Tag] | None) -> str:
    # Keys and values may both contain "=", so encode each pair as a JSON array
    return content_hash(json.dumps([t.key, t.value]) for t in tags or ())


def tags_equal(current: Iterable[Tag] | None, desired: Iterable[Tag] | None) -> bool:
    """Tag sets are equal when they hold the same key/value pairs in any order."""
    return tags_hash(current) == tags_hash(desired)


def filtered_attributes(
    attributes: Iterable[LoadBalancerAttribute] | None,
) -> list[LoadBalancerAttribute]:
    """Managed attributes that differ from their default, sorted by key."""
    kept = [
        a
        for a in attributes or ()
        if a.key in MANAGED_ATTRIBUTE_DEFAULTS and MANAGED_ATTRIBUTE_DEFAULTS[a.key] != a.value
    ]
    return sorted(kept, key=lambda a: (a.key, a.value))


def attributes_equal(
    current: Iterable[LoadBalancerAttribute] | None,
    desired: Iterable[LoadBalancerAttribute] | None,
) -> bool:
    return filtered_attributes(current) == filtered_attributes(desired)


def inbound_cidrs_equal(current: Sequence[str] | None, desired: Sequence[str] | None) -> bool:
    return content_hash(current or ()) == content_hash(desired or ())


def web_acl_changed(current: str | None, desired: str | None) -> bool:
    """Both absent is unchanged, one absent is changed, else compare ids."""
    if current is None and desired is None:
        return False
    if current is None or desired is None:
        return True
    return current != desired


def options_changed(
    current: LoadBalancerOptions, desired: LoadBalancerOptions
) -> LoadBalancerChange:
    """Classify connectivity option differences.

    Ports and inbound CIDRs are only compared once the managed security group
    has been read (current ports and managed group both known); before that
    every pass would report a change.
    """
    changes = LoadBalancerChange.NONE

    if current.ports is not None and current.managed_sg is not None:
        if not inbound_cidrs_equal(current.inbound_cidrs, desired.inbound_cidrs):
            changes |= LoadBalancerChange.INBOUND_CIDRS

        if sorted(current.ports) != sorted(desired.ports or []):
            changes |= LoadBalancerChange.PORTS

    if web_acl_changed(current.web_acl_id, desired.web_acl_id):
        changes |= LoadBalancerChange.WEB_ACL_ASSOCIATION

    return changes


def _conditions_by_field(conditions: Iterable[RuleCondition] | None) -> dict[str, list[str]]:
    return {c.field: list(c.values) for c in conditions or ()}


def conditions_equal(
    c1: Iterable[RuleCondition] | None, c2: Iterable[RuleCondition] | None
) -> bool:
    """Compare two condition sets.

    Order of conditions and of fields is irrelevant; order within a value
    list is significant. A field present on only one side makes the sets
    unequal, whichever side carries it.
    """
    return _conditions_by_field(c1) == _conditions_by_field(c2)
