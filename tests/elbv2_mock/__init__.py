"""ELBv2 API Mock for reconciler tests.

This package provides an in-memory implementation of the ``Elbv2Client``
protocol plus fake collaborators, so reconcilers can be exercised without
AWS connectivity.

Key Features:
- In-memory rules and load balancers
- Call log for asserting exactly which cloud calls were issued
- Per-operation failure injection
- Fake target groups and listeners with controllable ARNs
- Event recorder that keeps every emitted event

Usage:
    from elbv2_mock import EventLog, FakeTargetGroup, MockElbv2Client

    client = MockElbv2Client()
    client.fail("CreateRule")
    ...
    assert client.operations() == ["CreateRule"]
"""

from .client import LISTENER_ARN, MockCall, MockElbv2Client
from .collaborators import EventLog, FakeListener, FakeTargetGroup

__all__ = [
    "LISTENER_ARN",
    "EventLog",
    "FakeListener",
    "FakeTargetGroup",
    "MockCall",
    "MockElbv2Client",
]
