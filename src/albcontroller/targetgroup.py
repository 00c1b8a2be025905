"""Target-group collaborator contract.

Target groups are reconciled by their own subsystem. Rules only need to find
the group serving a backend and read its ARN once it has been created.
"""

from __future__ import annotations

from typing import Any, Protocol

from .models import ServicePort


class TargetGroup(Protocol):
    """A target group owned by a load balancer."""

    svc_name: str
    svc_port: ServicePort

    def current_arn(self) -> str | None:
        """ARN of the cloud-side group, ``None`` until it has been created."""
        ...

    def reconcile(self, options: Any) -> None: ...


class TargetGroups(list[TargetGroup]):
    """Target groups of one load balancer, in declaration order."""

    def lookup_by_backend(self, svc_name: str, svc_port: ServicePort) -> int:
        """Index of the group serving ``svc_name:svc_port``, or -1."""
        for i, tg in enumerate(self):
            if tg.svc_name == svc_name and tg.svc_port == svc_port:
                return i
        return -1
