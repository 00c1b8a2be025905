"""Tests for the two-phase reconcile pass."""

import pytest

from albcontroller.driver import reconcile_pass
from albcontroller.loadbalancer import LoadBalancer
from albcontroller.models import DesiredRuleOptions, LoadBalancerSnapshot, RuleAction
from albcontroller.rule import Rules
from albcontroller.state import DualState
from elbv2_mock import LISTENER_ARN, EventLog, FakeListener, FakeTargetGroup, MockElbv2Client

TG_ARN = "arn:aws:elasticloadbalancing:us-east-1:123456789012:targetgroup/web/73e2d6bc24d8a067"


def desired_rules(*priorities: int, svc_name: str = "web") -> Rules:
    return Rules.from_options(
        desired=[
            DesiredRuleOptions(
                priority=p,
                hostname="foo.com",
                ignore_host_header=False,
                path=f"/{p}",
                svc_name=svc_name,
                svc_port=80,
            )
            for p in priorities
        ]
    )


def new_load_balancer(
    target_groups: list[FakeTargetGroup], listeners: list[FakeListener]
) -> LoadBalancer:
    return LoadBalancer(
        "default/web",
        lb=DualState(desired=LoadBalancerSnapshot(load_balancer_name="web", subnets=["subnet-a"])),
        target_groups=target_groups,
        listeners=listeners,
    )


class TestReconcilePass:
    """Tests for reconcile_pass."""

    @pytest.mark.asyncio
    async def test_rules_see_target_groups_created_in_same_pass(self) -> None:
        """Test that rules resolve ARNs of target groups created earlier in the pass."""
        elbv2 = MockElbv2Client()
        tg = FakeTargetGroup(svc_name="web", svc_port=80, create_arn=TG_ARN)
        listener = FakeListener(create_arn=LISTENER_ARN, rules=desired_rules(1, 2, 3))
        lb = new_load_balancer([tg], [listener])

        result = await reconcile_pass(lb, elbv2)

        assert result.success
        assert result.rules_reconciled == 3
        assert result.end_time is not None
        assert tg.reconcile_count == 1
        assert listener.reconcile_count == 1
        creates = elbv2.calls_for("CreateRule")
        assert len(creates) == 3
        for call in creates:
            assert call.params["actions"] == [RuleAction(type="forward", target_group_arn=TG_ARN)]
            assert call.params["listener_arn"] == LISTENER_ARN
        assert elbv2.operations()[0] == "CreateLoadBalancer"

    @pytest.mark.asyncio
    async def test_load_balancer_failure_skips_children(self) -> None:
        """Test that a failed load balancer aborts its subtree."""
        elbv2 = MockElbv2Client()
        elbv2.fail("CreateLoadBalancer")
        tg = FakeTargetGroup(svc_name="web", svc_port=80, create_arn=TG_ARN)
        listener = FakeListener(create_arn=LISTENER_ARN, rules=desired_rules(1))
        lb = new_load_balancer([tg], [listener])

        result = await reconcile_pass(lb, elbv2)

        assert not result.success
        assert list(result.errors) == ["loadbalancer/default/web"]
        assert tg.reconcile_count == 0
        assert listener.reconcile_count == 0
        assert elbv2.calls_for("CreateRule") == []

    @pytest.mark.asyncio
    async def test_failed_listener_skips_only_its_rules(self) -> None:
        """Test that a sibling listener still gets its rules reconciled."""
        elbv2 = MockElbv2Client()
        tg = FakeTargetGroup(svc_name="web", svc_port=80, create_arn=TG_ARN)
        broken = FakeListener(create_arn="arn:listener/broken", rules=desired_rules(1), fail=True)
        healthy = FakeListener(create_arn=LISTENER_ARN, rules=desired_rules(2))
        lb = new_load_balancer([tg], [broken, healthy])

        result = await reconcile_pass(lb, elbv2)

        assert list(result.errors) == ["listener/0"]
        assert result.rules_reconciled == 1
        assert [c.params["priority"] for c in elbv2.calls_for("CreateRule")] == [2]

    @pytest.mark.asyncio
    async def test_failed_target_group_degrades_rules(self) -> None:
        """Test that rules still run when their target group failed."""
        elbv2 = MockElbv2Client()
        tg = FakeTargetGroup(svc_name="web", svc_port=80, create_arn=TG_ARN, fail=True)
        listener = FakeListener(create_arn=LISTENER_ARN, rules=desired_rules(1))
        lb = new_load_balancer([tg], [listener])

        result = await reconcile_pass(lb, elbv2)

        assert list(result.errors) == ["targetgroup/web:80"]
        create = elbv2.calls_for("CreateRule")[0]
        assert create.params["actions"][0].target_group_arn is None

    @pytest.mark.asyncio
    async def test_rule_failures_are_collected(self) -> None:
        """Test that every failing rule is reported and the rest are counted."""
        elbv2 = MockElbv2Client()
        elbv2.fail("CreateRule")
        listener = FakeListener(create_arn=LISTENER_ARN, rules=desired_rules(1, 2))
        lb = new_load_balancer([], [listener])

        result = await reconcile_pass(lb, elbv2, max_concurrency=1)

        assert sorted(result.errors) == [f"rule/{LISTENER_ARN}/1", f"rule/{LISTENER_ARN}/2"]
        assert result.rules_reconciled == 0
        assert [r.state.current for r in listener.rules] == [None, None]

    @pytest.mark.asyncio
    async def test_deleted_load_balancer_stops_pass(self) -> None:
        """Test that children are not reconciled after the load balancer is deleted."""
        elbv2 = MockElbv2Client()
        listener = FakeListener(arn=LISTENER_ARN)
        lb = LoadBalancer(
            "default/web",
            lb=DualState(
                current=LoadBalancerSnapshot(
                    load_balancer_arn="arn:aws:elasticloadbalancing:us-east-1:123456789012:"
                    "loadbalancer/app/web/50dc6c495c0c9188",
                    load_balancer_name="web",
                )
            ),
            listeners=[listener],
        )

        result = await reconcile_pass(lb, elbv2)

        assert result.success
        assert lb.deleted
        assert listener.reconcile_count == 0
        assert elbv2.operations() == ["DeleteLoadBalancer"]

    @pytest.mark.asyncio
    async def test_events_are_recorded(self) -> None:
        """Test that every transition produces an event."""
        elbv2 = MockElbv2Client()
        events = EventLog()
        tg = FakeTargetGroup(svc_name="web", svc_port=80, create_arn=TG_ARN)
        listener = FakeListener(create_arn=LISTENER_ARN, rules=desired_rules(1))
        lb = new_load_balancer([tg], [listener])

        await reconcile_pass(lb, elbv2, eventf=events)

        assert events.reasons() == ["CREATE", "CREATE"]
        assert events.of_type("Warning") == []
