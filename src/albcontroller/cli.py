"""ALB controller CLI (albctl).

Plans and applies reconciliation for snapshot files.

Usage:
    albctl plan rules rules.yaml     # Show what each rule would do
    albctl plan lb lb.yaml           # Show load balancer changes
    albctl apply rules rules.yaml    # Reconcile rules against AWS
    albctl apply lb lb.yaml          # Reconcile a load balancer against AWS
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from .config import Config, ConfigurationError
from .driver import reconcile_pass
from .elbv2 import Boto3Elbv2Client
from .events import LoggingEventRecorder
from .loadbalancer import LoadBalancer, change_names
from .log import prettify, setup_logging
from .models import RulesDocument
from .rule import PlannedAction, ReconcileOptions, RuleReconcileError, Rules
from .spec_loader import SpecLoadError, load_load_balancer, load_rules
from .targetgroup import TargetGroups

PLAN_COLORS = {
    PlannedAction.CREATE: "green",
    PlannedAction.MODIFY: "yellow",
    PlannedAction.DELETE: "red",
}


def _load_config() -> Config:
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    setup_logging(config.log_level_number, json_output=config.enable_audit_logging)
    return config


def _rules_from_document(doc: RulesDocument) -> tuple[Rules, TargetGroups]:
    rules = Rules.from_options(doc.desired, doc.current)
    target_groups = TargetGroups(doc.target_groups)
    for rule in rules:
        rule.resolve_targets(target_groups)
    return rules, target_groups


def _echo_rule_plan(rules: Rules) -> int:
    pending = 0
    for rule in rules:
        action = rule.planned_action()
        if action in PLAN_COLORS:
            pending += 1
        conditions = (rule.state.desired or rule.state.current).conditions
        click.secho(
            f"{rule.priority:>8}  {action.value:<14} {prettify(conditions)}",
            fg=PLAN_COLORS.get(action),
        )
    return pending


@click.group()
@click.version_option(version="0.1.0", prog_name="albctl")
def cli() -> None:
    """ALB controller tooling.

    Plan and apply load balancer and listener rule reconciliation from
    YAML snapshot files.
    """
    pass


# =============================================================================
# Plan Commands
# =============================================================================


@cli.group()
def plan() -> None:
    """Show planned changes without calling AWS."""
    pass


@plan.command("rules")
@click.argument("path", type=click.Path(path_type=Path))
def plan_rules(path: Path) -> None:
    """Plan listener rule changes from a rules snapshot."""
    try:
        doc = load_rules(path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    rules, _ = _rules_from_document(doc)
    pending = _echo_rule_plan(rules)
    click.echo(f"\n{pending} of {len(rules)} rule(s) need a cloud call")


@plan.command("lb")
@click.argument("path", type=click.Path(path_type=Path))
def plan_lb(path: Path) -> None:
    """Plan load balancer changes from a load balancer snapshot."""
    try:
        doc = load_load_balancer(path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    lb = LoadBalancer.from_document(doc)
    click.echo(f"{lb.id}: {lb.planned_action().value}")
    for name in change_names(lb.planned_changes()):
        click.echo(f"  - {name}")


# =============================================================================
# Apply Commands
# =============================================================================


@cli.group()
def apply() -> None:
    """Reconcile snapshots against AWS (honours DRY_RUN)."""
    pass


@apply.command("rules")
@click.argument("path", type=click.Path(path_type=Path))
def apply_rules(path: Path) -> None:
    """Reconcile the rules of one listener."""
    config = _load_config()
    try:
        doc = load_rules(path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    rules, target_groups = _rules_from_document(doc)
    if config.dry_run:
        _echo_rule_plan(rules)
        click.echo("\nDRY_RUN set, nothing applied")
        return

    options = ReconcileOptions(
        elbv2=Boto3Elbv2Client.for_region(config.aws_region),
        listener_arn=doc.listener_arn,
        target_groups=target_groups,
        eventf=LoggingEventRecorder(f"listener/{doc.listener_arn}"),
    )
    try:
        rules.reconcile(options)
    except RuleReconcileError as e:
        raise click.ClickException(str(e)) from e
    click.secho(f"✓ Reconciled {len(rules)} rule(s)", fg="green")


@apply.command("lb")
@click.argument("path", type=click.Path(path_type=Path))
def apply_lb(path: Path) -> None:
    """Reconcile one load balancer aggregate."""
    config = _load_config()
    try:
        doc = load_load_balancer(path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    lb = LoadBalancer.from_document(doc)
    if config.dry_run:
        click.echo(f"{lb.id}: {lb.planned_action().value}")
        click.echo("DRY_RUN set, nothing applied")
        return

    result = asyncio.run(
        reconcile_pass(
            lb,
            Boto3Elbv2Client.for_region(config.aws_region),
            eventf=LoggingEventRecorder(f"loadbalancer/{lb.id}"),
            max_concurrency=config.max_concurrent_rule_reconciles,
        )
    )
    if not result.success:
        for key, error in result.errors.items():
            click.secho(f"✗ {key}: {error}", fg="red", err=True)
        raise click.ClickException(f"{len(result.errors)} entity reconcile(s) failed")
    click.secho(f"✓ Reconciled {lb.id} in {result.duration_seconds:.1f}s", fg="green")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
