"""Operator CLI (rscope) for inspecting and committing machine scopes.

Usage:
    rscope inspect NAMESPACE NAME             # Show scope state as YAML
    rscope inspect NAMESPACE NAME -l role=cp  # Restrict siblings by label
    rscope finalize NAMESPACE NAME            # Recompute Ready and commit

Settings come from the same environment variables as the controller
(see Config.from_env).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import click
import yaml

from .cluster import ClusterScope, ClusterScopeParams
from .config import Config, ConfigurationError
from .errors import ScopeError
from .logging_setup import setup_logging
from .machine import MachineScope, MachineScopeParams
from .models import (
    CLUSTER_KIND,
    CLUSTER_NAME_LABEL,
    MACHINE_KIND,
    Cluster,
    GenericMachine,
    ProviderMachine,
)
from .store import ResourceStore, StoreError, load_store

OUTPUT_FORMATS = ("yaml", "json")


def parse_selector(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated ``key=value`` options into a label map.

    Raises:
        click.BadParameter: If an entry is not ``key=value``.
    """
    labels: dict[str, str] = {}
    for value in values:
        key, sep, label_value = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got '{value}'", param_hint="--selector")
        labels[key] = label_value
    return labels


async def build_scope(
    config: Config, store: ResourceStore, namespace: str, name: str
) -> MachineScope:
    """Load a provider machine with its owners and build its scope."""
    provider_kind = config.provider_machine_kind()
    provider_machine = ProviderMachine.model_validate(
        await store.get(namespace, name, provider_kind)
    )

    owner = next(
        (
            ref
            for ref in provider_machine.metadata.owner_references
            if ref.kind == MACHINE_KIND.kind and ref.api_version.startswith(f"{MACHINE_KIND.group}/")
        ),
        None,
    )
    if owner is None:
        raise click.ClickException(f"{namespace}/{name} has no owner Machine yet")
    machine = GenericMachine.model_validate(await store.get(namespace, owner.name, MACHINE_KIND))

    cluster_name = (
        provider_machine.metadata.labels.get(CLUSTER_NAME_LABEL) or machine.spec.cluster_name
    )
    if not cluster_name:
        raise click.ClickException(f"{namespace}/{name} does not belong to a cluster")
    cluster = Cluster.model_validate(await store.get(namespace, cluster_name, CLUSTER_KIND))

    cluster_scope = ClusterScope(
        ClusterScopeParams(store=store, cluster=cluster, machine_kind=provider_kind)
    )
    return MachineScope(
        MachineScopeParams.from_config(
            config,
            store=store,
            machine=machine,
            provider_machine=provider_machine,
            cluster_scope=cluster_scope,
        )
    )


async def _inspect(
    config: Config, store: ResourceStore, namespace: str, name: str, labels: dict[str, str]
) -> dict[str, Any]:
    scope = await build_scope(config, store, namespace, name)
    latest = await scope.find_latest_machine(labels)
    status = scope.provider_machine.status
    return {
        "machine": scope.key,
        "cluster": scope.cluster_scope.name,
        "providerID": scope.provider_machine.spec.provider_id,
        "datacenterID": scope.datacenter_id,
        "bootstrapDataSecret": scope.machine.spec.bootstrap.data_secret_name,
        "failed": scope.has_failed(),
        "failureReason": status.failure_reason,
        "failureMessage": status.failure_message,
        "conditions": [
            {"type": c.type, "status": c.status.value, "reason": c.reason}
            for c in status.conditions
        ],
        "siblings": await scope.count_machines(labels),
        "latestSibling": latest.metadata.name if latest is not None else None,
    }


async def _finalize(config: Config, store: ResourceStore, namespace: str, name: str) -> str:
    scope = await build_scope(config, store, namespace, name)
    await scope.finalize()
    return scope.key


@click.group()
@click.version_option(version="0.1.0", prog_name="rscope")
@click.option("--verbose", "-v", is_flag=True, help="Log to stdout at the configured level")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Inspect and commit Cluster API machine scopes."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    if verbose:
        setup_logging(json_output=config.json_logs, level=config.log_level_value)
    else:
        logging.getLogger().setLevel(logging.WARNING)

    ctx.obj = config


@cli.command()
@click.argument("namespace")
@click.argument("name")
@click.option(
    "--selector", "-l", multiple=True, help="Extra sibling label as key=value (repeatable)"
)
@click.option(
    "--output", "-o", type=click.Choice(OUTPUT_FORMATS), default="yaml", help="Output format"
)
@click.pass_obj
def inspect(
    config: Config, namespace: str, name: str, selector: tuple[str, ...], output: str
) -> None:
    """Show the scope of provider machine NAME in NAMESPACE."""
    labels = parse_selector(selector)
    try:
        store = load_store(config)
        report = asyncio.run(_inspect(config, store, namespace, name, labels))
    except (ConfigurationError, StoreError, ScopeError) as e:
        raise click.ClickException(str(e)) from e

    if output == "json":
        click.echo(json.dumps(report, indent=2))
    else:
        click.echo(yaml.safe_dump(report, sort_keys=False), nl=False)


@cli.command()
@click.argument("namespace")
@click.argument("name")
@click.pass_obj
def finalize(config: Config, namespace: str, name: str) -> None:
    """Recompute Ready for provider machine NAME and commit it."""
    try:
        store = load_store(config)
        key = asyncio.run(_finalize(config, store, namespace, name))
    except (ConfigurationError, StoreError, ScopeError) as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Finalized {key}")
