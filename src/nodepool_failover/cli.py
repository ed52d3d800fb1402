import asyncio
import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated, Any

import click
import typer
from rich.console import Console
from rich.table import Table
from typer.core import TyperGroup

from nodepool_failover.core.config import Settings, get_settings
from nodepool_failover.core.exceptions import (
    AuthenticationException,
    ConfigurationError,
    ExhaustionError,
)
from nodepool_failover.core.logging import configure_logging
from nodepool_failover.core.provisioning import (
    AttemptEventSink,
    AttemptLog,
    Candidate,
    CompositeAttemptSink,
    FallbackExecutor,
    LoggingAttemptSink,
    MetricsAttemptSink,
    NodePoolParameters,
    Provisioned,
    ProvisioningOperation,
    build_candidates,
)
from nodepool_failover.core.provisioning.executor import coerce_parameters
from nodepool_failover.tools.azure import (
    AgentPoolSdkOperation,
    AzCliNodePoolOperation,
    MissingBinaryError,
    build_operation,
    format_command,
    nodepool_add_args,
)

EXIT_EXHAUSTED = 1
EXIT_USAGE = 64
EXIT_MISSING_BINARY = 127


@contextmanager
def _usage_exit_code() -> Iterator[None]:
    try:
        yield
    except click.UsageError as exc:
        exc.exit_code = EXIT_USAGE
        raise


class FailoverGroup(TyperGroup):
    """Reports missing arguments and unknown flags with exit status 64."""

    def make_context(self, *args: Any, **kwargs: Any) -> click.Context:
        with _usage_exit_code():
            return super().make_context(*args, **kwargs)

    def invoke(self, ctx: click.Context) -> Any:
        with _usage_exit_code():
            return super().invoke(ctx)


app = typer.Typer(
    name="nodepool-failover",
    help=(
        "Add an AKS user node pool with a prioritized list of VM SKUs. If the primary SKU "
        "cannot be provisioned, the secondary and tertiary SKUs are tried in order."
    ),
    add_completion=False,
    cls=FailoverGroup,
)
console = Console(stderr=True)

ResourceGroup = Annotated[str, typer.Option("--resource-group", help="Resource group of the cluster")]
ClusterName = Annotated[str, typer.Option("--cluster-name", help="Existing AKS cluster name")]
SkuPrimary = Annotated[str, typer.Option("--sku-primary", help="VM size tried first")]
SkuSecondary = Annotated[str | None, typer.Option("--sku-secondary", help="VM size tried second")]
SkuTertiary = Annotated[str | None, typer.Option("--sku-tertiary", help="VM size tried last")]
PoolName = Annotated[str | None, typer.Option("--pool-name", help="Node pool name")]
NodeCount = Annotated[int | None, typer.Option("--node-count", help="Initial node count")]
MinCount = Annotated[int | None, typer.Option("--min-count", help="Autoscaler lower bound")]
MaxCount = Annotated[int | None, typer.Option("--max-count", help="Autoscaler upper bound")]
Zones = Annotated[
    list[str] | None,
    typer.Option("--zones", help="Availability zone; repeat or separate with spaces/commas"),
]
NodeLabels = Annotated[str | None, typer.Option("--node-labels", help="key=value[,key=value...]")]
NodeTaints = Annotated[
    str | None, typer.Option("--node-taints", help="key=value:effect[,key=value:effect...]")
]
Spot = Annotated[bool, typer.Option("--spot", help="Use Spot priority")]
OsSku = Annotated[str | None, typer.Option("--os-sku", help="Ubuntu, CBLMariner or AzureLinux")]
K8sVersion = Annotated[str | None, typer.Option("--k8s-version", help="Kubernetes version pin")]
SshKey = Annotated[str | None, typer.Option("--ssh-key", help="Path to an SSH public key")]
ManagedIdentity = Annotated[
    str | None, typer.Option("--managed-identity", help="Managed identity resource id")
]


def _split_zones(zones: list[str] | None) -> list[str]:
    out: list[str] = []
    for raw in zones or []:
        out.extend(z for z in raw.replace(",", " ").split() if z)
    return out


def _parameters(settings: Settings, **given: Any) -> NodePoolParameters:
    defaults = settings.nodepool
    values: dict[str, Any] = {
        "pool_name": defaults.pool_name,
        "node_count": defaults.node_count,
        "min_count": defaults.min_count,
        "max_count": defaults.max_count,
        "mode": defaults.mode,
        "os_sku": defaults.os_sku,
    }
    values.update({k: v for k, v in given.items() if v is not None})
    return coerce_parameters(values)


def _setup_logging(settings: Settings) -> None:
    obs = settings.observability
    configure_logging(
        obs,
        context={"service": obs.otel_service_name, "version": settings.app_version},
        force=True,
    )


def _sink(settings: Settings) -> AttemptEventSink:
    sinks: list[AttemptEventSink] = [LoggingAttemptSink()]
    if settings.observability.enable_metrics:
        sinks.append(MetricsAttemptSink())
    return CompositeAttemptSink(sinks)


def _attempt_table(log: AttemptLog) -> Table:
    table = Table(title="SKU attempts")
    table.add_column("#", justify="right")
    table.add_column("SKU")
    table.add_column("Priority")
    table.add_column("Result")
    table.add_column("Diagnostic", overflow="fold")
    for idx, entry in enumerate(log, start=1):
        ok = entry.outcome.succeeded
        table.add_row(
            str(idx),
            entry.candidate.sku,
            entry.candidate.label,
            "[green]success[/green]" if ok else "[red]failed[/red]",
            "" if ok else entry.outcome.output,
        )
    return table


async def _provision(
    operation: ProvisioningOperation,
    candidates: tuple[Candidate, ...],
    parameters: NodePoolParameters,
    sink: AttemptEventSink,
    timeout: float | None,
    preflight: bool,
) -> Provisioned:
    try:
        if preflight and isinstance(operation, AzCliNodePoolOperation):
            await operation.preflight()
        executor = FallbackExecutor(operation, sink=sink, attempt_timeout=timeout)
        result = await executor.run(candidates, parameters)
        return result.unwrap()
    finally:
        if isinstance(operation, AgentPoolSdkOperation):
            await operation.close()


@app.command()
def provision(
    resource_group: ResourceGroup,
    cluster_name: ClusterName,
    sku_primary: SkuPrimary,
    sku_secondary: SkuSecondary = None,
    sku_tertiary: SkuTertiary = None,
    pool_name: PoolName = None,
    node_count: NodeCount = None,
    min_count: MinCount = None,
    max_count: MaxCount = None,
    zones: Zones = None,
    node_labels: NodeLabels = None,
    node_taints: NodeTaints = None,
    spot: Spot = False,
    os_sku: OsSku = None,
    k8s_version: K8sVersion = None,
    ssh_key: SshKey = None,
    managed_identity: ManagedIdentity = None,
    backend: Annotated[
        str | None, typer.Option("--backend", help="cli (az aks nodepool add) or sdk")
    ] = None,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Seconds allowed per SKU attempt")
    ] = None,
    skip_preflight: Annotated[
        bool, typer.Option("--skip-preflight", help="Do not check for az and a signed-in session")
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Print the result as JSON")] = False,
) -> None:
    """Create the node pool, falling back through the SKUs until one succeeds."""
    settings = get_settings()
    _setup_logging(settings)

    try:
        if backend is not None and backend not in ("cli", "sdk"):
            raise ConfigurationError("backend", f"unknown backend '{backend}'")
        if timeout is not None and timeout <= 0:
            raise ConfigurationError("timeout", "must be greater than 0 seconds")
        attempt_timeout = (
            timeout if timeout is not None else settings.provisioning.attempt_timeout_seconds
        )
        candidates = build_candidates(sku_primary, sku_secondary, sku_tertiary)
        parameters = _parameters(
            settings,
            resource_group=resource_group,
            cluster_name=cluster_name,
            pool_name=pool_name,
            node_count=node_count,
            min_count=min_count,
            max_count=max_count,
            zones=_split_zones(zones),
            node_labels=node_labels,
            node_taints=node_taints,
            spot=spot,
            os_sku=os_sku,
            kubernetes_version=k8s_version,
            ssh_key=ssh_key,
            managed_identity=managed_identity,
        )
        operation = build_operation(settings, backend)
        provisioned = asyncio.run(
            _provision(
                operation,
                candidates,
                parameters,
                _sink(settings),
                attempt_timeout,
                settings.provisioning.preflight and not skip_preflight,
            )
        )
    except MissingBinaryError as exc:
        console.print(f"[red]ERROR:[/red] {exc.message}")
        raise typer.Exit(code=EXIT_MISSING_BINARY) from exc
    except ConfigurationError as exc:
        console.print(f"[red]ERROR:[/red] {exc.message}")
        raise typer.Exit(code=EXIT_USAGE) from exc
    except AuthenticationException as exc:
        console.print(f"[red]ERROR:[/red] {exc.message}")
        raise typer.Exit(code=1) from exc
    except ExhaustionError as exc:
        if json_output:
            typer.echo(json.dumps({"ok": False, "attempts": exc.log.to_list()}, indent=2))
        else:
            console.print(_attempt_table(exc.log))
            console.print(f"[red]ERROR:[/red] {exc.message}")
        raise typer.Exit(code=EXIT_EXHAUSTED) from exc

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "ok": True,
                    "sku": provisioned.candidate.sku,
                    "rank": provisioned.candidate.rank,
                    "output": provisioned.output,
                    "attempts": provisioned.log.to_list(),
                },
                indent=2,
            )
        )
        return

    if len(provisioned.log) > 1:
        console.print(_attempt_table(provisioned.log))
    console.print(
        f"[green]Node pool provisioning completed using SKU '{provisioned.candidate.sku}'[/green]"
    )
    typer.echo(provisioned.output)


@app.command()
def plan(
    resource_group: ResourceGroup,
    cluster_name: ClusterName,
    sku_primary: SkuPrimary,
    sku_secondary: SkuSecondary = None,
    sku_tertiary: SkuTertiary = None,
    pool_name: PoolName = None,
    node_count: NodeCount = None,
    min_count: MinCount = None,
    max_count: MaxCount = None,
    zones: Zones = None,
    node_labels: NodeLabels = None,
    node_taints: NodeTaints = None,
    spot: Spot = False,
    os_sku: OsSku = None,
    k8s_version: K8sVersion = None,
    ssh_key: SshKey = None,
    managed_identity: ManagedIdentity = None,
) -> None:
    """Show the SKUs in the order they would be tried and the command for each."""
    settings = get_settings()
    try:
        candidates = build_candidates(sku_primary, sku_secondary, sku_tertiary)
        parameters = _parameters(
            settings,
            resource_group=resource_group,
            cluster_name=cluster_name,
            pool_name=pool_name,
            node_count=node_count,
            min_count=min_count,
            max_count=max_count,
            zones=_split_zones(zones),
            node_labels=node_labels,
            node_taints=node_taints,
            spot=spot,
            os_sku=os_sku,
            kubernetes_version=k8s_version,
            ssh_key=ssh_key,
            managed_identity=managed_identity,
        )
    except ConfigurationError as exc:
        console.print(f"[red]ERROR:[/red] {exc.message}")
        raise typer.Exit(code=EXIT_USAGE) from exc

    for candidate in candidates:
        args = nodepool_add_args(parameters.for_candidate(candidate), settings.provisioning.az_binary)
        typer.echo(f"# {candidate.rank}. {candidate.sku} ({candidate.label})")
        typer.echo(format_command(args))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
