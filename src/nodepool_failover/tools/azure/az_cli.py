from __future__ import annotations

import asyncio
import os
import shlex
import shutil
import time

from nodepool_failover.core.exceptions import AuthenticationException, ConfigurationError
from nodepool_failover.core.logging import get_logger
from nodepool_failover.core.provisioning.models import ProvisioningRequest

logger = get_logger(__name__)


class AzCliError(RuntimeError):
    pass


class MissingBinaryError(ConfigurationError):
    pass


def nodepool_add_args(request: ProvisioningRequest, az_binary: str = "az") -> list[str]:
    params = request.parameters
    args = [
        az_binary,
        "aks",
        "nodepool",
        "add",
        "--resource-group",
        params.resource_group,
        "--cluster-name",
        params.cluster_name,
        "--name",
        params.pool_name,
        "--node-count",
        str(params.node_count),
        "--node-vm-size",
        request.sku,
        "--mode",
        params.mode,
        "--min-count",
        str(params.min_count),
        "--max-count",
        str(params.max_count),
        "--enable-cluster-autoscaler",
        "--os-sku",
        params.os_sku,
    ]
    if params.zones:
        args.extend(["--zones", *params.zones])
    if params.node_labels:
        args.extend(["--labels", params.node_labels])
    if params.node_taints:
        args.extend(["--node-taints", params.node_taints])
    if params.spot:
        args.extend(["--priority", "Spot"])
    if params.kubernetes_version:
        args.extend(["--kubernetes-version", params.kubernetes_version])
    if params.ssh_key:
        args.extend(["--ssh-key-value", params.ssh_key])
    if params.managed_identity:
        args.extend(["--assign-identity", params.managed_identity])
    return args


def format_command(args: list[str]) -> str:
    return shlex.join(args)


class AzCli:
    def __init__(self, binary: str = "az") -> None:
        self.binary = binary

    def ensure_installed(self) -> str:
        path = shutil.which(self.binary)
        if not path:
            raise MissingBinaryError("az_binary", f"Required command '{self.binary}' not found in PATH")
        return path

    async def ensure_logged_in(self) -> None:
        try:
            await self._run([self.binary, "account", "show", "--output", "none"])
        except AzCliError as exc:
            raise AuthenticationException(
                "Azure CLI isn't logged in. Run 'az login' first."
            ) from exc

    async def add_nodepool(self, request: ProvisioningRequest, timeout: float | None = None) -> str:
        return await self._run(nodepool_add_args(request, self.binary), timeout=timeout)

    async def _run(self, args: list[str], timeout: float | None = None) -> str:
        start = time.perf_counter()
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, "AZURE_CORE_ONLY_SHOW_ERRORS": "1"},
        )
        try:
            out_b, err_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            try:
                proc.kill()
            finally:
                await proc.communicate()
            logger.error("az_cli.exec_timeout", cmd=args[:4], timeout_s=timeout)
            raise TimeoutError(f"'{format_command(args[:4])}' timed out after {timeout}s") from None
        out = out_b.decode("utf-8", errors="ignore")
        err = err_b.decode("utf-8", errors="ignore")
        logger.debug(
            "az_cli.exec_done",
            cmd=args[:4],
            rc=proc.returncode,
            duration_ms=(time.perf_counter() - start) * 1000.0,
            out_len=len(out),
        )
        if proc.returncode != 0:
            raise AzCliError((err + out).strip() or f"{args[0]} exited with status {proc.returncode}")
        return out


class AzCliNodePoolOperation:
    """Provisioning operation backed by ``az aks nodepool add``."""

    def __init__(self, cli: AzCli | None = None) -> None:
        self.cli = cli or AzCli()

    async def preflight(self) -> None:
        self.cli.ensure_installed()
        await self.cli.ensure_logged_in()

    async def __call__(self, request: ProvisioningRequest, *, timeout: float | None = None) -> str:
        return await self.cli.add_nodepool(request, timeout=timeout)
