from __future__ import annotations

import asyncio
import json
from typing import Any

from azure.core.credentials_async import AsyncTokenCredential
from azure.mgmt.containerservice.aio import ContainerServiceClient
from azure.mgmt.containerservice.models import AgentPool

from nodepool_failover.core.azure_auth import build_async_credential
from nodepool_failover.core.config import AzureConfig
from nodepool_failover.core.exceptions import ConfigurationError
from nodepool_failover.core.logging import get_logger
from nodepool_failover.core.provisioning.models import ProvisioningRequest

logger = get_logger(__name__)


def agent_pool_model(request: ProvisioningRequest) -> AgentPool:
    params = request.parameters
    spot: dict[str, Any] = {}
    if params.spot:
        spot = {
            "scale_set_priority": "Spot",
            "scale_set_eviction_policy": "Delete",
            "spot_max_price": -1,
        }
    return AgentPool(
        count=params.node_count,
        vm_size=request.sku,
        mode=params.mode,
        type_properties_type="VirtualMachineScaleSets",
        os_type="Linux",
        os_sku=params.os_sku,
        enable_auto_scaling=True,
        min_count=params.min_count,
        max_count=params.max_count,
        availability_zones=list(params.zones) or None,
        node_labels=params.labels or None,
        node_taints=params.taints or None,
        orchestrator_version=params.kubernetes_version,
        **spot,
    )


class AgentPoolSdkOperation:
    """Provisioning operation backed by the container service management SDK."""

    def __init__(
        self,
        subscription_id: str | None,
        credential: AsyncTokenCredential | None = None,
        *,
        azure_config: AzureConfig | None = None,
        client: ContainerServiceClient | None = None,
    ) -> None:
        if not subscription_id and client is None:
            raise ConfigurationError(
                "azure.subscription_id", "subscription id is required for the sdk backend"
            )
        self.subscription_id = subscription_id
        self._credential = credential
        self._azure_config = azure_config or AzureConfig()
        self._client = client

    def _get_client(self) -> ContainerServiceClient:
        if self._client is None:
            if self._credential is None:
                self._credential = build_async_credential(self._azure_config)
            self._client = ContainerServiceClient(self._credential, self.subscription_id)
        return self._client

    async def __call__(self, request: ProvisioningRequest, *, timeout: float | None = None) -> str:
        params = request.parameters
        if params.ssh_key or params.managed_identity:
            logger.warning(
                "agent_pools.cluster_level_settings_ignored",
                ssh_key=bool(params.ssh_key),
                managed_identity=bool(params.managed_identity),
            )
        client = self._get_client()

        async def _create() -> Any:
            poller = await client.agent_pools.begin_create_or_update(
                params.resource_group,
                params.cluster_name,
                params.pool_name,
                agent_pool_model(request),
            )
            return await poller.result()

        pool = await asyncio.wait_for(_create(), timeout=timeout)
        return json.dumps(pool.as_dict(), default=str)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        if self._credential is not None:
            close = getattr(self._credential, "close", None)
            if callable(close):
                await close()
