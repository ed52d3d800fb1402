from __future__ import annotations

from nodepool_failover.core.config import Settings

from .agent_pools import AgentPoolSdkOperation, agent_pool_model
from .az_cli import (
    AzCli,
    AzCliError,
    AzCliNodePoolOperation,
    MissingBinaryError,
    format_command,
    nodepool_add_args,
)


def build_operation(settings: Settings, backend: str | None = None) -> AzCliNodePoolOperation | AgentPoolSdkOperation:
    chosen = backend or settings.provisioning.backend
    if chosen == "sdk":
        return AgentPoolSdkOperation(
            settings.azure.subscription_id, azure_config=settings.azure
        )
    return AzCliNodePoolOperation(AzCli(settings.provisioning.az_binary))


__all__ = [
    "AgentPoolSdkOperation",
    "AzCli",
    "AzCliError",
    "AzCliNodePoolOperation",
    "MissingBinaryError",
    "agent_pool_model",
    "build_operation",
    "format_command",
    "nodepool_add_args",
]
