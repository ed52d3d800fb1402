from __future__ import annotations

from azure.core.credentials_async import AsyncTokenCredential
from azure.identity.aio import AzureCliCredential as AzureCliCredentialAsync
from azure.identity.aio import DefaultAzureCredential as DefaultAzureCredentialAsync
from azure.identity.aio import ManagedIdentityCredential as ManagedIdentityCredentialAsync

from nodepool_failover.core.config import AzureConfig
from nodepool_failover.core.logging import get_logger

logger = get_logger(__name__)


def build_async_credential(cfg: AzureConfig) -> AsyncTokenCredential:
    """Pick a credential for an already signed-in session; never prompts."""
    logger.debug("build_credential", auth_mode=cfg.auth_mode)
    if cfg.auth_mode == "managed_identity":
        return ManagedIdentityCredentialAsync(client_id=cfg.user_assigned_identity_client_id)
    if cfg.auth_mode == "azure_cli":
        return AzureCliCredentialAsync()
    return DefaultAzureCredentialAsync(managed_identity_client_id=cfg.user_assigned_identity_client_id)
