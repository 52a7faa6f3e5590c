from pathlib import Path
from typing import Optional

from ape.api import PluginConfig
from pydantic_settings import SettingsConfigDict

from .addresses import ChainInfo


class CoordinatorConfig(PluginConfig):
    chains: dict[str, ChainInfo] = {}
    """Chains to add to (or override in) the default registry, keyed by chain ID."""

    data_folder: Optional[Path] = None
    """Where transaction and Safe records live. Defaults to the Ape data folder."""

    transaction_service_url: Optional[str] = None
    """Use this Safe Transaction Service for every chain."""

    request_timeout: int = 10
    """Seconds before a remote request fails with a retryable error."""

    model_config = SettingsConfigDict(env_prefix="APE_SAFE_COORDINATOR_")
