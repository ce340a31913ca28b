"""
Configuration module for the razee controller.

Loads configuration from environment variables. The cluster-lock and
impersonation flags are files mounted into the controller's config
directory and are read again on every event.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from kubernetes_asyncio import config as k8s_config
from kubernetes_asyncio.client import Configuration

logger = logging.getLogger(__name__)


def _read_flag(path: str) -> bool:
    """True when the file exists and holds "true" (any case, any padding)."""
    if not os.path.exists(path):
        return False
    with open(path, "r") as f:
        return f.read().strip().lower() == "true"


@dataclass
class FlagConfig:
    """File-based process flags, read fresh on every call."""

    config_dir: str = "./config"

    @property
    def lock_cluster_path(self) -> str:
        return os.path.join(self.config_dir, "lock-cluster")

    @property
    def enable_impersonation_path(self) -> str:
        return os.path.join(self.config_dir, "enable-impersonation")

    def is_cluster_locked(self) -> bool:
        return _read_flag(self.lock_cluster_path)

    def is_impersonation_enabled(self) -> bool:
        return _read_flag(self.enable_impersonation_path)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(config_dir=os.getenv("RAZEE_CONFIG_DIR", "./config"))


@dataclass
class StaticFlags:
    """Flag provider with fixed values, for embedding and tests."""

    cluster_locked: bool = False
    impersonation_enabled: bool = False

    def is_cluster_locked(self) -> bool:
        return self.cluster_locked

    def is_impersonation_enabled(self) -> bool:
        return self.impersonation_enabled


@dataclass
class ControllerConfig:
    """Controller behaviour configuration."""

    finalizer_string: Optional[str] = None
    trusted_namespace: str = "razeedeploy"
    default_user: str = "razeedeploy"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            finalizer_string=os.getenv("FINALIZER_STRING") or None,
            trusted_namespace=os.getenv("TRUSTED_NAMESPACE", "razeedeploy"),
            default_user=os.getenv("DEFAULT_IMPERSONATE_USER", "razeedeploy"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class KubeConfig:
    """
    Kubernetes API server connection configuration.

    Credentials come from the in-cluster service account when available and
    from a kubeconfig file otherwise; api_server only overrides the host.
    """

    api_server: Optional[str] = None
    kubeconfig_path: Optional[str] = None
    context: Optional[str] = None
    request_timeout: int = 30

    async def load_client_configuration(self) -> Configuration:
        """
        Resolve host, TLS and auth settings into a client Configuration.

        Raises:
            ConfigException: If neither in-cluster nor kubeconfig settings
                could be loaded.
        """
        configuration = Configuration()
        try:
            # load_incluster_config() is synchronous in kubernetes-asyncio
            k8s_config.load_incluster_config(client_configuration=configuration)
            logger.info("kube client configured from in-cluster service account")
        except k8s_config.ConfigException:
            await k8s_config.load_kube_config(
                config_file=self.kubeconfig_path,
                context=self.context,
                client_configuration=configuration,
            )
            logger.info("kube client configured from kubeconfig")

        if self.api_server:
            configuration.host = self.api_server
        return configuration

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            api_server=os.getenv("KUBE_API_SERVER") or None,
            kubeconfig_path=os.getenv("KUBECONFIG") or None,
            context=os.getenv("KUBE_CONTEXT") or None,
            request_timeout=int(os.getenv("KUBE_REQUEST_TIMEOUT", "30")),
        )


@dataclass
class Config:
    """Main configuration object."""

    controller: ControllerConfig
    kube: KubeConfig
    flags: FlagConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            controller=ControllerConfig.from_env(),
            kube=KubeConfig.from_env(),
            flags=FlagConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            controller=ControllerConfig(),
            kube=KubeConfig(),
            flags=FlagConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
