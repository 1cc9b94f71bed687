"""
Configuration for kubectl-evict.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Settings from environment variables. Command-line flags take precedence."""

    # Kubernetes
    # Falls back to the client's default kubeconfig, then in-cluster config
    kubeconfig_path: Optional[str] = None
    context: Optional[str] = None

    # Applied to every API call; None waits indefinitely
    request_timeout_seconds: Optional[float] = None

    # Logging (stderr only, stdout is reserved for results)
    log_level: str = "warning"

    class Config:
        env_prefix = "KUBECTL_EVICT_"


settings = Settings()
