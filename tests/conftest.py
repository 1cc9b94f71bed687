"""Shared test fixtures for kubectl-evict."""

from unittest.mock import MagicMock, patch

import pytest
import structlog
from kubernetes import client


# ---------------------------------------------------------------------------
# Environment fixture (needed by any test that instantiates Settings)
# ---------------------------------------------------------------------------


@pytest.fixture
def settings_env(monkeypatch):
    """Clear kubectl-evict environment so Settings sees only its defaults."""
    for var in (
        "KUBECTL_EVICT_KUBECONFIG_PATH",
        "KUBECTL_EVICT_CONTEXT",
        "KUBECTL_EVICT_REQUEST_TIMEOUT_SECONDS",
        "KUBECTL_EVICT_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _reset_logging():
    """The CLI reconfigures structlog onto the runner's stderr; undo that."""
    yield
    structlog.reset_defaults()


# ---------------------------------------------------------------------------
# Mock K8s API objects
# ---------------------------------------------------------------------------


def _eviction_resource(group: str, version: str) -> client.V1APIResource:
    return client.V1APIResource(
        name="pods/eviction",
        kind="Eviction",
        group=group,
        version=version,
        namespaced=True,
        singular_name="",
        verbs=["create"],
    )


@pytest.fixture
def stable_discovery():
    """Core API resource list advertising policy/v1 evictions."""
    return client.V1APIResourceList(
        group_version="v1",
        resources=[
            client.V1APIResource(
                name="pods",
                kind="Pod",
                namespaced=True,
                singular_name="pod",
                verbs=["get", "list"],
            ),
            _eviction_resource("policy", "v1"),
        ],
    )


@pytest.fixture
def beta_discovery():
    """Core API resource list from a cluster that only serves policy/v1beta1."""
    return client.V1APIResourceList(
        group_version="v1",
        resources=[_eviction_resource("policy", "v1beta1")],
    )


@pytest.fixture
def core_v1(stable_discovery):
    """CoreV1Api stand-in; serialization goes through a real ApiClient."""
    api = MagicMock()
    api.api_client = client.ApiClient()
    api.get_api_resources.return_value = stable_discovery
    return api


@pytest.fixture
def mock_k8s_client(settings_env):
    """Return a K8sClient with all K8s API objects mocked."""
    with patch("kubectl_evict.k8s_client.config") as mock_config:
        mock_config.list_kube_config_contexts.return_value = (
            [{"name": "dev", "context": {"cluster": "dev", "namespace": "team-a"}}],
            {"name": "dev", "context": {"cluster": "dev", "namespace": "team-a"}},
        )
        with patch("kubectl_evict.k8s_client.client") as mock_client:
            mock_client.CoreV1Api.return_value = MagicMock()
            mock_client.AppsV1Api.return_value = MagicMock()
            mock_client.BatchV1Api.return_value = MagicMock()

            from kubectl_evict.k8s_client import K8sClient

            k = K8sClient()
            yield k
