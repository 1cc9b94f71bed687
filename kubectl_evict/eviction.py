"""
Pod eviction through the ``pods/eviction`` subresource.

Clusters serve the eviction subresource either as ``policy/v1`` or, on older
releases, only as ``policy/v1beta1``; sending the wrong version fails. The
version is discovered once with :func:`negotiate_eviction_client` and the
returned client is used for every pod of the run.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Protocol, Tuple

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException

from .errors import EvictionError
from .k8s_client import API_ERRORS, request_kwargs

logger = structlog.get_logger(__name__)

EVICTION_SUBRESOURCE = "pods/eviction"
EVICTION_KIND = "Eviction"

POLICY_V1 = ("policy", "v1")
POLICY_V1BETA1 = ("policy", "v1beta1")

# metav1.DryRunAll
DRY_RUN_ALL = "All"


@dataclass(frozen=True)
class EvictionOptions:
    """Grace period (negative means server default) and dry-run flag."""

    grace_period_seconds: int = -1
    dry_run: bool = False

    def delete_options(self) -> client.V1DeleteOptions:
        opts = client.V1DeleteOptions()
        if self.grace_period_seconds >= 0:
            opts.grace_period_seconds = self.grace_period_seconds
        if self.dry_run:
            opts.dry_run = [DRY_RUN_ALL]
        return opts

    @property
    def verb(self) -> str:
        return "evicted (dry-run)" if self.dry_run else "evicted"


class EvictionClient(Protocol):
    group_version: Tuple[str, str]

    def evict_pod(self, pod: client.V1Pod, options: EvictionOptions) -> None: ...


class _EvictionClientBase:
    group_version: Tuple[str, str] = ("", "")

    def __init__(self, core_v1: client.CoreV1Api, request_timeout: Optional[float] = None):
        self.core_v1 = core_v1
        self.request_timeout = request_timeout

    @property
    def api_version(self) -> str:
        return "/".join(self.group_version)

    def _build_eviction(self, pod: client.V1Pod, options: EvictionOptions) -> Any:
        raise NotImplementedError

    def evict_pod(self, pod: client.V1Pod, options: EvictionOptions) -> None:
        """Submit one eviction. Errors are raised as EvictionError, never retried."""
        namespace, name = pod.metadata.namespace, pod.metadata.name
        body = self._build_eviction(pod, options)
        try:
            self.core_v1.create_namespaced_pod_eviction(
                name, namespace, body, **request_kwargs(self.request_timeout)
            )
        except ApiException as e:
            logger.error(
                "Eviction rejected",
                namespace=namespace,
                name=name,
                api_version=self.api_version,
                status=e.status,
                reason=e.reason,
            )
            raise EvictionError(
                namespace, name, _api_exception_message(e), status=e.status
            ) from e
        except API_ERRORS as e:
            logger.error(
                "Eviction request failed", namespace=namespace, name=name, error=str(e)
            )
            raise EvictionError(namespace, name, str(e)) from e

        logger.info(
            "Evicted pod",
            namespace=namespace,
            name=name,
            api_version=self.api_version,
            dry_run=options.dry_run,
        )


class PolicyV1EvictionClient(_EvictionClientBase):
    """Evicts through the stable policy/v1 Eviction."""

    group_version = POLICY_V1

    def _build_eviction(self, pod, options):
        return client.V1Eviction(
            api_version=self.api_version,
            kind=EVICTION_KIND,
            metadata=client.V1ObjectMeta(
                name=pod.metadata.name, namespace=pod.metadata.namespace
            ),
            delete_options=options.delete_options(),
        )


class PolicyV1beta1EvictionClient(_EvictionClientBase):
    """
    Evicts through the deprecated policy/v1beta1 Eviction.

    The client library no longer ships a model for it, so the body is sent as
    a plain manifest.
    """

    group_version = POLICY_V1BETA1

    def _build_eviction(self, pod, options):
        sanitize = self.core_v1.api_client.sanitize_for_serialization
        return {
            "apiVersion": self.api_version,
            "kind": EVICTION_KIND,
            "metadata": {
                "name": pod.metadata.name,
                "namespace": pod.metadata.namespace,
            },
            "deleteOptions": sanitize(options.delete_options()),
        }


def _api_exception_message(e: ApiException) -> str:
    """Prefer the server's Status message (e.g. the disruption budget denial)."""
    if e.body:
        try:
            status = json.loads(e.body)
        except (TypeError, ValueError):
            status = None
        if isinstance(status, dict) and status.get("message"):
            return status["message"]
    return e.reason or str(e)


# =========================================================================
# Version negotiation
# =========================================================================


def eviction_group_version(
    core_v1: client.CoreV1Api, request_timeout: Optional[float] = None
) -> Optional[Tuple[str, str]]:
    """
    Return the (group, version) the core API advertises for pods/eviction.

    Discovery is advisory: a failed request is logged and reported as None,
    exactly like a cluster that does not list the subresource.
    """
    try:
        resource_list = core_v1.get_api_resources(**request_kwargs(request_timeout))
    except Exception as e:
        logger.warning("Eviction API discovery failed", error=str(e))
        return None

    for resource in resource_list.resources or []:
        if (
            resource.name == EVICTION_SUBRESOURCE
            and resource.kind == EVICTION_KIND
            and resource.group
            and resource.version
        ):
            return (resource.group, resource.version)
    return None


def negotiate_eviction_client(
    core_v1: client.CoreV1Api, request_timeout: Optional[float] = None
) -> EvictionClient:
    """Pick the eviction client for this cluster. Call once per run."""
    group_version = eviction_group_version(core_v1, request_timeout=request_timeout)
    if group_version == POLICY_V1:
        eviction_client: EvictionClient = PolicyV1EvictionClient(core_v1, request_timeout)
    else:
        eviction_client = PolicyV1beta1EvictionClient(core_v1, request_timeout)
    logger.debug(
        "Negotiated eviction API",
        discovered="/".join(group_version) if group_version else None,
        selected="/".join(eviction_client.group_version),
    )
    return eviction_client


# =========================================================================
# Dispatch
# =========================================================================


def evict_pods(
    eviction_client: EvictionClient,
    pods: Iterable[client.V1Pod],
    options: EvictionOptions,
    echo: Callable[[str], Any] = print,
) -> int:
    """
    Evict pods strictly in order, reporting each success through echo.

    The first failure propagates; pods after it are left untouched and pods
    before it stay evicted. Returns the number of pods evicted.
    """
    evicted = 0
    for pod in pods:
        eviction_client.evict_pod(pod, options)
        evicted += 1
        echo(f"pod {pod.metadata.namespace}/{pod.metadata.name} {options.verb}")
    return evicted
