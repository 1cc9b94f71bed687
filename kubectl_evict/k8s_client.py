"""
Kubernetes client wrapper for kubectl-evict.

Loads credentials, works out the namespace to operate in, and turns a
``NAME`` / ``TYPE/NAME`` argument or a label selector into a fetched object
that the resolver can work with.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import structlog
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .config import settings
from .errors import ClusterQueryError, UsageError

logger = structlog.get_logger(__name__)

# Failures of a single API round trip: server answered with an error status,
# or the request never completed (connection refused, timeout, ...)
API_ERRORS = (ApiException, HTTPError)

DEFAULT_NAMESPACE = "default"
SERVICE_ACCOUNT_NAMESPACE_PATH = (
    "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
)

# Accepted resource type spellings (singular, plural, short name) -> kind
RESOURCE_KINDS: Dict[str, str] = {
    "pod": "Pod",
    "pods": "Pod",
    "po": "Pod",
    "replicaset": "ReplicaSet",
    "replicasets": "ReplicaSet",
    "rs": "ReplicaSet",
    "replicationcontroller": "ReplicationController",
    "replicationcontrollers": "ReplicationController",
    "rc": "ReplicationController",
    "statefulset": "StatefulSet",
    "statefulsets": "StatefulSet",
    "sts": "StatefulSet",
    "daemonset": "DaemonSet",
    "daemonsets": "DaemonSet",
    "ds": "DaemonSet",
    "deployment": "Deployment",
    "deployments": "Deployment",
    "deploy": "Deployment",
    "job": "Job",
    "jobs": "Job",
    "service": "Service",
    "services": "Service",
    "svc": "Service",
    "node": "Node",
    "nodes": "Node",
    "no": "Node",
}

# API group of each kind; "" is the core group
KIND_GROUPS: Dict[str, str] = {
    "Pod": "",
    "ReplicationController": "",
    "Service": "",
    "Node": "",
    "ReplicaSet": "apps",
    "StatefulSet": "apps",
    "DaemonSet": "apps",
    "Deployment": "apps",
    "Job": "batch",
}

_VERSION_RE = re.compile(r"^v[0-9]+((alpha|beta)[0-9]+)?$")

# kind -> (API attribute, read method, namespaced, plural used in messages)
_READERS: Dict[str, Tuple[str, str, bool, str]] = {
    "Pod": ("core_v1", "read_namespaced_pod", True, "pods"),
    "ReplicaSet": ("apps_v1", "read_namespaced_replica_set", True, "replicasets"),
    "ReplicationController": (
        "core_v1",
        "read_namespaced_replication_controller",
        True,
        "replicationcontrollers",
    ),
    "StatefulSet": ("apps_v1", "read_namespaced_stateful_set", True, "statefulsets"),
    "DaemonSet": ("apps_v1", "read_namespaced_daemon_set", True, "daemonsets"),
    "Deployment": ("apps_v1", "read_namespaced_deployment", True, "deployments"),
    "Job": ("batch_v1", "read_namespaced_job", True, "jobs"),
    "Service": ("core_v1", "read_namespaced_service", True, "services"),
    "Node": ("core_v1", "read_node", False, "nodes"),
}


@dataclass(frozen=True)
class FetchedTarget:
    """A cluster object together with its kind (``Pod``, ``PodList``, ``Node``, ...)."""

    kind: str
    obj: Any


def request_kwargs(request_timeout: Optional[float]) -> Dict[str, Any]:
    """Per-call keyword arguments carrying the request deadline, if any."""
    if request_timeout is None:
        return {}
    return {"_request_timeout": request_timeout}


def parse_resource_arg(resource_arg: str) -> Tuple[str, str]:
    """Split ``NAME`` or ``TYPE/NAME`` into (kind, name). A bare name is a pod."""
    if "/" not in resource_arg:
        if not resource_arg:
            raise UsageError("resource name may not be empty")
        return "Pod", resource_arg

    type_, _, name = resource_arg.partition("/")
    if not type_ or not name or "/" in name:
        raise UsageError(
            f"arguments in resource/name form must have a single resource and name: {resource_arg!r}"
        )
    # deployments.apps/web, deployments.v1.apps/web -> (deployments, apps)
    resource, _, group = type_.lower().partition(".")
    version, _, rest = group.partition(".")
    if rest and _VERSION_RE.match(version):
        group = rest
    kind = RESOURCE_KINDS.get(resource)
    if kind is None or (group and group != KIND_GROUPS[kind]):
        raise UsageError(f"the server doesn't have a resource type \"{type_}\"")
    return kind, name


class K8sClient:
    """
    Kubernetes API access for a single kubectl-evict run.

    Credentials come from the given kubeconfig/context (or settings), the
    default kubeconfig, and finally the in-cluster service account.
    """

    def __init__(
        self,
        kubeconfig_path: Optional[str] = None,
        context: Optional[str] = None,
        request_timeout: Optional[float] = None,
    ):
        self.kubeconfig_path = kubeconfig_path or settings.kubeconfig_path
        self.context = context or settings.context
        self.request_timeout = (
            request_timeout
            if request_timeout is not None
            else settings.request_timeout_seconds
        )
        self.in_cluster = False

        # Load kubeconfig
        try:
            config.load_kube_config(
                config_file=self.kubeconfig_path, context=self.context
            )
        except config.ConfigException:
            if self.kubeconfig_path or self.context:
                raise
            logger.warning("Failed to load kubeconfig, trying in-cluster config")
            config.load_incluster_config()
            self.in_cluster = True

        self.core_v1 = client.CoreV1Api()
        self.apps_v1 = client.AppsV1Api()
        self.batch_v1 = client.BatchV1Api()

    def current_namespace(self) -> str:
        """Namespace of the active context, or of the pod we run in."""
        if self.in_cluster:
            try:
                with open(SERVICE_ACCOUNT_NAMESPACE_PATH) as f:
                    return f.read().strip() or DEFAULT_NAMESPACE
            except OSError:
                return DEFAULT_NAMESPACE

        contexts, active = config.list_kube_config_contexts(
            config_file=self.kubeconfig_path
        )
        if self.context:
            active = next((c for c in contexts if c["name"] == self.context), active)
        namespace = (active or {}).get("context", {}).get("namespace")
        return namespace or DEFAULT_NAMESPACE

    # =========================================================================
    # FETCH OPERATIONS
    # =========================================================================

    def get_object(self, kind: str, name: str, namespace: str) -> FetchedTarget:
        """Read a single object of a supported kind."""
        api_attr, method, namespaced, plural = _READERS[kind]
        read = getattr(getattr(self, api_attr), method)
        args = (name, namespace) if namespaced else (name,)
        try:
            obj = read(*args, **request_kwargs(self.request_timeout))
        except ApiException as e:
            if e.status == 404:
                raise ClusterQueryError(f'{plural} "{name}" not found') from e
            logger.error(
                "Failed to get object", kind=kind, name=name, namespace=namespace, error=str(e)
            )
            raise ClusterQueryError(f"cannot get {plural} \"{name}\": {e.reason}") from e
        except HTTPError as e:
            logger.error("Failed to reach the API server", kind=kind, name=name, error=str(e))
            raise ClusterQueryError(f"cannot get {plural} \"{name}\": {e}") from e
        return FetchedTarget(kind=kind, obj=obj)

    def list_pods(self, namespace: str, label_selector: str) -> FetchedTarget:
        """List pods matching a label selector in one namespace."""
        try:
            pod_list = self.core_v1.list_namespaced_pod(
                namespace,
                label_selector=label_selector,
                **request_kwargs(self.request_timeout),
            )
        except API_ERRORS as e:
            logger.error(
                "Failed to list pods",
                namespace=namespace,
                label_selector=label_selector,
                error=str(e),
            )
            raise ClusterQueryError(f"cannot list pods: {e}") from e
        return FetchedTarget(kind="PodList", obj=pod_list)
