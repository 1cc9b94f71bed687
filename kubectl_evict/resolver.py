"""
Resolve a fetched target into the pods it owns.

Pods and pod lists resolve to themselves. Controller objects are turned into a
SelectorSpec (a namespace plus either a label query or a field query) and
resolved with a single pod list request.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog
from kubernetes import client

from .errors import (
    ClusterQueryError,
    NoSelectorDefinedError,
    SelectorTranslationError,
    UnsupportedKindError,
)
from .k8s_client import API_ERRORS, FetchedTarget, request_kwargs

logger = structlog.get_logger(__name__)

# metav1.NamespaceAll
ALL_NAMESPACES = ""

NODE_NAME_FIELD = "spec.nodeName"

_LABEL_NAME_RE = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]$")
_DNS_SUBDOMAIN_RE = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)


@dataclass(frozen=True)
class SelectorSpec:
    """Namespace scope plus exactly one of a label or a field selector."""

    namespace: str
    label_selector: Optional[str] = None
    field_selector: Optional[str] = None

    def __post_init__(self):
        if (self.label_selector is None) == (self.field_selector is None):
            raise ValueError(
                "SelectorSpec needs exactly one of label_selector or field_selector"
            )

    def list_kwargs(self) -> Dict[str, str]:
        if self.label_selector is not None:
            return {"label_selector": self.label_selector}
        return {"field_selector": self.field_selector}


# =========================================================================
# Label selector rendering
# =========================================================================


def _check_label_key(key: str) -> Optional[str]:
    """Return a description of what is wrong with a label key, or None."""
    if not key:
        return "label key must be non-empty"
    prefix, _, name = key.rpartition("/")
    if "/" in key and not prefix:
        return f"prefix part of {key!r} must be non-empty"
    if prefix and (len(prefix) > 253 or not _DNS_SUBDOMAIN_RE.match(prefix)):
        return f"prefix part of {key!r} must be a DNS subdomain"
    if len(name) > 63 or not _LABEL_NAME_RE.match(name):
        return f"name part of {key!r} is not a valid label name"
    return None


def _check_label_value(value: str) -> Optional[str]:
    if value == "":
        return None
    if len(value) > 63 or not _LABEL_NAME_RE.match(value):
        return f"{value!r} is not a valid label value"
    return None


def label_query_from_set(labels: Dict[str, str]) -> str:
    """Equality-based query (labels.SelectorFromSet): k1=v1,k2=v2 sorted by key."""
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))


def label_query_from_selector(selector: client.V1LabelSelector) -> str:
    """
    Translate a V1LabelSelector into the textual label query grammar.

    Raises ValueError with a human readable reason when the selector cannot be
    expressed, mirroring metav1.LabelSelectorAsSelector.
    """
    # (key, rendered requirement) pairs, sorted by key at the end
    requirements = []

    for key, value in (selector.match_labels or {}).items():
        problem = _check_label_key(key) or _check_label_value(value)
        if problem:
            raise ValueError(problem)
        requirements.append((key, f"{key}={value}"))

    for expr in selector.match_expressions or []:
        problem = _check_label_key(expr.key)
        if problem:
            raise ValueError(problem)
        values = list(expr.values or [])
        operator = expr.operator

        if operator in ("In", "NotIn"):
            if not values:
                raise ValueError(
                    f"values for operator {operator} on {expr.key!r} must be non-empty"
                )
            for v in values:
                problem = _check_label_value(v)
                if problem:
                    raise ValueError(problem)
            word = "in" if operator == "In" else "notin"
            rendered = f"{expr.key} {word} ({','.join(sorted(set(values)))})"
        elif operator in ("Exists", "DoesNotExist"):
            if values:
                raise ValueError(
                    f"values for operator {operator} on {expr.key!r} must be empty"
                )
            rendered = expr.key if operator == "Exists" else f"!{expr.key}"
        else:
            raise ValueError(f"{operator!r} is not a valid label selector operator")

        requirements.append((expr.key, rendered))

    requirements.sort(key=lambda r: r[0])
    return ",".join(rendered for _, rendered in requirements)


# =========================================================================
# Per-kind selector derivation
# =========================================================================


def _from_pod_template_selector(target: FetchedTarget) -> SelectorSpec:
    meta = target.obj.metadata
    selector = target.obj.spec.selector if target.obj.spec else None
    if selector is None:
        raise SelectorTranslationError(target.kind, meta.name, "selector is not set")
    try:
        query = label_query_from_selector(selector)
    except ValueError as exc:
        raise SelectorTranslationError(target.kind, meta.name, str(exc)) from exc
    return SelectorSpec(namespace=meta.namespace, label_selector=query)


def _from_replication_controller(target: FetchedTarget) -> SelectorSpec:
    rc = target.obj
    return SelectorSpec(
        namespace=rc.metadata.namespace,
        label_selector=label_query_from_set(rc.spec.selector or {}),
    )


def _from_service(target: FetchedTarget) -> SelectorSpec:
    svc = target.obj
    selector = svc.spec.selector if svc.spec else None
    if not selector:
        raise NoSelectorDefinedError(svc.metadata.name)
    return SelectorSpec(
        namespace=svc.metadata.namespace,
        label_selector=label_query_from_set(selector),
    )


def _from_node(target: FetchedTarget) -> SelectorSpec:
    return SelectorSpec(
        namespace=ALL_NAMESPACES,
        field_selector=f"{NODE_NAME_FIELD}={target.obj.metadata.name}",
    )


_SELECTOR_BUILDERS: Dict[str, Callable[[FetchedTarget], SelectorSpec]] = {
    "ReplicaSet": _from_pod_template_selector,
    "StatefulSet": _from_pod_template_selector,
    "DaemonSet": _from_pod_template_selector,
    "Deployment": _from_pod_template_selector,
    "Job": _from_pod_template_selector,
    "ReplicationController": _from_replication_controller,
    "Service": _from_service,
    "Node": _from_node,
}


def selector_spec_for(target: FetchedTarget) -> SelectorSpec:
    """Derive the pod query for a controller object."""
    builder = _SELECTOR_BUILDERS.get(target.kind)
    if builder is None:
        raise UnsupportedKindError(target.kind)
    return builder(target)


# =========================================================================
# Resolution
# =========================================================================


def list_pods(
    core_v1: client.CoreV1Api,
    spec: SelectorSpec,
    request_timeout: Optional[float] = None,
) -> List[client.V1Pod]:
    """Run the single list query described by spec, preserving server order."""
    kwargs: Dict[str, Any] = {**spec.list_kwargs(), **request_kwargs(request_timeout)}
    try:
        if spec.namespace == ALL_NAMESPACES:
            pod_list = core_v1.list_pod_for_all_namespaces(**kwargs)
        else:
            pod_list = core_v1.list_namespaced_pod(spec.namespace, **kwargs)
    except API_ERRORS as e:
        logger.error(
            "Failed to list pods",
            namespace=spec.namespace or "<all>",
            error=str(e),
            **spec.list_kwargs(),
        )
        raise ClusterQueryError(f"cannot list pods: {e}") from e
    return list(pod_list.items or [])


def pods_for_target(
    core_v1: client.CoreV1Api,
    target: FetchedTarget,
    request_timeout: Optional[float] = None,
) -> List[client.V1Pod]:
    """Return the pods belonging to target, in the order the API lists them."""
    if target.kind == "PodList":
        return list(target.obj.items or [])
    if target.kind == "Pod":
        return [target.obj]

    spec = selector_spec_for(target)
    logger.debug(
        "Resolved selector",
        kind=target.kind,
        name=target.obj.metadata.name,
        namespace=spec.namespace or "<all>",
        **spec.list_kwargs(),
    )
    pods = list_pods(core_v1, spec, request_timeout=request_timeout)
    logger.info(
        "Resolved pods", kind=target.kind, name=target.obj.metadata.name, count=len(pods)
    )
    return pods
