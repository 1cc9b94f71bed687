"""
Command-line entry point: ``kubectl evict (POD | TYPE/NAME)``.
"""

import logging
import sys
from typing import Callable, List, Optional

import structlog
import typer
from kubernetes import config

from .config import settings
from .errors import (
    EvictCommandError,
    NamespaceScopeError,
    NoResourcesFoundError,
    UsageError,
)
from .eviction import EvictionOptions, evict_pods, negotiate_eviction_client
from .k8s_client import K8sClient, parse_resource_arg
from .resolver import pods_for_target

logger = structlog.get_logger(__name__)

EVICT_USAGE = "evict (POD | TYPE/NAME)"
EVICT_USAGE_ERROR = (
    f"expected '{EVICT_USAGE}'.\n"
    "POD or TYPE/NAME is a required argument for the evict command"
)

EVICT_EXAMPLES = """
Examples:

  # Evict a pod nginx
  kubectl evict nginx

  # Evict all pods defined by label app=nginx
  kubectl evict -l app=nginx

  # Evict all pods of a deployment named nginx
  kubectl evict deployment/nginx

  # Evict all pods from node worker-1
  kubectl evict node/worker-1
"""

app = typer.Typer(add_completion=False, pretty_exceptions_enable=False)


def configure_logging(level: str) -> None:
    """Send structlog output to stderr; stdout only carries eviction results."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.WARNING)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def validate_args(resources: List[str], selector: str) -> Optional[str]:
    """Return the resource argument, enforcing exactly one of it or a selector."""
    if len(resources) == 0:
        if not selector:
            raise UsageError(EVICT_USAGE_ERROR)
        return None
    if len(resources) == 1:
        if selector:
            raise UsageError("only a selector (-l) or a resource name is allowed")
        return resources[0]
    raise UsageError(EVICT_USAGE_ERROR)


def run_evict(
    k8s: K8sClient,
    resource_arg: Optional[str],
    selector: str,
    options: EvictionOptions,
    namespace: Optional[str] = None,
    echo: Callable[[str], None] = typer.echo,
) -> int:
    """
    Resolve the target and evict its pods. Returns the number evicted.

    ``namespace`` is an explicit override; without it the current context's
    namespace is used.
    """
    effective_namespace = namespace or k8s.current_namespace()

    if selector:
        target = k8s.list_pods(effective_namespace, selector)
        if not target.obj.items:
            raise NoResourcesFoundError(effective_namespace)
    else:
        kind, name = parse_resource_arg(resource_arg)
        if kind == "Node" and namespace:
            raise NamespaceScopeError(
                "--namespace should not be specified with node target"
            )
        target = k8s.get_object(kind, name, effective_namespace)

    pods = pods_for_target(k8s.core_v1, target, request_timeout=k8s.request_timeout)
    eviction_client = negotiate_eviction_client(
        k8s.core_v1, request_timeout=k8s.request_timeout
    )
    evicted = evict_pods(eviction_client, pods, options, echo=echo)
    logger.info("Eviction complete", kind=target.kind, count=evicted, dry_run=options.dry_run)
    return evicted


@app.command(
    help="Evict a pod or specified resource from the cluster.",
    epilog=EVICT_EXAMPLES,
    context_settings={"help_option_names": ["-h", "--help"]},
)
def evict(
    resources: Optional[List[str]] = typer.Argument(
        None, metavar="(POD | TYPE/NAME)", show_default=False
    ),
    selector: str = typer.Option(
        "", "--selector", "-l", help="Selector (label query) to filter on."
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="If true, submit server-side request without persisting the resource.",
    ),
    grace_period: int = typer.Option(
        -1,
        "--grace-period",
        "--grace-period-seconds",
        help="Period of time in seconds given to the resource to terminate gracefully. Ignored if negative.",
    ),
    namespace: Optional[str] = typer.Option(
        None, "--namespace", "-n", help="If present, the namespace scope for this request."
    ),
    kubeconfig: Optional[str] = typer.Option(
        None, "--kubeconfig", help="Path to the kubeconfig file to use."
    ),
    context: Optional[str] = typer.Option(
        None, "--context", help="The name of the kubeconfig context to use."
    ),
) -> None:
    configure_logging(settings.log_level)
    try:
        resource_arg = validate_args(resources or [], selector)
        k8s = K8sClient(kubeconfig_path=kubeconfig, context=context)
        run_evict(
            k8s,
            resource_arg,
            selector,
            EvictionOptions(grace_period_seconds=grace_period, dry_run=dry_run),
            namespace=namespace,
        )
    except (EvictCommandError, config.ConfigException) as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1)


def main():
    app()
