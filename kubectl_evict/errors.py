"""
Exceptions raised by kubectl-evict.

Every error is terminal for the run: nothing here is retried or downgraded.
"""

from typing import Optional


class EvictCommandError(Exception):
    """Base class for all kubectl-evict failures."""


class UsageError(EvictCommandError):
    """Malformed or ambiguous invocation."""


class NamespaceScopeError(EvictCommandError):
    """A node target was combined with an explicit namespace."""


class ResolutionError(EvictCommandError):
    """The target could not be resolved into pods."""


class SelectorTranslationError(ResolutionError):
    """A controller's label selector could not be turned into a label query."""

    def __init__(self, kind: str, name: str, reason: str):
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(f"invalid label selector on {kind}/{name}: {reason}")


class NoSelectorDefinedError(ResolutionError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"invalid service '{name}': Service is defined without a selector"
        )


class UnsupportedKindError(ResolutionError):
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"selector for {kind} not implemented")


class ClusterQueryError(ResolutionError):
    """A fetch or list request against the cluster failed."""


class NoResourcesFoundError(ResolutionError):
    def __init__(self, namespace: str):
        self.namespace = namespace
        super().__init__(f"no resources found in {namespace} namespace")


class EvictionError(EvictCommandError):
    """The cluster rejected (or never answered) an eviction request."""

    def __init__(
        self,
        namespace: str,
        name: str,
        reason: str,
        status: Optional[int] = None,
    ):
        self.namespace = namespace
        self.name = name
        self.reason = reason
        self.status = status
        detail = f" (HTTP {status})" if status else ""
        super().__init__(f"cannot evict pod {namespace}/{name}{detail}: {reason}")
