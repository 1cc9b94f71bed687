"""
kubectl-evict - evict pods through the Kubernetes eviction API.

Resolves a pod, a label selector, or a controller object (Deployment,
StatefulSet, Node, ...) into its pods and evicts them one by one, respecting
PodDisruptionBudgets, grace periods and server-side dry runs.
"""

__version__ = "0.1.0"
