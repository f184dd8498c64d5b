"""
Pulumi modules for kubeconfig storage infrastructure
Function-based modules; each returns a dict of resources and outputs
"""

from .kubeconfig_storage import create_kubeconfig_storage_resources

__all__ = [
    "create_kubeconfig_storage_resources"
]
