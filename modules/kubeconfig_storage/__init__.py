"""
Kubeconfig Storage Module
S3 bucket for Kubernetes kubeconfig files, encrypted with a dedicated KMS key
"""

from .desired_state import DesiredState, build_desired_state, merge_tags
from .functions import create_kubeconfig_storage_resources, get_kubeconfig_commands

__all__ = [
    "DesiredState",
    "build_desired_state",
    "create_kubeconfig_storage_resources",
    "get_kubeconfig_commands",
    "merge_tags",
]
