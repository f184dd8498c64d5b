"""
Kubeconfig Storage Errors
"""


class KubeconfigStorageError(Exception):
    """Base error for kubeconfig storage provisioning"""


class DesiredStateError(KubeconfigStorageError, ValueError):
    """The desired-state graph violates one of its invariants"""


class DanglingReferenceError(DesiredStateError):
    """A record references a logical name that is not declared"""

    def __init__(self, source: str, target: str):
        super().__init__(f"{source} references undeclared resource '{target}'")
        self.source = source
        self.target = target


class DependencyCycleError(DesiredStateError):
    """The dependency graph is not acyclic"""

    def __init__(self, nodes):
        super().__init__(f"Dependency cycle between: {', '.join(sorted(nodes))}")
        self.nodes = sorted(nodes)


class PublicAccessPolicyError(DesiredStateError):
    """A public access block flag is disabled"""


class ReferencedResourceNotFoundError(KubeconfigStorageError):
    """A live resource points at a resource that no longer exists"""

    def __init__(self, source: str, target: str, identifier: str):
        super().__init__(
            f"{source} references {target} '{identifier}' which was not found; "
            f"re-create {target} before applying {source}"
        )
        self.source = source
        self.target = target
        self.identifier = identifier


class NotConvergedError(KubeconfigStorageError):
    """Live state still diverges from the desired state"""

    def __init__(self, pending):
        names = ", ".join(step.name for step in pending)
        super().__init__(f"Resources not converged: {names}")
        self.pending = list(pending)
