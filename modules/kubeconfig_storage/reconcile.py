"""
Reconciliation Planning
Compares desired-state records with observed live state and works out what a
reconciler has to do for each resource, in dependency order.
"""

from enum import Enum
from typing import Dict, List, Mapping, NamedTuple, Optional, Tuple

import pulumi

from .desired_state import BucketEncryptionSpec, BucketSpec, DesiredState
from .errors import NotConvergedError, ReferencedResourceNotFoundError


class ResourceStatus(str, Enum):
    ABSENT = "absent"
    DIVERGED = "diverged"
    CONVERGED = "converged"


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOTHING = "nothing"


class _Unknown:
    def __repr__(self) -> str:
        return "(known after apply)"


# identifier of a resource that does not exist yet
UNKNOWN = _Unknown()

_SYMBOLS = {
    Action.CREATE: "+",
    Action.UPDATE: "~",
    Action.REPLACE: "-/+",
    Action.DELETE: "-",
    Action.NOTHING: " ",
}


class PlanStep(NamedTuple):
    name: str
    kind: str
    status: ResourceStatus
    action: Action
    changed: Tuple[str, ...] = ()


def changed_fields(desired_view: Mapping[str, object], live_view: Mapping[str, object]) -> List[str]:
    return [
        field for field, value in desired_view.items()
        if value is UNKNOWN or live_view.get(field) != value
    ]


def classify(desired_view: Mapping[str, object], live_view: Optional[Mapping[str, object]]) -> ResourceStatus:
    if live_view is None:
        return ResourceStatus.ABSENT
    if changed_fields(desired_view, live_view):
        return ResourceStatus.DIVERGED
    return ResourceStatus.CONVERGED


def _resolver(state: DesiredState, known: Mapping[str, str]):
    def resolve(name: str):
        identifier = state.identifier(name, known)
        return UNKNOWN if identifier is None else identifier
    return resolve


def plan(state: DesiredState, live: Mapping[str, Optional[Mapping[str, object]]]) -> List[PlanStep]:
    """
    Plan the actions that converge live state on the desired state

    Args:
        state: Validated desired state
        live: Logical name -> observed live view, None when absent

    Returns:
        One PlanStep per resource in creation order
    """
    known: Dict[str, str] = {}
    steps = []

    for name in state.creation_order():
        spec = state[name]
        live_view = live.get(name)
        desired_view = spec.comparable(_resolver(state, known))
        status = classify(desired_view, live_view)

        if status is ResourceStatus.ABSENT:
            action, changed = Action.CREATE, tuple(desired_view)
        elif status is ResourceStatus.CONVERGED:
            action, changed = Action.NOTHING, ()
        else:
            changed = tuple(changed_fields(desired_view, live_view))
            if any(field in spec.replace_on for field in changed):
                action = Action.REPLACE
            else:
                action = Action.UPDATE

        # a created or replaced resource gets a new identifier
        if action in (Action.NOTHING, Action.UPDATE) and live_view.get("arn"):
            known[name] = live_view["arn"]

        steps.append(PlanStep(name, spec.kind, status, action, changed))

    return steps


def destroy_plan(state: DesiredState, live: Mapping[str, Optional[Mapping[str, object]]]) -> List[PlanStep]:
    """Delete every present resource, dependents before their dependencies"""
    steps = []
    for name in state.destruction_order():
        spec = state[name]
        if live.get(name) is None:
            steps.append(PlanStep(name, spec.kind, ResourceStatus.ABSENT, Action.NOTHING))
            continue

        if isinstance(spec, BucketSpec) and not spec.force_destroy:
            pulumi.log.warn(f"Bucket {spec.name} has force_destroy disabled; it must be empty to be deleted")
        status = classify(spec.comparable(_resolver(state, {})), live[name])
        steps.append(PlanStep(name, spec.kind, status, Action.DELETE))
    return steps


def summarize(steps: List[PlanStep]) -> Dict[str, int]:
    counts = {action.value: 0 for action in Action}
    for step in steps:
        counts[step.action.value] += 1
    return counts


def is_converged(steps: List[PlanStep]) -> bool:
    return all(step.action is Action.NOTHING for step in steps)


def describe_step(step: PlanStep) -> str:
    line = f"{_SYMBOLS[step.action]:>3} {step.action.value:<8} {step.name} ({step.status.value})"
    if step.changed and step.action is not Action.CREATE:
        line += f" [{', '.join(step.changed)}]"
    return line


def check_converged(state: DesiredState, live: Mapping[str, Optional[Mapping[str, object]]]) -> List[PlanStep]:
    """
    Verify that live state matches the desired state

    Raises:
        ReferencedResourceNotFoundError: live encryption points at a KMS key that no longer exists
        NotConvergedError: any resource still needs an action
    """
    for name in state.names_of_kind(BucketEncryptionSpec.kind):
        spec = state[name]
        view = live.get(name)
        if spec.kms_key and view and view.get("kms_key_arn") and live.get(spec.kms_key) is None:
            raise ReferencedResourceNotFoundError(name, spec.kms_key, view["kms_key_arn"])

    steps = plan(state, live)
    pending = [step for step in steps if step.action is not Action.NOTHING]
    if pending:
        raise NotConvergedError(pending)
    return steps
