"""
Kubeconfig Storage Desired State
Static desired-state records for the kubeconfig bucket, its settings and its KMS key.

Records reference each other by logical name. A DesiredState holds the records,
checks the graph invariants and derives the order in which a reconciler has to
apply them.
"""

import re
from typing import Callable, ClassVar, Dict, Iterator, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import (
    DanglingReferenceError,
    DependencyCycleError,
    DesiredStateError,
    PublicAccessPolicyError,
)

# Logical names
BUCKET = "bucket"
BUCKET_VERSIONING = "bucket_versioning"
BUCKET_ACL = "bucket_acl"
KMS_KEY = "kms_key"
BUCKET_ENCRYPTION = "bucket_encryption"
BUCKET_PUBLIC_ACCESS_BLOCK = "bucket_public_access_block"

SSE_ALGORITHMS = ("aws:kms", "aws:kms:dsse", "AES256")
KMS_SSE_ALGORITHMS = ("aws:kms", "aws:kms:dsse")
CANNED_ACLS = (
    "private",
    "public-read",
    "public-read-write",
    "aws-exec-read",
    "authenticated-read",
    "log-delivery-write",
)

BUCKET_NAME_TAG = "Kubernetes kubeconfig"
KMS_KEY_NAME_TAG = "Kubernetes kubeconfig encryption key"
KMS_KEY_DESCRIPTION = "Encryption key for the Kubernetes kubeconfig bucket"

MAX_TAGS = 50
MAX_TAG_KEY_LENGTH = 128
MAX_TAG_VALUE_LENGTH = 256

_BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")


def merge_tags(base: Optional[Mapping[str, str]], overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Merge a shared base tag set with per-resource overrides

    Args:
        base: Tags shared by every resource
        overrides: Per-resource tags such as "Name"

    Returns:
        New tag mapping; overrides win on key collision
    """
    return {**(base or {}), **(overrides or {})}


def _check_tags(tags: Dict[str, str]) -> Dict[str, str]:
    if len(tags) > MAX_TAGS:
        raise ValueError(f"at most {MAX_TAGS} tags are allowed, got {len(tags)}")
    for key, value in tags.items():
        if not key or len(key) > MAX_TAG_KEY_LENGTH:
            raise ValueError(f"tag key must be 1-{MAX_TAG_KEY_LENGTH} characters: {key!r}")
        if len(value) > MAX_TAG_VALUE_LENGTH:
            raise ValueError(f"tag value for {key!r} exceeds {MAX_TAG_VALUE_LENGTH} characters")
    return tags


Resolver = Callable[[str], Optional[str]]


class ResourceSpec(BaseModel):
    """Base desired-state record"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ClassVar[str] = ""
    # reference field -> kind of the record it must point at
    reference_kinds: ClassVar[Dict[str, str]] = {}
    # fields whose change cannot be applied in place
    replace_on: ClassVar[Tuple[str, ...]] = ()

    def references(self) -> Dict[str, str]:
        """Reference fields that are set, mapped to the logical name they point at"""
        refs = {}
        for field in self.reference_kinds:
            target = getattr(self, field)
            if target is not None:
                refs[field] = target
        return refs

    def comparable(self, resolve: Resolver) -> Dict[str, object]:
        """Properties that can be compared against observed live state"""
        raise NotImplementedError


class BucketSpec(ResourceSpec):
    kind: ClassVar[str] = "bucket"
    replace_on: ClassVar[Tuple[str, ...]] = ("name",)

    name: str
    force_destroy: bool = False
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        if not _BUCKET_NAME_PATTERN.match(value) or ".." in value:
            raise ValueError(f"invalid S3 bucket name: {value!r}")
        return value

    @field_validator("tags")
    @classmethod
    def check_tags(cls, value: Dict[str, str]) -> Dict[str, str]:
        return _check_tags(value)

    def comparable(self, resolve: Resolver) -> Dict[str, object]:
        # force_destroy only affects destroy and is not stored by the provider
        return {"name": self.name, "tags": dict(self.tags)}


class BucketVersioningSpec(ResourceSpec):
    kind: ClassVar[str] = "bucket_versioning"
    reference_kinds: ClassVar[Dict[str, str]] = {"bucket": "bucket"}
    replace_on: ClassVar[Tuple[str, ...]] = ("bucket",)

    bucket: str
    status: Literal["Enabled", "Suspended"] = "Enabled"

    def comparable(self, resolve: Resolver) -> Dict[str, object]:
        return {"bucket": resolve(self.bucket), "status": self.status}


class BucketAclSpec(ResourceSpec):
    kind: ClassVar[str] = "bucket_acl"
    reference_kinds: ClassVar[Dict[str, str]] = {"bucket": "bucket"}
    replace_on: ClassVar[Tuple[str, ...]] = ("bucket",)

    bucket: str
    acl: str = "private"

    @field_validator("acl")
    @classmethod
    def check_acl(cls, value: str) -> str:
        if value not in CANNED_ACLS:
            raise ValueError(f"acl must be one of {', '.join(CANNED_ACLS)}; got {value!r}")
        return value

    def comparable(self, resolve: Resolver) -> Dict[str, object]:
        return {"bucket": resolve(self.bucket), "acl": self.acl}


class KmsKeySpec(ResourceSpec):
    kind: ClassVar[str] = "kms_key"

    description: str
    tags: Dict[str, str] = Field(default_factory=dict)
    deletion_window_in_days: int = Field(default=30, ge=7, le=30)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, value: Dict[str, str]) -> Dict[str, str]:
        return _check_tags(value)

    def comparable(self, resolve: Resolver) -> Dict[str, object]:
        return {"description": self.description, "tags": dict(self.tags)}


class BucketEncryptionSpec(ResourceSpec):
    kind: ClassVar[str] = "bucket_encryption"
    reference_kinds: ClassVar[Dict[str, str]] = {"bucket": "bucket", "kms_key": "kms_key"}
    replace_on: ClassVar[Tuple[str, ...]] = ("bucket",)

    bucket: str
    kms_key: Optional[str] = None
    sse_algorithm: str = "aws:kms"
    bucket_key_enabled: bool = False

    @field_validator("sse_algorithm")
    @classmethod
    def check_algorithm(cls, value: str) -> str:
        if value not in SSE_ALGORITHMS:
            raise ValueError(f"sse_algorithm must be one of {', '.join(SSE_ALGORITHMS)}; got {value!r}")
        return value

    @model_validator(mode="after")
    def check_key_matches_algorithm(self) -> "BucketEncryptionSpec":
        if self.kms_key is not None and self.sse_algorithm not in KMS_SSE_ALGORITHMS:
            raise ValueError(f"a KMS key cannot be used with sse_algorithm {self.sse_algorithm!r}")
        return self

    def comparable(self, resolve: Resolver) -> Dict[str, object]:
        return {
            "bucket": resolve(self.bucket),
            "sse_algorithm": self.sse_algorithm,
            "kms_key_arn": resolve(self.kms_key) if self.kms_key else None,
        }


class PublicAccessBlockSpec(ResourceSpec):
    kind: ClassVar[str] = "bucket_public_access_block"
    reference_kinds: ClassVar[Dict[str, str]] = {"bucket": "bucket"}
    replace_on: ClassVar[Tuple[str, ...]] = ("bucket",)

    FLAGS: ClassVar[Tuple[str, ...]] = (
        "block_public_acls",
        "block_public_policy",
        "ignore_public_acls",
        "restrict_public_buckets",
    )

    bucket: str
    block_public_acls: bool = True
    block_public_policy: bool = True
    ignore_public_acls: bool = True
    restrict_public_buckets: bool = True

    def disabled_flags(self) -> List[str]:
        return [flag for flag in self.FLAGS if not getattr(self, flag)]

    def comparable(self, resolve: Resolver) -> Dict[str, object]:
        view = {"bucket": resolve(self.bucket)}
        view.update({flag: getattr(self, flag) for flag in self.FLAGS})
        return view


def execution_waves_of(dependencies: Mapping[str, List[str]]) -> List[List[str]]:
    """
    Group nodes into waves; every node's dependencies sit in earlier waves

    Nodes inside one wave keep their declaration order and have no edges
    between them.
    """
    for name, deps in dependencies.items():
        for dep in deps:
            if dep not in dependencies:
                raise DanglingReferenceError(name, dep)

    placed = set()
    remaining = list(dependencies)
    waves = []
    while remaining:
        wave = [name for name in remaining if all(dep in placed for dep in dependencies[name])]
        if not wave:
            raise DependencyCycleError(remaining)
        waves.append(wave)
        placed.update(wave)
        remaining = [name for name in remaining if name not in placed]
    return waves


def topological_order(dependencies: Mapping[str, List[str]]) -> List[str]:
    """Leaves first; ties broken by declaration order"""
    return [name for wave in execution_waves_of(dependencies) for name in wave]


class DesiredState:
    """Named desired-state records forming a dependency graph"""

    def __init__(self, resources: Mapping[str, ResourceSpec]):
        self._resources = dict(resources)

    def __getitem__(self, name: str) -> ResourceSpec:
        return self._resources[name]

    def __contains__(self, name: object) -> bool:
        return name in self._resources

    def __iter__(self) -> Iterator[str]:
        return iter(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def items(self):
        return self._resources.items()

    def names_of_kind(self, kind: str) -> List[str]:
        return [name for name, spec in self._resources.items() if spec.kind == kind]

    @property
    def bucket_name(self) -> str:
        buckets = self.names_of_kind(BucketSpec.kind)
        if len(buckets) != 1:
            raise DesiredStateError(f"Expected exactly one bucket, found {len(buckets)}")
        return self._resources[buckets[0]].name

    def dependencies(self, name: str) -> List[str]:
        return list(dict.fromkeys(self._resources[name].references().values()))

    def dependency_graph(self) -> Dict[str, List[str]]:
        return {name: self.dependencies(name) for name in self._resources}

    def validate(self) -> "DesiredState":
        """
        Check the graph invariants

        Raises:
            DesiredStateError: more or fewer than one bucket, or a reference of the wrong kind
            DanglingReferenceError: a reference to an undeclared name
            DependencyCycleError: the graph has a cycle
            PublicAccessPolicyError: a public access block flag is false
        """
        # one bucket means every bucket reference resolves to the same record
        self.bucket_name

        for name, spec in self._resources.items():
            for field, target in spec.references().items():
                if target not in self._resources:
                    raise DanglingReferenceError(name, target)
                expected = spec.reference_kinds[field]
                actual = self._resources[target].kind
                if actual != expected:
                    raise DesiredStateError(f"{name}.{field} must reference a {expected}, not {actual} '{target}'")

            if isinstance(spec, PublicAccessBlockSpec):
                disabled = spec.disabled_flags()
                if disabled:
                    raise PublicAccessPolicyError(
                        f"{name} must block all public access; disabled: {', '.join(disabled)}"
                    )

        execution_waves_of(self.dependency_graph())
        return self

    def creation_order(self) -> List[str]:
        return topological_order(self.dependency_graph())

    def destruction_order(self) -> List[str]:
        return list(reversed(self.creation_order()))

    def execution_waves(self) -> List[List[str]]:
        return execution_waves_of(self.dependency_graph())

    def identifier(self, name: str, known: Optional[Mapping[str, str]] = None) -> Optional[str]:
        """
        Provider identifier a reference to `name` resolves to

        Buckets are identified by their declared name. Other records get their
        identifier from the provider, so it comes from `known` or is None until
        the record exists.
        """
        spec = self._resources[name]
        if isinstance(spec, BucketSpec):
            return spec.name
        return (known or {}).get(name)

    def resolver(self, known: Optional[Mapping[str, str]] = None) -> Resolver:
        return lambda name: self.identifier(name, known)


def build_desired_state(
    bucket_name: str,
    base_tags: Optional[Mapping[str, str]] = None,
    force_destroy: bool = True,
    versioning_status: str = "Enabled",
    acl: str = "private",
    sse_algorithm: str = "aws:kms",
    kms_deletion_window_in_days: int = 30,
) -> DesiredState:
    """
    Build the validated desired state for the kubeconfig bucket

    Args:
        bucket_name: Name of the kubeconfig bucket
        base_tags: Tags shared by every resource
        force_destroy: Allow destroying the bucket while it holds objects
        versioning_status: "Enabled" or "Suspended"
        acl: Canned ACL for the bucket
        sse_algorithm: Default server-side encryption algorithm
        kms_deletion_window_in_days: Waiting period before the KMS key is deleted

    Returns:
        DesiredState with the bucket, its settings and the KMS key
    """
    uses_kms = sse_algorithm in KMS_SSE_ALGORITHMS

    resources = {
        BUCKET: BucketSpec(
            name=bucket_name,
            force_destroy=force_destroy,
            tags=merge_tags(base_tags, {"Name": BUCKET_NAME_TAG}),
        ),
        BUCKET_VERSIONING: BucketVersioningSpec(bucket=BUCKET, status=versioning_status),
        BUCKET_ACL: BucketAclSpec(bucket=BUCKET, acl=acl),
        KMS_KEY: KmsKeySpec(
            description=KMS_KEY_DESCRIPTION,
            tags=merge_tags(base_tags, {"Name": KMS_KEY_NAME_TAG}),
            deletion_window_in_days=kms_deletion_window_in_days,
        ),
        BUCKET_ENCRYPTION: BucketEncryptionSpec(
            bucket=BUCKET,
            kms_key=KMS_KEY if uses_kms else None,
            sse_algorithm=sse_algorithm,
        ),
        BUCKET_PUBLIC_ACCESS_BLOCK: PublicAccessBlockSpec(bucket=BUCKET),
    }
    return DesiredState(resources).validate()
