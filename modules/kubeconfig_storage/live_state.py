"""
Live State Observation
Reads the current configuration of the kubeconfig bucket and KMS key through boto3
and reduces it to the same comparable views the desired-state records produce.
"""

from typing import Any, Dict, Optional, Tuple

import boto3
import pulumi
from botocore.exceptions import ClientError

from .desired_state import (
    BucketAclSpec,
    BucketEncryptionSpec,
    BucketSpec,
    BucketVersioningSpec,
    DesiredState,
    KmsKeySpec,
    PublicAccessBlockSpec,
)
from .resource_utils import is_not_found_error, retry_with_backoff

LiveView = Optional[Dict[str, Any]]

_PUBLIC_ACCESS_BLOCK_KEYS = {
    "block_public_acls": "BlockPublicAcls",
    "block_public_policy": "BlockPublicPolicy",
    "ignore_public_acls": "IgnorePublicAcls",
    "restrict_public_buckets": "RestrictPublicBuckets",
}


def create_clients(region: Optional[str] = None, profile: Optional[str] = None) -> Tuple[Any, Any]:
    """Return boto3 S3 and KMS clients sharing one session"""
    session = boto3.session.Session(profile_name=profile, region_name=region)
    return session.client("s3"), session.client("kms")


def _call(func, **kwargs) -> Optional[Dict[str, Any]]:
    """Call a boto3 operation; None when the target does not exist"""
    try:
        return retry_with_backoff(lambda: func(**kwargs))
    except ClientError as e:
        if is_not_found_error(e):
            return None
        raise


def observe_bucket(s3_client, bucket_name: str) -> LiveView:
    if _call(s3_client.head_bucket, Bucket=bucket_name) is None:
        return None

    tagging = _call(s3_client.get_bucket_tagging, Bucket=bucket_name) or {}
    tags = {tag["Key"]: tag["Value"] for tag in tagging.get("TagSet", [])}
    return {"name": bucket_name, "tags": tags}


def observe_bucket_versioning(s3_client, bucket_name: str) -> LiveView:
    response = _call(s3_client.get_bucket_versioning, Bucket=bucket_name)
    # a bucket that never had versioning configured reports no Status
    if not response or "Status" not in response:
        return None
    return {"bucket": bucket_name, "status": response["Status"]}


def observe_bucket_acl(s3_client, bucket_name: str) -> LiveView:
    response = _call(s3_client.get_bucket_acl, Bucket=bucket_name)
    if response is None:
        return None

    owner_id = response.get("Owner", {}).get("ID")
    grants = response.get("Grants", [])
    private = len(grants) == 1 and (
        grants[0].get("Permission") == "FULL_CONTROL"
        and grants[0].get("Grantee", {}).get("Type") == "CanonicalUser"
        and grants[0].get("Grantee", {}).get("ID") == owner_id
    )
    return {"bucket": bucket_name, "acl": "private" if private else "custom"}


def observe_bucket_encryption(s3_client, bucket_name: str) -> LiveView:
    response = _call(s3_client.get_bucket_encryption, Bucket=bucket_name)
    if response is None:
        return None

    rules = response.get("ServerSideEncryptionConfiguration", {}).get("Rules", [])
    if not rules:
        return None
    by_default = rules[0].get("ApplyServerSideEncryptionByDefault", {})
    return {
        "bucket": bucket_name,
        "sse_algorithm": by_default.get("SSEAlgorithm"),
        "kms_key_arn": by_default.get("KMSMasterKeyID"),
    }


def observe_public_access_block(s3_client, bucket_name: str) -> LiveView:
    response = _call(s3_client.get_public_access_block, Bucket=bucket_name)
    if response is None:
        return None

    configuration = response.get("PublicAccessBlockConfiguration", {})
    view = {"bucket": bucket_name}
    view.update({flag: bool(configuration.get(key, False)) for flag, key in _PUBLIC_ACCESS_BLOCK_KEYS.items()})
    return view


def observe_kms_key(kms_client, key_id: str) -> LiveView:
    """
    Observe a KMS key by id, ARN or alias

    Keys pending deletion are reported as absent.
    """
    response = _call(kms_client.describe_key, KeyId=key_id)
    if response is None:
        return None

    metadata = response["KeyMetadata"]
    if metadata.get("KeyState") in ("PendingDeletion", "PendingReplicaDeletion"):
        pulumi.log.warn(f"KMS key {metadata['Arn']} is pending deletion")
        return None

    tagging = _call(kms_client.list_resource_tags, KeyId=metadata["KeyId"]) or {}
    tags = {tag["TagKey"]: tag["TagValue"] for tag in tagging.get("Tags", [])}
    return {
        "arn": metadata["Arn"],
        "key_id": metadata["KeyId"],
        "description": metadata.get("Description", ""),
        "tags": tags,
    }


def observe_live_state(
    state: DesiredState,
    s3_client,
    kms_client,
    kms_key_id: Optional[str] = None,
) -> Dict[str, LiveView]:
    """
    Observe every record of the desired state

    Args:
        state: Validated desired state
        s3_client: boto3 S3 client
        kms_client: boto3 KMS client
        kms_key_id: KMS key to observe; defaults to the key the bucket encryption uses

    Returns:
        Logical name -> comparable live view, None for absent resources
    """
    bucket_name = state.bucket_name
    live: Dict[str, LiveView] = {}

    pulumi.log.info(f"Observing live state of bucket {bucket_name}")
    bucket_view = observe_bucket(s3_client, bucket_name)

    for name, spec in state.items():
        if isinstance(spec, BucketSpec):
            live[name] = bucket_view
        elif bucket_view is None and not isinstance(spec, KmsKeySpec):
            live[name] = None
        elif isinstance(spec, BucketVersioningSpec):
            live[name] = observe_bucket_versioning(s3_client, bucket_name)
        elif isinstance(spec, BucketAclSpec):
            live[name] = observe_bucket_acl(s3_client, bucket_name)
        elif isinstance(spec, BucketEncryptionSpec):
            live[name] = observe_bucket_encryption(s3_client, bucket_name)
        elif isinstance(spec, PublicAccessBlockSpec):
            live[name] = observe_public_access_block(s3_client, bucket_name)

    for name in state.names_of_kind(KmsKeySpec.kind):
        key_id = kms_key_id
        if key_id is None:
            key_id = _encryption_key_of(state, live, name)
        live[name] = observe_kms_key(kms_client, key_id) if key_id else None
        if live[name]:
            _normalize_key_reference(state, live, name)

    absent = [name for name in state if live.get(name) is None]
    if absent:
        pulumi.log.info(f"Absent resources: {', '.join(absent)}")
    return live


def _encryption_key_of(state: DesiredState, live: Dict[str, LiveView], kms_name: str) -> Optional[str]:
    for name in state.names_of_kind(BucketEncryptionSpec.kind):
        if state[name].kms_key == kms_name and live.get(name):
            return live[name].get("kms_key_arn")
    return None


def _normalize_key_reference(state: DesiredState, live: Dict[str, LiveView], kms_name: str) -> None:
    # S3 may hold the key id instead of the ARN
    key = live[kms_name]
    for name in state.names_of_kind(BucketEncryptionSpec.kind):
        view = live.get(name)
        if view and view.get("kms_key_arn") in (key["key_id"], key["arn"]):
            view["kms_key_arn"] = key["arn"]
