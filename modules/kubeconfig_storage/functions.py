"""
Kubeconfig Storage Module Functions
Creates the S3 bucket that stores Kubernetes kubeconfig files and the KMS key encrypting it
Resources are declared from the validated desired state, dependencies first
"""

import pulumi
import pulumi_aws as aws
from typing import Any, Dict, List, Mapping, Optional

from .desired_state import (
    BUCKET,
    BUCKET_ACL,
    BUCKET_ENCRYPTION,
    BUCKET_PUBLIC_ACCESS_BLOCK,
    BUCKET_VERSIONING,
    KMS_KEY,
    BucketAclSpec,
    BucketEncryptionSpec,
    BucketSpec,
    BucketVersioningSpec,
    DesiredState,
    KmsKeySpec,
    PublicAccessBlockSpec,
    build_desired_state,
)
from .live_state import create_clients
from .resource_utils import import_options_for_bucket


def create_kms_key(name: str, spec: KmsKeySpec,
                   opts: Optional[pulumi.ResourceOptions] = None) -> aws.kms.Key:
    """
    Create the KMS key that encrypts kubeconfig objects

    Args:
        name: Resource name prefix
        spec: KMS key desired state
        opts: Pulumi resource options

    Returns:
        KMS Key resource
    """
    return aws.kms.Key(
        f"{name}-key",
        description=spec.description,
        deletion_window_in_days=spec.deletion_window_in_days,
        tags=spec.tags,
        opts=opts
    )


def create_kubeconfig_bucket(name: str, spec: BucketSpec,
                             opts: Optional[pulumi.ResourceOptions] = None) -> aws.s3.Bucket:
    """
    Create the S3 bucket for kubeconfig storage

    Args:
        name: Resource name prefix
        spec: Bucket desired state
        opts: Pulumi resource options

    Returns:
        S3 Bucket resource
    """
    return aws.s3.Bucket(
        f"{name}-bucket",
        bucket=spec.name,
        force_destroy=spec.force_destroy,
        tags=spec.tags,
        opts=opts
    )


def configure_bucket_versioning(name: str, spec: BucketVersioningSpec, bucket: aws.s3.Bucket,
                                opts: Optional[pulumi.ResourceOptions] = None) -> aws.s3.BucketVersioning:
    return aws.s3.BucketVersioning(
        f"{name}-bucket-versioning",
        bucket=bucket.id,
        versioning_configuration=aws.s3.BucketVersioningVersioningConfigurationArgs(
            status=spec.status
        ),
        opts=opts
    )


def configure_bucket_acl(name: str, spec: BucketAclSpec, bucket: aws.s3.Bucket,
                         opts: Optional[pulumi.ResourceOptions] = None) -> aws.s3.BucketAcl:
    return aws.s3.BucketAcl(
        f"{name}-bucket-acl",
        bucket=bucket.id,
        acl=spec.acl,
        opts=opts
    )


def configure_bucket_encryption(name: str, spec: BucketEncryptionSpec, bucket: aws.s3.Bucket,
                                kms_key: Optional[aws.kms.Key] = None,
                                opts: Optional[pulumi.ResourceOptions] = None
                                ) -> aws.s3.BucketServerSideEncryptionConfiguration:
    """
    Set default server-side encryption on the bucket

    With an aws:kms algorithm the rule points at the KMS key's ARN, which also
    orders the rule after the key.
    """
    return aws.s3.BucketServerSideEncryptionConfiguration(
        f"{name}-bucket-encryption",
        bucket=bucket.id,
        rules=[
            aws.s3.BucketServerSideEncryptionConfigurationRuleArgs(
                apply_server_side_encryption_by_default=aws.s3.BucketServerSideEncryptionConfigurationRuleApplyServerSideEncryptionByDefaultArgs(
                    sse_algorithm=spec.sse_algorithm,
                    kms_master_key_id=kms_key.arn if kms_key is not None else None
                ),
                bucket_key_enabled=spec.bucket_key_enabled
            )
        ],
        opts=opts
    )


def configure_public_access_block(name: str, spec: PublicAccessBlockSpec, bucket: aws.s3.Bucket,
                                  opts: Optional[pulumi.ResourceOptions] = None) -> aws.s3.BucketPublicAccessBlock:
    return aws.s3.BucketPublicAccessBlock(
        f"{name}-bucket-pab",
        bucket=bucket.id,
        block_public_acls=spec.block_public_acls,
        block_public_policy=spec.block_public_policy,
        ignore_public_acls=spec.ignore_public_acls,
        restrict_public_buckets=spec.restrict_public_buckets,
        opts=opts
    )


def declare_desired_state(name: str, state: DesiredState,
                          adopt_existing: bool = False, s3_client=None) -> Dict[str, pulumi.Resource]:
    """
    Declare one Pulumi resource per desired-state record

    Args:
        name: Resource name prefix
        state: Validated desired state
        adopt_existing: Import the bucket when it already exists
        s3_client: boto3 S3 client used to look the bucket up when adopting

    Returns:
        Dict mapping logical names to declared resources
    """
    declared: Dict[str, pulumi.Resource] = {}

    for logical_name in state.creation_order():
        spec = state[logical_name]
        refs = {field: declared[target] for field, target in spec.references().items()}
        depends_on = [declared[target] for target in state.dependencies(logical_name)]
        opts = pulumi.ResourceOptions(depends_on=depends_on) if depends_on else None

        if isinstance(spec, BucketSpec):
            if adopt_existing:
                opts = import_options_for_bucket(s3_client, spec.name, opts)
            resource = create_kubeconfig_bucket(name, spec, opts)
        elif isinstance(spec, KmsKeySpec):
            resource = create_kms_key(name, spec, opts)
        elif isinstance(spec, BucketVersioningSpec):
            resource = configure_bucket_versioning(name, spec, refs["bucket"], opts)
        elif isinstance(spec, BucketAclSpec):
            resource = configure_bucket_acl(name, spec, refs["bucket"], opts)
        elif isinstance(spec, BucketEncryptionSpec):
            resource = configure_bucket_encryption(name, spec, refs["bucket"], refs.get("kms_key"), opts)
        elif isinstance(spec, PublicAccessBlockSpec):
            resource = configure_public_access_block(name, spec, refs["bucket"], opts)
        else:
            raise TypeError(f"No declaration for {type(spec).__name__} '{logical_name}'")

        declared[logical_name] = resource

    return declared


def get_kubeconfig_commands(bucket_name: str, aws_region: str) -> List[str]:
    """
    Get commands to store and fetch kubeconfig files

    Args:
        bucket_name: S3 bucket name
        aws_region: AWS region

    Returns:
        List of shell commands
    """
    return [
        "# Upload a kubeconfig (encrypted with the bucket's KMS key):",
        f"aws s3 cp ~/.kube/config s3://{bucket_name}/<cluster-name>/kubeconfig --sse aws:kms --region {aws_region}",
        "",
        "# Fetch a kubeconfig:",
        f"aws s3 cp s3://{bucket_name}/<cluster-name>/kubeconfig ./kubeconfig --region {aws_region}",
        "",
        "# List stored kubeconfigs:",
        f"aws s3 ls s3://{bucket_name}/ --recursive --region {aws_region}",
    ]


def create_kubeconfig_storage_resources(bucket_name: str,
                                        aws_region: str,
                                        tags: Optional[Mapping[str, str]] = None,
                                        adopt_existing_bucket: bool = False,
                                        kms_deletion_window_in_days: int = 30,
                                        name: str = "kubeconfig",
                                        s3_client=None) -> Dict[str, Any]:
    """
    Create complete kubeconfig storage infrastructure

    Args:
        bucket_name: S3 bucket name
        aws_region: AWS region
        tags: Base tags for all resources
        adopt_existing_bucket: Import the bucket if it already exists
        kms_deletion_window_in_days: Waiting period before the KMS key is deleted
        name: Resource name prefix
        s3_client: boto3 S3 client for the existence check

    Returns:
        Dict with all kubeconfig storage resources and outputs
    """
    state = build_desired_state(
        bucket_name,
        base_tags=tags,
        kms_deletion_window_in_days=kms_deletion_window_in_days,
    )

    pulumi.log.info(f"Setting up S3 bucket for kubeconfig storage: {bucket_name}")

    if adopt_existing_bucket and s3_client is None:
        s3_client, _ = create_clients(region=aws_region)

    declared = declare_desired_state(name, state, adopt_existing=adopt_existing_bucket, s3_client=s3_client)
    bucket = declared[BUCKET]
    kms_key = declared[KMS_KEY]

    return {
        "bucket_name_output": bucket.id,
        "bucket_arn_output": bucket.arn,
        "kms_key_arn_output": kms_key.arn,
        "kms_key_id_output": kms_key.key_id,
        "execution_waves": state.execution_waves(),
        "kubeconfig_commands": get_kubeconfig_commands(bucket_name, aws_region),
        # Keep references to resources for dependencies
        "_state": state,
        "_bucket": bucket,
        "_kms_key": kms_key,
        "_bucket_config": {
            "versioning": declared[BUCKET_VERSIONING],
            "acl": declared[BUCKET_ACL],
            "encryption": declared[BUCKET_ENCRYPTION],
            "public_access_block": declared[BUCKET_PUBLIC_ACCESS_BLOCK]
        }
    }
