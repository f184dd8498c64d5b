"""
Kubernetes Kubeconfig Storage
S3 bucket for kubeconfig files, encrypted with a dedicated KMS key
"""
import pulumi
from config import get_config
from modules.kubeconfig_storage.functions import create_kubeconfig_storage_resources

# Configuration
config = get_config()

# Bucket, its settings and the KMS key
storage = create_kubeconfig_storage_resources(
    bucket_name=config.bucket_name,
    aws_region=config.aws_region,
    tags=config.common_tags,
    adopt_existing_bucket=config.adopt_existing_bucket,
    kms_deletion_window_in_days=config.kms_deletion_window_in_days
)

# Exports
pulumi.export("bucket_name", storage["bucket_name_output"])
pulumi.export("bucket_arn", storage["bucket_arn_output"])
pulumi.export("kms_key_arn", storage["kms_key_arn_output"])
pulumi.export("kms_key_id", storage["kms_key_id_output"])
pulumi.export("kubeconfig_commands", storage["kubeconfig_commands"])
