"""
Configuration management for the kubeconfig storage deployment
"""

import pulumi
from typing import Dict

DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_KMS_DELETION_WINDOW_IN_DAYS = 30


class Config:
    """Centralized configuration management for kubeconfig storage"""

    def __init__(self):
        self.config = pulumi.Config()
        self.aws_config = pulumi.Config("aws")

        # AWS Configuration
        self.aws_region = self.aws_config.get("region") or DEFAULT_AWS_REGION

        # Bucket Configuration
        self.bucket_name = self.config.require("bucket_name")
        self.adopt_existing_bucket = bool(self.config.get_bool("adopt_existing_bucket"))

        # KMS Configuration
        deletion_window = self.config.get_int("kms_deletion_window_in_days")
        self.kms_deletion_window_in_days = (
            DEFAULT_KMS_DELETION_WINDOW_IN_DAYS if deletion_window is None else deletion_window
        )

        # Shared tags supplied by the stack
        self.additional_tags = self.config.get_object("tags") or {}

    @property
    def common_tags(self) -> Dict[str, str]:
        """Get the base tags shared by all resources"""
        return {str(key): str(value) for key, value in self.additional_tags.items()}


def get_config() -> Config:
    """Get the global configuration instance"""
    return Config()
