"""
Resource utilities for handling existing AWS resources
"""

import time
from typing import Callable, Optional, TypeVar

import pulumi
from botocore.exceptions import ClientError

T = TypeVar("T")

NOT_FOUND_ERROR_CODES = (
    "404",
    "NoSuchBucket",
    "NotFound",
    "NotFoundException",
    "NoSuchTagSet",
    "NoSuchPublicAccessBlockConfiguration",
    "ServerSideEncryptionConfigurationNotFoundError",
)

RETRYABLE_ERROR_CODES = (
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "SlowDown",
    "RequestTimeout",
    "InternalError",
    "ServiceUnavailable",
    "KMSInternalException",
)


def error_code(error: Exception) -> str:
    """Error code of a botocore ClientError, empty for anything else"""
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code", ""))
    return ""


def is_not_found_error(error: Exception) -> bool:
    return error_code(error) in NOT_FOUND_ERROR_CODES


def is_retryable_error(error: Exception) -> bool:
    """
    Check if an AWS error is transient and worth retrying

    Args:
        error: Exception from AWS operation

    Returns:
        True for throttling and transient service errors
    """
    return error_code(error) in RETRYABLE_ERROR_CODES


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    retry_on: Callable[[Exception], bool] = is_retryable_error,
) -> T:
    """
    Retry a function with exponential backoff

    Args:
        func: Function to retry
        max_retries: Maximum number of retries
        initial_delay: Initial delay in seconds
        retry_on: Predicate selecting the errors worth retrying

    Returns:
        Result of the function call

    Raises:
        Exception: the first non-retryable error, or the last one once retries run out
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return func()
        except Exception as e:
            if not retry_on(e):
                raise
            if attempt >= max_retries:
                pulumi.log.error(f"All {max_retries + 1} attempts failed")
                raise
            pulumi.log.warn(f"Attempt {attempt + 1} failed, retrying in {delay}s: {str(e)}")
            time.sleep(delay)
            delay *= 2  # Exponential backoff


def check_s3_bucket_exists(s3_client, bucket_name: str) -> bool:
    """
    Check if S3 bucket exists and is accessible

    Args:
        s3_client: boto3 S3 client
        bucket_name: Name of the S3 bucket

    Returns:
        True if bucket exists and is accessible, False if it does not exist

    Raises:
        ClientError: for anything other than a missing bucket
    """
    try:
        retry_with_backoff(lambda: s3_client.head_bucket(Bucket=bucket_name))
        return True
    except ClientError as e:
        if is_not_found_error(e):
            return False
        raise


def import_options_for_bucket(
    s3_client,
    bucket_name: str,
    opts: Optional[pulumi.ResourceOptions] = None,
) -> Optional[pulumi.ResourceOptions]:
    """
    Resource options that adopt an existing bucket instead of creating it

    Args:
        s3_client: boto3 S3 client
        bucket_name: S3 bucket name
        opts: Pulumi resource options to extend

    Returns:
        Options with import_ set when the bucket exists, otherwise opts unchanged
    """
    if check_s3_bucket_exists(s3_client, bucket_name):
        pulumi.log.info(f"S3 bucket {bucket_name} already exists, importing...")
        return pulumi.ResourceOptions.merge(opts, pulumi.ResourceOptions(import_=bucket_name))

    pulumi.log.info(f"Creating new S3 bucket {bucket_name}...")
    return opts
