#!/usr/bin/env python3
"""
Kubeconfig Storage Drift Check
Compares the live kubeconfig bucket and KMS key with the desired state and prints
what `pulumi up` (or `pulumi destroy`) would have to change.
"""

import argparse
import sys
from typing import List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from modules.kubeconfig_storage.desired_state import build_desired_state
from modules.kubeconfig_storage.errors import NotConvergedError, ReferencedResourceNotFoundError
from modules.kubeconfig_storage.live_state import create_clients, observe_live_state
from modules.kubeconfig_storage.reconcile import (
    check_converged,
    describe_step,
    destroy_plan,
    is_converged,
    plan,
    summarize,
)

EXIT_CONVERGED = 0
EXIT_ERROR = 1
EXIT_DRIFT = 2


def parse_tag(value: str) -> Tuple[str, str]:
    key, sep, tag_value = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value!r}")
    return key, tag_value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Report drift between the kubeconfig bucket's desired and live state"
    )
    parser.add_argument("bucket_name", help="Name of the kubeconfig bucket")
    parser.add_argument("--tag", action="append", type=parse_tag, default=[], metavar="KEY=VALUE",
                        help="Base tag shared by all resources (repeatable)")
    parser.add_argument("--kms-key-id", help="KMS key to check; defaults to the key the bucket encryption uses")
    parser.add_argument("--region", help="AWS region")
    parser.add_argument("--profile", help="AWS credentials profile")
    parser.add_argument("--destroy", action="store_true", help="Show the destroy plan instead")
    return parser


def print_plan(title: str, steps) -> None:
    print(title)
    print("=" * len(title))
    for step in steps:
        print(describe_step(step))
    changes = [
        f"{count} to {action}" for action, count in summarize(steps).items()
        if action != "nothing" and count
    ]
    print()
    print(", ".join(changes) if changes else "No changes")


def main(argv: Optional[List[str]] = None) -> int:
    """Main drift check"""
    args = build_parser().parse_args(argv)

    try:
        state = build_desired_state(args.bucket_name, base_tags=dict(args.tag))
    except ValueError as e:
        print(f"❌ Invalid desired state: {e}")
        return EXIT_ERROR

    try:
        s3_client, kms_client = create_clients(region=args.region, profile=args.profile)
        live = observe_live_state(state, s3_client, kms_client, kms_key_id=args.kms_key_id)
    except (ClientError, BotoCoreError) as e:
        print(f"❌ Could not observe live state: {e}")
        return EXIT_ERROR

    if args.destroy:
        steps = destroy_plan(state, live)
        print_plan(f"Destroy plan for {state.bucket_name}", steps)
        return EXIT_CONVERGED if is_converged(steps) else EXIT_DRIFT

    print_plan(f"Plan for {state.bucket_name}", plan(state, live))
    print()

    try:
        check_converged(state, live)
    except ReferencedResourceNotFoundError as e:
        print(f"❌ {e}")
        return EXIT_ERROR
    except NotConvergedError as e:
        print(f"⚠️ {e}. Run 'pulumi up' to converge.")
        return EXIT_DRIFT

    print("✅ Kubeconfig storage is converged")
    return EXIT_CONVERGED


if __name__ == "__main__":
    sys.exit(main())
