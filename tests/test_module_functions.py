"""
Unit tests for the kubeconfig storage Pulumi module
Tests the declared resources with Pulumi runtime mocks and a patched provider
"""

import unittest
from unittest.mock import MagicMock, Mock, patch
import sys
import os

import pulumi

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pulumi_mocks import ACCOUNT_ID, REGION, read, use_mocks
from modules.kubeconfig_storage.desired_state import (
    BUCKET,
    BUCKET_ACL,
    BUCKET_ENCRYPTION,
    BUCKET_PUBLIC_ACCESS_BLOCK,
    BUCKET_VERSIONING,
    KMS_KEY,
    KMS_KEY_DESCRIPTION,
    KMS_KEY_NAME_TAG,
    build_desired_state,
)
from modules.kubeconfig_storage.functions import (
    create_kubeconfig_storage_resources,
    declare_desired_state,
    get_kubeconfig_commands,
)


def declared_resource(name, *outputs):
    """Stand-in for a provider resource; depends_on only accepts Resource instances"""
    resource = Mock(spec=pulumi.CustomResource, name=name)
    for output in outputs:
        setattr(resource, output, Mock(name=f"{name}.{output}"))
    return resource


class TestKubeconfigStorageDeclaration(unittest.TestCase):
    """Test the declared resources for bucket kc-bucket-1 with base tags env=prod"""

    @classmethod
    def setUpClass(cls):
        use_mocks()
        cls.resources = create_kubeconfig_storage_resources(
            bucket_name="kc-bucket-1",
            aws_region=REGION,
            tags={"env": "prod"}
        )
        cls.bucket = cls.resources["_bucket"]
        cls.kms_key = cls.resources["_kms_key"]
        cls.config = cls.resources["_bucket_config"]

    def test_function_structure(self):
        """Test that the function returns the expected structure"""
        for key in ("bucket_name_output", "bucket_arn_output", "kms_key_arn_output",
                    "kms_key_id_output", "kubeconfig_commands", "execution_waves"):
            self.assertIn(key, self.resources)
        self.assertEqual(set(self.config), {"versioning", "acl", "encryption", "public_access_block"})
        self.assertEqual(self.resources["execution_waves"][0], [BUCKET, KMS_KEY])

    @pulumi.runtime.test
    def test_bucket_name_and_tags(self):
        def check(args):
            name, tags, force_destroy = args
            self.assertEqual(name, "kc-bucket-1")
            self.assertEqual(tags, {"env": "prod", "Name": "Kubernetes kubeconfig"})
            self.assertTrue(force_destroy)

        return pulumi.Output.all(self.bucket.bucket, self.bucket.tags, self.bucket.force_destroy).apply(check)

    @pulumi.runtime.test
    def test_bucket_outputs(self):
        def check(args):
            bucket_id, bucket_arn = args
            self.assertEqual(bucket_id, "kc-bucket-1")
            self.assertEqual(bucket_arn, "arn:aws:s3:::kc-bucket-1")

        return pulumi.Output.all(self.resources["bucket_name_output"],
                                 self.resources["bucket_arn_output"]).apply(check)

    @pulumi.runtime.test
    def test_settings_reference_the_same_bucket(self):
        """Test that every bucket setting is bound to the one declared bucket"""
        def check(bucket_ids):
            self.assertEqual(bucket_ids, ["kc-bucket-1"] * 4)

        return pulumi.Output.all(
            self.config["versioning"].bucket,
            self.config["acl"].bucket,
            self.config["encryption"].bucket,
            self.config["public_access_block"].bucket,
        ).apply(check)

    @pulumi.runtime.test
    def test_versioning_enabled(self):
        def check(configuration):
            self.assertEqual(read(configuration, "status"), "Enabled")

        return self.config["versioning"].versioning_configuration.apply(check)

    @pulumi.runtime.test
    def test_acl_private(self):
        return self.config["acl"].acl.apply(lambda acl: self.assertEqual(acl, "private"))

    @pulumi.runtime.test
    def test_encryption_uses_created_kms_key(self):
        """Test that default encryption is aws:kms with the declared key's ARN"""
        def check(args):
            rules, key_arn = args
            self.assertEqual(len(rules), 1)
            by_default = read(rules[0], "apply_server_side_encryption_by_default")
            self.assertEqual(read(by_default, "sse_algorithm"), "aws:kms")
            self.assertEqual(read(by_default, "kms_master_key_id"), key_arn)
            self.assertTrue(key_arn.startswith(f"arn:aws:kms:{REGION}:{ACCOUNT_ID}:key/"))

        return pulumi.Output.all(self.config["encryption"].rules, self.kms_key.arn).apply(check)

    @pulumi.runtime.test
    def test_public_access_fully_blocked(self):
        """Test that none of the four public access block flags is false"""
        pab = self.config["public_access_block"]

        def check(flags):
            self.assertEqual(flags, [True, True, True, True])

        return pulumi.Output.all(
            pab.block_public_acls,
            pab.block_public_policy,
            pab.ignore_public_acls,
            pab.restrict_public_buckets,
        ).apply(check)

    @pulumi.runtime.test
    def test_kms_key(self):
        def check(args):
            description, tags, window = args
            self.assertEqual(description, KMS_KEY_DESCRIPTION)
            self.assertEqual(tags, {"env": "prod", "Name": KMS_KEY_NAME_TAG})
            self.assertEqual(window, 30)

        return pulumi.Output.all(
            self.kms_key.description,
            self.kms_key.tags,
            self.kms_key.deletion_window_in_days,
        ).apply(check)


class TestDeclarationWithPatchedProvider(unittest.TestCase):
    """Test declaration order and options with the AWS provider patched out"""

    def setUp(self):
        patcher = patch('modules.kubeconfig_storage.functions.aws')
        self.mock_aws = patcher.start()
        self.addCleanup(patcher.stop)

        self.mock_bucket = declared_resource("bucket", "id", "arn")
        self.mock_key = declared_resource("kms_key", "id", "arn", "key_id")
        self.mock_aws.s3.Bucket.return_value = self.mock_bucket
        self.mock_aws.kms.Key.return_value = self.mock_key

    def test_storage_function_structure(self):
        """Test that kubeconfig storage function returns expected structure"""
        result = create_kubeconfig_storage_resources(
            bucket_name="kc-bucket-1",
            aws_region="us-east-1",
            tags={"env": "prod"}
        )

        self.assertIs(result["_bucket"], self.mock_bucket)
        self.assertIs(result["_kms_key"], self.mock_key)
        self.assertEqual(result["bucket_name_output"], self.mock_bucket.id)
        self.assertEqual(result["kms_key_arn_output"], self.mock_key.arn)

        bucket_kwargs = self.mock_aws.s3.Bucket.call_args.kwargs
        self.assertEqual(bucket_kwargs["bucket"], "kc-bucket-1")
        self.assertTrue(bucket_kwargs["force_destroy"])
        self.assertEqual(bucket_kwargs["tags"], {"env": "prod", "Name": "Kubernetes kubeconfig"})

    def test_encryption_depends_on_bucket_and_key(self):
        """Test that the encryption rule declares both of its dependency edges"""
        create_kubeconfig_storage_resources(bucket_name="kc-bucket-1", aws_region="us-east-1")

        args_cls = self.mock_aws.s3.BucketServerSideEncryptionConfigurationRuleApplyServerSideEncryptionByDefaultArgs
        self.assertEqual(args_cls.call_args.kwargs["kms_master_key_id"], self.mock_key.arn)
        self.assertEqual(args_cls.call_args.kwargs["sse_algorithm"], "aws:kms")

        opts = self.mock_aws.s3.BucketServerSideEncryptionConfiguration.call_args.kwargs["opts"]
        self.assertEqual(opts.depends_on, [self.mock_bucket, self.mock_key])

        for resource_cls in (self.mock_aws.s3.BucketVersioning, self.mock_aws.s3.BucketAcl,
                             self.mock_aws.s3.BucketPublicAccessBlock):
            with self.subTest(resource=resource_cls):
                kwargs = resource_cls.call_args.kwargs
                self.assertEqual(kwargs["bucket"], self.mock_bucket.id)
                self.assertEqual(kwargs["opts"].depends_on, [self.mock_bucket])

    def test_leaves_have_no_dependencies(self):
        create_kubeconfig_storage_resources(bucket_name="kc-bucket-1", aws_region="us-east-1")
        self.assertIsNone(self.mock_aws.s3.Bucket.call_args.kwargs["opts"])
        self.assertIsNone(self.mock_aws.kms.Key.call_args.kwargs["opts"])

    def test_declaration_follows_creation_order(self):
        state = build_desired_state("kc-bucket-1")
        declared = declare_desired_state("kubeconfig", state)
        self.assertEqual(list(declared), state.creation_order())
        self.assertEqual(
            set(declared),
            {BUCKET, BUCKET_VERSIONING, BUCKET_ACL, KMS_KEY, BUCKET_ENCRYPTION, BUCKET_PUBLIC_ACCESS_BLOCK}
        )

    def test_existing_bucket_is_imported(self):
        """Test that an existing bucket is adopted with import_"""
        s3_client = MagicMock()
        s3_client.head_bucket.return_value = {}

        create_kubeconfig_storage_resources(
            bucket_name="kc-bucket-1",
            aws_region="us-east-1",
            adopt_existing_bucket=True,
            s3_client=s3_client
        )

        s3_client.head_bucket.assert_called_once_with(Bucket="kc-bucket-1")
        opts = self.mock_aws.s3.Bucket.call_args.kwargs["opts"]
        self.assertEqual(opts.import_, "kc-bucket-1")

    @patch('modules.kubeconfig_storage.functions.create_clients')
    def test_adoption_creates_client_for_region(self, mock_create_clients):
        s3_client = MagicMock()
        mock_create_clients.return_value = (s3_client, MagicMock())

        create_kubeconfig_storage_resources(
            bucket_name="kc-bucket-1",
            aws_region="eu-west-1",
            adopt_existing_bucket=True
        )

        mock_create_clients.assert_called_once_with(region="eu-west-1")
        s3_client.head_bucket.assert_called_once_with(Bucket="kc-bucket-1")

    def test_invalid_bucket_name_declares_nothing(self):
        with self.assertRaises(ValueError):
            create_kubeconfig_storage_resources(bucket_name="Not_A_Bucket", aws_region="us-east-1")
        self.mock_aws.s3.Bucket.assert_not_called()


class TestKubeconfigCommands(unittest.TestCase):

    def test_commands_reference_bucket_and_region(self):
        commands = get_kubeconfig_commands("kc-bucket-1", "eu-west-1")
        upload = [c for c in commands if c.startswith("aws s3 cp ~/.kube/config")]
        self.assertEqual(len(upload), 1)
        self.assertIn("s3://kc-bucket-1/", upload[0])
        self.assertIn("--sse aws:kms", upload[0])
        self.assertTrue(all("eu-west-1" in c for c in commands if c.startswith("aws ")))


if __name__ == '__main__':
    unittest.main()
