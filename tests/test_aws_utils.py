"""Tests for Secrets Manager credential discovery."""

import json
import unittest

from botocore.exceptions import EndpointConnectionError

from emr_api.aws_utils import CLUSTER_ARN_TAG, CredentialResolver, DatabaseCredentials
from emr_api.errors import CredentialResolutionError, CredentialRetrievalError
from emr_fakes import FakeSecretsClient, client_error

CLUSTER = "emr-aurora-cluster-test"
CLUSTER_ARN = f"arn:aws:rds:us-east-1:123456789012:cluster:{CLUSTER}"
TAGGED_ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:rds!cluster-abc-Tagged"
NAMED_ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:rds!cluster-test-Named"

SECRET = json.dumps(
    {"host": "emr.cluster-xyz.rds.amazonaws.com", "port": 5432, "username": "emr_app", "password": "pw", "dbname": "emr"}
)


def tagged_pages():
    return [
        {"SecretList": [{"ARN": "arn:other", "Name": "other", "Tags": [{"Key": "team", "Value": "billing"}]}]},
        {
            "SecretList": [
                {"ARN": "arn:no-tags", "Name": "no-tags"},
                {
                    "ARN": TAGGED_ARN,
                    "Name": "rds!cluster-abc",
                    "Tags": [{"Key": CLUSTER_ARN_TAG, "Value": CLUSTER_ARN}],
                },
            ]
        },
    ]


def resolver_for(client, **kwargs):
    return CredentialResolver(CLUSTER, region="us-east-1", client=client, **kwargs)


class TestSecretDiscovery(unittest.TestCase):
    def test_finds_secret_by_cluster_tag(self) -> None:
        client = FakeSecretsClient(pages=tagged_pages(), secret_string=SECRET)
        resolver = resolver_for(client)

        self.assertEqual(resolver.secret_arn(), TAGGED_ARN)
        self.assertEqual(client.list_calls, [])
        self.assertEqual(client.paginate_calls[0]["IncludePlannedDeletion"], False)

    def test_falls_back_to_name_prefix(self) -> None:
        client = FakeSecretsClient(
            pages=[{"SecretList": []}],
            name_matches=[{"ARN": NAMED_ARN, "Name": "rds!cluster-test"}, {"ARN": "arn:second"}],
        )
        resolver = resolver_for(client)

        self.assertEqual(resolver.secret_arn(), NAMED_ARN)
        self.assertEqual(
            client.list_calls[0]["Filters"], [{"Key": "name", "Values": ["rds!cluster-test"]}]
        )

    def test_no_secret_found(self) -> None:
        resolver = resolver_for(FakeSecretsClient(pages=[{"SecretList": []}]))
        with self.assertRaises(CredentialResolutionError) as ctx:
            resolver.secret_arn()
        self.assertIn(CLUSTER, str(ctx.exception))
        self.assertIsNone(resolver.cached_secret_arn)

    def test_listing_failure(self) -> None:
        class DeniedClient(FakeSecretsClient):
            def paginate(self, **kwargs):
                raise client_error("AccessDeniedException", "ListSecrets")

        with self.assertRaises(CredentialResolutionError):
            resolver_for(DeniedClient()).secret_arn()

    def test_requires_cluster_identifier(self) -> None:
        with self.assertRaises(CredentialResolutionError):
            CredentialResolver("", region="us-east-1", client=FakeSecretsClient())


class TestCredentials(unittest.TestCase):
    def test_arn_cached_but_value_fetched_each_time(self) -> None:
        client = FakeSecretsClient(pages=tagged_pages(), secret_string=SECRET)
        resolver = resolver_for(client)

        first = resolver.get_credentials()
        second = resolver.get_credentials()

        self.assertEqual(
            first,
            DatabaseCredentials(
                host="emr.cluster-xyz.rds.amazonaws.com", port=5432, user="emr_app", password="pw", database="emr"
            ),
        )
        self.assertEqual(first, second)
        self.assertEqual(len(client.paginate_calls), 1)
        self.assertEqual(client.get_calls, [TAGGED_ARN, TAGGED_ARN])
        self.assertNotIn("pw", repr(first))

    def test_host_and_database_fallbacks(self) -> None:
        secret = json.dumps({"username": "emr_app", "password": "pw"})
        client = FakeSecretsClient(pages=tagged_pages(), secret_string=secret)
        resolver = resolver_for(client, fallback_host="writer.example.com", fallback_database="emr_prod")

        creds = resolver.get_credentials()

        self.assertEqual(creds.host, "writer.example.com")
        self.assertEqual(creds.port, 5432)
        self.assertEqual(creds.database, "emr_prod")

    def test_missing_host_everywhere(self) -> None:
        secret = json.dumps({"username": "emr_app", "password": "pw"})
        resolver = resolver_for(FakeSecretsClient(pages=tagged_pages(), secret_string=secret))
        with self.assertRaises(CredentialRetrievalError):
            resolver.get_credentials()

    def test_malformed_secrets(self) -> None:
        for kwargs in (
            {"secret_binary": b"\x00\x01"},
            {"secret_string": "not json"},
            {"secret_string": json.dumps({"host": "h", "password": "pw"})},
        ):
            with self.subTest(kwargs=kwargs):
                resolver = resolver_for(FakeSecretsClient(pages=tagged_pages(), **kwargs))
                with self.assertRaises(CredentialRetrievalError):
                    resolver.get_credentials()

    def test_access_denied_forgets_cached_arn(self) -> None:
        client = FakeSecretsClient(pages=tagged_pages(), secret_string=SECRET)
        resolver = resolver_for(client)
        resolver.get_credentials()
        self.assertEqual(resolver.cached_secret_arn, TAGGED_ARN)

        client.get_error = client_error("AccessDeniedException")
        with self.assertRaises(CredentialRetrievalError):
            resolver.get_credentials()
        self.assertIsNone(resolver.cached_secret_arn)

        client.get_error = None
        resolver.get_credentials()
        self.assertEqual(len(client.paginate_calls), 2)

    def test_transient_errors_keep_cached_arn(self) -> None:
        client = FakeSecretsClient(pages=tagged_pages(), secret_string=SECRET)
        resolver = resolver_for(client)
        resolver.get_credentials()

        for error in (client_error("InternalServiceError"), EndpointConnectionError(endpoint_url="https://x")):
            with self.subTest(error=type(error).__name__):
                client.get_error = error
                with self.assertRaises(CredentialRetrievalError):
                    resolver.get_credentials()
                self.assertEqual(resolver.cached_secret_arn, TAGGED_ARN)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
