"""Environment required to import the Lambda entrypoint in tests."""

import os

os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("DB_CLUSTER_IDENTIFIER", "emr-aurora-cluster-test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
