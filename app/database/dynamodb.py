import logging
import os

import boto3
from botocore.config import Config
from botocore.exceptions import NoCredentialsError

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "Eventify"


def get_table_name():
    return os.getenv("EVENTIFY_TABLE_NAME", DEFAULT_TABLE_NAME)


def get_client_config():
    """Timeouts and retry policy shared by every DynamoDB call"""
    return Config(
        connect_timeout=float(os.getenv("DYNAMODB_CONNECT_TIMEOUT", "2")),
        read_timeout=float(os.getenv("DYNAMODB_READ_TIMEOUT", "5")),
        retries={
            "max_attempts": int(os.getenv("DYNAMODB_MAX_ATTEMPTS", "3")),
            "mode": "standard",
        },
    )


def get_db_connection():
    try:
        dynamodb = boto3.resource(
            "dynamodb",
            endpoint_url=os.getenv(
                "DYNAMODB_ENDPOINT_URL", "http://dynamodb-local:8000"
            ),
            region_name=os.getenv("AWS_DEFAULT_REGION", "us-east-1"),
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", "fake"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", "fake"),
            config=get_client_config(),
        )
        return dynamodb
    except NoCredentialsError:
        logger.error("AWS credentials not available for DynamoDB")
        return None


def get_s3_client():
    """S3 client for the image bucket, or None when no bucket is configured"""
    if not os.getenv("EVENTIFY_IMAGE_BUCKET"):
        return None
    return boto3.client(
        "s3",
        endpoint_url=os.getenv("S3_ENDPOINT_URL") or None,
        region_name=os.getenv("AWS_DEFAULT_REGION", "us-east-1"),
    )
