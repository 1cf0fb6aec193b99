import logging

from botocore.exceptions import ClientError

from eventhub.config import get_settings
from eventhub.database.dynamodb import get_db_connection

logger = logging.getLogger(__name__)


def _default_resource():
    settings = get_settings()
    return get_db_connection(
        settings.DYNAMODB_ENDPOINT_URL,
        region_name=settings.AWS_DEFAULT_REGION,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        timeout=settings.STORAGE_TIMEOUT_SECONDS,
    )


def create_table_if_not_exists(table_name="EventHub", dynamodb=None):
    """Create the single EventHub table (PK/SK) if it doesn't exist"""
    dynamodb = dynamodb or _default_resource()

    try:
        # Check if table exists
        table = dynamodb.Table(table_name)
        table.table_status
        logger.info("Table %s already exists", table_name)
        return table
    except ClientError as e:
        if e.response["Error"]["Code"] != "ResourceNotFoundException":
            raise

    table = dynamodb.create_table(
        TableName=table_name,
        KeySchema=[
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    # Wait for table to be ready
    logger.info("Creating table %s...", table_name)
    table.wait_until_exists()

    logger.info("Table %s created successfully", table_name)
    return table


def delete_table(table_name="EventHub", dynamodb=None):
    """Delete DynamoDB table"""
    dynamodb = dynamodb or _default_resource()

    try:
        table = dynamodb.Table(table_name)
        table.delete()
        table.wait_until_not_exists()
        logger.info("Table %s deleted successfully", table_name)
    except ClientError as e:
        if e.response["Error"]["Code"] != "ResourceNotFoundException":
            raise
        logger.info("Table %s does not exist", table_name)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_table_if_not_exists(get_settings().DYNAMODB_TABLE)
