import threading
import boto3
from boto3.dynamodb.conditions import Attr
from typing import Optional, Dict, Any
from botocore.exceptions import ClientError
from image_server.settings import settings
import logging

log = logging.getLogger(__name__)

# -------------------------
# DynamoDB Service
# -------------------------
class DynamoDBService:
    """Image documents keyed by image_id.

    boto3 resources are not thread safe, so every thread gets its own
    session and resource.
    """
    def __init__(self, table_name: str = None):
        self.table_name = table_name or settings.dynamodb_table
        self._local = threading.local()
        log.info("Initialized DynamoDB resource")

        # Ensure table exists at initialization
        self.ensure_table()

    @property
    def resource(self):
        resource = getattr(self._local, "resource", None)
        if resource is None:
            session = boto3.session.Session(region_name=settings.aws_region)
            kwargs = {
                "aws_access_key_id": settings.aws_access_key_id,
                "aws_secret_access_key": settings.aws_secret_access_key,
            }
            if settings.aws_endpoint_url:
                kwargs["endpoint_url"] = settings.aws_endpoint_url
            resource = session.resource("dynamodb", **kwargs)
            self._local.resource = resource
        return resource

    def table(self):
        return self.resource.Table(self.table_name)

    # Refer here: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/dynamodb/client/create_table.html
    def ensure_table(self):
        try:
            table = self.table()
            table.load()
        except ClientError:
            table = self.resource.create_table(
                TableName=self.table_name,
                KeySchema=[{"AttributeName": "image_id", "KeyType": "HASH"}],
                AttributeDefinitions=[
                    {"AttributeName": "image_id", "AttributeType": "S"},
                ],
                ProvisionedThroughput={"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
            )
            table.wait_until_exists()
            log.info("Created table %s", self.table_name)

    def put_metadata(self, item: Dict[str, Any]):
        self.table().put_item(Item=item)
        log.debug("Inserted metadata %s", item.get("image_id"))

    def get_metadata(self, image_id: str) -> Optional[Dict[str, Any]]:
        resp = self.table().get_item(Key={"image_id": image_id})
        return resp.get("Item")

    def delete_metadata(self, image_id: str):
        self.table().delete_item(Key={"image_id": image_id})
        log.debug("Deleted metadata %s", image_id)

    def scan_metadata(
        self,
        filter_expression: Optional[Dict[str, Any]] = None,
        limit: int = 50,
        exclusive_start_key: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Scans one page. Dotted keys such as "metadata.size" address nested attributes."""
        scan_kwargs = {"Limit": limit}
        if exclusive_start_key:
            scan_kwargs["ExclusiveStartKey"] = exclusive_start_key
        if filter_expression:
            filters = None
            for k, v in filter_expression.items():
                cond = Attr(k).eq(v)
                filters = cond if filters is None else filters & cond
            if filters is not None:
                scan_kwargs["FilterExpression"] = filters
        return self.table().scan(**scan_kwargs)

    def find_first(self, filter_expression: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Returns the first item matching every filter, following scan pages."""
        start_key = None
        while True:
            resp = self.scan_metadata(filter_expression, limit=100, exclusive_start_key=start_key)
            items = resp.get("Items", [])
            if items:
                return items[0]
            start_key = resp.get("LastEvaluatedKey")
            if not start_key:
                return None

    def close(self):
        log.info("Closed DynamoDB resource")
