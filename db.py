import logging

from abc import ABC, abstractmethod
from typing import Any, Dict, List

import boto3
from botocore.exceptions import ClientError
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import Settings

logger = logging.getLogger(__name__)


class DatabaseService(ABC):
    @abstractmethod
    def insert(self, data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        pass

    @abstractmethod
    def find(self, query: Dict[str, Any], **kwargs) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def update(self, query: Dict[str, Any], update_data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        pass


class DynamoDBService(DatabaseService):
    """
    DynamoDB store for status records.

    Assumptions:
    - The table has a partition key named 'job_id' (string).
    - Items are stored as plain attribute maps; numbers come back as Decimal.
    - Records are only ever read by primary key; update_item creates the
      item when it is missing, so every update is an upsert.
    """

    def __init__(self, table_name: str, region_name: str = 'ap-south-2', **config):
        self.table_name = table_name
        self.client = boto3.client('dynamodb', region_name=region_name, **config)
        self.resource = boto3.resource('dynamodb', region_name=region_name, **config)
        self.table = self.resource.Table(table_name)

        logger.info("DynamoDBService initialized with table_name: %s, region_name: %s", table_name, region_name)

        self._ensure_table_exists()

    def _ensure_table_exists(self) -> None:
        try:
            self.client.describe_table(TableName=self.table_name)
            return
        except self.client.exceptions.ResourceNotFoundException:
            logger.info("Creating DynamoDB table '%s' for status records...", self.table_name)
            try:
                self.client.create_table(
                    TableName=self.table_name,
                    KeySchema=[
                        {"AttributeName": "job_id", "KeyType": "HASH"},
                    ],
                    AttributeDefinitions=[
                        {"AttributeName": "job_id", "AttributeType": "S"},
                    ],
                    BillingMode="PAY_PER_REQUEST",
                )
                waiter = self.client.get_waiter("table_exists")
                waiter.wait(TableName=self.table_name)
                logger.info("DynamoDB table '%s' created successfully.", self.table_name)
            except ClientError as e:
                raise RuntimeError(f"Failed to create DynamoDB table '{self.table_name}': {e}") from e

    def insert(self, data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        try:
            response = self.table.put_item(
                Item=data,
                ConditionExpression="attribute_not_exists(job_id)",
                **kwargs,
            )
            return {"success": True, "response": response}
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise RuntimeError("DynamoDB insert failed: item with this job_id already exists") from e
            raise RuntimeError(f"DynamoDB insert failed: {e}") from e

    def find(self, query: Dict[str, Any], **kwargs) -> List[Dict[str, Any]]:
        if set(query.keys()) != {'job_id'}:
            raise ValueError("DynamoDB find only supports lookups by job_id")
        try:
            response = self.table.get_item(Key={'job_id': query['job_id']}, ConsistentRead=True)
        except ClientError as e:
            raise RuntimeError(f"DynamoDB find failed: {e}") from e
        item = response.get('Item')
        return [item] if item else []

    def update(self, query: Dict[str, Any], update_data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        update_parts = [f"#{k} = :{k}" for k in update_data.keys()]
        try:
            response = self.table.update_item(
                Key=query,
                UpdateExpression="SET " + ", ".join(update_parts),
                ExpressionAttributeValues={f":{k}": v for k, v in update_data.items()},
                ExpressionAttributeNames={f"#{k}": k for k in update_data.keys()},
                ReturnValues='ALL_NEW',
            )
        except ClientError as e:
            raise RuntimeError(f"DynamoDB update failed: {e}") from e
        return {'success': True, 'attributes': response.get('Attributes', {})}


class MongoDBService(DatabaseService):
    def __init__(self, database: str, collection: str,
                 host: str = 'localhost', port: int = 27017, **config):
        connection_string = config.pop('connection_string', None)

        if connection_string:
            self.client = MongoClient(connection_string, **config)
        else:
            self.client = MongoClient(host=host, port=port, **config)

        self.db = self.client[database]
        self.collection = self.db[collection]
        self.collection.create_index('job_id', unique=True)

    def insert(self, data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        try:
            result = self.collection.insert_one(dict(data), **kwargs)
            return {'success': True, 'inserted_id': str(result.inserted_id)}
        except PyMongoError as e:
            raise RuntimeError(f"MongoDB insert failed: {e}") from e

    def find(self, query: Dict[str, Any], **kwargs) -> List[Dict[str, Any]]:
        try:
            limit = kwargs.pop('limit', 0)
            cursor = self.collection.find(query, {'_id': 0}, **kwargs)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except PyMongoError as e:
            raise RuntimeError(f"MongoDB find failed: {e}") from e

    def update(self, query: Dict[str, Any], update_data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        upsert = kwargs.pop('upsert', True)
        if not any(k.startswith('$') for k in update_data.keys()):
            update_data = {'$set': update_data}
        try:
            result = self.collection.update_one(query, update_data, upsert=upsert, **kwargs)
        except PyMongoError as e:
            raise RuntimeError(f"MongoDB update failed: {e}") from e
        return {
            'success': True,
            'matched_count': result.matched_count,
            'modified_count': result.modified_count
        }

    def close(self):
        self.client.close()


class DatabaseWrapper:
    def __init__(self, service_type: str, **config):
        if service_type.lower() == 'dynamodb':
            self.db = DynamoDBService(**config)
        elif service_type.lower() == 'mongodb':
            self.db = MongoDBService(**config)
        else:
            raise ValueError(f"Unknown service type: {service_type}")

    def insert(self, data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        return self.db.insert(data, **kwargs)

    def find(self, query: Dict[str, Any], **kwargs) -> List[Dict[str, Any]]:
        return self.db.find(query, **kwargs)

    def update(self, query: Dict[str, Any], update_data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        return self.db.update(query, update_data, **kwargs)

    def close(self):
        if hasattr(self.db, 'close'):
            self.db.close()


def get_db_client(settings: Settings) -> DatabaseWrapper:
    logger.info("DB_BACKEND: %s, DB_NAME: %s", settings.db_backend, settings.db_name)

    if settings.db_backend == "mongodb":
        return DatabaseWrapper(
            service_type="mongodb",
            database=settings.db_name,
            collection=settings.mongo_jobs_collection,
            connection_string=settings.mongo_url,
        )
    elif settings.db_backend == "dynamodb":
        return DatabaseWrapper(
            service_type="dynamodb",
            table_name=settings.db_name,
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key,
            aws_secret_access_key=settings.aws_secret_access_key,
        )
    else:
        raise ValueError(f"DB_BACKEND not supported: {settings.db_backend}")
