import json
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

import boto3
from botocore.exceptions import ClientError
from kafka import KafkaConsumer, KafkaProducer
from kafka.structs import OffsetAndMetadata, TopicPartition

from config import Settings


class QueueService(ABC):
    @abstractmethod
    def send(self, message: Any, key: Optional[str] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    def receive(self, max_messages: int = 1, wait_seconds: int = 5) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def delete(self, receipt_handle: str) -> bool:
        pass

    def close(self):
        pass


class KafkaQueue(QueueService):
    """
    Kafka topic used as a job queue.

    Offsets are committed manually after a job finishes, so a job whose worker
    dies is redelivered to the consumer group. The lease is
    max_poll_interval_ms: a consumer that stays silent longer is evicted and
    its partitions are reassigned.

    Several jobs of one partition can be in flight at once. The committed
    offset only moves past a message once every earlier message polled from
    that partition has been deleted as well.
    """

    def __init__(self, bootstrap_servers: str = 'localhost:9092',
                 topic: str = 'video-processing', group_id: str = 'video-processors',
                 lock_seconds: int = 600):
        self.topic = topic
        self.bootstrap_servers = bootstrap_servers.split(',')
        self.group_id = group_id
        self.lock_seconds = lock_seconds
        self.producer = None
        self.consumer = None
        # kafka-python consumers are not thread safe.
        self._lock = threading.Lock()
        self._in_flight: Dict[TopicPartition, Set[int]] = {}
        self._next_offset: Dict[TopicPartition, int] = {}
        self._committed: Dict[TopicPartition, int] = {}

    def _get_producer(self) -> KafkaProducer:
        if not self.producer:
            self.producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda v: json.dumps(v).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None
            )
        return self.producer

    def _get_consumer(self) -> KafkaConsumer:
        if not self.consumer:
            self.consumer = KafkaConsumer(
                self.topic,
                bootstrap_servers=self.bootstrap_servers,
                group_id=self.group_id,
                value_deserializer=lambda m: json.loads(m.decode('utf-8')),
                auto_offset_reset='earliest',
                enable_auto_commit=False,
                max_poll_interval_ms=self.lock_seconds * 1000,
            )
        return self.consumer

    def send(self, message: Any, key: Optional[str] = None) -> Dict[str, Any]:
        producer = self._get_producer()
        future = producer.send(self.topic, key=key, value=message)
        producer.flush()
        metadata = future.get(timeout=10)
        return {
            'topic': metadata.topic,
            'partition': metadata.partition,
            'offset': metadata.offset
        }

    def receive(self, max_messages: int = 1, wait_seconds: int = 5) -> List[Dict[str, Any]]:
        messages = []
        with self._lock:
            records = self._get_consumer().poll(timeout_ms=wait_seconds * 1000, max_records=max_messages)
            for tp, records_list in records.items():
                for record in records_list:
                    self._in_flight.setdefault(tp, set()).add(record.offset)
                    self._committed.setdefault(tp, record.offset)
                    messages.append({
                        'body': record.value,
                        'receipt_handle': f"{record.topic}:{record.partition}:{record.offset}",
                    })
        return messages

    def delete(self, receipt_handle: str) -> bool:
        if not self.consumer:
            return False
        topic, partition, offset = receipt_handle.rsplit(':', 2)
        tp = TopicPartition(topic, int(partition))
        offset = int(offset)

        with self._lock:
            in_flight = self._in_flight.get(tp, set())
            in_flight.discard(offset)
            self._next_offset[tp] = max(self._next_offset.get(tp, 0), offset + 1)
            position = min(in_flight) if in_flight else self._next_offset[tp]
            if position <= self._committed.get(tp, -1):
                return True
            self.consumer.commit({tp: OffsetAndMetadata(position, None, -1)})
            self._committed[tp] = position
        return True

    def close(self):
        if self.producer:
            self.producer.close()
        if self.consumer:
            self.consumer.close()


class SQSQueue(QueueService):
    """SQS queue; the visibility timeout is the job lease."""

    def __init__(self, queue_url: str, region_name: str = 'ap-south-2', lock_seconds: int = 600, **config):
        self.queue_url = queue_url
        self.lock_seconds = lock_seconds
        self.client = boto3.client('sqs', region_name=region_name, **config)

    def send(self, message: Any, key: Optional[str] = None) -> Dict[str, Any]:
        message_body = json.dumps(message) if not isinstance(message, str) else message
        try:
            response = self.client.send_message(
                QueueUrl=self.queue_url,
                MessageBody=message_body,
            )
            return {
                'message_id': response['MessageId'],
                'md5': response['MD5OfMessageBody']
            }
        except ClientError as e:
            raise RuntimeError(f"SQS send failed: {e}") from e

    def receive(self, max_messages: int = 1, wait_seconds: int = 5) -> List[Dict[str, Any]]:
        try:
            response = self.client.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=min(max_messages, 10),
                WaitTimeSeconds=wait_seconds,
                VisibilityTimeout=self.lock_seconds,
            )
        except ClientError as e:
            raise RuntimeError(f"SQS receive failed: {e}") from e

        messages = []
        for msg in response.get('Messages', []):
            messages.append({
                'body': json.loads(msg['Body']) if self._is_json(msg['Body']) else msg['Body'],
                'receipt_handle': msg['ReceiptHandle'],
            })
        return messages

    def delete(self, receipt_handle: str) -> bool:
        try:
            self.client.delete_message(
                QueueUrl=self.queue_url,
                ReceiptHandle=receipt_handle
            )
            return True
        except ClientError:
            return False

    @staticmethod
    def _is_json(s: str) -> bool:
        try:
            json.loads(s)
            return True
        except (ValueError, TypeError):
            return False


class QueueWrapper:
    def __init__(self, service_type: str, **config):
        if service_type.lower() == 'kafka':
            self.queue = KafkaQueue(**config)
        elif service_type.lower() == 'sqs':
            self.queue = SQSQueue(**config)
        else:
            raise ValueError(f"Unknown service type: {service_type}")

    def send(self, message: Any, key: Optional[str] = None) -> Dict[str, Any]:
        return self.queue.send(message, key=key)

    def receive(self, max_messages: int = 1, wait_seconds: int = 5) -> List[Dict[str, Any]]:
        return self.queue.receive(max_messages=max_messages, wait_seconds=wait_seconds)

    def delete(self, receipt_handle: str) -> bool:
        return self.queue.delete(receipt_handle)

    def close(self):
        self.queue.close()


def get_queue(settings: Settings) -> QueueWrapper:
    if settings.queue_backend == 'kafka':
        return QueueWrapper(
            'kafka',
            bootstrap_servers=settings.kafka_bootstrap_servers,
            topic=settings.kafka_topic,
            group_id=settings.kafka_consumer_group,
            lock_seconds=settings.job_lock_seconds,
        )
    elif settings.queue_backend == 'sqs':
        if not settings.sqs_queue_url:
            raise ValueError("SQS_QUEUE_URL not defined")
        return QueueWrapper(
            'sqs',
            queue_url=settings.sqs_queue_url,
            region_name=settings.aws_region,
            lock_seconds=settings.job_lock_seconds,
            aws_access_key_id=settings.aws_access_key,
            aws_secret_access_key=settings.aws_secret_access_key,
        )
    raise ValueError(f"QUEUE_BACKEND not supported: {settings.queue_backend}")
