from types import SimpleNamespace

from kafka.structs import TopicPartition

from queue_service import KafkaQueue

TOPIC = "video-processing"


class RecordingConsumer:
    """Stands in for KafkaConsumer: hands out queued batches and records commits."""

    def __init__(self, *batches):
        self.batches = list(batches)
        self.commits = []

    def poll(self, timeout_ms=0, max_records=None):
        if not self.batches:
            return {}
        result = {}
        for partition, offset in self.batches.pop(0):
            record = SimpleNamespace(topic=TOPIC, partition=partition, offset=offset,
                                     value={"job_id": f"job-{offset}"})
            result.setdefault(TopicPartition(TOPIC, partition), []).append(record)
        return result

    def commit(self, offsets=None):
        self.commits.append({tp: meta.offset for tp, meta in offsets.items()})


def kafka_queue(*batches):
    queue = KafkaQueue(topic=TOPIC)
    queue.consumer = RecordingConsumer(*batches)
    return queue


def test_receive_returns_job_bodies():
    queue = kafka_queue([(0, 5)])

    [message] = queue.receive()

    assert message == {"body": {"job_id": "job-5"}, "receipt_handle": f"{TOPIC}:0:5"}


def test_finished_job_commits_next_offset():
    queue = kafka_queue([(0, 5)])
    [message] = queue.receive()

    assert queue.delete(message["receipt_handle"]) is True

    assert queue.consumer.commits == [{TopicPartition(TOPIC, 0): 6}]


def test_later_job_finishing_first_does_not_commit_past_running_job():
    queue = kafka_queue([(0, 5)], [(0, 6)])
    first = queue.receive()[0]["receipt_handle"]
    second = queue.receive()[0]["receipt_handle"]

    queue.delete(second)
    assert queue.consumer.commits == []

    queue.delete(first)
    assert queue.consumer.commits == [{TopicPartition(TOPIC, 0): 7}]


def test_commit_stops_at_oldest_unfinished_job():
    queue = kafka_queue([(0, 5)], [(0, 6)], [(0, 7)])
    handles = [queue.receive()[0]["receipt_handle"] for _ in range(3)]

    queue.delete(handles[0])
    queue.delete(handles[2])

    assert queue.consumer.commits == [{TopicPartition(TOPIC, 0): 6}]


def test_partitions_are_committed_independently():
    queue = kafka_queue([(0, 5), (1, 9)])
    handles = [m["receipt_handle"] for m in queue.receive(max_messages=2)]

    queue.delete(f"{TOPIC}:1:9")

    assert f"{TOPIC}:1:9" in handles
    assert queue.consumer.commits == [{TopicPartition(TOPIC, 1): 10}]


def test_delete_before_consuming_is_a_no_op():
    assert KafkaQueue(topic=TOPIC).delete(f"{TOPIC}:0:1") is False
