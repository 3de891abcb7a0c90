"""
Change Publisher
Fans chart change notifications out to the live viewers of a patient.

Delivery is at-least-once to currently connected subscribers and ordered per
record by sequence (the record's updated_at). Publishing never blocks or fails
the writer: a full subscriber queue drops the event and flags the subscription
for a resync, after which the client re-fetches the full chart.
"""
import json
import logging
import queue
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

ENTITIES = ('tooth_diagnosis', 'appointment', 'treatment')
CHANGE_KINDS = ('insert', 'update', 'delete')


@dataclass(frozen=True)
class ChangeNotification:
    patient_id: str
    entity: str
    entity_id: Any
    change_kind: str
    sequence: Optional[datetime] = None

    def __post_init__(self):
        if self.entity not in ENTITIES:
            raise ValueError(f"Unknown entity: {self.entity}")
        if self.change_kind not in CHANGE_KINDS:
            raise ValueError(f"Unknown change kind: {self.change_kind}")

    @property
    def record_key(self):
        return (self.entity, str(self.entity_id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'patientId': self.patient_id,
            'entity': self.entity,
            'entityId': self.entity_id,
            'changeKind': self.change_kind,
            'sequence': self.sequence.isoformat() if self.sequence else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChangeNotification':
        sequence = data.get('sequence')
        return cls(
            patient_id=data['patientId'],
            entity=data['entity'],
            entity_id=data['entityId'],
            change_kind=data['changeKind'],
            sequence=datetime.fromisoformat(sequence) if sequence else None,
        )


class Subscription:
    """A single viewer's notification stream for one patient."""

    def __init__(self, patient_id: str, maxsize: int):
        self.patient_id = patient_id
        self.id = uuid.uuid4().hex
        self.needs_resync = False
        self._queue = queue.Queue(maxsize=maxsize)

    def offer(self, notification: ChangeNotification) -> bool:
        try:
            self._queue.put_nowait(notification)
            return True
        except queue.Full:
            self.needs_resync = True
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeNotification]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ChangeNotification]:
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def acknowledge_resync(self):
        """Client is about to re-fetch full state; anything still queued is superseded."""
        self.drain()
        self.needs_resync = False


class ChangePublisher:
    """In-process fan-out keyed by patient id."""

    def __init__(self, queue_size: int = 256, relay=None):
        self.queue_size = queue_size
        self.relay = relay
        self._lock = threading.Lock()
        self._subscribers = defaultdict(list)
        # (patient_id, entity, entity_id) -> last delivered sequence, only for watched patients
        self._last_sequence = {}

    def configure(self, queue_size: Optional[int] = None, relay=None):
        if queue_size:
            self.queue_size = queue_size
        self.relay = relay

    def subscribe(self, patient_id: str) -> Subscription:
        subscription = Subscription(str(patient_id), self.queue_size)
        with self._lock:
            self._subscribers[subscription.patient_id].append(subscription)
        logger.debug("Subscriber %s watching patient %s", subscription.id, patient_id)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscribers.get(subscription.patient_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.patient_id, None)
                self._last_sequence = {
                    key: value for key, value in self._last_sequence.items()
                    if key[0] != subscription.patient_id
                }

    def subscriber_count(self, patient_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(str(patient_id), []))

    def publish(self, notification: ChangeNotification, relay: bool = True) -> int:
        """
        Deliver a notification to the patient's current subscribers.

        Returns:
            int: number of subscriptions the notification was queued on
        """
        delivered = 0
        patient_id = str(notification.patient_id)
        with self._lock:
            subscribers = list(self._subscribers.get(patient_id, []))
            if subscribers:
                key = (patient_id,) + notification.record_key
                last = self._last_sequence.get(key)
                if notification.sequence is not None and last is not None and notification.sequence < last:
                    logger.debug("Dropping out-of-order change for %s (%s < %s)", key, notification.sequence, last)
                    subscribers = []
                elif notification.sequence is not None:
                    self._last_sequence[key] = notification.sequence

            for subscription in subscribers:
                if subscription.offer(notification):
                    delivered += 1
                else:
                    logger.warning("Subscriber %s queue full; flagged for resync", subscription.id)

        if relay and self.relay is not None:
            try:
                self.relay.send(notification)
            except Exception as e:
                logger.warning("Change relay publish failed: %s", e)

        return delivered


class RedisChangeRelay:
    """
    Carries notifications between processes (Celery workers -> web processes)
    over Redis pub/sub. Each process ignores the messages it sent itself.
    """

    def __init__(self, url: str, channel_prefix: str = 'chart-changes:'):
        import redis

        self.channel_prefix = channel_prefix
        self.origin = uuid.uuid4().hex
        self._client = redis.Redis.from_url(url)
        self._stop = threading.Event()

    def send(self, notification: ChangeNotification):
        payload = dict(notification.to_dict(), origin=self.origin)
        self._client.publish(f"{self.channel_prefix}{notification.patient_id}", json.dumps(payload, default=str))

    def handle_message(self, publisher: ChangePublisher, raw) -> bool:
        """Re-publish a relayed message locally. Returns True when it was delivered."""
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed relay message")
            return False
        if payload.pop('origin', None) == self.origin:
            return False
        try:
            notification = ChangeNotification.from_dict(payload)
        except (KeyError, ValueError) as e:
            logger.warning("Discarding invalid relay message: %s", e)
            return False
        publisher.publish(notification, relay=False)
        return True

    def listen(self, publisher: ChangePublisher):
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        pubsub.psubscribe(f"{self.channel_prefix}*")
        logger.info("Change relay listening on %s*", self.channel_prefix)
        try:
            while not self._stop.is_set():
                message = pubsub.get_message(timeout=1.0)
                if message and message.get('type') == 'pmessage':
                    self.handle_message(publisher, message['data'])
        finally:
            pubsub.close()

    def start_listener(self, publisher: ChangePublisher) -> threading.Thread:
        thread = threading.Thread(target=self.listen, args=(publisher,), name='change-relay', daemon=True)
        thread.start()
        return thread

    def stop(self):
        self._stop.set()


change_publisher = ChangePublisher()


def notify_change(patient_id, entity: str, entity_id, change_kind: str = 'update', sequence: Optional[datetime] = None) -> int:
    """Publish a change for a committed write. Never raises into the writer."""
    try:
        notification = ChangeNotification(
            patient_id=str(patient_id),
            entity=entity,
            entity_id=entity_id,
            change_kind=change_kind,
            sequence=sequence,
        )
        return change_publisher.publish(notification)
    except Exception as e:
        logger.warning("Change notification for %s %s failed: %s", entity, entity_id, e)
        return 0


def init_publisher(app):
    """Configure the process-wide publisher from app config."""
    relay = None
    relay_url = app.config.get('CHANGE_RELAY_URL')
    if relay_url:
        relay = RedisChangeRelay(relay_url, app.config.get('CHANGE_CHANNEL_PREFIX', 'chart-changes:'))
        if app.config.get('CHANGE_RELAY_LISTEN', True):
            relay.start_listener(change_publisher)
    change_publisher.configure(queue_size=app.config.get('SUBSCRIBER_QUEUE_SIZE'), relay=relay)
    return change_publisher
