# File: parkreserve/infrastructure/messaging.py
"""
Messaging Infrastructure for the Parking Reservation Client

This module provides:
1. EventBus - In-process publish/subscribe for ledger domain events
2. Notifier - User-facing notifications (the toasts of the UI)
3. MessageQueue - Topic transport (Redis Pub/Sub, in-memory for tests)
4. RealtimeChannel - Server push subscriptions on top of a MessageQueue
5. SystemMonitorFeed / ReservationUpdateListener - Read-only consumers

Real-time events never mutate the ledger; they only produce notifications
and log entries. Malformed payloads are logged and dropped.
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Type, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4
import json
import logging
import threading

import redis
from pydantic import ValidationError as PydanticValidationError

from ..domain.models import DomainEvent
from ..application.dtos import SystemMonitorEventDTO, ReservaStatusEventDTO

SYSTEM_MONITOR_TOPIC = "system-monitor"
RESERVA_UPDATES_TOPIC = "reserva-updates"
SYSTEM_MONITOR_EVENT = "system.monitor"
RESERVA_STATUS_EVENT = "reserva.status"
CONNECTION_EVENT = "connection"
MAX_MONITOR_EVENTS = 50
MAX_RESERVATION_UPDATES = 50


def user_reservas_topic(user_id: Union[int, str]) -> str:
    return f"user.{user_id}.reservas"


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

EventCallback = Callable[[DomainEvent], None]


class EventBus:
    """
    In-memory event bus for intra-process event publishing

    Handlers subscribe to an event class (or "*" for every event). A failing
    handler is logged and does not stop the others.
    """

    ALL_EVENTS = "*"

    def __init__(self):
        self._subscribers: Dict[str, List[EventCallback]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _key(event_type: Union[str, Type[DomainEvent]]) -> str:
        return event_type if isinstance(event_type, str) else event_type.__name__

    def subscribe(self, event_type: Union[str, Type[DomainEvent]], handler: EventCallback) -> None:
        """Subscribe to events of a specific type"""
        handlers = self._subscribers.setdefault(self._key(event_type), [])
        if handler not in handlers:
            handlers.append(handler)
            self._logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {self._key(event_type)}")

    def unsubscribe(self, event_type: Union[str, Type[DomainEvent]], handler: EventCallback) -> None:
        handlers = self._subscribers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        """Publish an event to all subscribers"""
        self._logger.info(f"Publishing event: {event.name} (ID: {event.event_id})")

        handlers = self._subscribers.get(event.name, []) + self._subscribers.get(self.ALL_EVENTS, [])
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self._logger.error(f"Error handling event {event.name}: {e}", exc_info=True)

    def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish(event)

    def clear_subscribers(self) -> None:
        """Clear all subscribers (for testing)"""
        self._subscribers.clear()


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class NotificationVariant(str, Enum):
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass
class Notification:
    """User-facing notification"""
    title: str
    description: str = ""
    variant: NotificationVariant = NotificationVariant.DEFAULT
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_error(self) -> bool:
        return self.variant == NotificationVariant.DESTRUCTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "variant": self.variant.value,
            "created_at": self.created_at.isoformat()
        }


class Notifier:
    """Collects notifications and forwards them to listeners (a UI, a log)"""

    def __init__(self, history_size: int = 100):
        self._listeners: List[Callable[[Notification], None]] = []
        self.history: Deque[Notification] = deque(maxlen=history_size)
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, listener: Callable[[Notification], None]) -> None:
        self._listeners.append(listener)

    def notify(
        self,
        title: str,
        description: str = "",
        variant: NotificationVariant = NotificationVariant.DEFAULT
    ) -> Notification:
        notification = Notification(title=title, description=description, variant=variant)
        self.history.append(notification)

        log = self._logger.warning if notification.is_error else self._logger.info
        log(f"{title}: {description}")

        for listener in self._listeners:
            try:
                listener(notification)
            except Exception as e:
                self._logger.error(f"Error in notification listener: {e}")
        return notification

    def error(self, title: str, description: str = "") -> Notification:
        return self.notify(title, description, NotificationVariant.DESTRUCTIVE)

    @property
    def last(self) -> Optional[Notification]:
        return self.history[-1] if self.history else None


# ============================================================================
# MESSAGE QUEUE ABSTRACTIONS
# ============================================================================

@dataclass
class ChannelMessage:
    """Broadcast envelope: an event name plus its payload"""
    event: str
    data: Dict[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    def to_json(self) -> str:
        return json.dumps({
            "event": self.event,
            "data": self.data,
            "message_id": self.message_id,
            "timestamp": self.timestamp.isoformat()
        }, default=str)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> 'ChannelMessage':
        """Raises: ValueError/KeyError/TypeError on malformed input"""
        data = json.loads(raw)
        return cls(
            event=data["event"],
            data=dict(data.get("data") or {}),
            message_id=data.get("message_id") or str(uuid4()),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now()
        )


class MessageQueue(ABC):
    """Abstract topic transport"""

    @abstractmethod
    def publish(self, topic: str, message: ChannelMessage) -> bool:
        pass

    @abstractmethod
    def subscribe(self, topic: str, callback: Callable[[ChannelMessage], None]) -> str:
        pass

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> bool:
        pass

    def ping(self) -> bool:
        """Whether the transport is reachable"""
        return True

    def close(self) -> None:
        pass


# ============================================================================
# REDIS MESSAGE QUEUE
# ============================================================================

class RedisMessageQueue(MessageQueue):
    """
    Redis Pub/Sub transport

    Each topic is registered once with redis-py, which calls _handle_message
    from the worker thread started by run_in_thread. Subscriber callbacks
    therefore run off the caller's thread.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", poll_interval: float = 1.0, **kwargs):
        self.redis_url = redis_url
        self.poll_interval = poll_interval
        self._logger = logging.getLogger(self.__class__.__name__)

        self.redis_client = redis.Redis.from_url(redis_url, **kwargs)
        self.pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)

        # topic -> subscription id -> callback
        self._handlers: Dict[str, Dict[str, Callable[[ChannelMessage], None]]] = {}
        self._worker: Optional[Any] = None

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            self._logger.error(f"Redis not reachable at {self.redis_url}: {e}")
            return False

    def publish(self, topic: str, message: ChannelMessage) -> bool:
        try:
            receivers = self.redis_client.publish(topic, message.to_json())
        except redis.RedisError as e:
            self._logger.error(f"Error publishing {message.event} to {topic}: {e}")
            return False
        self._logger.debug(f"{message.event} on {topic} reached {receivers} receivers")
        return receivers > 0

    def subscribe(self, topic: str, callback: Callable[[ChannelMessage], None]) -> str:
        subscription_id = str(uuid4())
        handlers = self._handlers.setdefault(topic, {})
        if not handlers:
            self.pubsub.subscribe(**{topic: self._handle_message})
        handlers[subscription_id] = callback

        if self._worker is None:
            self._worker = self.pubsub.run_in_thread(sleep_time=self.poll_interval, daemon=True)
            self._logger.info(f"Listening on {self.redis_url}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        topic = next((t for t, handlers in self._handlers.items() if subscription_id in handlers), None)
        if topic is None:
            return False

        handlers = self._handlers[topic]
        del handlers[subscription_id]
        if not handlers:
            del self._handlers[topic]
            self.pubsub.unsubscribe(topic)
        return True

    def _handle_message(self, redis_message: Dict[str, Any]) -> None:
        channel = redis_message['channel']
        topic = channel.decode('utf-8') if isinstance(channel, bytes) else channel
        try:
            message = ChannelMessage.from_json(redis_message['data'])
        except (ValueError, KeyError, TypeError) as e:
            self._logger.warning(f"Dropping malformed message on {topic}: {e}")
            return

        for subscription_id, callback in list(self._handlers.get(topic, {}).items()):
            try:
                callback(message)
            except Exception as e:
                self._logger.error(f"Subscriber {subscription_id} failed on {topic}: {e}")

    def close(self) -> None:
        if self._worker is not None:
            self._worker.stop()
            self._worker.join(timeout=5.0)
            self._worker = None

        self.pubsub.close()
        self.redis_client.close()
        self._logger.info("Redis message queue closed")


# ============================================================================
# IN-MEMORY MESSAGE QUEUE
# ============================================================================

class InMemoryMessageQueue(MessageQueue):
    """Synchronous in-process transport for tests and offline runs"""

    def __init__(self):
        self._handlers: Dict[str, Dict[str, Callable[[ChannelMessage], None]]] = {}
        self._messages: Dict[str, List[ChannelMessage]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def publish(self, topic: str, message: ChannelMessage) -> bool:
        self._messages.setdefault(topic, []).append(message)

        for subscription_id, callback in list(self._handlers.get(topic, {}).items()):
            try:
                callback(message)
            except Exception as e:
                self._logger.error(f"Subscriber {subscription_id} failed on {topic}: {e}")
        return True

    def publish_raw(self, topic: str, raw: str) -> bool:
        """Deliver an undecoded payload, as a broker would (for testing)"""
        try:
            message = ChannelMessage.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            self._logger.warning(f"Dropping malformed message on {topic}: {e}")
            return False
        return self.publish(topic, message)

    def subscribe(self, topic: str, callback: Callable[[ChannelMessage], None]) -> str:
        subscription_id = str(uuid4())
        self._handlers.setdefault(topic, {})[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        for handlers in self._handlers.values():
            if handlers.pop(subscription_id, None) is not None:
                return True
        return False

    def get_messages(self, topic: str) -> List[ChannelMessage]:
        return list(self._messages.get(topic, []))

    def clear(self):
        self._handlers.clear()
        self._messages.clear()


# ============================================================================
# REAL-TIME CHANNEL
# ============================================================================

class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class RealtimeChannel:
    """
    Server push subscriptions

    Topics: system-monitor (system.monitor), reserva-updates and
    user.{id}.reservas (reserva.status). Payloads are validated into DTOs
    before reaching callbacks.
    """

    def __init__(self, queue: MessageQueue):
        self.queue = queue
        self.status = ConnectionStatus.DISCONNECTED
        self._listeners: Dict[str, List[Callable[[Dict[str, Any]], None]]] = {}
        self._subscription_ids: List[str] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Connection state
    # ------------------------------------------------------------------

    def connect(self) -> ConnectionStatus:
        self._set_status(ConnectionStatus.CONNECTING)
        if self.queue.ping():
            self._set_status(ConnectionStatus.CONNECTED)
        else:
            self._set_status(ConnectionStatus.ERROR, error="Broker not reachable")
        return self.status

    def disconnect(self) -> None:
        for subscription_id in self._subscription_ids:
            self.queue.unsubscribe(subscription_id)
        self._subscription_ids.clear()
        self._set_status(ConnectionStatus.DISCONNECTED)

    def reconnect(self) -> ConnectionStatus:
        return self.connect()

    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def add_event_listener(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def remove_event_listener(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def _set_status(self, status: ConnectionStatus, error: Optional[str] = None) -> None:
        self.status = status
        payload: Dict[str, Any] = {"status": status.value}
        if error:
            payload["error"] = error
        self._logger.info(f"Real-time channel {status.value}")
        for listener in self._listeners.get(CONNECTION_EVENT, []):
            listener(payload)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe_to_system_monitor(self, callback: Callable[[SystemMonitorEventDTO], None]) -> str:
        return self._listen(SYSTEM_MONITOR_TOPIC, SYSTEM_MONITOR_EVENT, SystemMonitorEventDTO, callback)

    def subscribe_to_reserva_updates(self, callback: Callable[[ReservaStatusEventDTO], None]) -> str:
        return self._listen(RESERVA_UPDATES_TOPIC, RESERVA_STATUS_EVENT, ReservaStatusEventDTO, callback)

    def subscribe_to_user_reservas(self, user_id: Union[int, str], callback: Callable[[ReservaStatusEventDTO], None]) -> str:
        return self._listen(user_reservas_topic(user_id), RESERVA_STATUS_EVENT, ReservaStatusEventDTO, callback)

    def broadcast(self, topic: str, event: str, data: Dict[str, Any]) -> bool:
        return self.queue.publish(topic, ChannelMessage(event=event, data=data))

    def _listen(self, topic: str, event: str, dto_class, callback) -> str:
        def on_message(message: ChannelMessage) -> None:
            if message.event != event:
                return
            try:
                payload = dto_class.from_dict(message.data)
            except PydanticValidationError as e:
                self._logger.warning(f"Dropping malformed {event} payload on {topic}: {e.error_count()} errors")
                return
            callback(payload)

        subscription_id = self.queue.subscribe(topic, on_message)
        self._subscription_ids.append(subscription_id)
        return subscription_id


# ============================================================================
# READ-ONLY CONSUMERS
# ============================================================================

class SystemMonitorFeed:
    """Keeps the most recent system monitor events, newest first"""

    def __init__(self, channel: RealtimeChannel, max_events: int = MAX_MONITOR_EVENTS):
        self.events: Deque[SystemMonitorEventDTO] = deque(maxlen=max_events)
        self.services: Dict[str, SystemMonitorEventDTO] = {}
        self._logger = logging.getLogger(self.__class__.__name__)
        channel.subscribe_to_system_monitor(self._on_event)

    def _on_event(self, event: SystemMonitorEventDTO) -> None:
        self.events.appendleft(event)
        self.services[event.service] = event
        if event.status == "error":
            self._logger.warning(f"Service {event.service} reported an error: {event.data}")

    def service_status(self, service: str) -> Optional[str]:
        event = self.services.get(service)
        return event.status if event else None

    def clear(self) -> None:
        self.events.clear()
        self.services.clear()


class ReservationUpdateListener:
    """
    Turns reservation status broadcasts into notifications

    Runs on the queue's listener thread, so it never touches the ledger:
    it only raises a stale flag that the main thread consumes before
    refreshing its cache.
    """

    MESSAGES = {
        "created": "Nueva reserva creada",
        "updated": "Reserva actualizada",
        "deleted": "Reserva eliminada",
        "finalized": "Reserva finalizada",
    }

    def __init__(
        self,
        channel: RealtimeChannel,
        notifier: Notifier,
        user_id: Optional[Union[int, str]] = None,
        max_events: int = MAX_RESERVATION_UPDATES
    ):
        self.notifier = notifier
        self.received: Deque[ReservaStatusEventDTO] = deque(maxlen=max_events)
        self._stale = threading.Event()
        if user_id is None:
            channel.subscribe_to_reserva_updates(self._on_event)
        else:
            channel.subscribe_to_user_reservas(user_id, self._on_event)

    def _on_event(self, event: ReservaStatusEventDTO) -> None:
        self.received.appendleft(event)
        self._stale.set()
        self.notifier.notify(
            self.MESSAGES.get(event.action, "Reserva actualizada"),
            f"Ticket #{event.ticket_id}: {event.status}"
        )

    def consume_stale(self) -> bool:
        """True once per burst of updates received since the last call"""
        if not self._stale.is_set():
            return False
        self._stale.clear()
        return True
