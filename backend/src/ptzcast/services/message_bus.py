"""Message bus for ptzcast.

Topics published by the application:
  started / stopped / error / log  stream lifecycle (payload: StreamEvent)
  controlResult                    camera control outcome (payload: OperationResult)
"""

from typing import Callable, Dict, Iterable, List, Any
from collections import defaultdict
from ..services.logging_service import LoggingService


class MessageBus:
    """Simple message bus for pub/sub communication."""
    
    def __init__(self, logger: LoggingService):
        self.logger = logger
        self.subscribers: Dict[str, List[Callable]] = defaultdict(list)
    
    def subscribe(self, topic: str, callback: Callable):
        """Subscribe to a topic."""
        self.subscribers[topic].append(callback)
        self.logger.debug(f"[MessageBus] Subscribed to topic: {topic}")
    
    def subscribe_many(self, topics: Iterable[str], callback: Callable):
        """Subscribe one callback to several topics.
        
        The callback receives (topic, message) so a single relay can tell topics apart.
        """
        for topic in topics:
            self.subscribe(topic, _TopicRelay(topic, callback))
    
    def unsubscribe(self, topic: str, callback: Callable):
        """Unsubscribe from a topic."""
        if callback in self.subscribers[topic]:
            self.subscribers[topic].remove(callback)
            self.logger.debug(f"[MessageBus] Unsubscribed from topic: {topic}")
    
    def unsubscribe_many(self, topics: Iterable[str], callback: Callable):
        """Undo subscribe_many for the given callback."""
        for topic in topics:
            self.unsubscribe(topic, _TopicRelay(topic, callback))
    
    def publish(self, topic: str, message: Any):
        """Publish message to a topic."""
        callbacks = list(self.subscribers.get(topic, []))
        self.logger.debug(f"[MessageBus] Publishing to topic: {topic} ({len(callbacks)} subscribers)")
        for callback in callbacks:
            try:
                callback(message)
            except Exception as e:
                self.logger.error(f"[MessageBus] Error in callback for topic {topic}: {e}")


class _TopicRelay:
    """Callback wrapper that passes the topic name along with the message."""

    def __init__(self, topic: str, callback: Callable):
        self.topic = topic
        self.callback = callback

    def __call__(self, message: Any):
        self.callback(self.topic, message)

    def __eq__(self, other):
        return (
            isinstance(other, _TopicRelay)
            and other.topic == self.topic
            and other.callback == self.callback
        )

    def __hash__(self):
        return hash((self.topic, self.callback))
