"""
Redis pub/sub relay.

Mirrors every hub event onto "<prefix>:<group>" Redis channels so socket
gateways running in other processes can forward them. Events wait in a
bounded queue drained by one daemon worker; when Redis is slow or down and
the queue fills, new events are dropped and counted, never queued without
limit and never blocking the caller.
"""
import logging
import queue
import threading
from typing import List, Optional, Tuple

import redis

from .hub import Message

logger = logging.getLogger(__name__)

_STOP = None


class RedisRelay:
    def __init__(self, url: str, prefix: str, client=None, maxsize: int = 100):
        self.prefix = prefix
        self._client = client or redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        self._queue: "queue.Queue[Optional[Tuple[Message, List[str]]]]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False
        self._worker = threading.Thread(target=self._drain, name='redis-relay', daemon=True)
        self._worker.start()

    def channel(self, group: str) -> str:
        return f"{self.prefix}:{group}"

    def __call__(self, message: Message, groups: List[str]) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait((message, list(groups)))
        except queue.Full:
            self.dropped += 1
            logger.warning(f"Redis relay backlog full, dropped {message.event} ({self.dropped} dropped so far)")

    def pending(self) -> int:
        return self._queue.qsize()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.publish(*item)
            finally:
                self._queue.task_done()

    def publish(self, message: Message, groups: List[str]) -> int:
        """Publish synchronously. Returns the number of receiving clients."""
        payload = message.as_json()
        receivers = 0
        try:
            for group in groups:
                receivers += self._client.publish(self.channel(group), payload)
        except redis.RedisError as e:
            logger.error(f"Redis relay failed for {message.event}: {e}")
        return receivers

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events; with wait, publish what is already queued first."""
        if self.closed:
            return
        self.closed = True
        if wait:
            self._queue.join()
        try:
            self._queue.put_nowait(_STOP)
        except queue.Full:
            # backlog still full after wait=False; the daemon worker ends with the process
            pass
