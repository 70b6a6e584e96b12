"""
Debug Publication

Intermediate clouds (plane inliers, tabletop region, region-of-interest
survivors) can be handed to an external sink for visualization. Publication
is asynchronous so the segmentation stages never wait on the consumer.
"""

import logging
import queue
import threading
import time
from typing import Callable, Optional

from .cloud import PointCloud

logger = logging.getLogger(__name__)

PLANE_TOPIC = "plane_cloud"
TABLETOP_TOPIC = "tabletop_cloud"
DEBUG_TOPIC = "debug_cloud"

DebugSink = Callable[[str, PointCloud], None]

_STOP = object()


class DebugPublisher:
    """
    Forwards debug clouds to a sink on a background thread.

    `publish` never blocks: when the queue is full the cloud is dropped.
    """

    def __init__(self, sink: DebugSink, max_queue: int = 10):
        """
        Args:
            sink: Callable receiving (topic, cloud)
            max_queue: Maximum number of pending clouds
        """
        self.sink = sink
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_queue)
        self._thread = threading.Thread(target=self._run, name="debug-publisher", daemon=True)
        self._closed = False
        self._thread.start()

    def publish(self, topic: str, cloud: PointCloud) -> bool:
        """
        Queue a cloud for publication.

        Returns:
            True if queued, False if dropped
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait((topic, cloud))
        except queue.Full:
            logger.debug("Debug queue full, dropping cloud for '%s'", topic)
            return False
        return True

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued cloud has been delivered.

        Returns:
            False if `timeout` expired first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # A full queue gives up pending clouds to make room for the stop marker
        while True:
            try:
                self._queue.put_nowait(_STOP)
                break
            except queue.Full:
                self._discard_one()
        self._thread.join(timeout=1.0)
        if self._thread.is_alive():
            logger.warning("Debug sink still busy, leaving publisher thread behind")

    def _discard_one(self) -> None:
        try:
            self._queue.get_nowait()
        except queue.Empty:
            return
        self._queue.task_done()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                topic, cloud = item
                try:
                    self.sink(topic, cloud)
                except Exception:
                    logger.exception("Debug sink failed for topic '%s'", topic)
            finally:
                self._queue.task_done()


def publish_debug(publisher: Optional[DebugPublisher], topic: str, cloud: PointCloud) -> None:
    """Publish if debugging is enabled."""
    if publisher is not None:
        publisher.publish(topic, cloud)
