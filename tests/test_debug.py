import threading

import numpy as np

from scene_segmentation.cloud import PointCloud
from scene_segmentation.debug import PLANE_TOPIC, DebugPublisher, publish_debug


def test_publisher_delivers_in_order():
    received = []
    publisher = DebugPublisher(lambda topic, cloud: received.append((topic, len(cloud))))

    publisher.publish(PLANE_TOPIC, PointCloud(points=np.zeros((3, 3))))
    publisher.publish("other", PointCloud(points=np.zeros((5, 3))))
    publisher.flush(timeout=2.0)
    publisher.close()

    assert received == [(PLANE_TOPIC, 3), ("other", 5)]


def test_full_queue_drops_instead_of_blocking():
    release = threading.Event()
    publisher = DebugPublisher(lambda topic, cloud: release.wait(2.0), max_queue=1)
    cloud = PointCloud(points=np.zeros((1, 3)))

    results = [publisher.publish("t", cloud) for _ in range(5)]
    release.set()
    publisher.close()

    assert results[0] is True
    assert False in results


def test_sink_errors_do_not_stop_publication():
    received = []

    def sink(topic, cloud):
        if topic == "bad":
            raise RuntimeError("viewer gone")
        received.append(topic)

    publisher = DebugPublisher(sink)
    publisher.publish("bad", PointCloud(points=np.zeros((1, 3))))
    publisher.publish("good", PointCloud(points=np.zeros((1, 3))))
    publisher.flush(timeout=2.0)
    publisher.close()

    assert received == ["good"]


def test_closed_publisher_drops():
    publisher = DebugPublisher(lambda topic, cloud: None)
    publisher.close()

    assert publisher.publish("t", PointCloud(points=np.zeros((1, 3)))) is False


def test_publish_debug_without_publisher_is_noop():
    publish_debug(None, PLANE_TOPIC, PointCloud(points=np.zeros((1, 3))))


def test_close_returns_while_sink_is_stuck():
    release = threading.Event()
    publisher = DebugPublisher(lambda topic, cloud: release.wait(), max_queue=1)
    cloud = PointCloud(points=np.zeros((1, 3)))
    publisher.publish("t", cloud)
    publisher.publish("t", cloud)

    closer = threading.Thread(target=publisher.close)
    closer.start()
    closer.join(timeout=3.0)
    finished = not closer.is_alive()
    release.set()

    assert finished


def test_flush_timeout_reports_pending_work():
    release = threading.Event()
    publisher = DebugPublisher(lambda topic, cloud: release.wait(2.0))
    publisher.publish("t", PointCloud(points=np.zeros((1, 3))))
    threads_before = threading.active_count()

    delivered = publisher.flush(timeout=0.05)

    assert delivered is False
    assert threading.active_count() == threads_before
    release.set()
    assert publisher.flush(timeout=2.0) is True
    publisher.close()
