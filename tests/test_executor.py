"""
Tests for the model executors and their close/process concurrency contract.
"""

import logging
import random
import threading
import time
from unittest.mock import MagicMock

import numpy as np
import pytest

from conftest import (
    CLASSIFICATION_INPUT,
    DETECTION_INPUT,
    FakeBackend,
    RecordingListener,
    make_detection_grid,
)
from inference.backend import ModelLoadError
from models.config import BackendConfig, DetectorConfig
from models.detection import CLASSIFICATION, DETECTION
from models.frame import FrameData
from pipeline.executor import ClassifierExecutor, DetectorExecutor, create_executor


def _detector(listener, labels, output, **backend_kwargs):
    backend = FakeBackend(DETECTION_INPUT, list(output.shape), output=output, **backend_kwargs)
    executor = DetectorExecutor(backend, labels, listener)
    executor.setup(b"model")
    return executor, backend


def _classifier(listener, labels, scores, **backend_kwargs):
    output = np.asarray([scores], dtype=np.float32)
    backend = FakeBackend(CLASSIFICATION_INPUT, list(output.shape), output=output, **backend_kwargs)
    executor = ClassifierExecutor(backend, labels, listener)
    executor.setup(b"model")
    return executor, backend


class TestDetectorExecutor:
    def test_delivers_detections(self, listener, labels, detection_output, rgba_frame):
        executor, backend = _detector(listener, labels, detection_output)

        executor.process(rgba_frame)

        assert len(listener.detections) == 1
        boxes, elapsed_ms = listener.detections[0]
        assert [b.label for b in boxes] == ["paper"]
        assert elapsed_ms >= 0.0
        assert backend.last_input.shape == (1, 64, 64, 3)

    def test_accepts_frame_data(self, listener, labels, detection_output, rgba_frame):
        executor, _ = _detector(listener, labels, detection_output)

        executor.process(FrameData.from_numpy(rgba_frame, timestamp=time.time()))

        assert len(listener.detections) == 1

    def test_no_detections_reports_empty(self, listener, labels, rgba_frame):
        output = make_detection_grid([((0.5, 0.5, 0.2, 0.2), [0.1, 0.2, 0.3])], num_classes=3)
        executor, _ = _detector(listener, labels, output)

        executor.process(rgba_frame)

        assert listener.empty_count == 1
        assert listener.detections == []

    def test_config_applied(self, listener, labels, rgba_frame):
        candidates = [((0.1 + 0.2 * i, 0.5, 0.1, 0.1), [0.6 + 0.05 * i, 0.0, 0.0]) for i in range(5)]
        output = make_detection_grid(candidates, num_classes=3)
        backend = FakeBackend(DETECTION_INPUT, list(output.shape), output=output)
        executor = DetectorExecutor(backend, labels, listener, DetectorConfig(threshold=0.7, max_results=2))
        executor.setup(b"model")

        executor.process(rgba_frame)

        boxes, _ = listener.detections[0]
        assert len(boxes) == 2
        assert boxes[0].score == pytest.approx(0.8)

    def test_not_ready_is_silent(self, listener, labels, rgba_frame):
        backend = FakeBackend(DETECTION_INPUT, [1, 7, 10])
        executor = DetectorExecutor(backend, labels, listener)

        executor.process(rgba_frame)

        assert listener.call_count == 0
        assert backend.run_count == 0

    def test_dynamic_shape_is_not_ready(self, listener, labels, rgba_frame):
        backend = FakeBackend(DETECTION_INPUT, [1, 7, "anchors"])
        executor = DetectorExecutor(backend, labels, listener)
        executor.setup(b"model")

        executor.process(rgba_frame)

        assert listener.call_count == 0
        assert backend.run_count == 0

    def test_runtime_failure_skips_frame(self, listener, labels, detection_output, rgba_frame):
        executor, backend = _detector(listener, labels, detection_output, fail=True)

        executor.process(rgba_frame)
        assert listener.call_count == 0

        backend.fail = False
        executor.process(rgba_frame)
        assert len(listener.detections) == 1

    def test_listener_error_does_not_escape(self, labels, detection_output, rgba_frame):
        class ExplodingListener(RecordingListener):
            def on_detect(self, boxes, elapsed_ms):
                raise RuntimeError("ui gone")

        executor, _ = _detector(ExplodingListener(), labels, detection_output)
        executor.process(rgba_frame)

    def test_process_after_close_is_noop(self, listener, labels, detection_output, rgba_frame):
        executor, backend = _detector(listener, labels, detection_output)

        executor.close()
        executor.process(rgba_frame)

        assert listener.call_count == 0
        assert backend.run_count == 0
        assert backend.is_closed

    def test_close_idempotent(self, listener, labels, detection_output):
        executor, backend = _detector(listener, labels, detection_output)
        executor.close()
        executor.close()
        assert backend.release_count == 1

    def test_resetup_after_close(self, listener, labels, detection_output, rgba_frame):
        executor, _ = _detector(listener, labels, detection_output)
        executor.close()

        executor.setup(b"model-again")
        executor.process(rgba_frame)

        assert not executor.is_closed
        assert len(listener.detections) == 1

    def test_failed_resetup_closes_executor(self, listener, labels, detection_output, rgba_frame, caplog):
        executor, backend = _detector(listener, labels, detection_output)
        backend._load = MagicMock(side_effect=RuntimeError("corrupt blob"))

        with pytest.raises(ModelLoadError):
            executor.setup(b"bad-model")

        with caplog.at_level(logging.ERROR):
            delivered = executor.process(rgba_frame)

        assert delivered is False
        assert executor.is_closed
        assert not executor.is_ready()
        assert backend.run_count == 0
        assert listener.call_count == 0
        assert "error processing frame" not in caplog.text

    def test_good_setup_after_failed_setup(self, listener, labels, detection_output, rgba_frame):
        executor, backend = _detector(listener, labels, detection_output)
        backend._load = MagicMock(side_effect=RuntimeError("corrupt blob"))
        with pytest.raises(ModelLoadError):
            executor.setup(b"bad-model")

        del backend._load
        executor.setup(b"model")

        assert executor.process(rgba_frame) is True
        assert len(listener.detections) == 1

    def test_process_reports_delivery(self, listener, labels, detection_output, rgba_frame):
        executor, backend = _detector(listener, labels, detection_output)

        assert executor.process(rgba_frame) is True
        backend.fail = True
        assert executor.process(rgba_frame) is False
        executor.close()
        assert executor.process(rgba_frame) is False

    def test_empty_result_names_detection(self, listener, labels, rgba_frame):
        executor, _ = _detector(listener, labels, make_detection_grid([], num_classes=3, num_elements=4))

        assert executor.process(rgba_frame) is True

        assert listener.empty_kinds == [DETECTION]


class TestClassifierExecutor:
    def test_delivers_best_category(self, listener, rgba_frame):
        executor, backend = _classifier(listener, ["A", "B", "C"], [0.1, 0.9, 0.3])

        executor.process(rgba_frame)

        category, elapsed_ms = listener.categories[0]
        assert category.label == "B"
        assert category.score == pytest.approx(0.9)
        assert backend.last_input.shape == (1, 3, 32, 32)

    def test_empty_labels_still_classifies(self, listener, rgba_frame):
        executor, _ = _classifier(listener, [], [0.2, 0.1])

        executor.process(rgba_frame)

        category, _ = listener.categories[0]
        assert category.label is None
        assert category.index == 0

    def test_not_ready_is_silent(self, listener, rgba_frame):
        backend = FakeBackend(CLASSIFICATION_INPUT, [1, 0])
        executor = ClassifierExecutor(backend, ["A"], listener)
        executor.setup(b"model")

        executor.process(rgba_frame)

        assert listener.call_count == 0

    def test_empty_scores_report_classification_empty(self, listener, rgba_frame):
        backend = FakeBackend(CLASSIFICATION_INPUT, [1, 3], output=np.zeros((1, 0), dtype=np.float32))
        executor = ClassifierExecutor(backend, ["A", "B", "C"], listener)
        executor.setup(b"model")

        assert executor.process(rgba_frame) is True

        assert listener.categories == []
        assert listener.empty_kinds == [CLASSIFICATION]


class TestCreateExecutor:
    def test_detection(self, listener, labels, detection_output):
        executor = create_executor(
            DETECTION, b"model", labels, listener,
            backend_config=BackendConfig(num_threads=4),
            backend_factory=lambda: FakeBackend(DETECTION_INPUT, [1, 7, 2], output=detection_output),
        )
        assert isinstance(executor, DetectorExecutor)
        assert executor.is_ready()

    def test_classification(self, listener):
        executor = create_executor(
            CLASSIFICATION, b"model", ["A", "B"], listener,
            backend_factory=lambda: FakeBackend(CLASSIFICATION_INPUT, [1, 2]),
        )
        assert isinstance(executor, ClassifierExecutor)
        assert executor.kind == CLASSIFICATION

    def test_unknown_kind(self, listener):
        with pytest.raises(ValueError):
            create_executor("segmentation", b"model", [], listener,
                            backend_factory=lambda: FakeBackend(DETECTION_INPUT, [1, 7, 2]))

    def test_load_failure_propagates(self, listener):
        with pytest.raises(ModelLoadError):
            create_executor(DETECTION, b"", [], listener,
                            backend_factory=lambda: FakeBackend(DETECTION_INPUT, [1, 7, 2]))


class TestCloseConcurrency:
    """close() racing process() must never deliver after close or deadlock."""

    def _stress(self, executor, backend, listener, frame, iterations):
        closed_at = []
        delivered_after_close = []
        recorded_on_detect = listener.on_detect

        def on_detect(boxes, elapsed_ms):
            if executor.is_closed:
                delivered_after_close.append(boxes)
            recorded_on_detect(boxes, elapsed_ms)

        listener.on_detect = on_detect

        stop = threading.Event()

        def worker():
            while not stop.is_set():
                executor.process(frame)

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        time.sleep(random.uniform(0.0, 0.01) * iterations)
        executor.close()
        closed_at.append(listener.call_count)
        time.sleep(0.02)
        stop.set()
        thread.join(timeout=5)

        assert not thread.is_alive(), "worker deadlocked"
        assert delivered_after_close == []
        assert listener.call_count == closed_at[0]
        assert backend.violations == []

    @pytest.mark.parametrize("seed", range(20))
    def test_close_during_inference(self, seed, labels, detection_output):
        random.seed(seed)
        listener = RecordingListener()
        frame = np.zeros((48, 64, 4), dtype=np.uint8)
        executor, backend = _detector(listener, labels, detection_output, delay=0.002)

        self._stress(executor, backend, listener, frame, iterations=1)

    def test_close_waits_for_inflight_run(self, labels, detection_output):
        listener = RecordingListener()
        frame = np.zeros((48, 64, 4), dtype=np.uint8)
        executor, backend = _detector(listener, labels, detection_output, delay=0.2)

        thread = threading.Thread(target=executor.process, args=(frame,))
        thread.start()
        while backend.run_count == 0:
            time.sleep(0.001)

        start = time.perf_counter()
        executor.close()
        waited = time.perf_counter() - start

        thread.join(timeout=5)
        assert waited > 0.05
        assert len(listener.detections) == 1
        assert backend.violations == []

    def test_many_closers(self, labels, detection_output):
        listener = RecordingListener()
        frame = np.zeros((48, 64, 4), dtype=np.uint8)
        executor, backend = _detector(listener, labels, detection_output, delay=0.001)

        worker = threading.Thread(target=lambda: [executor.process(frame) for _ in range(50)])
        closers = [threading.Thread(target=executor.close) for _ in range(5)]
        worker.start()
        time.sleep(0.01)
        for t in closers:
            t.start()
        for t in closers + [worker]:
            t.join(timeout=5)
            assert not t.is_alive()

        assert backend.release_count == 1
        assert backend.violations == []
