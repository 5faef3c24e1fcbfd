"""
Pipeline engine for the waste detector.

Runs frame capture and inference on separate threads joined by a
single-slot, keep-latest handoff: when inference falls behind, stale frames
are overwritten instead of queued.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from models.config import Config
from models.frame import FrameData
from observation import ObservationSource, create_source_from_config
from .switcher import ModelSwitcher


class LatestFrameSlot:
    """
    Holds at most one frame; put() replaces any frame not yet taken.

    Example:
        slot = LatestFrameSlot()
        slot.put(frame_data)          # capture thread
        frame_data = slot.take(0.5)   # inference thread
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._frame: Optional[FrameData] = None
        self._closed = False
        self.dropped = 0

    def put(self, frame: FrameData) -> None:
        with self._cond:
            if self._frame is not None:
                self.dropped += 1
            self._frame = frame
            self._cond.notify()

    def take(self, timeout: Optional[float] = None) -> Optional[FrameData]:
        """Return the newest frame, or None on timeout or after close()."""
        with self._cond:
            if self._frame is None and not self._closed:
                self._cond.wait(timeout)
            frame, self._frame = self._frame, None
            return frame

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Wake any waiting taker; a frame already in the slot can still be taken."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()


@dataclass
class PipelineConfig:
    """
    Configuration for the pipeline engine.

    Attributes:
        max_consecutive_failures: Max frame read failures before stopping.
        stats_log_interval: Seconds between status log messages.
        max_frames: Stop after this many captured frames (0 = unlimited).
        retry_delay: Seconds to wait after a failed frame read.
    """
    max_consecutive_failures: int = 10
    stats_log_interval: float = 60.0
    max_frames: int = 0
    retry_delay: float = 0.5


@dataclass
class PipelineStats:
    """
    Runtime statistics for the pipeline.

    frames_processed counts frames whose result reached the listener;
    frames_skipped counts frames that were taken but produced no result.
    """
    frames_captured: int = 0
    frames_processed: int = 0
    frames_skipped: int = 0
    frames_dropped: int = 0
    start_time: float = field(default_factory=time.time)
    last_stats_log_time: float = field(default_factory=time.time)
    consecutive_failures: int = 0


class PipelineEngine:
    """
    Feeds frames from an ObservationSource into a ModelSwitcher.

    The calling thread captures; a worker thread runs inference on the
    latest captured frame. Results reach the listener the switcher was
    built with.

    Example:
        source = OpenCVSource(OpenCVSourceConfig(device_id=0))
        switcher = ModelSwitcher(config.model_specs(), LoggingListener())
        switcher.switch("detection")
        PipelineEngine(source, switcher).run()
    """

    def __init__(
        self,
        source: ObservationSource,
        switcher: ModelSwitcher,
        config: Optional[PipelineConfig] = None,
    ):
        self.source = source
        self.switcher = switcher
        self.config = config or PipelineConfig()
        self.stats = PipelineStats()
        self._slot = LatestFrameSlot()
        self._running = False
        self._worker: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def run(self) -> None:
        """
        Run until stopped, the source is exhausted or max_frames is reached.

        Opens the observation source, then closes it and stops the worker on
        exit. The switcher is left open so the caller decides its lifetime.
        """
        self._running = True
        self.stats = PipelineStats()
        self._slot = LatestFrameSlot()
        self._worker = threading.Thread(
            target=self._inference_loop, name="inference-worker", daemon=True
        )

        try:
            self.source.open()
            logging.info(f"Pipeline started: source={self.source.source_id}")
            self._worker.start()
            self._capture_loop()
        except KeyboardInterrupt:
            logging.info("Pipeline interrupted by user")
        except Exception as e:
            logging.error(f"Pipeline error: {e}")
        finally:
            self._cleanup()

    def stop(self) -> None:
        """Signal the pipeline to stop after the current frame."""
        self._running = False
        self._slot.close()

    def _capture_loop(self) -> None:
        while self._running:
            frame_data = self.source.read()

            if frame_data is None:
                if self.source.is_exhausted:
                    logging.info("Observation source exhausted")
                    break
                self.stats.consecutive_failures += 1
                if self.stats.consecutive_failures >= self.config.max_consecutive_failures:
                    logging.error(
                        f"Too many consecutive failures ({self.stats.consecutive_failures}), stopping"
                    )
                    break
                logging.warning(
                    f"Frame read failed ({self.stats.consecutive_failures}/"
                    f"{self.config.max_consecutive_failures})"
                )
                time.sleep(self.config.retry_delay)
                continue

            self.stats.consecutive_failures = 0
            self.stats.frames_captured += 1
            self._slot.put(frame_data)
            self._log_stats()

            if self.config.max_frames and self.stats.frames_captured >= self.config.max_frames:
                break

    def _inference_loop(self) -> None:
        slot = self._slot
        while True:
            frame_data = slot.take(timeout=0.5)
            if frame_data is None:
                if slot.is_closed:
                    break
                continue
            if self.switcher.process(frame_data):
                self.stats.frames_processed += 1
            else:
                self.stats.frames_skipped += 1

    def _log_stats(self) -> None:
        now = time.time()
        if now - self.stats.last_stats_log_time < self.config.stats_log_interval:
            return
        self.stats.frames_dropped = self._slot.dropped
        logging.info(
            f"Pipeline stats: captured={self.stats.frames_captured}, "
            f"processed={self.stats.frames_processed}, skipped={self.stats.frames_skipped}, "
            f"dropped={self.stats.frames_dropped}, mode={self.switcher.mode}"
        )
        self.stats.last_stats_log_time = now

    def _cleanup(self) -> None:
        """Clean up resources."""
        self.stop()

        if self._worker is not None and self._worker.is_alive():
            self._worker.join()
        self.stats.frames_dropped = self._slot.dropped

        try:
            self.source.close()
        except Exception as e:
            logging.warning(f"Error closing source: {e}")

        logging.info(
            f"Pipeline stopped: captured={self.stats.frames_captured}, "
            f"processed={self.stats.frames_processed}, skipped={self.stats.frames_skipped}, "
            f"dropped={self.stats.frames_dropped}"
        )


def create_engine_from_config(
    config: Config,
    switcher: ModelSwitcher,
    device_id=None,
    max_frames: int = 0,
) -> PipelineEngine:
    """
    Factory function to create a PipelineEngine from the typed config.

    Args:
        config: Application config.
        switcher: ModelSwitcher with the initial model already selected.
        device_id: Overrides camera.device_id (camera index or video path).
        max_frames: Stop after this many frames (0 = unlimited).
    """
    camera_cfg = config.camera.to_dict()
    if device_id is not None:
        camera_cfg["device_id"] = device_id
    source = create_source_from_config(camera_cfg, source_id="main-camera")
    return PipelineEngine(source, switcher, PipelineConfig(max_frames=max_frames))
