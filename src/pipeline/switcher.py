"""
Runtime switching between the detector and the classifier.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from inference.backend import ModelBackend
from inference.labels import load_labels, read_model_bytes
from models.config import BackendConfig, DetectorConfig, ModelSpec
from models.detection import CLASSIFICATION, DETECTION
from .executor import Frame, ModelExecutor, create_executor
from .listener import ResultListener

AssetLoader = Callable[[ModelSpec], Tuple[bytes, List[str]]]


def load_assets(spec: ModelSpec) -> Tuple[bytes, List[str]]:
    """Read the model blob and label list named by a ModelSpec."""
    return read_model_bytes(spec.model_path), load_labels(spec.labels_path)


class ModelSwitcher:
    """
    Owns the active executor and swaps it on request.

    A new executor is fully set up before it replaces the old one; the old
    one is then closed, which waits for any frame it is still processing.
    process() always forwards to whichever executor is current.

    Example:
        switcher = ModelSwitcher(config.model_specs(), listener)
        switcher.switch("detection")
        switcher.process(frame)
        switcher.toggle()
    """

    def __init__(
        self,
        models: Dict[str, ModelSpec],
        listener: ResultListener,
        detector_config: Optional[DetectorConfig] = None,
        backend_config: Optional[BackendConfig] = None,
        asset_loader: AssetLoader = load_assets,
        backend_factory: Optional[Callable[[], ModelBackend]] = None,
    ):
        self._models = dict(models)
        self._listener = listener
        self._detector_config = detector_config or DetectorConfig()
        self._backend_config = backend_config or BackendConfig()
        self._asset_loader = asset_loader
        self._backend_factory = backend_factory
        self._lock = threading.Lock()
        self._current: Optional[ModelExecutor] = None
        self._mode: Optional[str] = None
        self._closed = False

    @property
    def mode(self) -> Optional[str]:
        return self._mode

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def current(self) -> Optional[ModelExecutor]:
        with self._lock:
            return self._current

    def switch(self, kind: str) -> ModelExecutor:
        """
        Make kind the active model.

        Raises:
            ValueError: If no model is configured for kind.
            ModelLoadError: If the model cannot be loaded; the previous
                model stays active.
            RuntimeError: If the switcher has been closed, including by a
                close() that ran while the new model was loading.
        """
        if self._closed:
            raise RuntimeError("ModelSwitcher is closed")
        spec = self._models.get(kind)
        if spec is None:
            raise ValueError(f"No model configured for mode '{kind}'")

        model_bytes, labels = self._asset_loader(spec)
        executor = create_executor(
            kind,
            model_bytes,
            labels,
            self._listener,
            detector_config=self._detector_config,
            backend_config=self._backend_config,
            backend_factory=self._backend_factory,
        )

        with self._lock:
            closed = self._closed
            if not closed:
                old, self._current = self._current, executor
                self._mode = kind

        if closed:
            executor.close()
            raise RuntimeError(f"ModelSwitcher closed while switching to {kind}")

        if old is not None:
            old.close()
        logging.info(f"Switched model to {kind}")
        return executor

    def toggle(self) -> ModelExecutor:
        """Switch between detection and classification."""
        return self.switch(CLASSIFICATION if self._mode == DETECTION else DETECTION)

    def process(self, frame: Frame) -> bool:
        """Forward frame to the current executor; True if a result was delivered."""
        with self._lock:
            executor = self._current
        if executor is None:
            return False
        return executor.process(frame)

    def close(self) -> None:
        """Close the current executor; later switch() calls fail."""
        with self._lock:
            self._closed = True
            old, self._current = self._current, None
            self._mode = None
        if old is not None:
            old.close()
