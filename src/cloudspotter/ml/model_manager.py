"""Model manager: fetch, load, and validate the ONNX cloud classifier.

The model and its label list are loaded exactly once per process, in the
background, while the server is already accepting requests. A failed load
is logged and leaves the manager permanently not-ready; there is no retry
and no hot reload.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from cloudspotter.errors import LoadError, ModelNotReadyError

if TYPE_CHECKING:
    from cloudspotter.config import Settings
    from cloudspotter.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedModel:
    """An inference session together with its index-aligned labels."""

    session: InferenceSession
    input_name: str
    labels: tuple[str, ...]


class ClassifierModelManager:
    """Owns the single classifier session shared by all requests."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._model: LoadedModel | None = None
        self._ready = False

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def is_ready(self) -> bool:
        """Return True once the model and labels are loaded and validated."""
        return self._ready

    @property
    def model(self) -> LoadedModel:
        """Return the loaded model or raise if loading has not completed."""
        if not self._ready or self._model is None:
            raise ModelNotReadyError("Model is not loaded yet")
        return self._model

    @property
    def labels(self) -> tuple[str, ...]:
        """Return the label set, or an empty tuple before loading."""
        return self._model.labels if self._model is not None else ()

    def ensure_downloaded(self) -> tuple[Path, Path]:
        """Return local model and label paths, downloading them if configured."""
        model_path = self._models_dir / self._settings.model_filename
        labels_path = self._models_dir / self._settings.labels_filename

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            return model_path, labels_path

        self._models_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        for path in (model_path, labels_path):
            if path.exists():
                paths.append(path)
                continue
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=path.name,
                    local_dir=str(self._models_dir),
                )
            )
            logger.info("Downloaded %s from %s to %s", path.name, repo_id, downloaded)
            paths.append(downloaded)
        return paths[0], paths[1]

    def load(self) -> LoadedModel:
        """Load labels and session, and check that they line up.

        Raises:
            LoadError: If an artifact is missing or malformed, or the model's
                output length differs from the number of labels.
        """
        try:
            model_path, labels_path = self.ensure_downloaded()
        except Exception as exc:
            raise LoadError(f"Could not download model artifacts: {exc}") from exc

        labels = self._read_labels(labels_path)

        if not model_path.exists():
            raise LoadError(f"Model file not found: {model_path}")
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise LoadError(f"Could not load model {model_path}: {exc}") from exc

        input_name = session.get_inputs()[0].name
        output_size = self._output_size(session, input_name)
        if output_size != len(labels):
            raise LoadError(
                f"Label/model mismatch: {len(labels)} labels but model outputs {output_size} classes"
            )

        loaded = LoadedModel(session=session, input_name=input_name, labels=labels)
        logger.info("Loaded %s with %d labels", model_path.name, len(labels))
        return loaded

    async def load_in_background(self, pool: InferencePool) -> bool:
        """Load the model off the event loop and mark the manager ready.

        Returns True on success. Failures are logged and readiness stays False.
        """
        try:
            loaded = await pool.run_unbounded(self.load)
        except Exception:
            logger.exception("Model loading failed; classification stays disabled")
            return False

        self._model = loaded
        self._ready = True
        logger.info("Classifier ready")
        return True

    def shutdown(self) -> None:
        """Drop the session reference."""
        self._ready = False
        self._model = None
        logger.info("Model session released")

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _read_labels(labels_path: Path) -> tuple[str, ...]:
        if not labels_path.exists():
            raise LoadError(f"Label file not found: {labels_path}")

        text = labels_path.read_text(encoding="utf-8")
        if labels_path.suffix == ".json":
            try:
                raw: Any = json.loads(text)
            except json.JSONDecodeError as exc:
                raise LoadError(f"Label file is not valid JSON: {labels_path}") from exc
            if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
                raise LoadError(f"Label file must hold a JSON array of strings: {labels_path}")
            labels = tuple(raw)
        else:
            labels = tuple(line.strip() for line in text.splitlines() if line.strip())

        if not labels:
            raise LoadError(f"Label file is empty: {labels_path}")
        return labels

    def _output_size(self, session: InferenceSession, input_name: str) -> int:
        shape = session.get_outputs()[0].shape
        if shape and isinstance(shape[-1], int):
            return shape[-1]

        # Symbolic output dimension: find it with one probe inference.
        size = self._settings.image_size
        probe = np.zeros((1, size, size, 3), dtype=np.float32)
        try:
            outputs = session.run(None, {input_name: probe})
        except Exception as exc:
            raise LoadError(f"Probe inference failed: {exc}") from exc
        return int(np.asarray(outputs[0]).shape[-1])

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
