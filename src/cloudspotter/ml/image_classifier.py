"""Image classification: run the model and pick the best label."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from cloudspotter.errors import InferenceError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from cloudspotter.ml.model_manager import LoadedModel


@dataclass(frozen=True)
class BestPrediction:
    """The highest-probability label for one image."""

    label: str
    probability: float

    @property
    def percentage(self) -> float:
        return self.probability * 100


def predict(model: LoadedModel, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
    """Run the classifier on a preprocessed tensor.

    Returns:
        1-D probability vector, index-aligned with ``model.labels``.

    Raises:
        InferenceError: If the session fails or the output length does not
            match the label count.
    """
    try:
        outputs = model.session.run(None, {model.input_name: tensor})
    except Exception as exc:
        raise InferenceError(f"Model invocation failed: {exc}") from exc

    vector = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
    if vector.shape[0] != len(model.labels):
        raise InferenceError(f"Model returned {vector.shape[0]} scores for {len(model.labels)} labels")
    return vector


def best_of(vector: Sequence[float] | NDArray[np.float32], labels: Sequence[str]) -> BestPrediction:
    """Select the arg-max label.

    A single left-to-right scan that only moves on a strictly greater value,
    so the lowest index wins ties.
    """
    if len(vector) == 0:
        raise InferenceError("Prediction vector is empty")
    if len(vector) != len(labels):
        raise InferenceError(f"Prediction vector has {len(vector)} entries for {len(labels)} labels")

    best_index = 0
    best_value = float(vector[0])
    for index in range(1, len(vector)):
        value = float(vector[index])
        if value > best_value:
            best_index = index
            best_value = value

    return BestPrediction(label=labels[best_index], probability=best_value)


def format_percentage(probability: float) -> str:
    """Render a probability as a two-decimal percentage, e.g. ``80.00%``."""
    return f"{probability * 100:.2f}%"
