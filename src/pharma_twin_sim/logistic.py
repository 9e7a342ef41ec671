"""Per-model logistic regression trained from the monitor ledger.

Features are standardized with the training mean and sample standard
deviation, then fitted with full-batch gradient descent on L2-regularized
cross-entropy. A trained model replaces the rule-based probability when
predictions are sampled.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from .monitor import ModelMonitor, PredictionRecord
from .predictions import Features, ModelId

logger = logging.getLogger(__name__)


def _sigmoid(z: np.ndarray) -> np.ndarray:
    """Numerically stable logistic function."""
    out = np.empty_like(z, dtype=float)
    pos = z >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-z[pos]))
    ez = np.exp(z[~pos])
    out[~pos] = ez / (1.0 + ez)
    return out


@dataclass
class LogisticState:
    """Fitted parameters for one model."""

    model: ModelId
    feature_keys: List[str]
    weights: np.ndarray
    bias: float
    mean: np.ndarray
    std: np.ndarray
    trained_at: float
    n: int

    def to_dict(self) -> Dict:
        return {
            "model": self.model.value,
            "feature_keys": list(self.feature_keys),
            "weights": [float(w) for w in self.weights.tolist()],
            "bias": float(self.bias),
            "mean": [float(x) for x in self.mean.tolist()],
            "std": [float(x) for x in self.std.tolist()],
            "trained_at": self.trained_at,
            "n": self.n,
        }


def _feature_keys(records: Sequence[PredictionRecord]) -> List[str]:
    keys: List[str] = []
    seen = set()
    for r in records:
        for k in r.features:
            if k not in seen:
                seen.add(k)
                keys.append(k)
    return keys


def _vectorize(features: Features, keys: Sequence[str]) -> np.ndarray:
    return np.array([float(features.get(k, 0.0)) for k in keys], dtype=float)


class LogisticRegistry:
    """Holds at most one trained logistic model per model id."""

    def __init__(self, monitor: ModelMonitor):
        self.monitor = monitor
        self._states: Dict[ModelId, LogisticState] = {}

    def train(
        self,
        model: Union[ModelId, str],
        learning_rate: float = 0.1,
        epochs: int = 200,
        l2: float = 1e-3,
        min_samples: int = 60,
        require_both_classes: bool = True,
    ) -> bool:
        """Fit ``model`` on its ledger. Returns False when data is insufficient."""
        model = ModelId(model)
        rs = self.monitor.records(model)
        if len(rs) < min_samples:
            return False
        y = np.array([r.y for r in rs], dtype=float)
        positives = int(y.sum())
        if require_both_classes and (positives == 0 or positives == len(rs)):
            return False

        keys = _feature_keys(rs)
        x_raw = np.vstack([_vectorize(r.features, keys) for r in rs])
        mean = x_raw.mean(axis=0)
        std = x_raw.std(axis=0, ddof=1) if len(rs) > 1 else np.zeros(len(keys))
        std = np.where(std < 1e-6, 1.0, std)
        x = (x_raw - mean) / std

        w = np.zeros(len(keys))
        b = 0.0
        n = len(rs)
        for _ in range(epochs):
            err = _sigmoid(x @ w + b) - y
            grad_w = x.T @ err / n + l2 * w
            grad_b = float(err.sum()) / n
            w -= learning_rate * grad_w
            b -= learning_rate * grad_b

        self._states[model] = LogisticState(
            model=model,
            feature_keys=keys,
            weights=w,
            bias=b,
            mean=mean,
            std=std,
            trained_at=time.time() * 1000,
            n=n,
        )
        logger.info(f"Trained logistic model for {model.value} on {n} records")
        return True

    def predict_proba(self, model: Union[ModelId, str], features: Features) -> Optional[float]:
        """Learned probability for ``features``, or None if ``model`` is untrained."""
        state = self._states.get(ModelId(model))
        if state is None:
            return None
        z = (_vectorize(features, state.feature_keys) - state.mean) / state.std
        score = np.array([float(z @ state.weights) + state.bias])
        return float(np.clip(_sigmoid(score)[0], 0.0, 1.0))

    def state(self, model: Union[ModelId, str]) -> Optional[LogisticState]:
        return self._states.get(ModelId(model))

    def reset(self) -> None:
        self._states.clear()
