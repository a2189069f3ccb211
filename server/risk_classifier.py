"""
Risk Classifier Module

Maps a feature vector to a fatigue risk assessment with a fixed,
priority-ordered rule set:

1. drowsy_time_fraction > 0.1 or blink_rate * 60 > 24  -> HIGH
2. distracted_time_fraction > 0.1                      -> MEDIUM
3. otherwise                                           -> LOW

The classifier also owns a weight map that `train` perturbs. The weights
do not take part in the rules; they are the seam where a learned model
would plug in through the PredictionModel protocol.
"""

import logging
import random
import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol

from server.feature_extractor import FeatureVector
from shared.models import RiskAssessment, RiskLevel

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "ear_value": 0.33,
    "drowsy_time_fraction": 0.22,
    "driving_duration": 0.17,
    "time_of_day": 0.12,
    "blink_rate": 0.10,
    "distracted_time_fraction": 0.06,
}

DROWSY_FRACTION_THRESHOLD = 0.1
DISTRACTED_FRACTION_THRESHOLD = 0.1
BLINKS_PER_HOUR_THRESHOLD = 24.0
MAX_TRAINING_DELTA = 0.005

FALLING_ASLEEP = RiskAssessment(risk_level=RiskLevel.HIGH, probability=1.0,
                                minutes_until_high=0,
                                recommendation="driver is falling asleep")
FREQUENTLY_DISTRACTED = RiskAssessment(risk_level=RiskLevel.MEDIUM, probability=0.5,
                                       minutes_until_high=10,
                                       recommendation="driver is frequently distracted")
ALL_NORMAL = RiskAssessment(risk_level=RiskLevel.LOW, probability=0.0,
                            minutes_until_high=120, recommendation="all normal")
NO_ACTIVE_SESSION = RiskAssessment(risk_level=RiskLevel.LOW, probability=0.0,
                                   minutes_until_high=120, recommendation="no active session")


class PredictionModel(Protocol):
    """What the analytics layer needs from a fatigue model."""

    def predict(self, features: FeatureVector) -> RiskAssessment:
        ...

    def train(self, samples: List[Mapping[str, Any]]) -> Dict[str, float]:
        ...


class RuleBasedRiskClassifier:
    """
    Deterministic rule engine. predict() is a pure function of the
    feature vector; concurrent train() calls serialize on one lock and the
    last writer wins.
    """

    def __init__(self, weights: Optional[Mapping[str, float]] = None,
                 rng: Optional[random.Random] = None):
        self._weights: Dict[str, float] = dict(DEFAULT_WEIGHTS if weights is None else weights)
        self._weights_lock = threading.Lock()
        self._rng = rng or random.Random()

    @property
    def weights(self) -> Dict[str, float]:
        """Snapshot of the current weights."""
        with self._weights_lock:
            return dict(self._weights)

    def predict(self, features: FeatureVector) -> RiskAssessment:
        blinks_per_hour = features.blink_rate * 60.0

        if (features.drowsy_time_fraction > DROWSY_FRACTION_THRESHOLD
                or blinks_per_hour > BLINKS_PER_HOUR_THRESHOLD):
            logger.warning(f"HIGH RISK - drowsy fraction: {features.drowsy_time_fraction:.3f}, "
                           f"blinks/h: {blinks_per_hour:.1f}")
            return FALLING_ASLEEP
        if features.distracted_time_fraction > DISTRACTED_FRACTION_THRESHOLD:
            logger.info(f"MEDIUM RISK - distracted fraction: "
                        f"{features.distracted_time_fraction:.3f}")
            return FREQUENTLY_DISTRACTED
        logger.debug("LOW RISK")
        return ALL_NORMAL

    def train(self, samples: List[Mapping[str, Any]]) -> Dict[str, float]:
        """
        Stub training: nudge every weight by a random delta in
        [-0.005, 0.005], clamp to [0, 1] and return the new weights.
        """
        with self._weights_lock:
            for name, weight in self._weights.items():
                delta = self._rng.uniform(-MAX_TRAINING_DELTA, MAX_TRAINING_DELTA)
                self._weights[name] = max(0.0, min(1.0, weight + delta))
            updated = dict(self._weights)
        logger.info(f"Simulated training on {len(samples)} samples")
        return updated
