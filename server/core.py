"""
Core Wiring

Builds the fatigue analytics core over one SQLAlchemy session factory.
The same clock is shared by every component so that session times, event
times and the feature window all agree.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from server.analytics import FatigueAnalytics
from server.drivers import DriverRegistry
from server.event_logger import EventLogger
from server.feature_extractor import FeatureWindowExtractor
from server.metadata import EventMetadataAnalytics
from server.repository import RecordStore
from server.risk_classifier import PredictionModel, RuleBasedRiskClassifier
from server.session_manager import SessionLifecycleManager
from server.session_reaper import SessionReaper


@dataclass
class FatigueCore:
    store: RecordStore
    drivers: DriverRegistry
    sessions: SessionLifecycleManager
    events: EventLogger
    extractor: FeatureWindowExtractor
    model: PredictionModel
    analytics: FatigueAnalytics
    metadata: EventMetadataAnalytics
    reaper: SessionReaper


def build_core(session_factory, clock: Callable[[], datetime] = datetime.now,
               model: Optional[PredictionModel] = None) -> FatigueCore:
    store = RecordStore(session_factory)
    sessions = SessionLifecycleManager(store, clock=clock)
    extractor = FeatureWindowExtractor(store.events)
    model = model if model is not None else RuleBasedRiskClassifier()
    return FatigueCore(
        store=store,
        drivers=DriverRegistry(store.drivers),
        sessions=sessions,
        events=EventLogger(store.events, sessions, clock=clock),
        extractor=extractor,
        model=model,
        analytics=FatigueAnalytics(sessions, extractor, model, store.events, clock=clock),
        metadata=EventMetadataAnalytics(store.events),
        reaper=SessionReaper(sessions, store.events, clock=clock),
    )
