"""Tunable thresholds for the daily consumption reconciliation.

Defaults reflect the sampling behaviour of the portal poller (one reading per
minute when healthy); override via environment variables without code changes.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .models import Source

DEFAULT_GAP_THRESHOLD = 12
DEFAULT_GAP_PENALTY = 0.7
DEFAULT_SUSPICIOUS_CONSUMPTION = 100.0
DEFAULT_READING_CONFIDENCE = 0.8
DEFAULT_HISTORICAL_CONFIDENCE = 0.9


class ReconciliationSettings(BaseModel):
    """Knobs of the midnight-anchor algorithm."""

    gap_threshold: int = Field(
        DEFAULT_GAP_THRESHOLD, ge=1,
        description="Fewer in-window meter readings than this marks the day as having gaps",
    )
    gap_penalty: float = Field(
        DEFAULT_GAP_PENALTY, ge=0.0, le=1.0,
        description="Multiplier applied to confidence when the day has gaps",
    )
    suspicious_consumption: float = Field(
        DEFAULT_SUSPICIOUS_CONSUMPTION, ge=0.0,
        description="Soft ceiling above which a daily figure is logged as suspicious",
    )
    default_confidence: float = Field(
        DEFAULT_READING_CONFIDENCE, ge=0.0, le=1.0,
        description="Confidence assumed for readings stored without one",
    )
    historical_confidence: float = Field(
        DEFAULT_HISTORICAL_CONFIDENCE, ge=0.0, le=1.0,
        description="Upper bound on confidence of point-in-time lookups for past days",
    )
    meter_source: Source = Source.GRID

    @classmethod
    def from_env(cls) -> "ReconciliationSettings":
        return cls(
            gap_threshold=int(os.environ.get("GAP_THRESHOLD_READINGS", str(DEFAULT_GAP_THRESHOLD))),
            gap_penalty=float(os.environ.get("GAP_CONFIDENCE_PENALTY", str(DEFAULT_GAP_PENALTY))),
            suspicious_consumption=float(os.environ.get(
                "SUSPICIOUS_CONSUMPTION_UNITS",
                str(DEFAULT_SUSPICIOUS_CONSUMPTION),
            )),
            default_confidence=float(os.environ.get("DEFAULT_READING_CONFIDENCE", str(DEFAULT_READING_CONFIDENCE))),
            historical_confidence=float(os.environ.get(
                "HISTORICAL_CONFIDENCE_CAP",
                str(DEFAULT_HISTORICAL_CONFIDENCE),
            )),
        )
