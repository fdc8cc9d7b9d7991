"""Score calibration: tuned half-point adjustments applied after scoring."""

from .calibrator import calibrate, calibrate_score
from .calibration_models import CalibrationTable, CalibrationTier

__all__ = [
    'calibrate',
    'calibrate_score',
    'CalibrationTable',
    'CalibrationTier',
]
