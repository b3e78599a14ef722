"""
Attack pattern analysis package.
"""

from .attack_pattern_analysis import AttackPatternAnalysisEngine
from .pattern_detectors import (
    AttackThresholds,
    BruteForceDetector,
    CoordinatedAttackDetector,
    CredentialStuffingDetector,
    CrossSessionTracker,
)

__all__ = [
    'AttackPatternAnalysisEngine',
    'AttackThresholds',
    'BruteForceDetector',
    'CoordinatedAttackDetector',
    'CredentialStuffingDetector',
    'CrossSessionTracker',
]
