"""
Core claim-validation and spatial functionality.
"""

from .validator import LocationSample, LocationSampleValidator, RejectionReason, ValidationResult
from .path_recorder import PathRecorder, PathState, CandidatePath, AppendAction
from .closure import ClosureDetector
from .area import AreaCalculator
from .overlap import OverlapDetector, ClaimFootprint, claim_polygon, assess_proximity
from .simplification import SimplificationEngine, tolerance_for
from .density import DensityEstimator, DensityTier, suggest_spawn_tier
from .rules import ClaimRules, ContinuityPolicy

__all__ = ['LocationSample', 'LocationSampleValidator', 'RejectionReason', 'ValidationResult',
           'PathRecorder', 'PathState', 'CandidatePath', 'AppendAction',
           'ClosureDetector', 'AreaCalculator',
           'OverlapDetector', 'ClaimFootprint', 'claim_polygon', 'assess_proximity',
           'SimplificationEngine', 'tolerance_for',
           'DensityEstimator', 'DensityTier', 'suggest_spawn_tier',
           'ClaimRules', 'ContinuityPolicy']
