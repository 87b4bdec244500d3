"""Quality gates: the correction loop and the retake loops."""

from .compliance import AcceptAllChecker
from .correction import CorrectionLoop, CorrectionLoopResult, merge_violations
from .retake import (
    GuardedRetakeResult,
    RetakeLoop,
    RetakeLoopResult,
    run_guarded_retakes,
)

__all__ = [
    "AcceptAllChecker",
    "CorrectionLoop",
    "CorrectionLoopResult",
    "merge_violations",
    "GuardedRetakeResult",
    "RetakeLoop",
    "RetakeLoopResult",
    "run_guarded_retakes",
]
