"""Post-generation correctness layer for memengine."""

from memengine.correction.primitives import (
    CorrectionPrimitive,
    CorrectionResult,
    ListCompletenessPrimitive,
    OrdinalCorrectnessPrimitive,
    PrimitiveLog,
    PrimitiveResult,
    TemporalArithmeticPrimitive,
    run_correction_layer,
)

__all__ = [
    "CorrectionPrimitive",
    "CorrectionResult",
    "ListCompletenessPrimitive",
    "OrdinalCorrectnessPrimitive",
    "PrimitiveLog",
    "PrimitiveResult",
    "TemporalArithmeticPrimitive",
    "run_correction_layer",
]
