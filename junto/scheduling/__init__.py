"""Due-now evaluation for per-user digest delivery."""

from junto.scheduling.evaluator import (
    Evaluation,
    GateResult,
    Reason,
    SendFrequency,
    UserSchedule,
    Verdict,
    evaluate,
)

__all__ = [
    "Evaluation",
    "GateResult",
    "Reason",
    "SendFrequency",
    "UserSchedule",
    "Verdict",
    "evaluate",
]
