from .base import Base

# Engine-owned
from .championship import Championship, ChampionshipStatus
from .ranking_snapshot import RankingSnapshot, UnitScoreEntry
from .demerit import Demerit, DemeritLevel
from .class_progress import ClassProgress, ClassTier

# Source records; only evaluations are written by the engine
from .unit import Unit
from .source_records import (
    AttendanceRecord,
    AttendanceStatus,
    DuesPayment,
    BadgeDelivery,
    Evaluation,
    EvaluationColor,
    EVALUATION_COLOR_POINTS,
)
