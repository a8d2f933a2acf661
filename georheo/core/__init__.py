"""georheo.core - 構成則インタフェース・環境変数・設定・例外・戻り値型.

Protocol 階層:
  RheologyProtocol   — 不変量レベルの4関数（全要素・全ノード共通）
  PlasticProtocol    — 塑性要素（+ yield_stress）
"""

from georheo.core.constitutive import PlasticProtocol, RheologyProtocol
from georheo.core.environment import Environment
from georheo.core.errors import (
    ConvergenceError,
    DomainError,
    NetworkError,
    PhaseLookupError,
    PhaseMismatchError,
    PhaseMismatchWarning,
    RheologyError,
)
from georheo.core.options import DEFAULT_OPTIONS, SolverOptions
from georheo.core.results import (
    InvariantSolution,
    PressureSolution,
    PressureStressResult,
    StressFieldResult,
    StressResult,
    TimeHistoryResult,
)

__all__ = [
    "RheologyProtocol",
    "PlasticProtocol",
    "Environment",
    "SolverOptions",
    "DEFAULT_OPTIONS",
    "RheologyError",
    "ConvergenceError",
    "DomainError",
    "NetworkError",
    "PhaseLookupError",
    "PhaseMismatchError",
    "PhaseMismatchWarning",
    "InvariantSolution",
    "PressureSolution",
    "StressResult",
    "PressureStressResult",
    "StressFieldResult",
    "TimeHistoryResult",
]
