"""ソルバー設定."""

from __future__ import annotations

from dataclasses import dataclass

_VERTEX_PHASE_POLICIES = ("center", "warn", "raise")


@dataclass(frozen=True)
class SolverOptions:
    """不変量ソルバーの設定.

    Attributes:
        rtol: 歪み速度（または応力）釣り合いの相対残差許容値
        max_iter: Series/Parallel Newton 反復の上限
        plastic_rtol: 塑性乗数反復の相対残差許容値
        plastic_max_iter: 塑性乗数 Newton 反復の上限
        vertex_phase_policy: staggered 格子で頂点相が中心相と異なる場合の扱い
            "center" = 黙って中心相を使用、"warn" = 警告して中心相を使用、
            "raise" = PhaseMismatchError
    """

    rtol: float = 1e-12
    max_iter: int = 100
    plastic_rtol: float = 1e-12
    plastic_max_iter: int = 100
    vertex_phase_policy: str = "warn"

    def __post_init__(self) -> None:
        if not self.rtol > 0:
            raise ValueError(f"rtol は正値: {self.rtol}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter は1以上: {self.max_iter}")
        if not self.plastic_rtol > 0:
            raise ValueError(f"plastic_rtol は正値: {self.plastic_rtol}")
        if self.plastic_max_iter < 1:
            raise ValueError(f"plastic_max_iter は1以上: {self.plastic_max_iter}")
        if self.vertex_phase_policy not in _VERTEX_PHASE_POLICIES:
            raise ValueError(
                f"vertex_phase_policy は {_VERTEX_PHASE_POLICIES} のいずれか: "
                f"'{self.vertex_phase_policy}'"
            )


DEFAULT_OPTIONS = SolverOptions()
