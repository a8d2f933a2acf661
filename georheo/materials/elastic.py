"""定数弾性（Maxwell 型粘弾性の弾性要素）.

偏差成分は1次の陰的時間積分:
  eps_ii = (tau_ii - tau_ii_old) / (2 G dt)
  tau_ii = tau_ii_old + 2 G dt eps_ii

体積成分（圧縮を正とする圧力）:
  P = P_old - Kb dt eps_vol

Kb = inf は非圧縮（体積弾性なし）を表し、圧力は外側ソルバーが決める。
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from georheo.core.environment import Environment
from georheo.core.errors import DomainError


def _time_step(env: Environment) -> float:
    """弾性要素の評価に必要な時間刻みを返す."""
    if env.dt is None:
        raise DomainError("弾性要素を含むネットワークには Environment.dt が必要です。")
    if not env.dt > 0:
        raise DomainError(f"時間刻み dt は正値: {env.dt}")
    return env.dt


@dataclass(frozen=True)
class ConstantElasticity:
    """定数弾性.

    Attributes:
        G: せん断弾性係数（正値）
        Kb: 体積弾性係数（正値、inf = 非圧縮）
    """

    G: float = 5e10
    Kb: float = math.inf

    def __post_init__(self) -> None:
        if not self.G > 0:
            raise ValueError(f"せん断弾性係数 G は正値: {self.G}")
        if not self.Kb > 0:
            raise ValueError(f"体積弾性係数 Kb は正値: {self.Kb}")

    @property
    def compressible(self) -> bool:
        """体積弾性を持つかどうか."""
        return math.isfinite(self.Kb)

    def compliance(self, env: Environment) -> float:
        """偏差コンプライアンス 1 / (2 G dt).

        effective strain rate の履歴項 tau_old / (2 G dt) の係数。
        """
        return 0.5 / (self.G * _time_step(env))

    def compute_eps_ii(self, tau_ii, env: Environment):
        return (tau_ii - env.tau_ii_old) / (2.0 * self.G * _time_step(env))

    def compute_tau_ii(self, eps_ii, env: Environment):
        return env.tau_ii_old + 2.0 * self.G * _time_step(env) * eps_ii

    def deps_dtau(self, tau_ii, env: Environment):
        return 0.5 / (self.G * _time_step(env))

    def dtau_deps(self, eps_ii, env: Environment):
        return 2.0 * self.G * _time_step(env)

    def compute_p(self, eps_vol, env: Environment):
        """体積歪み速度に対する更新後の圧力を返す."""
        if not self.compressible:
            return env.P
        return env.p_old - self.Kb * _time_step(env) * eps_vol

    def bulk_compliance(self, env: Environment) -> float:
        """体積コンプライアンス 1 / (Kb dt)（非圧縮なら 0）."""
        if not self.compressible:
            return 0.0
        return 1.0 / (self.Kb * _time_step(env))
