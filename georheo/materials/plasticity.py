"""Drucker-Prager 塑性構成則（粘塑性正則化付き）.

降伏関数（不変量レベル、圧縮を正とする圧力 P）:
  F = tau_ii - tau_y(P) - 2 eta_vp lam
  tau_y(P) = C cos(phi) + P sin(phi)

塑性ポテンシャル（非関連流れ則、ダイレイタンシー角 psi）:
  Q = tau_ii - P sin(psi)
  eps_pl_ii = lam dQ/dtau_ii = lam
  eps_vol_pl = lam sin(psi)

eta_vp > 0 は粘塑性正則化。降伏時の応力-歪み速度関係を
  tau_ii = tau_y + 2 eta_vp eps_pl_ii
の1本の滑らかな枝にする（eta_vp = 0 で完全塑性）。

Series 内での塑性修正（試行応力 -> 塑性乗数 lam の Newton 反復）は
newton.py が担う。本モジュールは単一要素としての関係のみ提供する。

参考文献:
  - de Souza Neto et al. (2008) "Computational Methods for Plasticity", Ch.8
  - Duretz et al. (2019) G-Cubed 20, 5598-5616.（粘塑性正則化）
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from georheo.core.environment import Environment
from georheo.core.errors import DomainError


@dataclass(frozen=True)
class DruckerPrager:
    """Drucker-Prager 塑性.

    Attributes:
        C: 粘着力（非負）
        phi: 内部摩擦角 [deg]
        psi: ダイレイタンシー角 [deg]
        eta_vp: 粘塑性正則化粘性（非負、0 = 完全塑性）
    """

    C: float = 10e6
    phi: float = 30.0
    psi: float = 0.0
    eta_vp: float = 0.0
    sin_phi: float = field(init=False, repr=False)
    cos_phi: float = field(init=False, repr=False)
    sin_psi: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.C < 0:
            raise ValueError(f"粘着力 C は非負: {self.C}")
        if not (0.0 <= self.phi < 90.0):
            raise ValueError(f"内部摩擦角 phi は [0, 90) deg: {self.phi}")
        if not (0.0 <= self.psi < 90.0):
            raise ValueError(f"ダイレイタンシー角 psi は [0, 90) deg: {self.psi}")
        if self.eta_vp < 0:
            raise ValueError(f"正則化粘性 eta_vp は非負: {self.eta_vp}")
        object.__setattr__(self, "sin_phi", math.sin(math.radians(self.phi)))
        object.__setattr__(self, "cos_phi", math.cos(math.radians(self.phi)))
        object.__setattr__(self, "sin_psi", math.sin(math.radians(self.psi)))

    @property
    def regularised(self) -> bool:
        """粘塑性正則化を持つかどうか."""
        return self.eta_vp > 0.0

    def yield_stress(self, env: Environment):
        """降伏応力 tau_y = C cos(phi) + P sin(phi)."""
        return self.C * self.cos_phi + env.P * self.sin_phi

    def yield_function(self, tau_ii, env: Environment, lam=0.0):
        """降伏関数 F = tau_ii - tau_y(P) - 2 eta_vp lam."""
        return tau_ii - self.yield_stress(env) - 2.0 * self.eta_vp * lam

    def compute_eps_ii(self, tau_ii, env: Environment):
        """応力制御での塑性歪み速度 max(tau_ii - tau_y, 0) / (2 eta_vp).

        完全塑性（eta_vp = 0）で降伏応力を超える応力は歪み速度が定まらない。
        """
        excess = tau_ii - self.yield_stress(env)
        if excess <= 0.0:
            return 0.0 * tau_ii
        if not self.regularised:
            raise DomainError(
                f"完全塑性要素に降伏応力を超える応力が与えられました: "
                f"tau_ii={tau_ii}, tau_y={self.yield_stress(env)}"
            )
        return excess / (2.0 * self.eta_vp)

    def deps_dtau(self, tau_ii, env: Environment):
        if tau_ii <= self.yield_stress(env):
            return 0.0
        if not self.regularised:
            raise DomainError(f"完全塑性要素の降伏後の接線は定義されません: tau_ii={tau_ii}")
        return 0.5 / self.eta_vp

    def compute_tau_ii(self, eps_ii, env: Environment):
        """降伏中の応力 tau_y + 2 eta_vp eps_ii（Bingham 型の塑性枝）."""
        return self.yield_stress(env) + 2.0 * self.eta_vp * eps_ii

    def dtau_deps(self, eps_ii, env: Environment):
        return 2.0 * self.eta_vp
