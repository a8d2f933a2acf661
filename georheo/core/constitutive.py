"""構成則（レオロジー要素）の抽象インタフェース定義.

Protocol 定義:
  RheologyProtocol   — 全要素・全ネットワークノード共通（不変量レベルの4関数）
  PlasticProtocol    — 塑性要素（+ 降伏応力・非関連流れ則のパラメータ）

全ての関数はスカラー（第2不変量）レベルで定義される。
テンソルの向きには依存しない（共軸性の仮定, tensor.py 参照）。
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from georheo.core.environment import Environment


@runtime_checkable
class RheologyProtocol(Protocol):
    """レオロジー要素の共通インタフェース.

    歪み速度不変量は応力不変量の単調増加関数であること。
    単調性は Invariant Solver の Newton 反復の収束に必要。

    適合クラス例:
      - LinearViscous, PowerlawViscous
      - DislocationCreep, PeierlsCreep
      - ConstantElasticity
      - Leaf, Series, Parallel（network.py）
    """

    def compute_eps_ii(self, tau_ii, env: Environment):
        """応力不変量 tau_ii に対する歪み速度不変量を返す."""
        ...

    def compute_tau_ii(self, eps_ii, env: Environment):
        """歪み速度不変量 eps_ii に対する応力不変量を返す."""
        ...

    def deps_dtau(self, tau_ii, env: Environment):
        """d(eps_ii)/d(tau_ii) を返す."""
        ...

    def dtau_deps(self, eps_ii, env: Environment):
        """d(tau_ii)/d(eps_ii) を返す."""
        ...


@runtime_checkable
class PlasticProtocol(RheologyProtocol, Protocol):
    """塑性要素のインタフェース.

    降伏関数: F = tau_ii - tau_y(P) - 2 eta_vp lambda
    塑性ポテンシャル: Q = tau_ii - P sin(psi)

    適合クラス例:
      - DruckerPrager
    """

    eta_vp: float
    sin_phi: float
    sin_psi: float

    def yield_stress(self, env: Environment):
        """降伏応力 tau_y(P) を返す."""
        ...
