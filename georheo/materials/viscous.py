"""粘性構成則（線形粘性・べき乗則粘性）.

線形粘性:
  eps_ii = tau_ii / (2 eta)

べき乗則粘性（参照粘性 eta0, 参照歪み速度 eps0）:
  tau_ii = 2 eta0 eps0^(1-1/n) eps_ii^(1/n)
  eps_ii = eps0 (tau_ii / (2 eta0 eps0))^n

不変量レベルの関数は分岐を持たない純関数であり、
双対数など演算子を実装した数値型をそのまま通す。
ゼロ不変量での微分のガードは network.Leaf が担う。
"""

from __future__ import annotations

from dataclasses import dataclass

from georheo.core.environment import Environment


@dataclass(frozen=True)
class LinearViscous:
    """線形粘性.

    Attributes:
        eta: 粘性係数（正値）
    """

    eta: float = 1e20

    def __post_init__(self) -> None:
        if not self.eta > 0:
            raise ValueError(f"粘性係数 eta は正値: {self.eta}")

    def compute_eps_ii(self, tau_ii, env: Environment):
        return tau_ii / (2.0 * self.eta)

    def compute_tau_ii(self, eps_ii, env: Environment):
        return 2.0 * self.eta * eps_ii

    def deps_dtau(self, tau_ii, env: Environment):
        return 0.5 / self.eta

    def dtau_deps(self, eps_ii, env: Environment):
        return 2.0 * self.eta


@dataclass(frozen=True)
class PowerlawViscous:
    """参照粘性で定義したべき乗則粘性.

    Attributes:
        eta0: 参照粘性（eps_ii = eps0 での有効粘性）
        n: べき指数
        eps0: 参照歪み速度
    """

    eta0: float = 1e18
    n: float = 2.0
    eps0: float = 1e-15

    def __post_init__(self) -> None:
        if not self.eta0 > 0:
            raise ValueError(f"参照粘性 eta0 は正値: {self.eta0}")
        if not self.n > 0:
            raise ValueError(f"べき指数 n は正値: {self.n}")
        if not self.eps0 > 0:
            raise ValueError(f"参照歪み速度 eps0 は正値: {self.eps0}")

    def compute_eps_ii(self, tau_ii, env: Environment):
        return self.eps0 * (tau_ii / (2.0 * self.eta0 * self.eps0)) ** self.n

    def compute_tau_ii(self, eps_ii, env: Environment):
        n = self.n
        return 2.0 * self.eta0 * self.eps0 ** (1.0 - 1.0 / n) * eps_ii ** (1.0 / n)

    def deps_dtau(self, tau_ii, env: Environment):
        n = self.n
        scale = 2.0 * self.eta0 * self.eps0
        return self.eps0 * n * (tau_ii / scale) ** (n - 1.0) / scale

    def dtau_deps(self, eps_ii, env: Environment):
        n = self.n
        return 2.0 * self.eta0 * self.eps0 ** (1.0 - 1.0 / n) * eps_ii ** (1.0 / n - 1.0) / n
