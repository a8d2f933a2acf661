"""転位クリープ・Peierls クリープ構成則.

実験で用いられる転位クリープ則:
  gamma = A sigma_d^n f_H2O^r exp(-(E + P V) / (R T))

テンソル不変量への変換（FT, FE は apparatus.correction_factor）:
  eps_ii = A (FT tau_ii)^n f^r exp(-(E + P V) / (R T)) / FE
  tau_ii = A^(-1/n) (FE eps_ii)^(1/n) f^(-r/n) exp((E + P V) / (n R T)) / FT

Peierls クリープ（低温域の簡略形、圧力・フガシティ依存なし）:
  eps_ii = A (FT tau_ii)^n exp(-E / (R T)) / FE

全ての入力は単位系を統一した値で与えること（単位変換は行わない）。
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

import numpy as np

from georheo.core.environment import Environment
from georheo.materials.apparatus import Apparatus, correction_factor

# 気体定数 [J/mol/K]
GAS_CONSTANT = 8.3145


@dataclass(frozen=True)
class DislocationCreep:
    """転位クリープ（べき乗則クリープ）.

    Attributes:
        n: べき指数
        r: 水フガシティの指数
        A: 前指数因子 [Pa^-n s^-1]
        E: 活性化エネルギー [J/mol]
        V: 活性化体積 [m^3/mol]
        R: 気体定数 [J/mol/K]
        apparatus: 実験装置の種類
        name: 流動則の名称（表示用）
        FT, FE: 装置補正係数（生成時に apparatus から決定、変更不可）
    """

    n: float = 1.0
    r: float = 0.0
    A: float = 1.5e-6
    E: float = 476.0e3
    V: float = 6e-6
    R: float = GAS_CONSTANT
    apparatus: Apparatus = Apparatus.AXIAL_COMPRESSION
    name: str = ""
    FT: float = field(init=False, repr=False)
    FE: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.n > 0:
            raise ValueError(f"べき指数 n は正値: {self.n}")
        if not self.A > 0:
            raise ValueError(f"前指数因子 A は正値: {self.A}")
        if not self.R > 0:
            raise ValueError(f"気体定数 R は正値: {self.R}")
        FT, FE = correction_factor(self.apparatus)
        object.__setattr__(self, "apparatus", Apparatus(self.apparatus))
        object.__setattr__(self, "FT", FT)
        object.__setattr__(self, "FE", FE)

    def _arrhenius(self, env: Environment):
        return np.exp(-(self.E + env.P * self.V) / (self.R * env.T))

    def compute_eps_ii(self, tau_ii, env: Environment):
        return (
            self.A
            * (tau_ii * self.FT) ** self.n
            * env.f**self.r
            * self._arrhenius(env)
            / self.FE
        )

    def deps_dtau(self, tau_ii, env: Environment):
        n = self.n
        return (
            self.A
            * self.FT
            * n
            * (self.FT * tau_ii) ** (n - 1.0)
            * env.f**self.r
            * self._arrhenius(env)
            / self.FE
        )

    def compute_tau_ii(self, eps_ii, env: Environment):
        n = self.n
        return (
            self.A ** (-1.0 / n)
            * (eps_ii * self.FE) ** (1.0 / n)
            * env.f ** (-self.r / n)
            * np.exp((self.E + env.P * self.V) / (n * self.R * env.T))
            / self.FT
        )

    def dtau_deps(self, eps_ii, env: Environment):
        n = self.n
        return (
            self.A ** (-1.0 / n)
            * self.FE ** (1.0 / n)
            * eps_ii ** (1.0 / n - 1.0)
            * env.f ** (-self.r / n)
            * np.exp((self.E + env.P * self.V) / (n * self.R * env.T))
            / (n * self.FT)
        )


@dataclass(frozen=True)
class PeierlsCreep:
    """Peierls クリープ（簡略形）.

    Attributes:
        n: べき指数
        A: 前指数因子 [Pa^-n s^-1]
        E: 活性化エネルギー [J/mol]
        R: 気体定数 [J/mol/K]
        apparatus: 実験装置の種類
        name: 流動則の名称（表示用）
    """

    n: float = 1.0
    A: float = 1.5e-6
    E: float = 476.0e3
    R: float = GAS_CONSTANT
    apparatus: Apparatus = Apparatus.AXIAL_COMPRESSION
    name: str = ""
    FT: float = field(init=False, repr=False)
    FE: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.n > 0:
            raise ValueError(f"べき指数 n は正値: {self.n}")
        if not self.A > 0:
            raise ValueError(f"前指数因子 A は正値: {self.A}")
        if not self.R > 0:
            raise ValueError(f"気体定数 R は正値: {self.R}")
        FT, FE = correction_factor(self.apparatus)
        object.__setattr__(self, "apparatus", Apparatus(self.apparatus))
        object.__setattr__(self, "FT", FT)
        object.__setattr__(self, "FE", FE)

    def compute_eps_ii(self, tau_ii, env: Environment):
        return self.A * (tau_ii * self.FT) ** self.n * np.exp(-self.E / (self.R * env.T)) / self.FE

    def deps_dtau(self, tau_ii, env: Environment):
        n = self.n
        return (
            self.A
            * self.FT
            * n
            * (self.FT * tau_ii) ** (n - 1.0)
            * np.exp(-self.E / (self.R * env.T))
            / self.FE
        )

    def compute_tau_ii(self, eps_ii, env: Environment):
        n = self.n
        return (
            self.A ** (-1.0 / n)
            * (eps_ii * self.FE) ** (1.0 / n)
            * np.exp(self.E / (n * self.R * env.T))
            / self.FT
        )

    def dtau_deps(self, eps_ii, env: Environment):
        n = self.n
        return (
            self.A ** (-1.0 / n)
            * self.FE ** (1.0 / n)
            * eps_ii ** (1.0 / n - 1.0)
            * np.exp(self.E / (n * self.R * env.T))
            / (n * self.FT)
        )


def remove_tensor_correction(law: DislocationCreep | PeierlsCreep) -> DislocationCreep | PeierlsCreep:
    """装置補正を外した（apparatus=INVARIANT の）同じ流動則を返す.

    原著論文の応力-歪み速度曲線と比較する際に用いる。
    """
    return dataclasses.replace(law, apparatus=Apparatus.INVARIANT)
