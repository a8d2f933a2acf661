"""レオロジー要素の直列・並列ネットワーク.

  Leaf(law)            — 単一の構成則
  Series(children)     — 応力を共有し、歪み速度が加算される（Maxwell 型）
  Parallel(children)   — 歪み速度を共有し、応力が加算される（Voigt 型）

任意の深さに入れ子にできる。材料（相）ごとに1回構築し、
全格子点・全時間ステップで読み取り専用として共有する。

全ノードは RheologyProtocol の4関数を持ち、再帰的に評価される:
  Series.compute_eps_ii   — 子の歪み速度の和（閉形式）
  Series.compute_tau_ii   — Newton 反復（newton.solve_series）
  Parallel.compute_tau_ii — 子の応力の和（閉形式）
  Parallel.compute_eps_ii — Newton 反復（newton.solve_parallel）

使用例:
  >>> from georheo.materials.viscous import LinearViscous
  >>> from georheo.materials.elastic import ConstantElasticity
  >>> net = series(LinearViscous(eta=1e21), ConstantElasticity(G=5e10))
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field

import numpy as np

from georheo import newton
from georheo.core.constitutive import PlasticProtocol, RheologyProtocol
from georheo.core.environment import Environment
from georheo.core.errors import DomainError, NetworkError
from georheo.core.options import DEFAULT_OPTIONS, SolverOptions
from georheo.materials.elastic import ConstantElasticity

# ゼロ不変量での微分評価に用いる下限値
_ZERO_FLOOR = 1e-300


def is_plain_number(value) -> bool:
    """float に変換して扱う通常の数値（numpy のスカラー・0次元配列を含む）か."""
    return isinstance(value, (numbers.Real, np.ndarray))


def real_part(value) -> float:
    """数値の値部分を float で返す.

    自動微分用の数値型（双対数など）は値部分を ``real`` 属性で公開すること。
    """
    try:
        return float(getattr(value, "real", value))
    except TypeError:
        raise DomainError(
            f"数値として扱えません: {type(value).__name__}"
            "（自動微分型は値部分を real 属性で公開してください）"
        ) from None


def check_invariant(value, what: str):
    """不変量が有限かつ非負であることを確認する.

    通常の数値は float にして返す。自動微分型は値部分のみ検査し、
    微分情報を保つため元のオブジェクトをそのまま返す。
    """
    x = real_part(value)
    if not math.isfinite(x):
        raise DomainError(f"{what} が非有限値です: {x}")
    if x < 0.0:
        raise DomainError(f"{what} は非負: {x}")
    return x if is_plain_number(value) else value


def _check_output(value, what: str):
    x = real_part(value)
    if not math.isfinite(x):
        raise DomainError(f"{what} が非有限値になりました: {x}")
    return x if is_plain_number(value) else value


def _require_float(value, what: str) -> None:
    if not isinstance(value, float):
        raise DomainError(
            f"{what} は反復求解ノードでは float のみ対応します: {type(value).__name__}"
        )


def _floor(value):
    return value if real_part(value) >= _ZERO_FLOOR else _ZERO_FLOOR


def _propagate(value, x: float, y: float, slope: float):
    """収束解 y(x) に入力 value の微分を伝播する（陰関数定理: y + slope (value - x)）."""
    return y + slope * (value - x)


# ====================================================================
# Leaf
# ====================================================================


@dataclass(frozen=True)
class Leaf:
    """単一の構成則を包むノード.

    構成則の純関数に対して、定義域チェック（非負・有限）と
    ゼロ不変量での微分のガードを加える。

    Attributes:
        law: RheologyProtocol 適合の構成則
    """

    law: RheologyProtocol

    def __post_init__(self) -> None:
        if isinstance(self.law, (Leaf, Series, Parallel)):
            raise NetworkError("Leaf にはネットワークではなく構成則を与えてください。")
        if not isinstance(self.law, RheologyProtocol):
            raise NetworkError(f"構成則ではありません: {type(self.law).__name__}")

    @property
    def plastic(self) -> bool:
        return isinstance(self.law, PlasticProtocol)

    @property
    def elastic_laws(self) -> tuple[ConstantElasticity, ...]:
        return (self.law,) if isinstance(self.law, ConstantElasticity) else ()

    def compute_eps_ii(self, tau_ii, env: Environment, options: SolverOptions | None = None):
        tau_ii = check_invariant(tau_ii, "応力不変量 tau_ii")
        return _check_output(self.law.compute_eps_ii(tau_ii, env), "歪み速度不変量")

    def compute_tau_ii(self, eps_ii, env: Environment, options: SolverOptions | None = None):
        eps_ii = check_invariant(eps_ii, "歪み速度不変量 eps_ii")
        return _check_output(self.law.compute_tau_ii(eps_ii, env), "応力不変量")

    def deps_dtau(self, tau_ii, env: Environment, options: SolverOptions | None = None):
        tau_ii = _floor(check_invariant(tau_ii, "応力不変量 tau_ii"))
        return _check_output(self.law.deps_dtau(tau_ii, env), "d(eps_ii)/d(tau_ii)")

    def dtau_deps(self, eps_ii, env: Environment, options: SolverOptions | None = None):
        eps_ii = _floor(check_invariant(eps_ii, "歪み速度不変量 eps_ii"))
        return _check_output(self.law.dtau_deps(eps_ii, env), "d(tau_ii)/d(eps_ii)")

    def solve_tau_ii(
        self,
        eps_ii,
        env: Environment,
        options: SolverOptions | None = None,
        kb_dt: float = 0.0,
    ) -> newton.NodeSolution:
        tau_ii = self.compute_tau_ii(eps_ii, env, options)
        if self.plastic:
            return newton.NodeSolution(tau_ii, real_part(eps_ii), 0, 0.0, self.law.sin_psi)
        return newton.NodeSolution(tau_ii, 0.0, 0, 0.0)

    def tangent(self, eps_ii, env: Environment, options: SolverOptions | None = None, kb_dt: float = 0.0):
        return self.dtau_deps(eps_ii, env, options)


# ====================================================================
# Series / Parallel
# ====================================================================


def _as_node(element) -> Leaf | Series | Parallel:
    if isinstance(element, (Leaf, Series, Parallel)):
        return element
    if isinstance(element, RheologyProtocol):
        return Leaf(element)
    raise NetworkError(f"ネットワーク要素ではありません: {type(element).__name__}")


def _normalize_children(node, kind: str) -> None:
    children = tuple(_as_node(c) for c in node.children)
    if not children:
        raise NetworkError(f"{kind} ノードが空です。")
    plastic = tuple(c for c in children if isinstance(c, Leaf) and c.plastic)
    viscous = tuple(c for c in children if not (isinstance(c, Leaf) and c.plastic))
    object.__setattr__(node, "children", children)
    object.__setattr__(node, "plastic_children", plastic)
    object.__setattr__(node, "viscous_children", viscous)


@dataclass(frozen=True)
class Series:
    """直列ノード: 子は応力を共有し、歪み速度が加算される.

    Attributes:
        children: 子ノード（構成則は自動的に Leaf で包まれる）
        plastic_children: 塑性要素の Leaf（生成時に決定）
        viscous_children: 塑性要素以外の子（生成時に決定）
    """

    children: tuple
    plastic_children: tuple = field(init=False, repr=False, compare=False)
    viscous_children: tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # 直列は結合的なので入れ子の Series を展開する（塑性要素は常に最上位で扱う）
        flat: list = []
        for child in self.children:
            if isinstance(child, Series):
                flat.extend(child.children)
            else:
                flat.append(child)
        object.__setattr__(self, "children", tuple(flat))
        _normalize_children(self, "Series")
        if not self.viscous_children:
            raise NetworkError(
                "塑性要素のみの Series は応力が定まりません。粘性・弾性要素を含めてください。"
            )

    @property
    def elastic_laws(self) -> tuple[ConstantElasticity, ...]:
        """応力を共有する弾性要素（入れ子の Series は生成時に展開済み）."""
        laws: tuple[ConstantElasticity, ...] = ()
        for child in self.children:
            if isinstance(child, Leaf):
                laws += child.elastic_laws
        return laws

    def compute_eps_ii(self, tau_ii, env: Environment, options: SolverOptions | None = None):
        return sum(child.compute_eps_ii(tau_ii, env, options) for child in self.children)

    def deps_dtau(self, tau_ii, env: Environment, options: SolverOptions | None = None):
        return sum(child.deps_dtau(tau_ii, env, options) for child in self.children)

    def solve_tau_ii(
        self,
        eps_ii,
        env: Environment,
        options: SolverOptions | None = None,
        kb_dt: float = 0.0,
    ) -> newton.NodeSolution:
        """歪み速度不変量から応力を Newton 反復で求める.

        自動微分型の入力は値部分で求解し、収束解の接線 dtau/deps を用いて
        微分を伝播する（陰関数定理）。
        """
        eps_ii = check_invariant(eps_ii, "歪み速度不変量 eps_ii")
        options = options or DEFAULT_OPTIONS
        if isinstance(eps_ii, float):
            return newton.solve_series(self, eps_ii, env, options, kb_dt)
        x = real_part(eps_ii)
        solution = newton.solve_series(self, x, env, options, kb_dt)
        slope = newton.series_tangent(self, solution, env, options, kb_dt)
        return solution._replace(tau_ii=_propagate(eps_ii, x, solution.tau_ii, slope))

    def compute_tau_ii(self, eps_ii, env: Environment, options: SolverOptions | None = None):
        return self.solve_tau_ii(eps_ii, env, options).tau_ii

    def tangent(self, eps_ii, env: Environment, options: SolverOptions | None = None, kb_dt: float = 0.0):
        # 接線の微分（2階微分）は反復解からは伝播しない
        _require_float(check_invariant(eps_ii, "歪み速度不変量 eps_ii"), "接線 dtau/deps")
        options = options or DEFAULT_OPTIONS
        solution = self.solve_tau_ii(eps_ii, env, options, kb_dt)
        return newton.series_tangent(self, solution, env, options, kb_dt)

    def dtau_deps(self, eps_ii, env: Environment, options: SolverOptions | None = None):
        return self.tangent(eps_ii, env, options)


@dataclass(frozen=True)
class Parallel:
    """並列ノード: 子は歪み速度を共有し、応力が加算される.

    塑性要素を含む場合、降伏応力の和を超えるまで変形しない。

    Attributes:
        children: 子ノード（構成則は自動的に Leaf で包まれる）
        plastic_children: 塑性要素の Leaf（生成時に決定）
        viscous_children: 塑性要素以外の子（生成時に決定）
    """

    children: tuple
    plastic_children: tuple = field(init=False, repr=False, compare=False)
    viscous_children: tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        _normalize_children(self, "Parallel")
        if not self.viscous_children and not any(c.law.eta_vp > 0.0 for c in self.plastic_children):
            raise NetworkError(
                "完全塑性要素のみの Parallel は降伏後の歪み速度が定まりません。"
            )

    @property
    def elastic_laws(self) -> tuple[ConstantElasticity, ...]:
        # 並列内の弾性は有効歪み速度の履歴補正に寄与しない
        return ()

    def compute_tau_ii(self, eps_ii, env: Environment, options: SolverOptions | None = None):
        eps_ii = check_invariant(eps_ii, "歪み速度不変量 eps_ii")
        return sum(child.compute_tau_ii(eps_ii, env, options) for child in self.children)

    def dtau_deps(self, eps_ii, env: Environment, options: SolverOptions | None = None):
        return sum(child.dtau_deps(eps_ii, env, options) for child in self.children)

    def compute_eps_ii(self, tau_ii, env: Environment, options: SolverOptions | None = None):
        tau_ii = check_invariant(tau_ii, "応力不変量 tau_ii")
        options = options or DEFAULT_OPTIONS
        if isinstance(tau_ii, float):
            eps_ii, _, _ = newton.solve_parallel(self, tau_ii, env, options)
            return eps_ii
        x = real_part(tau_ii)
        eps_ii, _, _ = newton.solve_parallel(self, x, env, options)
        return _propagate(tau_ii, x, eps_ii, self.deps_dtau(x, env, options))

    def deps_dtau(self, tau_ii, env: Environment, options: SolverOptions | None = None):
        tau_ii = check_invariant(tau_ii, "応力不変量 tau_ii")
        _require_float(tau_ii, "コンプライアンス deps/dtau")
        options = options or DEFAULT_OPTIONS
        eps_ii, _, _ = newton.solve_parallel(self, tau_ii, env, options)
        if eps_ii == 0.0 and self.plastic_children:
            # 降伏前は剛体
            return 0.0
        return 1.0 / self.dtau_deps(eps_ii, env, options)

    def solve_tau_ii(
        self,
        eps_ii,
        env: Environment,
        options: SolverOptions | None = None,
        kb_dt: float = 0.0,
    ) -> newton.NodeSolution:
        return newton.NodeSolution(self.compute_tau_ii(eps_ii, env, options), 0.0, 0, 0.0)

    def tangent(self, eps_ii, env: Environment, options: SolverOptions | None = None, kb_dt: float = 0.0):
        return self.dtau_deps(eps_ii, env, options)


# ====================================================================
# 構築ヘルパー
# ====================================================================


def series(*elements) -> Series:
    """構成則・ノードを直列に接続する."""
    return Series(tuple(elements))


def parallel(*elements) -> Parallel:
    """構成則・ノードを並列に接続する."""
    return Parallel(tuple(elements))


def as_network(element) -> Leaf | Series | Parallel:
    """構成則またはノードをネットワークノードに変換する."""
    return _as_node(element)
