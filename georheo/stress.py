"""1点の応力テンソル計算（共役テンソル再構成）.

手順:
  1. 有効歪み速度 eps_eff = eps + tau_old / (2 G dt) を成分ごとに求める
  2. eps_eff の第2不変量 eps_ii（頂点成分を含む場合は2乗の 1/4 重み平均）
  3. 不変量ソルバーで tau_ii、有効粘性 eta_eff = 0.5 tau_ii / eps_ii
  4. tau_ij = 2 eta_eff eps_eff_ij（頂点成分は算術平均してから）

応力と有効歪み速度の主軸が一致する（共軸）ことを仮定する。
応力履歴は手順1で成分ごとに取り込むため、不変量ソルバーには
tau_ii_old = 0 を渡す。

テンソルの成分数で 2D (3成分) / 3D (6成分) を、
4点タプルの成分の有無で collocated / staggered を判別する。
"""

from __future__ import annotations

import numpy as np

from georheo import solver
from georheo.core.environment import Environment
from georheo.core.options import DEFAULT_OPTIONS, SolverOptions
from georheo.core.results import PressureStressResult, StressResult
from georheo.network import as_network
from georheo.phases import as_registry
from georheo.tensor import (
    effective_strain_rate,
    is_staggered,
    normal_count,
    second_invariant,
    second_invariant_staggered,
    staggered_tensor_average,
    volumetric_strain_rate,
)


def _zero_like(tensor) -> tuple:
    return tuple((0.0,) * 4 if isinstance(c, tuple) else 0.0 for c in tensor)


def _effective_invariant(node, eps_ij, env: Environment, tau_ij_old):
    """(eps_ii, 平均化済み eps_eff 成分) を返す."""
    if tau_ij_old is None:
        tau_ij_old = _zero_like(eps_ij)
    eps_eff = effective_strain_rate(eps_ij, node, tau_ij_old, env)
    if is_staggered(eps_eff):
        return second_invariant_staggered(eps_eff), staggered_tensor_average(eps_eff)
    return second_invariant(eps_eff), eps_eff


def compute_tau_ij(
    network,
    eps_ij,
    env: Environment,
    tau_ij_old=None,
    *,
    options: SolverOptions | None = None,
) -> StressResult:
    """偏差応力テンソルを求める（単一相）.

    Args:
        network: ネットワークまたは構成則
        eps_ij: 偏差歪み速度成分。2D (xx, yy, xy)、3D (xx, yy, zz, yz, xz, xy)。
            staggered 格子では成分を頂点4点のタプルで与えてよい。
        env: 環境変数（tau_ii_old は無視される）
        tau_ij_old: 前ステップの偏差応力成分（None = 0）
        options: ソルバー設定

    Returns:
        StressResult（tau_ij はセル中心の成分）
    """
    node = as_network(network)
    eps_ii, eps_eff = _effective_invariant(node, eps_ij, env, tau_ij_old)
    sol = solver.compute_tau_ii(node, eps_ii, env.replace(tau_ii_old=0.0), options=options)
    tau_ij = tuple(2.0 * sol.eta_eff * e for e in eps_eff)
    return StressResult(tau_ij, sol.tau_ii, sol.eta_eff, sol.lam, sol.iterations)


def compute_p_tau_ij(
    network,
    eps_ij,
    env: Environment,
    tau_ij_old=None,
    *,
    options: SolverOptions | None = None,
) -> PressureStressResult:
    """圧力と偏差応力テンソルを求める（単一相）.

    体積歪み速度は元の（弾性補正前の）法線成分の和。前ステップの圧力は
    env.p_old で与える。

    Returns:
        PressureStressResult
    """
    node = as_network(network)
    eps_ii, eps_eff = _effective_invariant(node, eps_ij, env, tau_ij_old)
    eps_vol = volumetric_strain_rate(eps_ij)
    sol = solver.compute_p_tau_ii(
        node, eps_ii, eps_vol, env.replace(tau_ii_old=0.0), options=options
    )
    tau_ij = tuple(2.0 * sol.eta_eff * e for e in eps_eff)
    return PressureStressResult(sol.p, tau_ij, sol.tau_ii, sol.eta_eff, sol.lam, sol.iterations)


def compute_tau_ij_phase(
    phases,
    eps_ij,
    env: Environment,
    tau_ij_old,
    phase,
    *,
    options: SolverOptions | None = None,
) -> StressResult:
    """相インデックスでネットワークを選んで偏差応力テンソルを求める.

    Args:
        phases: PhaseRegistry（またはネットワーク・MaterialPhase の列）
        eps_ij: 偏差歪み速度成分
        env: 環境変数
        tau_ij_old: 前ステップの偏差応力成分（None = 0）
        phase: 相インデックス。staggered 格子では成分ごとの相
            （頂点成分は4点のタプル、先頭が中心相）。
        options: ソルバー設定（vertex_phase_policy を含む）
    """
    options = options or DEFAULT_OPTIONS
    registry = as_registry(phases)
    network = registry.network(registry.resolve_staggered(phase, options))
    return compute_tau_ij(network, eps_ij, env, tau_ij_old, options=options)


def compute_p_tau_ij_phase(
    phases,
    eps_ij,
    env: Environment,
    tau_ij_old,
    phase,
    *,
    options: SolverOptions | None = None,
) -> PressureStressResult:
    """相インデックスでネットワークを選んで圧力と偏差応力テンソルを求める."""
    options = options or DEFAULT_OPTIONS
    registry = as_registry(phases)
    network = registry.network(registry.resolve_staggered(phase, options))
    return compute_p_tau_ij(network, eps_ij, env, tau_ij_old, options=options)


def compute_tangent_ij(
    network,
    eps_ij,
    env: Environment,
    tau_ij_old=None,
    *,
    options: SolverOptions | None = None,
) -> np.ndarray:
    """偏差応力テンソルの接線 d(tau_i)/d(eps_j)（collocated のみ）.

    tau_i = 2 eta(eps_ii) e_i、e = eps_eff より
      d(tau_i)/d(e_j) = 2 eta delta_ij + 2 e_i (d eta/d eps_ii) w_j e_j / eps_ii
      d eta/d eps_ii  = 0.5 (tau_ii' eps_ii - tau_ii) / eps_ii^2
    w_j は法線成分 0.5、せん断成分 1。tau_ii' は不変量の consistent tangent。
    弾性の履歴項は eps に依存しないので d e/d eps = I。

    Returns:
        (ncomp, ncomp) 行列（2D: 3x3、3D: 6x6）
    """
    if is_staggered(eps_ij) or (tau_ij_old is not None and is_staggered(tau_ij_old)):
        raise ValueError("compute_tangent_ij は collocated の成分のみ対応します。")
    node = as_network(network)
    options = options or DEFAULT_OPTIONS
    n_normal = normal_count(eps_ij)

    eps_ii, eps_eff = _effective_invariant(node, eps_ij, env, tau_ij_old)
    env0 = env.replace(tau_ii_old=0.0)
    sol = solver.compute_tau_ii(node, eps_ii, env0, options=options)
    dtau = solver.compute_dtau_deps(node, eps_ii, env0, options=options)

    e = np.asarray(eps_eff, dtype=float)
    w = np.ones_like(e)
    w[:n_normal] = 0.5
    deta = 0.5 * (dtau * eps_ii - sol.tau_ii) / eps_ii**2
    return 2.0 * sol.eta_eff * np.eye(e.size) + 2.0 * deta / eps_ii * np.outer(e, w * e)
