"""不変量レベルの Newton 反復カーネル.

Series ノード（応力共有・歪み速度の和）:
  sum_i eps_i(tau) = eps_target を tau について解く。
  塑性要素は試行応力が降伏応力を超えた場合のみ、塑性乗数 lam の
  Newton 反復で修正する（return mapping）。

Parallel ノード（歪み速度共有・応力の和）:
  sum_i tau_i(eps) = tau_target を eps について解く。
  塑性要素は降伏応力の和を超えるまで変形しない（Bingham 型）。

残差関数は単調増加なので、Newton 更新が括弧区間 [lo, hi] を外れた場合は
二分法に切り替える（safeguarded Newton）。解は高々1つ。

ノードの型には依存しない（children / viscous_children / plastic_children /
elastic_laws 属性を持つオブジェクトを受け取る）。
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from typing import NamedTuple

from georheo.core.environment import Environment
from georheo.core.errors import ConvergenceError, DomainError
from georheo.core.options import SolverOptions

LOG = logging.getLogger(__name__)

# 括弧区間が潰れたとみなす相対幅
_BRACKET_RTOL = 1e-15


class NodeSolution(NamedTuple):
    """ノード単位の求解結果（内部用）.

    Attributes:
        tau_ii: 応力不変量
        lam: 塑性乗数（= 塑性歪み速度不変量）
        iterations: Newton 反復回数（外側 + 塑性修正）
        residual: 最終の相対残差
        sin_psi: 活性な塑性要素の sin(psi)（ダイレイタンシーによる圧力更新用）
    """

    tau_ii: float
    lam: float
    iterations: int
    residual: float
    sin_psi: float = 0.0


def _check_finite(value: float, what: str) -> float:
    if not math.isfinite(value):
        raise DomainError(f"{what} が非有限値です: {value}")
    return value


def _positive_slope(deps: float) -> float:
    if not deps > 0.0:
        raise DomainError(f"非塑性部分の接線コンプライアンスが正ではありません: {deps}")
    return deps


def newton_bracketed(
    fun: Callable[[float], tuple[float, float]],
    x0: float,
    scale: float,
    *,
    rtol: float,
    max_iter: int,
    stage: str,
) -> tuple[float, int, float]:
    """x >= 0 で単調増加な r(x) = 0 を safeguarded Newton 法で解く.

    Args:
        fun: x -> (r(x), dr/dx)
        x0: 初期値（正値推奨）
        scale: 相対残差の基準量 |r| / scale
        rtol: 相対残差許容値
        max_iter: 反復上限
        stage: ConvergenceError に載せる反復の種類

    Returns:
        (x, iterations, residual)
    """
    lo, hi = 0.0, math.inf
    x = x0 if x0 > 0.0 else 0.0
    x_grow = x0 if x0 > 0.0 else 1.0
    res = math.inf
    for it in range(1, max_iter + 1):
        r, dr = fun(x)
        _check_finite(r, f"{stage} 残差")
        res = abs(r) / scale
        if res <= rtol:
            return x, it, res

        if r > 0.0:
            hi = x
        else:
            lo = x
        if hi - lo <= _BRACKET_RTOL * hi:
            # 機械精度まで区間が縮小
            return x, it, res

        x_new = x - r / dr if dr > 0.0 and math.isfinite(dr) else math.nan
        if not (lo < x_new < hi):
            if math.isfinite(hi):
                x_new = 0.5 * (lo + hi)
            else:
                x_new = max(2.0 * x, x_grow)
                x_grow *= 2.0
        x = x_new

    LOG.debug("%s Newton stalled: x=%.6e, residual=%.3e, bracket=[%.6e, %.6e]", stage, x, res, lo, hi)
    raise ConvergenceError(stage, max_iter, res)


# ====================================================================
# Series: 応力共有
# ====================================================================


def _memory_rate(node, env: Environment) -> float:
    """弾性履歴による歪み速度のオフセット tau_old / (2 G dt) の和."""
    if env.tau_ii_old == 0.0:
        return 0.0
    return env.tau_ii_old * sum(law.compliance(env) for law in node.elastic_laws)


def solve_series_viscous(
    node, eps_ii: float, env: Environment, options: SolverOptions
) -> tuple[float, int, float]:
    """塑性要素を除いた Series の釣り合い sum_i eps_i(tau) = eps_ii を解く.

    eps_ii は弾性の除荷（tau < tau_old）がある場合のみ負になり得る。

    Returns:
        (tau_ii, iterations, residual)
    """
    children = node.viscous_children
    memory = _memory_rate(node, env)

    # tau = 0 での残差: クリープ項は 0、弾性項は -tau_old / (2 G dt)
    r0 = -memory - eps_ii
    if r0 >= 0.0:
        if r0 == 0.0:
            return 0.0, 0, 0.0
        raise DomainError(
            f"非負の応力で Series の釣り合いが取れません: eps_ii={eps_ii}, "
            f"elastic memory rate={memory}"
        )

    # 初期値: 最も弱い要素が全歪み速度を担う場合の応力
    if eps_ii > 0.0:
        tau0 = min(child.compute_tau_ii(eps_ii, env, options) for child in children)
    else:
        tau0 = env.tau_ii_old
    scale = max(abs(eps_ii), memory)

    def fun(tau: float) -> tuple[float, float]:
        r = sum(child.compute_eps_ii(tau, env, options) for child in children) - eps_ii
        dr = sum(child.deps_dtau(tau, env, options) for child in children)
        return r, dr

    return newton_bracketed(
        fun, tau0, scale, rtol=options.rtol, max_iter=options.max_iter, stage="series"
    )


def _active_plastic(node, env: Environment):
    """最も低い降伏応力を持つ塑性要素（Series では最初に降伏する）."""
    return min((leaf.law for leaf in node.plastic_children), key=lambda law: law.yield_stress(env))


def _plastic_correction(
    node,
    law,
    eps_ii: float,
    tau_trial: float,
    env: Environment,
    options: SolverOptions,
    kb_dt: float,
) -> tuple[float, float, int, float]:
    """塑性乗数 lam の Newton 反復（return mapping）.

    非塑性部分の歪み速度を eps_ii - lam として
      tau(lam) = tau_np(eps_ii - lam)
      P(lam)   = P + Kb dt lam sin(psi)
      F(lam)   = tau(lam) - tau_y(P(lam)) - 2 eta_vp lam = 0
    を解く。dF/dlam = -(2 eta_np + 2 eta_vp + Kb dt sin(phi) sin(psi)) < 0 なので
    F > 0 の間は lam を増加させる:
      lam <- lam + F / |dF/dlam|
    eta_np は非塑性部分の接線粘性 0.5 dtau_np/deps。
    lam は [0, eps_ii + tau_old / (2 G dt)] に制限する
    （非塑性部分が非負応力で釣り合う範囲）。

    Returns:
        (tau_ii, lam, iterations, residual)
    """
    children = node.viscous_children
    lam_max = eps_ii + _memory_rate(node, env)
    dilation = kb_dt * law.sin_phi * law.sin_psi

    lam = 0.0
    tau = tau_trial
    env_lam = env
    n_iter = 0
    res = math.inf
    for it in range(1, options.plastic_max_iter + 1):
        tau_y = law.yield_stress(env_lam)
        if tau_y < 0.0:
            raise DomainError(
                f"降伏応力が負です: tau_y={tau_y:.6e} (P={env_lam.P:.6e}, lam={lam:.6e})"
            )
        F = law.yield_function(tau, env_lam, lam)
        _check_finite(F, "降伏関数")
        res = abs(F) / max(abs(tau), abs(tau_y), 1e-300)
        if res <= options.plastic_rtol:
            return tau, lam, n_iter + it, res

        deps = sum(child.deps_dtau(tau, env_lam, options) for child in children)
        eta_np = 0.5 / _positive_slope(deps)
        dF_dlam = -(2.0 * eta_np + 2.0 * law.eta_vp + dilation)
        lam_new = min(max(lam - F / dF_dlam, 0.0), lam_max)
        if lam_new == lam:
            if lam == lam_max and F > 0.0:
                # 非塑性部分の応力を 0 にしても降伏関数が正
                raise DomainError(
                    f"塑性乗数が上限で飽和しました: lam={lam:.6e}, tau={tau:.6e}, tau_y={tau_y:.6e}"
                )
            LOG.debug("plastic Newton stalled: lam=%.6e, tau=%.6e, residual=%.3e", lam, tau, res)
            raise ConvergenceError("plastic", it, res)
        lam = lam_new

        env_lam = env.replace(P=env.P + kb_dt * lam * law.sin_psi)
        tau, it_np, _ = solve_series_viscous(node, eps_ii - lam, env_lam, options)
        n_iter += it_np

    LOG.debug("plastic Newton hit the iteration cap: lam=%.6e, tau=%.6e, residual=%.3e", lam, tau, res)
    raise ConvergenceError("plastic", options.plastic_max_iter, res)


def solve_series(
    node,
    eps_ii: float,
    env: Environment,
    options: SolverOptions,
    kb_dt: float = 0.0,
) -> NodeSolution:
    """Series ノードの歪み速度制御求解.

    1. 塑性要素を非活性として試行応力 tau_trial を求める。
    2. tau_trial が降伏応力以下ならそのまま返す。
    3. 超えていれば塑性乗数 lam の Newton 反復で修正する。

    Args:
        node: Series ノード
        eps_ii: 目標歪み速度不変量
        env: 環境変数
        options: ソルバー設定
        kb_dt: Kb dt（体積弾性と塑性ダイレイタンシーの連成項、偏差のみなら 0）
    """
    tau_trial, n_iter, res = solve_series_viscous(node, eps_ii, env, options)
    if not node.plastic_children:
        return NodeSolution(tau_trial, 0.0, n_iter, res)

    law = _active_plastic(node, env)
    if law.yield_function(tau_trial, env) <= 0.0:
        return NodeSolution(tau_trial, 0.0, n_iter, res)

    tau, lam, it_pl, res_pl = _plastic_correction(
        node, law, eps_ii, tau_trial, env, options, kb_dt
    )
    return NodeSolution(tau, lam, n_iter + it_pl, res_pl, law.sin_psi)


def series_tangent(
    node, solution: NodeSolution, env: Environment, options: SolverOptions, kb_dt: float = 0.0
) -> float:
    """Series の d(tau_ii)/d(eps_ii)（塑性活性時は consistent tangent）.

    塑性非活性:  dtau/deps = 2 eta_np
    塑性活性:    dtau/deps = 2 eta_np k / (2 eta_np + k),  k = 2 eta_vp + Kb dt sin(phi) sin(psi)
    """
    tau = solution.tau_ii
    env_lam = env
    law = None
    if solution.lam > 0.0:
        law = _active_plastic(node, env)
        env_lam = env.replace(P=env.P + kb_dt * solution.lam * law.sin_psi)
    deps = sum(child.deps_dtau(tau, env_lam, options) for child in node.viscous_children)
    two_eta_np = 1.0 / _positive_slope(deps)
    if law is None:
        return two_eta_np
    k = 2.0 * law.eta_vp + kb_dt * law.sin_phi * law.sin_psi
    return two_eta_np * k / (two_eta_np + k)


# ====================================================================
# Parallel: 歪み速度共有
# ====================================================================


def parallel_yield_stress(node, env: Environment) -> float:
    """Parallel 内の塑性要素の降伏応力の和（これ以下では変形しない）."""
    return sum(leaf.law.yield_stress(env) for leaf in node.plastic_children)


def solve_parallel(
    node, tau_ii: float, env: Environment, options: SolverOptions
) -> tuple[float, int, float]:
    """Parallel ノードの応力制御求解 sum_i tau_i(eps) = tau_ii.

    Returns:
        (eps_ii, iterations, residual)
    """
    children = node.children
    tau_y = parallel_yield_stress(node, env)
    tau_np0 = sum(child.compute_tau_ii(0.0, env, options) for child in node.viscous_children)
    if tau_np0 + tau_y >= tau_ii:
        return 0.0, 0, 0.0

    # 初期値: 各要素が単独で (tau_ii - tau_y) を担う場合の歪み速度の最小値
    excess = tau_ii - tau_y
    guesses = [child.compute_eps_ii(excess, env, options) for child in node.viscous_children]
    guesses += [
        excess / (2.0 * leaf.law.eta_vp) for leaf in node.plastic_children if leaf.law.eta_vp > 0.0
    ]
    eps0 = min((g for g in guesses if g > 0.0), default=0.0)

    def fun(eps: float) -> tuple[float, float]:
        r = sum(child.compute_tau_ii(eps, env, options) for child in children) - tau_ii
        dr = sum(child.dtau_deps(eps, env, options) for child in children)
        return r, dr

    return newton_bracketed(
        fun, eps0, abs(tau_ii), rtol=options.rtol, max_iter=options.max_iter, stage="parallel"
    )
