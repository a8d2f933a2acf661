"""不変量レベルの求解エントリポイント.

ネットワーク（または単一の構成則）と歪み速度第2不変量から、
応力第2不変量・有効粘性・塑性乗数を求める。

  compute_tau_ii     — 偏差のみ（歪み速度制御）
  compute_p_tau_ii   — 圧力 + 偏差（体積弾性・塑性ダイレイタンシーの連成）
  compute_eps_ii     — 応力制御の逆問題
  compute_dtau_deps  — 外側 Newton 用の接線 d(tau_ii)/d(eps_ii)
  compute_deps_dtau  — 同 d(eps_ii)/d(tau_ii)

圧力更新（圧縮を正）:
  P_trial = P_old - Kb_eff dt eps_vol,   1/Kb_eff = sum 1/Kb（直列の弾性要素）
  P       = P_trial + Kb_eff dt lam sin(psi)
Drucker-Prager の降伏応力は P_trial から評価を始め、塑性乗数の反復中に
ダイレイタンシーによる圧力増分を取り込む。
"""

from __future__ import annotations

from georheo.core.environment import Environment
from georheo.core.errors import DomainError
from georheo.core.options import DEFAULT_OPTIONS, SolverOptions
from georheo.core.results import InvariantSolution, PressureSolution
from georheo.network import as_network, check_invariant, is_plain_number, real_part


def _effective_viscosity(tau_ii, eps_ii):
    if real_part(eps_ii) == 0.0:
        raise DomainError("歪み速度不変量が 0 のため有効粘性が定義されません。")
    return 0.5 * tau_ii / eps_ii


def compute_tau_ii(
    network,
    eps_ii,
    env: Environment,
    *,
    options: SolverOptions | None = None,
) -> InvariantSolution:
    """歪み速度不変量に対する応力不変量を求める.

    Args:
        network: Leaf / Series / Parallel、または単一の構成則
        eps_ii: 歪み速度第2不変量（非負、有効粘性のため正値）。
            値部分を real 属性で公開する自動微分型も受け付け、tau_ii と eta_eff に微分が伝播する
        env: 環境変数（弾性を含む場合は dt と tau_ii_old）
        options: ソルバー設定

    Returns:
        InvariantSolution

    Raises:
        DomainError: eps_ii が負・非有限・ゼロの場合
        ConvergenceError: Newton 反復が収束しない場合
    """
    node = as_network(network)
    options = options or DEFAULT_OPTIONS
    eps_ii = check_invariant(eps_ii, "歪み速度不変量 eps_ii")
    sol = node.solve_tau_ii(eps_ii, env, options)
    return InvariantSolution(
        tau_ii=sol.tau_ii,
        eta_eff=_effective_viscosity(sol.tau_ii, eps_ii),
        lam=sol.lam,
        iterations=sol.iterations,
        residual=sol.residual,
    )


def bulk_time_factor(network, env: Environment) -> float:
    """直列弾性要素の Kb_eff dt（体積弾性がなければ 0）."""
    node = as_network(network)
    compliance = sum(law.bulk_compliance(env) for law in node.elastic_laws)
    if compliance == 0.0:
        return 0.0
    return 1.0 / compliance


def compute_p_tau_ii(
    network,
    eps_ii,
    eps_vol,
    env: Environment,
    *,
    options: SolverOptions | None = None,
) -> PressureSolution:
    """圧力と応力不変量を連成して求める.

    体積弾性を持つ要素がない場合、圧力は env.P のまま（外側ソルバーが決める）。

    Args:
        network: ネットワークまたは構成則
        eps_ii: 歪み速度第2不変量
        eps_vol: 体積歪み速度（法線成分の和、膨張を正）
        env: 環境変数（p_old は前ステップの圧力）
        options: ソルバー設定

    Returns:
        PressureSolution
    """
    node = as_network(network)
    options = options or DEFAULT_OPTIONS
    eps_ii = check_invariant(eps_ii, "歪み速度不変量 eps_ii")
    if not (isinstance(eps_ii, float) and is_plain_number(eps_vol)):
        raise DomainError("圧力連成の求解は float 入力のみ対応します（自動微分型は不可）。")
    eps_vol = float(eps_vol)

    kb_dt = bulk_time_factor(node, env)
    if kb_dt > 0.0:
        env = env.replace(P=env.p_old - kb_dt * eps_vol)

    sol = node.solve_tau_ii(eps_ii, env, options, kb_dt)
    p = env.P + kb_dt * sol.lam * sol.sin_psi
    return PressureSolution(
        p=p,
        tau_ii=sol.tau_ii,
        eta_eff=_effective_viscosity(sol.tau_ii, eps_ii),
        lam=sol.lam,
        iterations=sol.iterations,
        residual=sol.residual,
    )


def compute_eps_ii(
    network,
    tau_ii,
    env: Environment,
    *,
    options: SolverOptions | None = None,
) -> float:
    """応力不変量に対する歪み速度不変量を求める."""
    return as_network(network).compute_eps_ii(tau_ii, env, options or DEFAULT_OPTIONS)


def compute_dtau_deps(
    network,
    eps_ii,
    env: Environment,
    *,
    options: SolverOptions | None = None,
) -> float:
    """d(tau_ii)/d(eps_ii)（塑性活性時は consistent tangent）.

    自動微分型の入力は閉形式のノード（Leaf、Leaf のみの Parallel）に限る。
    Series を含む場合は DomainError。
    """
    return as_network(network).dtau_deps(eps_ii, env, options or DEFAULT_OPTIONS)


def compute_deps_dtau(
    network,
    tau_ii,
    env: Environment,
    *,
    options: SolverOptions | None = None,
) -> float:
    """d(eps_ii)/d(tau_ii)."""
    return as_network(network).deps_dtau(tau_ii, env, options or DEFAULT_OPTIONS)
