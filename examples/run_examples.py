#!/usr/bin/env python3
"""georheo サンプル計算の実行スクリプト.

代表的なレオロジーネットワークについて応力の時間発展・場の計算を実行し、
結果を表示する。解析解が存在する場合は比較結果も出力する。

Usage:
    python examples/run_examples.py                 # 全サンプル実行
    python examples/run_examples.py maxwell         # 線形粘弾性のみ
    python examples/run_examples.py multiphase      # 多相のみ
    python examples/run_examples.py plastic         # 粘弾塑性のみ
    python examples/run_examples.py olivine         # オリビン転位クリープのみ
    python examples/run_examples.py staggered       # staggered 場のみ
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np

# プロジェクトルートを PYTHONPATH に追加
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from georheo.core.environment import Environment
from georheo.field import compute_tau_ij_field_staggered
from georheo.materials.apparatus import Apparatus
from georheo.materials.creep import DislocationCreep
from georheo.materials.elastic import ConstantElasticity
from georheo.materials.plasticity import DruckerPrager
from georheo.materials.viscous import LinearViscous, PowerlawViscous
from georheo.network import parallel, series
from georheo.phases import MaterialPhase, PhaseRegistry
from georheo.stress import compute_tau_ij_phase
from georheo.tensor import second_invariant
from georheo.time_stepping import time_tau_ii_0d


def run_maxwell():
    """線形粘弾性（Maxwell 体）: 一定歪み速度での応力緩和曲線."""
    print("=" * 60)
    print("線形粘弾性 Series(LinearViscous, ConstantElasticity)")
    print("=" * 60)

    eta, G = 10.0, 1.0
    t_M = eta / G
    eps = (1.0, -1.1, 2.3)
    eps_ii = second_invariant(eps)
    net = series(LinearViscous(eta=eta), ConstantElasticity(G=G))

    res = time_tau_ii_0d(net, eps, t=(0.0, 4.0 * t_M), nt=1000, verbose=True)
    analytic = 2.0 * eta * (1.0 - np.exp(-res.time / t_M)) * eps_ii
    error = np.max(np.abs(res.tau_ii - analytic)) / (2.0 * eta * eps_ii) * 100

    print(f"  材料: eta = {eta}, G = {G}（Maxwell 時間 t_M = {t_M}）")
    print(f"  歪み速度: eps = {eps}, eps_ii = {eps_ii:.6f}")
    print(f"  最終応力 tau_ii (数値): {res.tau_ii[-1]:.6e}")
    print(f"  最終応力 tau_ii (解析): {analytic[-1]:.6e}")
    print(f"  定常応力 2 eta eps_ii:  {2.0 * eta * eps_ii:.6e}")
    print(f"  最大誤差（定常応力比）: {error:.4f}%")
    print()
    return error


def run_multiphase():
    """多相: 相インデックスによるネットワークの振り分け."""
    print("=" * 60)
    print("多相（Matrix: eta=10, Inclusion: eta=20）")
    print("=" * 60)

    elasticity = ConstantElasticity(G=1.0)
    registry = PhaseRegistry(
        [
            MaterialPhase(series(LinearViscous(eta=10.0), elasticity), name="Matrix"),
            MaterialPhase(series(LinearViscous(eta=20.0), elasticity), name="Inclusion"),
        ]
    )
    eps = (1.0, -1.1, 2.3)
    nt = 100
    dt = 40.0 / (nt - 1)
    env = Environment(dt=dt)

    for phase, material in enumerate(registry):
        tau = (0.0, 0.0, 0.0)
        for _ in range(nt - 1):
            r = compute_tau_ij_phase(registry, eps, env, tau, phase)
            tau = r.tau_ij
        print(f"  相 {phase} ({material.name}): tau_ij = ({tau[0]:.4f}, {tau[1]:.4f}, {tau[2]:.4f}), "
              f"eta_eff = {r.eta_eff:.4f}")
    print()


def run_viscoelastoplastic():
    """粘弾塑性: Drucker-Prager による応力の頭打ちと Bingham 型の並列塑性."""
    print("=" * 60)
    print("粘弾塑性 Series(LinearViscous, ConstantElasticity, DruckerPrager)")
    print("=" * 60)

    C = 5.0
    net = series(LinearViscous(eta=10.0), ConstantElasticity(G=1.0), DruckerPrager(C=C, phi=0.0))
    res = time_tau_ii_0d(net, 1.0, t=(0.0, 40.0), nt=200)
    n_yield = int(np.argmax(res.tau_ii >= C * (1.0 - 1e-12)))
    print(f"  降伏応力: tau_y = {C}")
    print(f"  最大応力: {res.tau_ii.max():.6e}")
    print(f"  降伏時刻: t = {res.time[n_yield]:.4f}")

    bingham = parallel(LinearViscous(eta=1.0), DruckerPrager(C=2.0, phi=0.0))
    env = Environment()
    for tau in (1.0, 2.0, 4.0):
        print(f"  Bingham: tau_ii = {tau:.1f} -> eps_ii = {bingham.compute_eps_ii(tau, env):.4f}")
    print()


def run_olivine():
    """オリビン転位クリープ + 弾性 + 摩擦塑性（SI 単位）."""
    print("=" * 60)
    print("オリビン転位クリープ（Hirth & Kohlstedt 2003 型、乾燥）")
    print("=" * 60)

    creep = DislocationCreep(
        n=3.5,
        A=1.1e5 * (1e6) ** -3.5,  # MPa^-n s^-1 -> Pa^-n s^-1
        E=530.0e3,
        V=14.0e-6,
        apparatus=Apparatus.AXIAL_COMPRESSION,
        name="Dry olivine",
    )
    net = series(
        creep,
        ConstantElasticity(G=5.0e10, Kb=1.0e11),
        DruckerPrager(C=20.0e6, phi=30.0, eta_vp=1.0e18),
    )
    year = 3600.0 * 24.0 * 365.25
    env = Environment(T=1573.0, P=1.0e9)
    eps_ii = 1.0e-15

    res = time_tau_ii_0d(net, eps_ii, env, t=(0.0, 1.0e6 * year), nt=201, verbose=True)
    eta_eff = 0.5 * res.tau_ii[-1] / eps_ii
    print(f"  T = {env.T:.0f} K, P = {env.P / 1e9:.1f} GPa, eps_ii = {eps_ii:.1e} 1/s")
    print(f"  定常応力:   {res.tau_ii[-1] / 1e6:.4f} MPa")
    print(f"  有効粘性:   {eta_eff:.4e} Pa s")
    print(f"  降伏応力:   {net.children[2].law.yield_stress(env) / 1e6:.1f} MPa")
    print()


def run_staggered_field():
    """2D staggered 格子: Exy を頂点に持つ場の応力計算."""
    print("=" * 60)
    print("staggered 場（Exx, Eyy: セル中心、Exy: 頂点）")
    print("=" * 60)

    nx, ny = 32, 24
    x = np.linspace(-1.0, 1.0, nx)
    y = np.linspace(-1.0, 1.0, ny)
    X, Y = np.meshgrid(x, y, indexing="ij")
    xv = np.linspace(-1.0, 1.0, nx + 1)
    yv = np.linspace(-1.0, 1.0, ny + 1)
    XV, YV = np.meshgrid(xv, yv, indexing="ij")

    exx = 1.0 + 0.1 * X
    eyy = -exx
    exy = 0.5 + 0.2 * YV

    registry = PhaseRegistry(
        [
            MaterialPhase(series(PowerlawViscous(eta0=1.0, n=3.0, eps0=1.0), ConstantElasticity(G=1.0)),
                          name="Matrix"),
            MaterialPhase(series(LinearViscous(eta=10.0), ConstantElasticity(G=1.0)), name="Inclusion"),
        ]
    )
    phase_center = (X**2 + Y**2 < 0.25).astype(int)

    res = compute_tau_ij_field_staggered(
        registry,
        (exx, eyy, exy),
        Environment(dt=0.1),
        phase_center=phase_center,
        show_progress=True,
    )
    print(f"  格子: {nx} x {ny}（頂点 {nx + 1} x {ny + 1}）")
    print(f"  Inclusion セル数: {int(phase_center.sum())}")
    print(f"  tau_ii: min = {np.nanmin(res.tau_ii):.4f}, max = {np.nanmax(res.tau_ii):.4f}")
    print(f"  eta_eff: min = {np.nanmin(res.eta_eff):.4f}, max = {np.nanmax(res.eta_eff):.4f}")
    print(f"  失敗点: {int(res.failed.sum())}")
    print()


def main():
    """メイン実行."""
    print("=" * 60)
    print("georheo サンプル計算実行")
    print("=" * 60)
    print()

    # 引数でフィルタ
    filter_key = sys.argv[1].lower() if len(sys.argv) > 1 else None

    examples = {
        "maxwell": run_maxwell,
        "multiphase": run_multiphase,
        "plastic": run_viscoelastoplastic,
        "olivine": run_olivine,
        "staggered": run_staggered_field,
    }

    errors = []
    for name, func in examples.items():
        if filter_key is None or filter_key in name:
            err = func()
            if err is not None:
                errors.append((name, err))

    if errors:
        print("-" * 60)
        print("解析解比較まとめ:")
        for name, err in errors:
            status = "PASS" if err < 1.0 else "CHECK"
            print(f"  {name}: 誤差 {err:.4f}% [{status}]")
        print()


if __name__ == "__main__":
    main()
