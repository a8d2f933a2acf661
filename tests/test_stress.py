"""1点の応力テンソル計算のテスト.

テスト方針:
  1. 線形粘弾性の時間発展（eta=10, G=1）:
     手動の後退 Euler 漸化式と 1e-10 で一致、解析解 2 eta (1 - exp(-t/t_M)) eps とは
     1次精度の範囲で一致
  2. 多相: 相インデックスで正しいネットワークに振り分けられる（eta=10 / eta=20）
  3. staggered 格子（頂点成分）と相の扱い（中心相・不一致の policy）
  4. 圧力 + 偏差
  5. 3D テンソル
  6. テンソル接線 compute_tangent_ij の有限差分検証
"""

from __future__ import annotations

import warnings

import numpy as np
import pytest

from georheo.core.environment import Environment
from georheo.core.errors import DomainError, PhaseLookupError, PhaseMismatchError, PhaseMismatchWarning
from georheo.core.options import SolverOptions
from georheo.materials.elastic import ConstantElasticity
from georheo.materials.plasticity import DruckerPrager
from georheo.materials.viscous import LinearViscous, PowerlawViscous
from georheo.network import series
from georheo.phases import MaterialPhase, PhaseRegistry
from georheo.stress import (
    compute_p_tau_ij,
    compute_p_tau_ij_phase,
    compute_tangent_ij,
    compute_tau_ij,
    compute_tau_ij_phase,
)
from georheo.tensor import second_invariant

# ===== 線形粘弾性のパラメータ =====
ETA = 10.0
G_MOD = 1.0
T_M = ETA / G_MOD
EPS = (1.0, -1.1, 2.3)
NT = 100
TIME = np.linspace(0.0, 4.0 * T_M, NT)
DT = TIME[1] - TIME[0]


def _viscoelastic(eta: float = ETA):
    return series(LinearViscous(eta=eta), ConstantElasticity(G=G_MOD))


def _recurrence(eta: float = ETA) -> np.ndarray:
    """後退 Euler の漸化式 tau_n = 2 eta_ve (eps + 0.5 tau_{n-1} / eta_e)."""
    eta_e = DT * G_MOD
    eta_ve = 1.0 / (1.0 / eta_e + 1.0 / eta)
    tau = np.zeros((NT, 3))
    for n in range(1, NT):
        tau[n] = 2.0 * eta_ve * (np.asarray(EPS) + 0.5 * tau[n - 1] / eta_e)
    return tau


def _integrate(step) -> np.ndarray:
    """step(tau_old) -> StressResult を NT-1 回繰り返す."""
    tau = np.zeros((NT, 3))
    for n in range(1, NT):
        tau[n] = step(tuple(tau[n - 1])).tau_ij
    return tau


def _registry() -> PhaseRegistry:
    return PhaseRegistry(
        [
            MaterialPhase(_viscoelastic(10.0), name="Matrix"),
            MaterialPhase(_viscoelastic(20.0), name="Inclusion"),
        ]
    )


ENV = Environment(dt=DT)


# ================================================================
# 粘弾性の時間発展
# ================================================================


class TestViscoelasticHistory:
    """一定歪み速度下の線形粘弾性."""

    def test_matches_recurrence(self):
        net = _viscoelastic()
        tau = _integrate(lambda old: compute_tau_ij(net, EPS, ENV, old))
        np.testing.assert_allclose(tau, _recurrence(), rtol=0.0, atol=1e-10)

    def test_matches_analytic(self):
        """解析解 tau = 2 eta (1 - exp(-t/t_M)) eps（1次精度の時間積分誤差内）."""
        net = _viscoelastic()
        tau = _integrate(lambda old: compute_tau_ij(net, EPS, ENV, old))
        analytic = 2.0 * ETA * (1.0 - np.exp(-TIME / T_M))[:, None] * np.asarray(EPS)[None, :]
        amplitude = 2.0 * ETA * max(abs(e) for e in EPS)
        # 1e-10 の厳密な照合は test_matches_recurrence（後退 Euler 漸化式）
        np.testing.assert_allclose(tau, analytic, rtol=0.0, atol=0.02 * amplitude)

    def test_invariant_consistency(self):
        net = _viscoelastic()
        res = compute_tau_ij(net, EPS, ENV, (3.0, -1.0, 4.0))
        assert res.tau_ii == pytest.approx(second_invariant(res.tau_ij), rel=1e-12)
        assert res.eta_eff == pytest.approx(0.5 * res.tau_ii / second_invariant(
            tuple(e + t / (2.0 * G_MOD * DT) for e, t in zip(EPS, (3.0, -1.0, 4.0)))
        ), rel=1e-12)

    def test_ignores_env_invariant_history(self):
        """テンソル経路では旧応力は成分で与え、env.tau_ii_old は使わない."""
        net = _viscoelastic()
        a = compute_tau_ij(net, EPS, ENV, (1.0, 1.0, 1.0))
        b = compute_tau_ij(net, EPS, ENV.replace(tau_ii_old=123.0), (1.0, 1.0, 1.0))
        assert a.tau_ij == pytest.approx(b.tau_ij, rel=1e-15)

    def test_zero_strain_rate(self):
        with pytest.raises(DomainError):
            compute_tau_ij(_viscoelastic(), (0.0, 0.0, 0.0), ENV)


# ================================================================
# 多相
# ================================================================


class TestMultiPhase:
    """相インデックスによるネットワークの選択."""

    @pytest.mark.parametrize("phase,eta", [(0, 10.0), (1, 20.0)])
    def test_routing(self, phase, eta):
        registry = _registry()
        tau = _integrate(lambda old: compute_tau_ij_phase(registry, EPS, ENV, old, phase))
        np.testing.assert_allclose(tau, _recurrence(eta), rtol=0.0, atol=1e-10)

    def test_phases_differ(self):
        registry = _registry()
        a = compute_tau_ij_phase(registry, EPS, ENV, None, 0)
        b = compute_tau_ij_phase(registry, EPS, ENV, None, 1)
        assert b.tau_ii > a.tau_ii

    def test_plain_sequence(self):
        """レジストリの代わりにネットワークの列を渡せる."""
        phases = [_viscoelastic(10.0), _viscoelastic(20.0)]
        res = compute_tau_ij_phase(phases, EPS, ENV, None, 1)
        assert res.tau_ii == pytest.approx(compute_tau_ij(_viscoelastic(20.0), EPS, ENV).tau_ii)

    @pytest.mark.parametrize("phase", [2, -1, 1.0])
    def test_invalid_phase(self, phase):
        with pytest.raises(PhaseLookupError):
            compute_tau_ij_phase(_registry(), EPS, ENV, None, phase)

    def test_numpy_integer_phase(self):
        res = compute_tau_ij_phase(_registry(), EPS, ENV, None, np.int64(1))
        assert res.tau_ii == pytest.approx(compute_tau_ij(_viscoelastic(20.0), EPS, ENV).tau_ii)


# ================================================================
# staggered
# ================================================================


class TestStaggered:
    """頂点成分を含む入力."""

    @staticmethod
    def _vertex(tau_old):
        xx, yy, xy = tau_old
        return (xx, yy, (xy, xy, xy, xy))

    def test_single_phase_matches_collocated(self):
        net = _viscoelastic()
        eps = (EPS[0], EPS[1], (EPS[2],) * 4)
        tau = _integrate(lambda old: compute_tau_ij(net, eps, ENV, self._vertex(old)))
        np.testing.assert_allclose(tau, _recurrence(), rtol=0.0, atol=1e-10)

    @pytest.mark.parametrize("phase,eta", [((0, 0, (0, 0, 0, 0)), 10.0), ((1, 1, (1, 1, 1, 1)), 20.0)])
    def test_phase_routing(self, phase, eta):
        registry = _registry()
        eps = (EPS[0], EPS[1], (EPS[2],) * 4)
        tau = _integrate(
            lambda old: compute_tau_ij_phase(registry, eps, ENV, self._vertex(old), phase)
        )
        np.testing.assert_allclose(tau, _recurrence(eta), rtol=0.0, atol=1e-10)

    def test_mismatch_warns_and_uses_center(self):
        registry = _registry()
        eps = (EPS[0], EPS[1], (EPS[2],) * 4)
        with pytest.warns(PhaseMismatchWarning):
            res = compute_tau_ij_phase(registry, eps, ENV, None, (0, 0, (1, 1, 1, 1)))
        assert res.tau_ii == pytest.approx(compute_tau_ij(_viscoelastic(10.0), EPS, ENV).tau_ii)

    def test_mismatch_raise_policy(self):
        opts = SolverOptions(vertex_phase_policy="raise")
        eps = (EPS[0], EPS[1], (EPS[2],) * 4)
        with pytest.raises(PhaseMismatchError):
            compute_tau_ij_phase(_registry(), eps, ENV, None, (1, 1, (0, 1, 1, 1)), options=opts)

    def test_mismatch_center_policy_is_silent(self):
        opts = SolverOptions(vertex_phase_policy="center")
        eps = (EPS[0], EPS[1], (EPS[2],) * 4)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            res = compute_tau_ij_phase(_registry(), eps, ENV, None, (1, 1, (0, 0, 0, 0)), options=opts)
        assert res.tau_ii == pytest.approx(compute_tau_ij(_viscoelastic(20.0), EPS, ENV).tau_ii)

    def test_vertex_phase_out_of_range(self):
        """頂点相も範囲検証される（policy によらない）."""
        opts = SolverOptions(vertex_phase_policy="center")
        eps = (EPS[0], EPS[1], (EPS[2],) * 4)
        with pytest.raises(PhaseLookupError):
            compute_tau_ij_phase(_registry(), eps, ENV, None, (0, 0, (0, 0, 5, 0)), options=opts)

    def test_nonuniform_vertices(self):
        """頂点値が異なる場合、不変量は2乗平均、テンソルは算術平均から."""
        net = LinearViscous(eta=ETA)
        eps = (1.0, -1.1, (1.0, 2.0, 3.0, 4.0))
        res = compute_tau_ij(net, eps, ENV)
        assert res.eta_eff == pytest.approx(ETA, rel=1e-12)
        assert res.tau_ij[2] == pytest.approx(2.0 * ETA * 2.5, rel=1e-12)


# ================================================================
# 圧力・3D・接線
# ================================================================


class TestPressureTensor:
    """圧力 + 偏差応力テンソル."""

    KB = 4.0

    def _net(self):
        return series(LinearViscous(eta=ETA), ConstantElasticity(G=G_MOD, Kb=self.KB))

    def test_elastic_pressure(self):
        env = ENV.replace(p_old=2.0)
        res = compute_p_tau_ij(self._net(), EPS, env)
        assert res.p == pytest.approx(2.0 - self.KB * DT * (EPS[0] + EPS[1]), rel=1e-12)
        assert res.tau_ij == pytest.approx(compute_tau_ij(self._net(), EPS, env).tau_ij)

    def test_phase_variant(self):
        registry = PhaseRegistry([_viscoelastic(), self._net()])
        env = ENV.replace(p_old=2.0, P=7.0)
        assert compute_p_tau_ij_phase(registry, EPS, env, None, 0).p == 7.0
        assert compute_p_tau_ij_phase(registry, EPS, env, None, 1).p != 7.0

    def test_dilatant_plasticity(self):
        net = series(
            LinearViscous(eta=ETA),
            ConstantElasticity(G=G_MOD, Kb=self.KB),
            DruckerPrager(C=1.0, phi=30.0, psi=15.0),
        )
        env = ENV.replace(p_old=0.5)
        res = compute_p_tau_ij(net, EPS, env)
        assert res.lam > 0.0
        p_trial = 0.5 - self.KB * DT * (EPS[0] + EPS[1])
        assert res.p > p_trial
        tau_y = np.cos(np.radians(30.0)) + res.p * 0.5
        assert res.tau_ii == pytest.approx(tau_y, rel=1e-9)


class Test3D:
    """6成分テンソル."""

    EPS_3D = (1.0, -0.4, -0.6, 0.3, -0.2, 0.8)

    def test_viscous(self):
        res = compute_tau_ij(LinearViscous(eta=ETA), self.EPS_3D, ENV)
        assert res.tau_ij == pytest.approx(tuple(2.0 * ETA * e for e in self.EPS_3D), rel=1e-12)

    def test_viscoelastic_step(self):
        net = _viscoelastic()
        tau_old = (0.5, 0.1, -0.6, 0.2, 0.0, -0.3)
        res = compute_tau_ij(net, self.EPS_3D, ENV, tau_old)
        eta_e = DT * G_MOD
        eta_ve = 1.0 / (1.0 / eta_e + 1.0 / ETA)
        expected = tuple(2.0 * eta_ve * (e + 0.5 * t / eta_e) for e, t in zip(self.EPS_3D, tau_old))
        assert res.tau_ij == pytest.approx(expected, rel=1e-12)

    def test_volumetric_pressure(self):
        net = series(LinearViscous(eta=ETA), ConstantElasticity(G=G_MOD, Kb=2.0))
        eps = (1.0, 0.5, 0.25, 0.0, 0.0, 0.1)
        res = compute_p_tau_ij(net, eps, ENV)
        assert res.p == pytest.approx(-2.0 * DT * 1.75, rel=1e-12)


class TestTangent:
    """テンソル接線の有限差分検証."""

    @staticmethod
    def _fd_matrix(net, eps, env, tau_old, h=1e-5):
        n = len(eps)
        K = np.empty((n, n))
        for j in range(n):
            ep = list(eps)
            em = list(eps)
            ep[j] += h
            em[j] -= h
            tp = compute_tau_ij(net, tuple(ep), env, tau_old).tau_ij
            tm = compute_tau_ij(net, tuple(em), env, tau_old).tau_ij
            K[:, j] = (np.asarray(tp) - np.asarray(tm)) / (2.0 * h)
        return K

    def test_linear_is_isotropic(self):
        K = compute_tangent_ij(LinearViscous(eta=ETA), EPS, ENV)
        np.testing.assert_allclose(K, 2.0 * ETA * np.eye(3), rtol=1e-12, atol=1e-9)

    @pytest.mark.parametrize("eps", [EPS, Test3D.EPS_3D])
    def test_nonlinear_fd(self, eps):
        net = series(PowerlawViscous(eta0=ETA, n=3.0, eps0=1.0), ConstantElasticity(G=G_MOD))
        tau_old = tuple(0.3 * (i + 1) for i in range(len(eps)))
        K = compute_tangent_ij(net, eps, ENV, tau_old)
        np.testing.assert_allclose(K, self._fd_matrix(net, eps, ENV, tau_old), rtol=1e-5, atol=1e-5)

    def test_regularised_plastic_fd(self):
        net = series(LinearViscous(eta=ETA), DruckerPrager(C=5.0, phi=0.0, eta_vp=2.0))
        K = compute_tangent_ij(net, EPS, ENV)
        np.testing.assert_allclose(K, self._fd_matrix(net, EPS, ENV, None), rtol=1e-5, atol=1e-5)

    def test_staggered_rejected(self):
        with pytest.raises(ValueError):
            compute_tangent_ij(LinearViscous(eta=ETA), (1.0, 1.0, (1.0,) * 4), ENV)
