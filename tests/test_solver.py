"""不変量ソルバーのテスト.

テスト方針:
  1. 非線形 Series の釣り合いを scipy の brentq（独立な求根法）と照合
  2. 粘弾性 Series の1ステップ解析解、除荷（tau < tau_old）
  3. 塑性の活性化境界（C=1e6, phi=0）: 降伏未満は不変、超過で tau = tau_y
  4. 粘塑性正則化の解析解
  5. consistent tangent の有限差分検証（塑性活性・非活性）
  6. 圧力連成: 体積弾性の圧力更新とダイレイタンシー
  7. 双対数入力: 閉形式の評価と反復解（接線による伝播）で微分が得られる
  8. 失敗の報告: ConvergenceError（実反復回数）、DomainError（負の降伏応力など）
"""

from __future__ import annotations

import math

import pytest
from scipy.optimize import brentq

from georheo.core.environment import Environment
from georheo.core.errors import ConvergenceError, DomainError
from georheo.core.options import SolverOptions
from georheo.materials.apparatus import Apparatus
from georheo.materials.creep import DislocationCreep
from georheo.materials.elastic import ConstantElasticity
from georheo.materials.plasticity import DruckerPrager
from georheo.materials.viscous import LinearViscous, PowerlawViscous
from georheo.network import parallel, series
from georheo.solver import (
    compute_deps_dtau,
    compute_dtau_deps,
    compute_eps_ii,
    compute_p_tau_ii,
    compute_tau_ii,
)

# ===== テスト用パラメータ =====
ETA = 1e22          # Pa s
G_MOD = 5e10        # Pa
KB = 1e11           # Pa
DT = 1e10           # s
C_COH = 1e6         # Pa
ENV = Environment(T=1600.0, dt=DT)


def _creep_series():
    """eps = tau/2 + tau^3 となる無次元の非線形 Series."""
    creep = DislocationCreep(n=3.0, A=1.0, E=0.0, V=0.0, apparatus=Apparatus.INVARIANT)
    return series(LinearViscous(eta=1.0), creep)


def _fd(fun, x, rel=1e-4):
    h = rel * x
    return (fun(x + h) - fun(x - h)) / (2.0 * h)


# ================================================================
# 非線形 Series
# ================================================================


class TestNonlinearSeries:
    """非線形 Series の釣り合い."""

    @pytest.mark.parametrize("eps", [1e-4, 0.05, 2.0, 300.0])
    def test_against_brentq(self, eps):
        net = _creep_series()
        ref = brentq(lambda t: 0.5 * t + t**3 - eps, 0.0, 1e3, xtol=1e-300, rtol=1e-15)
        sol = compute_tau_ii(net, eps, Environment())
        assert sol.tau_ii == pytest.approx(ref, rel=1e-10)
        assert sol.eta_eff == pytest.approx(0.5 * sol.tau_ii / eps, rel=1e-15)
        assert sol.lam == 0.0
        assert sol.residual <= 1e-12

    def test_few_iterations(self):
        sol = compute_tau_ii(_creep_series(), 2.0, Environment())
        assert 1 <= sol.iterations < 15

    def test_powerlaw_and_creep_with_temperature(self):
        laws = (
            DislocationCreep(n=3.5, A=1.1e-16, E=530e3, V=0.0),
            PowerlawViscous(eta0=1e21, n=2.0, eps0=1e-15),
            LinearViscous(eta=1e23),
        )
        net = series(*laws)
        env = Environment(T=1500.0)
        eps = 1e-14

        def residual(tau):
            return sum(law.compute_eps_ii(tau, env) for law in laws) - eps

        ref = brentq(residual, 1.0, 1e10, xtol=1e-6, rtol=1e-14)
        sol = compute_tau_ii(net, eps, env)
        assert sol.tau_ii == pytest.approx(ref, rel=1e-9)

    def test_inverse(self):
        net = _creep_series()
        sol = compute_tau_ii(net, 2.0, Environment())
        assert compute_eps_ii(net, sol.tau_ii, Environment()) == pytest.approx(2.0, rel=1e-12)

    def test_single_law(self):
        """構成則単体もネットワークとして評価できる."""
        sol = compute_tau_ii(LinearViscous(eta=ETA), 1e-15, ENV)
        assert sol.tau_ii == pytest.approx(2.0 * ETA * 1e-15)
        assert sol.eta_eff == pytest.approx(ETA)
        assert sol.iterations == 0


# ================================================================
# 粘弾性
# ================================================================


class TestViscoelastic:
    """Series(LinearViscous, ConstantElasticity) の1ステップ."""

    @staticmethod
    def _analytic(eps, tau_old):
        # 2 eps = tau/eta + (tau - tau_old)/(G dt)
        return (2.0 * eps + tau_old / (G_MOD * DT)) / (1.0 / ETA + 1.0 / (G_MOD * DT))

    @pytest.mark.parametrize("tau_old", [0.0, 1e6, 3e7])
    def test_loading(self, tau_old):
        net = series(LinearViscous(eta=ETA), ConstantElasticity(G=G_MOD))
        sol = compute_tau_ii(net, 1e-15, ENV.replace(tau_ii_old=tau_old))
        assert sol.tau_ii == pytest.approx(self._analytic(1e-15, tau_old), rel=1e-12)

    def test_unloading(self):
        """小さな歪み速度では応力が緩和する（tau < tau_old）."""
        net = series(LinearViscous(eta=ETA), ConstantElasticity(G=G_MOD))
        tau_old = 5e7
        sol = compute_tau_ii(net, 1e-17, ENV.replace(tau_ii_old=tau_old))
        assert sol.tau_ii < tau_old
        assert sol.tau_ii == pytest.approx(self._analytic(1e-17, tau_old), rel=1e-12)

    def test_missing_time_step(self):
        net = series(LinearViscous(eta=ETA), ConstantElasticity(G=G_MOD))
        with pytest.raises(DomainError, match="dt"):
            compute_tau_ii(net, 1e-15, Environment())


# ================================================================
# 塑性
# ================================================================


class TestPlasticity:
    """Drucker-Prager の活性化境界と return mapping."""

    def _net(self, eta_vp: float = 0.0, phi: float = 0.0):
        return series(LinearViscous(eta=ETA), DruckerPrager(C=C_COH, phi=phi, eta_vp=eta_vp))

    def test_below_yield_unmodified(self):
        """試行応力 2e5 < 1e6 はそのまま."""
        sol = compute_tau_ii(self._net(), 1e-17, ENV)
        assert sol.tau_ii == pytest.approx(2.0 * ETA * 1e-17, rel=1e-14)
        assert sol.lam == 0.0

    def test_above_yield_returns_to_yield(self):
        """試行応力 2e7 > 1e6 は tau_y = 1e6 に戻る（完全塑性）."""
        eps = 1e-15
        sol = compute_tau_ii(self._net(), eps, ENV)
        assert sol.tau_ii == pytest.approx(C_COH, rel=1e-10)
        assert sol.lam == pytest.approx(eps - C_COH / (2.0 * ETA), rel=1e-10)
        assert sol.eta_eff == pytest.approx(0.5 * C_COH / eps, rel=1e-10)

    def test_viscoelastoplastic(self):
        net = series(LinearViscous(eta=ETA), ConstantElasticity(G=G_MOD), DruckerPrager(C=C_COH, phi=0.0))
        sol = compute_tau_ii(net, 1e-14, ENV.replace(tau_ii_old=5e5))
        assert sol.tau_ii == pytest.approx(C_COH, rel=1e-10)
        assert sol.lam > 0.0

    def test_regularised(self):
        """tau = (tau_y + 2 eta_vp eps) / (1 + eta_vp / eta)."""
        eta_vp = 1e20
        eps = 1e-15
        sol = compute_tau_ii(self._net(eta_vp=eta_vp), eps, ENV)
        expected = (C_COH + 2.0 * eta_vp * eps) / (1.0 + eta_vp / ETA)
        assert sol.tau_ii == pytest.approx(expected, rel=1e-10)
        assert sol.tau_ii > C_COH
        assert sol.lam == pytest.approx(eps - sol.tau_ii / (2.0 * ETA), rel=1e-9)

    def test_nonlinear_viscous_part(self):
        """非線形の非塑性部分でも降伏関数 F = 0 を満たす."""
        creep = DislocationCreep(n=3.0, A=1e-35, E=0.0, V=0.0, apparatus=Apparatus.INVARIANT)
        net = series(creep, LinearViscous(eta=ETA), DruckerPrager(C=C_COH, phi=0.0, eta_vp=1e19))
        sol = compute_tau_ii(net, 1e-14, ENV)
        assert sol.lam > 0.0
        assert sol.tau_ii - C_COH - 2.0 * 1e19 * sol.lam == pytest.approx(0.0, abs=1e-10 * C_COH)
        eps_np = creep.compute_eps_ii(sol.tau_ii, ENV) + sol.tau_ii / (2.0 * ETA)
        assert eps_np + sol.lam == pytest.approx(1e-14, rel=1e-10)

    def test_weakest_plastic_element(self):
        """複数の塑性要素では降伏応力の低い方が効く."""
        net = series(LinearViscous(eta=ETA), DruckerPrager(C=3e6, phi=0.0), DruckerPrager(C=C_COH, phi=0.0))
        sol = compute_tau_ii(net, 1e-15, ENV)
        assert sol.tau_ii == pytest.approx(C_COH, rel=1e-10)

    def test_pressure_dependent_yield(self):
        phi = 30.0
        env = ENV.replace(P=1e7)
        sol = compute_tau_ii(self._net(phi=phi), 1e-14, env)
        tau_y = C_COH * math.cos(math.radians(phi)) + 1e7 * math.sin(math.radians(phi))
        assert sol.tau_ii == pytest.approx(tau_y, rel=1e-10)


class TestTangent:
    """d(tau_ii)/d(eps_ii) の有限差分検証."""

    def test_viscous(self):
        net = _creep_series()
        env = Environment()
        fd = _fd(lambda e: compute_tau_ii(net, e, env).tau_ii, 0.7)
        assert compute_dtau_deps(net, 0.7, env) == pytest.approx(fd, rel=1e-6)

    def test_deps_dtau(self):
        net = _creep_series()
        env = Environment()
        assert compute_deps_dtau(net, 1.2, env) == pytest.approx(0.5 + 3.0 * 1.2**2, rel=1e-14)

    def test_regularised_plastic(self):
        net = series(
            PowerlawViscous(eta0=ETA, n=3.0, eps0=1e-15),
            ConstantElasticity(G=G_MOD),
            DruckerPrager(C=C_COH, phi=0.0, eta_vp=1e20),
        )
        env = ENV.replace(tau_ii_old=2e5)
        eps = 2e-15
        assert compute_tau_ii(net, eps, env).lam > 0.0
        fd = _fd(lambda e: compute_tau_ii(net, e, env).tau_ii, eps)
        assert compute_dtau_deps(net, eps, env) == pytest.approx(fd, rel=1e-5)

    def test_ideal_plastic_is_flat(self):
        net = series(LinearViscous(eta=ETA), DruckerPrager(C=C_COH, phi=0.0))
        assert compute_dtau_deps(net, 1e-15, ENV) == 0.0

    def test_parallel(self):
        net = parallel(PowerlawViscous(eta0=1.0, n=2.0, eps0=1.0), LinearViscous(eta=0.5))
        env = Environment()
        fd = _fd(lambda e: compute_tau_ii(net, e, env).tau_ii, 0.3)
        assert compute_dtau_deps(net, 0.3, env) == pytest.approx(fd, rel=1e-6)


# ================================================================
# 圧力連成
# ================================================================


class TestPressure:
    """体積弾性と塑性ダイレイタンシーの連成."""

    P_OLD = 2e8

    def _net(self, psi: float = 10.0):
        return series(
            LinearViscous(eta=ETA),
            ConstantElasticity(G=G_MOD, Kb=KB),
            DruckerPrager(C=C_COH, phi=30.0, psi=psi),
        )

    def test_elastic_pressure(self):
        """降伏未満: P = P_old - Kb dt eps_vol."""
        env = ENV.replace(p_old=self.P_OLD)
        eps_vol = -1e-17
        sol = compute_p_tau_ii(self._net(), 1e-18, eps_vol, env)
        assert sol.lam == 0.0
        assert sol.p == pytest.approx(self.P_OLD - KB * DT * eps_vol, rel=1e-14)

    def test_dilatant_plastic_pressure(self):
        """降伏中: P = P_trial + Kb dt lam sin(psi)、tau = tau_y(P)."""
        psi = 10.0
        env = ENV.replace(p_old=self.P_OLD)
        eps_vol = 1e-17
        sol = compute_p_tau_ii(self._net(psi), 1e-12, eps_vol, env)
        assert sol.lam > 0.0
        p_trial = self.P_OLD - KB * DT * eps_vol
        assert sol.p == pytest.approx(p_trial + KB * DT * sol.lam * math.sin(math.radians(psi)), rel=1e-12)
        tau_y = C_COH * math.cos(math.radians(30.0)) + sol.p * math.sin(math.radians(30.0))
        assert sol.tau_ii == pytest.approx(tau_y, rel=1e-9)

    def test_non_dilatant_keeps_trial_pressure(self):
        env = ENV.replace(p_old=self.P_OLD)
        sol = compute_p_tau_ii(self._net(psi=0.0), 1e-12, 0.0, env)
        assert sol.lam > 0.0
        assert sol.p == pytest.approx(self.P_OLD, rel=1e-14)

    def test_incompressible_uses_env_pressure(self):
        net = series(LinearViscous(eta=ETA), ConstantElasticity(G=G_MOD))
        sol = compute_p_tau_ii(net, 1e-15, 1e-15, ENV.replace(P=3e7, p_old=1e7))
        assert sol.p == 3e7

    def test_two_compressible_elements(self):
        """直列の体積弾性は 1/Kb_eff = 1/Kb1 + 1/Kb2."""
        net = series(
            LinearViscous(eta=ETA),
            ConstantElasticity(G=G_MOD, Kb=KB),
            ConstantElasticity(G=G_MOD, Kb=3.0 * KB),
        )
        kb_eff = 1.0 / (1.0 / KB + 1.0 / (3.0 * KB))
        sol = compute_p_tau_ii(net, 1e-15, 2e-17, ENV.replace(p_old=0.0))
        assert sol.p == pytest.approx(-kb_eff * DT * 2e-17, rel=1e-12)


# ================================================================
# 自動微分
# ================================================================


class _Dual:
    """前進モード自動微分用の双対数 a + b e（値部分を real で公開）."""

    def __init__(self, a, b=0.0):
        self.a = a
        self.b = b

    @property
    def real(self):
        return self.a

    @staticmethod
    def _lift(x):
        return x if isinstance(x, _Dual) else _Dual(x)

    def __add__(self, other):
        other = self._lift(other)
        return _Dual(self.a + other.a, self.b + other.b)

    __radd__ = __add__

    def __neg__(self):
        return _Dual(-self.a, -self.b)

    def __sub__(self, other):
        return self + (-self._lift(other))

    def __rsub__(self, other):
        return self._lift(other) - self

    def __mul__(self, other):
        other = self._lift(other)
        return _Dual(self.a * other.a, self.a * other.b + self.b * other.a)

    __rmul__ = __mul__

    def __truediv__(self, other):
        other = self._lift(other)
        return _Dual(self.a / other.a, (self.b * other.a - self.a * other.b) / other.a**2)

    def __rtruediv__(self, other):
        return self._lift(other) / self

    def __pow__(self, p):
        return _Dual(self.a**p, p * self.a ** (p - 1.0) * self.b)


class TestAutomaticDifferentiation:
    """双対数の入力で微分が伝播する."""

    def test_leaf_closed_form(self):
        sol = compute_tau_ii(LinearViscous(eta=2.0), _Dual(3.0, 1.0), Environment())
        assert (sol.tau_ii.a, sol.tau_ii.b) == pytest.approx((12.0, 4.0))
        assert sol.eta_eff.a == pytest.approx(2.0)
        assert sol.eta_eff.b == pytest.approx(0.0, abs=1e-14)

    def test_linear_series(self):
        """Series(eta=1, eta=3): tau = 1.5 eps."""
        net = series(LinearViscous(eta=1.0), LinearViscous(eta=3.0))
        sol = compute_tau_ii(net, _Dual(2.0, 1.0), Environment())
        assert sol.tau_ii.a == pytest.approx(3.0, rel=1e-12)
        assert sol.tau_ii.b == pytest.approx(1.5, rel=1e-12)

    def test_nonlinear_series_matches_tangent(self):
        net = _creep_series()
        env = Environment()
        sol = compute_tau_ii(net, _Dual(0.7, 1.0), env)
        assert sol.tau_ii.a == pytest.approx(compute_tau_ii(net, 0.7, env).tau_ii, rel=1e-14)
        assert sol.tau_ii.b == pytest.approx(compute_dtau_deps(net, 0.7, env), rel=1e-12)

    def test_plastic_series_matches_consistent_tangent(self):
        net = series(
            PowerlawViscous(eta0=ETA, n=3.0, eps0=1e-15),
            ConstantElasticity(G=G_MOD),
            DruckerPrager(C=C_COH, phi=0.0, eta_vp=1e20),
        )
        env = ENV.replace(tau_ii_old=2e5)
        eps = 2e-15
        sol = compute_tau_ii(net, _Dual(eps, 1.0), env)
        assert sol.lam > 0.0
        assert sol.tau_ii.b == pytest.approx(compute_dtau_deps(net, eps, env), rel=1e-12)

    def test_parallel_inverse(self):
        """Parallel の応力制御: d(eps)/d(tau) = 1 / (dtau/deps)."""
        net = parallel(PowerlawViscous(eta0=1.0, n=2.0, eps0=1.0), LinearViscous(eta=0.5))
        env = Environment()
        eps = compute_eps_ii(net, _Dual(1.0, 1.0), env)
        assert eps.a == pytest.approx(compute_eps_ii(net, 1.0, env), rel=1e-14)
        assert eps.b == pytest.approx(1.0 / compute_dtau_deps(net, eps.a, env), rel=1e-10)

    def test_parallel_closed_form(self):
        net = parallel(PowerlawViscous(eta0=1.0, n=2.0, eps0=1.0), LinearViscous(eta=0.5))
        env = Environment()
        sol = compute_tau_ii(net, _Dual(0.3, 1.0), env)
        assert sol.tau_ii.b == pytest.approx(compute_dtau_deps(net, 0.3, env), rel=1e-12)

    def test_second_derivative_of_leaf(self):
        """PowerlawViscous(n=3): tau = 2 eps^(1/3), d2tau/deps2 = -(4/9) eps^(-5/3)."""
        law = PowerlawViscous(eta0=1.0, n=3.0, eps0=1.0)
        d = compute_dtau_deps(law, _Dual(8.0, 1.0), Environment())
        assert d.a == pytest.approx(1.0 / 6.0, rel=1e-12)
        assert d.b == pytest.approx(-1.0 / 72.0, rel=1e-12)

    def test_second_derivative_of_series_is_rejected(self):
        with pytest.raises(DomainError):
            compute_dtau_deps(_creep_series(), _Dual(0.7, 1.0), Environment())

    def test_pressure_coupling_is_rejected(self):
        net = series(LinearViscous(eta=ETA), ConstantElasticity(G=G_MOD, Kb=KB))
        with pytest.raises(DomainError):
            compute_p_tau_ii(net, _Dual(1e-15, 1.0), 0.0, ENV)

    def test_value_without_real_is_rejected(self):
        with pytest.raises(DomainError, match="real"):
            compute_tau_ii(LinearViscous(eta=1.0), object(), Environment())


# ================================================================
# 失敗の報告
# ================================================================


class TestFailures:
    """非収束・定義域外の報告."""

    def test_convergence_error(self):
        opts = SolverOptions(max_iter=1)
        with pytest.raises(ConvergenceError) as info:
            compute_tau_ii(_creep_series(), 2.0, Environment(), options=opts)
        assert info.value.stage == "series"
        assert info.value.iterations == 1
        assert info.value.residual > opts.rtol

    def test_plastic_convergence_error(self):
        creep = DislocationCreep(n=3.0, A=1e-35, E=0.0, V=0.0, apparatus=Apparatus.INVARIANT)
        net = series(creep, DruckerPrager(C=C_COH, phi=0.0, eta_vp=1e19))
        opts = SolverOptions(plastic_max_iter=1)
        with pytest.raises(ConvergenceError) as info:
            compute_tau_ii(net, 1e-14, ENV, options=opts)
        assert info.value.stage == "plastic"
        assert info.value.iterations == opts.plastic_max_iter

    def test_negative_yield_stress(self):
        """引張側の圧力で tau_y < 0 となる場合は定義域外."""
        net = series(LinearViscous(eta=1.0), DruckerPrager(C=0.0, phi=30.0))
        with pytest.raises(DomainError, match="tau_y"):
            compute_tau_ii(net, 1.0, Environment(P=-1.0))

    def test_negative_yield_stress_regularised(self):
        net = series(LinearViscous(eta=1.0), DruckerPrager(C=0.0, phi=30.0, eta_vp=0.1))
        with pytest.raises(DomainError, match="tau_y"):
            compute_tau_ii(net, 1.0, Environment(P=-1.0))

    @pytest.mark.parametrize("eps", [-1e-15, math.nan, math.inf])
    def test_invalid_strain_rate(self, eps):
        with pytest.raises(DomainError):
            compute_tau_ii(_creep_series(), eps, Environment())

    def test_zero_strain_rate(self):
        """eps_ii = 0 では有効粘性が定義されない."""
        with pytest.raises(DomainError):
            compute_tau_ii(_creep_series(), 0.0, Environment())

    def test_invalid_options(self):
        with pytest.raises(ValueError, match="rtol"):
            SolverOptions(rtol=0.0)
        with pytest.raises(ValueError, match="vertex_phase_policy"):
            SolverOptions(vertex_phase_policy="ignore")
