"""場全体の応力計算ドライバ.

全格子点を独立に評価し、結果を出力配列に書き込む。
点どうしは共有状態を持たないため、n_jobs >= 2 のとき点の区間ごとに
ワーカープロセスへ分配する（ネットワーク・相レジストリは initializer で
1回だけ渡し、タスクは区間の (start, end) のみ）。

  compute_tau_ij_field            — collocated 格子（全成分が同じ点）
  compute_tau_ij_field_staggered  — 2D staggered 格子（xy 成分が頂点）

on_error="mask" の場合、RheologyError を出した点は NaN とし
failed マスクに記録して計算を続ける。
"""

from __future__ import annotations

import dataclasses
import logging
import multiprocessing as mp
import os
import time

import numpy as np

from georheo.core.environment import Environment
from georheo.core.errors import RheologyError
from georheo.core.options import DEFAULT_OPTIONS, SolverOptions
from georheo.core.results import StressFieldResult
from georheo.network import as_network
from georheo.phases import as_registry
from georheo.stress import (
    compute_p_tau_ij,
    compute_p_tau_ij_phase,
    compute_tau_ij,
    compute_tau_ij_phase,
)

LOG = logging.getLogger(__name__)

# 並列化の最小点数閾値（これ未満は逐次実行）
_PARALLEL_MIN_POINTS = 4096

_ENV_FIELDS = frozenset(f.name for f in dataclasses.fields(Environment))
_ON_ERROR = ("raise", "mask")


class _FieldEvaluator:
    """1点分の入力を集めて応力を計算する（ワーカーへ pickle で渡す）.

    Args:
        material: ネットワーク（phase が None）または相レジストリ
        eps_ij: 歪み速度成分の配列タプル
        tau_ij_old: 旧応力成分の配列タプル
        env: 全点共通の環境変数
        env_fields: 点ごとに変わる環境変数 {フィールド名: 配列}
        phase: 相インデックス配列（None = 単一相）
        phase_vertex: staggered 格子の頂点相インデックス配列
        shape: 出力（セル中心）の形状
        staggered: True なら 2D staggered（xy 成分が (nx+1, ny+1) の頂点配列）
        pressure: 圧力も計算するか
        on_error: "raise" または "mask"
        options: ソルバー設定
    """

    def __init__(
        self,
        material,
        eps_ij,
        tau_ij_old,
        env: Environment,
        env_fields,
        phase,
        phase_vertex,
        shape,
        *,
        staggered: bool,
        pressure: bool,
        on_error: str,
        options: SolverOptions,
    ) -> None:
        self.material = material
        self.eps_ij = eps_ij
        self.tau_ij_old = tau_ij_old
        self.env = env
        self.env_fields = env_fields
        self.phase = phase
        self.phase_vertex = phase_vertex
        self.shape = shape
        self.staggered = staggered
        self.pressure = pressure
        self.on_error = on_error
        self.options = options
        self.ncomp = len(eps_ij)

    def _gather_vertex(self, arr: np.ndarray, i: int, j: int) -> tuple:
        return (arr[i, j], arr[i + 1, j], arr[i, j + 1], arr[i + 1, j + 1])

    def _gather(self, k: int):
        idx = np.unravel_index(k, self.shape)
        env = self.env
        if self.env_fields:
            env = env.replace(**{name: float(arr[idx]) for name, arr in self.env_fields.items()})

        if not self.staggered:
            eps = tuple(float(c[idx]) for c in self.eps_ij)
            tau_old = tuple(float(c[idx]) for c in self.tau_ij_old)
            phase = None if self.phase is None else int(self.phase[idx])
            return eps, tau_old, phase, env

        i, j = idx
        exx, eyy, exy = self.eps_ij
        txx, tyy, txy = self.tau_ij_old
        eps = (float(exx[i, j]), float(eyy[i, j]), tuple(map(float, self._gather_vertex(exy, i, j))))
        tau_old = (
            float(txx[i, j]),
            float(tyy[i, j]),
            tuple(map(float, self._gather_vertex(txy, i, j))),
        )
        phase = None
        if self.phase is not None:
            center = int(self.phase[i, j])
            if self.phase_vertex is None:
                phase = center
            else:
                vertex = tuple(map(int, self._gather_vertex(self.phase_vertex, i, j)))
                phase = (center, center, vertex)
        return eps, tau_old, phase, env

    def evaluate(self, k: int):
        """点 k の (tau_ij, tau_ii, eta_eff, p) を返す."""
        eps, tau_old, phase, env = self._gather(k)
        opts = self.options
        if phase is None:
            if self.pressure:
                r = compute_p_tau_ij(self.material, eps, env, tau_old, options=opts)
                return r.tau_ij, r.tau_ii, r.eta_eff, r.p
            r = compute_tau_ij(self.material, eps, env, tau_old, options=opts)
            return r.tau_ij, r.tau_ii, r.eta_eff, np.nan
        if self.pressure:
            r = compute_p_tau_ij_phase(self.material, eps, env, tau_old, phase, options=opts)
            return r.tau_ij, r.tau_ii, r.eta_eff, r.p
        r = compute_tau_ij_phase(self.material, eps, env, tau_old, phase, options=opts)
        return r.tau_ij, r.tau_ii, r.eta_eff, np.nan

    def run(self, start: int, end: int, show_progress: bool = False):
        """区間 [start, end) を評価してブロック配列を返す.

        Returns:
            (start, tau_ij (ncomp, m), tau_ii (m,), eta_eff (m,), p (m,), failed (m,))
        """
        m = end - start
        tau_ij = np.empty((self.ncomp, m))
        tau_ii = np.empty(m)
        eta_eff = np.empty(m)
        p = np.full(m, np.nan)
        failed = np.zeros(m, dtype=bool)

        t0 = time.time()
        progress_step = max(1, m // 100)
        for n, k in enumerate(range(start, end)):
            try:
                tij, tii, eta, pk = self.evaluate(k)
            except RheologyError as exc:
                if self.on_error == "raise":
                    raise
                LOG.debug("point %d failed: %s", k, exc)
                tij, tii, eta, pk = (np.nan,) * self.ncomp, np.nan, np.nan, np.nan
                failed[n] = True
            tau_ij[:, n] = tij
            tau_ii[n] = tii
            eta_eff[n] = eta
            p[n] = pk

            if show_progress and ((n + 1) % progress_step == 0 or n + 1 == m):
                ratio = (n + 1) / m
                bar_len = 40
                filled = int(bar_len * ratio)
                bar = "#" * filled + "-" * (bar_len - filled)
                elapsed = time.time() - t0
                print(
                    f"\rStress field [{bar}] {n + 1}/{m} "
                    f"({ratio * 100:5.1f}% in {elapsed:5.2f} sec)",
                    end="",
                    flush=True,
                )
                if n + 1 == m:
                    print()

        return start, tau_ij, tau_ii, eta_eff, p, failed


# ========== ワーカープロセス ==========

_worker_evaluator: _FieldEvaluator | None = None


def _worker_init(evaluator: _FieldEvaluator) -> None:
    global _worker_evaluator
    _worker_evaluator = evaluator


def _worker_compute(task: tuple[int, int]):
    start, end = task
    return _worker_evaluator.run(start, end)


# ========== 共通ドライバ ==========


def _resolve_n_jobs(n_jobs: int) -> int:
    if n_jobs == -1:
        n_jobs = os.cpu_count() or 1
    if n_jobs < 1:
        n_jobs = 1
    return n_jobs


def _check_env_fields(env_fields, shape) -> dict:
    if not env_fields:
        return {}
    fields = {}
    for name, arr in env_fields.items():
        if name not in _ENV_FIELDS:
            raise ValueError(f"Environment のフィールドではありません: '{name}'")
        arr = np.asarray(arr, dtype=float)
        if arr.shape != shape:
            raise ValueError(f"env_fields['{name}'] の形状が不正: {arr.shape} != {shape}")
        fields[name] = arr
    return fields


def _run_field(
    evaluator: _FieldEvaluator,
    *,
    n_jobs: int,
    show_progress: bool,
) -> StressFieldResult:
    shape = evaluator.shape
    n_total = int(np.prod(shape))
    n_jobs = _resolve_n_jobs(n_jobs)

    # 小規模問題は逐次実行
    use_parallel = n_jobs >= 2 and n_total >= _PARALLEL_MIN_POINTS

    t0 = time.time()
    if use_parallel:
        batch_size = max(1, -(-n_total // n_jobs))
        tasks = [(s, min(s + batch_size, n_total)) for s in range(0, n_total, batch_size)]
        with mp.Pool(n_jobs, initializer=_worker_init, initargs=(evaluator,)) as pool:
            blocks = pool.map(_worker_compute, tasks)
        if show_progress:
            elapsed = time.time() - t0
            print(f"Stress field ({n_jobs} workers): {n_total} points in {elapsed:.2f} sec")
    else:
        blocks = [evaluator.run(0, n_total, show_progress=show_progress)]

    tau_ij = np.empty((evaluator.ncomp, n_total))
    tau_ii = np.empty(n_total)
    eta_eff = np.empty(n_total)
    p = np.empty(n_total)
    failed = np.empty(n_total, dtype=bool)
    for start, b_tij, b_tii, b_eta, b_p, b_failed in blocks:
        end = start + b_tii.size
        tau_ij[:, start:end] = b_tij
        tau_ii[start:end] = b_tii
        eta_eff[start:end] = b_eta
        p[start:end] = b_p
        failed[start:end] = b_failed

    n_failed = int(failed.sum())
    if n_failed:
        LOG.warning("%d / %d points failed and were masked with NaN", n_failed, n_total)

    return StressFieldResult(
        tau_ij=tuple(c.reshape(shape) for c in tau_ij),
        tau_ii=tau_ii.reshape(shape),
        eta_eff=eta_eff.reshape(shape),
        p=p.reshape(shape) if evaluator.pressure else None,
        failed=failed.reshape(shape),
    )


def _material(material, phase):
    if phase is None:
        return as_network(material), None
    return as_registry(material), np.asarray(phase)


def compute_tau_ij_field(
    material,
    eps_ij,
    env: Environment,
    tau_ij_old=None,
    *,
    phase=None,
    env_fields=None,
    pressure: bool = False,
    on_error: str = "raise",
    options: SolverOptions | None = None,
    show_progress: bool = False,
    n_jobs: int = 1,
) -> StressFieldResult:
    """collocated 格子の全点で偏差応力（と圧力）を計算する.

    Args:
        material: ネットワーク・構成則（phase=None）、または相レジストリ
        eps_ij: 歪み速度成分の配列タプル（2D: 3成分、3D: 6成分、全て同じ形状）
        env: 全点共通の環境変数
        tau_ij_old: 旧応力成分の配列タプル（None = 0）
        phase: 相インデックスの整数配列（None = 単一相）
        env_fields: 点ごとの環境変数 {"P": 配列, "T": 配列, "p_old": 配列, ...}
        pressure: True なら圧力も計算する（前ステップの圧力は p_old）
        on_error: "raise" = 最初の失敗で例外、"mask" = 失敗点を NaN にして継続
        options: ソルバー設定
        show_progress: 進捗表示の有無
        n_jobs: 並列ワーカー数。1=逐次、-1=全CPUコア使用

    Returns:
        StressFieldResult
    """
    if on_error not in _ON_ERROR:
        raise ValueError(f"on_error は {_ON_ERROR} のいずれか: '{on_error}'")
    eps_ij = tuple(np.asarray(c, dtype=float) for c in eps_ij)
    if len(eps_ij) not in (3, 6):
        raise ValueError(f"テンソル成分数は 3 (2D) または 6 (3D): {len(eps_ij)}")
    shape = eps_ij[0].shape
    for c in eps_ij:
        if c.shape != shape:
            raise ValueError(f"歪み速度成分の形状が一致しません: {c.shape} != {shape}")
    if tau_ij_old is None:
        tau_ij_old = tuple(np.zeros(shape) for _ in eps_ij)
    else:
        tau_ij_old = tuple(np.asarray(c, dtype=float) for c in tau_ij_old)
        if len(tau_ij_old) != len(eps_ij) or any(c.shape != shape for c in tau_ij_old):
            raise ValueError("旧応力成分の数・形状が歪み速度成分と一致しません。")

    material, phase = _material(material, phase)
    if phase is not None and phase.shape != shape:
        raise ValueError(f"相インデックス配列の形状が不正: {phase.shape} != {shape}")

    evaluator = _FieldEvaluator(
        material,
        eps_ij,
        tau_ij_old,
        env,
        _check_env_fields(env_fields, shape),
        phase,
        None,
        shape,
        staggered=False,
        pressure=pressure,
        on_error=on_error,
        options=options or DEFAULT_OPTIONS,
    )
    return _run_field(evaluator, n_jobs=n_jobs, show_progress=show_progress)


def compute_tau_ij_field_staggered(
    material,
    eps_ij,
    env: Environment,
    tau_ij_old=None,
    *,
    phase_center=None,
    phase_vertex=None,
    env_fields=None,
    pressure: bool = False,
    on_error: str = "raise",
    options: SolverOptions | None = None,
    show_progress: bool = False,
    n_jobs: int = 1,
) -> StressFieldResult:
    """2D staggered 格子のセル中心で偏差応力（と圧力）を計算する.

    法線成分 Exx, Eyy はセル中心 (nx, ny)、せん断成分 Exy は頂点 (nx+1, ny+1)。
    セル (i, j) は頂点 (i, j), (i+1, j), (i, j+1), (i+1, j+1) の4点を用いる。

    Args:
        material: ネットワーク・構成則（phase_center=None）、または相レジストリ
        eps_ij: (Exx, Eyy, Exy_vertex)
        env: 全点共通の環境変数
        tau_ij_old: (Txx, Tyy, Txy_vertex)（None = 0）
        phase_center: セル中心の相インデックス (nx, ny)
        phase_vertex: 頂点の相インデックス (nx+1, ny+1)。中心相との不一致は
            options.vertex_phase_policy に従う。
        env_fields: セル中心の環境変数配列
        pressure: True なら圧力も計算する
        on_error: "raise" または "mask"
        options: ソルバー設定
        show_progress: 進捗表示の有無
        n_jobs: 並列ワーカー数。1=逐次、-1=全CPUコア使用

    Returns:
        StressFieldResult（tau_ij はセル中心の (Txx, Tyy, Txy)）
    """
    if on_error not in _ON_ERROR:
        raise ValueError(f"on_error は {_ON_ERROR} のいずれか: '{on_error}'")
    if len(eps_ij) != 3:
        raise ValueError(f"staggered 場は 2D (Exx, Eyy, Exy) のみ: {len(eps_ij)} 成分")
    eps_ij = tuple(np.asarray(c, dtype=float) for c in eps_ij)
    shape = eps_ij[0].shape
    if len(shape) != 2:
        raise ValueError(f"staggered 場は 2D 配列: {shape}")
    vshape = (shape[0] + 1, shape[1] + 1)
    if eps_ij[1].shape != shape or eps_ij[2].shape != vshape:
        raise ValueError(
            f"Exx, Eyy は {shape}、Exy は {vshape}: "
            f"{eps_ij[1].shape}, {eps_ij[2].shape}"
        )
    if tau_ij_old is None:
        tau_ij_old = (np.zeros(shape), np.zeros(shape), np.zeros(vshape))
    else:
        tau_ij_old = tuple(np.asarray(c, dtype=float) for c in tau_ij_old)
        if [c.shape for c in tau_ij_old] != [shape, shape, vshape]:
            raise ValueError("旧応力成分の形状が歪み速度成分と一致しません。")

    material, phase_center = _material(material, phase_center)
    if phase_center is not None and phase_center.shape != shape:
        raise ValueError(f"中心の相インデックス配列の形状が不正: {phase_center.shape} != {shape}")
    if phase_vertex is not None:
        if phase_center is None:
            raise ValueError("phase_vertex には phase_center が必要です。")
        phase_vertex = np.asarray(phase_vertex)
        if phase_vertex.shape != vshape:
            raise ValueError(
                f"頂点の相インデックス配列の形状が不正: {phase_vertex.shape} != {vshape}"
            )

    evaluator = _FieldEvaluator(
        material,
        eps_ij,
        tau_ij_old,
        env,
        _check_env_fields(env_fields, shape),
        phase_center,
        phase_vertex,
        shape,
        staggered=True,
        pressure=pressure,
        on_error=on_error,
        options=options or DEFAULT_OPTIONS,
    )
    return _run_field(evaluator, n_jobs=n_jobs, show_progress=show_progress)
