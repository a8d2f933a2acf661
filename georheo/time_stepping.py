"""0次元（1点）の時間積分.

一定の歪み速度を与え続けたときの応力履歴を、固定時間刻みの
1次陰的時間積分で求める。各ステップの応力を次ステップの旧応力とする。

不変量入力では弾性履歴を不変量 tau_ii_old で持ち越す。
テンソル入力では成分ごとの旧応力で持ち越す（共軸再構成）。
"""

from __future__ import annotations

import time

import numpy as np

from georheo.core.environment import Environment
from georheo.core.options import SolverOptions
from georheo.core.results import TimeHistoryResult
from georheo.network import as_network
from georheo.solver import compute_tau_ii
from georheo.stress import compute_tau_ij


def time_tau_ii_0d(
    network,
    eps,
    env: Environment | None = None,
    *,
    t: tuple[float, float] = (0.0, 1.0),
    nt: int = 100,
    options: SolverOptions | None = None,
    verbose: bool = False,
) -> TimeHistoryResult:
    """一定歪み速度下の応力の時間発展.

    時刻は t[0] から t[1] までの nt 点の等間隔、dt = (t[1] - t[0]) / (nt - 1)。
    初期応力は 0。

    Args:
        network: ネットワークまたは構成則
        eps: 歪み速度第2不変量（スカラー）、または偏差歪み速度成分のタプル
        env: 環境変数（dt は上書きされる、None = 既定値）
        t: (開始時刻, 終了時刻)
        nt: 時刻点数（2以上）
        options: ソルバー設定
        verbose: 進捗表示の有無

    Returns:
        TimeHistoryResult（tau_ij は不変量入力なら None）
    """
    if nt < 2:
        raise ValueError(f"時刻点数 nt は2以上: {nt}")
    if not t[1] > t[0]:
        raise ValueError(f"終了時刻は開始時刻より後: {t}")

    node = as_network(network)
    times = np.linspace(t[0], t[1], nt)
    dt = float(times[1] - times[0])
    env = (env or Environment()).replace(dt=dt)

    tensor = isinstance(eps, (tuple, list))
    tau_ii = np.zeros(nt)
    tau_ij = np.zeros((nt, len(eps))) if tensor else None

    t0 = time.time()
    for n in range(1, nt):
        if tensor:
            r = compute_tau_ij(node, tuple(eps), env, tuple(tau_ij[n - 1]), options=options)
            tau_ij[n] = r.tau_ij
            tau_ii[n] = r.tau_ii
        else:
            r = compute_tau_ii(node, eps, env.replace(tau_ii_old=tau_ii[n - 1]), options=options)
            tau_ii[n] = r.tau_ii

    if verbose:
        elapsed = time.time() - t0
        print(f"[time_tau_ii_0d] nt={nt}, dt={dt:.3e}, elapsed={elapsed:.3f} s")

    return TimeHistoryResult(time=times, tau_ii=tau_ii, tau_ij=tau_ij)
