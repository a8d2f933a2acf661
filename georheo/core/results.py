"""メソッド戻り値の型定義.

各モジュールの公開メソッドが返すデータ構造を NamedTuple で統一的に定義する。
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np


class InvariantSolution(NamedTuple):
    """不変量レベルの求解結果.

    Attributes:
        tau_ii: 応力第2不変量
        eta_eff: 有効粘性 0.5 * tau_ii / eps_ii
        lam: 塑性乗数（塑性が非活性なら 0）
        iterations: 外側 Newton 反復回数（閉形式評価なら 0）
        residual: 最終の相対残差
    """

    tau_ii: float
    eta_eff: float
    lam: float
    iterations: int
    residual: float


class PressureSolution(NamedTuple):
    """圧力 + 偏差応力不変量の求解結果.

    Attributes:
        p: 更新後の圧力
        tau_ii: 応力第2不変量
        eta_eff: 有効粘性
        lam: 塑性乗数
        iterations: 外側 Newton 反復回数
        residual: 最終の相対残差
    """

    p: float
    tau_ii: float
    eta_eff: float
    lam: float
    iterations: int
    residual: float


class StressResult(NamedTuple):
    """1点の応力テンソル計算結果.

    Attributes:
        tau_ij: 偏差応力成分（2D: (xx, yy, xy)、3D: (xx, yy, zz, yz, xz, xy)）
        tau_ii: 応力第2不変量
        eta_eff: 有効粘性（粘弾塑性）
        lam: 塑性乗数
        iterations: 外側 Newton 反復回数
    """

    tau_ij: tuple
    tau_ii: float
    eta_eff: float
    lam: float
    iterations: int


class PressureStressResult(NamedTuple):
    """1点の圧力 + 応力テンソル計算結果.

    Attributes:
        p: 更新後の圧力
        tau_ij: 偏差応力成分
        tau_ii: 応力第2不変量
        eta_eff: 有効粘性
        lam: 塑性乗数
        iterations: 外側 Newton 反復回数
    """

    p: float
    tau_ij: tuple
    tau_ii: float
    eta_eff: float
    lam: float
    iterations: int


class StressFieldResult(NamedTuple):
    """場全体の応力計算結果.

    Attributes:
        tau_ij: 偏差応力成分の配列タプル（各 shape = 格子 shape）
        tau_ii: 応力第2不変量の配列
        eta_eff: 有効粘性の配列
        p: 圧力の配列。圧力を計算しない場合は None。
        failed: 計算に失敗した点のマスク（on_error="mask" の場合のみ True を含む）
    """

    tau_ij: tuple[np.ndarray, ...]
    tau_ii: np.ndarray
    eta_eff: np.ndarray
    p: np.ndarray | None
    failed: np.ndarray


class TimeHistoryResult(NamedTuple):
    """0次元時間積分の結果.

    Attributes:
        time: (nt,) 時刻
        tau_ii: (nt,) 応力第2不変量の履歴
        tau_ij: (nt, ncomp) 応力成分の履歴。不変量入力の場合は None。
    """

    time: np.ndarray
    tau_ii: np.ndarray
    tau_ij: np.ndarray | None
