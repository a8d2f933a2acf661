"""1点分の環境変数.

各格子点・各時間ステップで新規に生成され、計算後に破棄される。
不変（frozen）なので複数スレッドから参照しても安全。
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass


@dataclass(frozen=True)
class Environment:
    """構成則の評価に必要なスカラー量.

    全て単位系を統一（無次元化または SI）した値で与えること。
    単位変換は行わない。

    Attributes:
        T: 温度
        P: 圧力（圧縮を正）
        f: 水フガシティ
        dt: 時間刻み。弾性要素を含むネットワークでは必須。
        tau_ii_old: 前ステップの応力第2不変量（弾性の履歴項）
        p_old: 前ステップの圧力（体積弾性による圧力更新用）
    """

    T: float = 1.0
    P: float = 0.0
    f: float = 1.0
    dt: float | None = None
    tau_ii_old: float = 0.0
    p_old: float = 0.0

    def replace(self, **changes) -> Environment:
        """指定フィールドのみ置き換えた新しい Environment を返す."""
        return dataclasses.replace(self, **changes)
