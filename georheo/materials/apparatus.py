"""実験装置による補正係数.

室内実験で得られる差応力・歪み速度を、テンソル第2不変量に変換する係数。
  tau_ii 換算:  sigma_d = FT * tau_ii
  eps_ii 換算:  eps_ii  = gamma / FE

補正係数は列挙値の純関数であり、構成則の生成時に1回だけ評価して固定する。
"""

from __future__ import annotations

import math
from enum import IntEnum


class Apparatus(IntEnum):
    """流動則パラメータを測定した実験装置の種類."""

    AXIAL_COMPRESSION = 1
    SIMPLE_SHEAR = 2
    INVARIANT = 3


def correction_factor(apparatus: Apparatus | int) -> tuple[float, float]:
    """装置種別に対する補正係数 (FT, FE) を返す.

    Args:
        apparatus: Apparatus 列挙値（または同値の整数）

    Returns:
        (FT, FE):
            AXIAL_COMPRESSION: (sqrt(3), 2/sqrt(3))
            SIMPLE_SHEAR: (2, 2)
            INVARIANT: (1, 1)
    """
    apparatus = Apparatus(apparatus)
    if apparatus is Apparatus.AXIAL_COMPRESSION:
        return math.sqrt(3.0), 2.0 / math.sqrt(3.0)
    if apparatus is Apparatus.SIMPLE_SHEAR:
        # 流動則は差応力の関数として与えられていると仮定
        return 2.0, 2.0
    return 1.0, 1.0
