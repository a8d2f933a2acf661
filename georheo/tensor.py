"""偏差テンソルと第2不変量.

成分の並び（Voigt 順、せん断成分はテンソル成分そのもの、工学歪みではない）:
  2D: (xx, yy, xy)
  3D: (xx, yy, zz, yz, xz, xy)

staggered 格子では任意の成分（通常はせん断成分）を頂点4点の値の
タプルで与えられる。その場合:
  second_invariant_staggered — 各頂点値の2乗を 1/4 重みで平均してから合成
  staggered_tensor_average   — 4点の算術平均
の2通りの平均化がある（2乗の平均 >= 平均の2乗 なので一般に一致しない）。

全関数は成分ごとの numpy 演算のみで構成され、成分に配列を与えれば
格子全体をまとめて評価できる。
"""

from __future__ import annotations

import numpy as np

from georheo.core.environment import Environment
from georheo.network import as_network

_NORMAL_COMPONENTS = {3: 2, 6: 3}


def normal_count(tensor) -> int:
    """法線成分の数（2D: 2、3D: 3）."""
    try:
        return _NORMAL_COMPONENTS[len(tensor)]
    except KeyError:
        raise ValueError(
            f"テンソル成分数は 3 (2D) または 6 (3D): {len(tensor)}"
        ) from None


def _is_staggered(component) -> bool:
    return isinstance(component, tuple)


def is_staggered(tensor) -> bool:
    """頂点4点のタプルで与えられた成分を含むかどうか."""
    return any(_is_staggered(c) for c in tensor)


def second_invariant(tensor):
    """偏差テンソルの第2不変量.

    2D: sqrt(0.5 (xx^2 + yy^2) + xy^2)
    3D: sqrt(0.5 (xx^2 + yy^2 + zz^2) + yz^2 + xz^2 + xy^2)
    """
    n = normal_count(tensor)
    normal = sum(c**2 for c in tensor[:n])
    shear = sum(c**2 for c in tensor[n:])
    return np.sqrt(0.5 * normal + shear)


def _mean_square(component):
    if _is_staggered(component):
        if len(component) != 4:
            raise ValueError(f"staggered 成分は頂点4点の値: {len(component)}")
        return 0.25 * sum(c**2 for c in component)
    return component**2


def second_invariant_staggered(tensor):
    """頂点成分を含むテンソルの第2不変量（2乗の 1/4 重み平均）.

    4点が全て等しい場合は second_invariant と一致する。
    """
    n = normal_count(tensor)
    normal = sum(_mean_square(c) for c in tensor[:n])
    shear = sum(_mean_square(c) for c in tensor[n:])
    return np.sqrt(0.5 * normal + shear)


def _average(component):
    if _is_staggered(component):
        if len(component) != 4:
            raise ValueError(f"staggered 成分は頂点4点の値: {len(component)}")
        return sum(component) / 4.0
    return component


def staggered_tensor_average(tensor) -> tuple:
    """頂点成分を算術平均してセル中心の成分タプルにする."""
    normal_count(tensor)
    return tuple(_average(c) for c in tensor)


def volumetric_strain_rate(tensor):
    """体積歪み速度（法線成分の和）.

    2D は xx + yy、3D は xx + yy + zz。頂点値で与えられた法線成分は平均する。
    """
    n = normal_count(tensor)
    return sum(_average(c) for c in tensor[:n])


def elastic_compliance(network, env: Environment) -> float:
    """応力履歴項の係数 sum 1 / (2 G dt)（直列の弾性要素、なければ 0）."""
    return sum(law.compliance(env) for law in as_network(network).elastic_laws)


def _shift(eps, tau_old, compliance):
    if _is_staggered(eps) or _is_staggered(tau_old):
        eps = eps if _is_staggered(eps) else (eps,) * 4
        tau_old = tau_old if _is_staggered(tau_old) else (tau_old,) * 4
        return tuple(e + t * compliance for e, t in zip(eps, tau_old))
    return eps + tau_old * compliance


def effective_strain_rate(eps_ij, network, tau_ij_old, env: Environment) -> tuple:
    """弾性の応力履歴を含めた有効歪み速度 eps_eff = eps + tau_old / (2 G dt).

    弾性要素が複数直列にある場合はコンプライアンスの和を用いる。
    頂点成分（4点タプル）は点ごとに補正し、タプルのまま返す。

    Args:
        eps_ij: 偏差歪み速度成分
        network: ネットワークまたは構成則
        tau_ij_old: 前ステップの偏差応力成分（eps_ij と同じ並び）
        env: 環境変数（弾性を含む場合は dt が必要）
    """
    if len(eps_ij) != len(tau_ij_old):
        raise ValueError(
            f"歪み速度と旧応力の成分数が一致しません: {len(eps_ij)} != {len(tau_ij_old)}"
        )
    normal_count(eps_ij)
    compliance = elastic_compliance(network, env)
    if compliance == 0.0:
        return tuple(eps_ij)
    return tuple(_shift(e, t, compliance) for e, t in zip(eps_ij, tau_ij_old))
