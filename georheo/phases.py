"""相（材料）レジストリ.

格子点ごとの整数相インデックスから、その相のレオロジーネットワークを引く。
インデックスは 0 始まり。範囲外・負のインデックスは PhaseLookupError
（相 0 への既定や負インデックスの巻き戻しは行わない）。

staggered 格子では中心と頂点がそれぞれ相インデックスを持ち得るが、
ネットワークの選択には中心相のみを用いる。頂点相が中心相と異なる場合の
扱いは SolverOptions.vertex_phase_policy で指定する。
"""

from __future__ import annotations

import numbers
import warnings
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from georheo.core.errors import PhaseLookupError, PhaseMismatchError, PhaseMismatchWarning
from georheo.core.options import DEFAULT_OPTIONS, SolverOptions
from georheo.network import Leaf, Parallel, Series, as_network


@dataclass(frozen=True)
class MaterialPhase:
    """1相分の材料定義.

    Attributes:
        network: レオロジーネットワーク（構成則単体も可）
        name: 相の名前（表示用）
        properties: レオロジー以外の材料特性（密度など、本パッケージでは参照しない）
    """

    network: Leaf | Series | Parallel
    name: str = ""
    properties: Mapping = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "network", as_network(self.network))
        object.__setattr__(self, "properties", dict(self.properties))


class PhaseRegistry(Sequence):
    """相インデックス -> MaterialPhase の読み取り専用リスト.

    Args:
        phases: MaterialPhase、またはネットワーク・構成則の列
    """

    def __init__(self, phases) -> None:
        self._phases = tuple(
            p if isinstance(p, MaterialPhase) else MaterialPhase(p) for p in phases
        )
        if not self._phases:
            raise ValueError("相レジストリが空です。")

    def __len__(self) -> int:
        return len(self._phases)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return self._phases[index]
        return self._phases[self.check_index(index)]

    def __repr__(self) -> str:
        names = ", ".join(p.name or f"#{i}" for i, p in enumerate(self._phases))
        return f"PhaseRegistry([{names}])"

    def check_index(self, index) -> int:
        """相インデックスを検証して int で返す."""
        if isinstance(index, bool) or not isinstance(index, numbers.Integral):
            raise PhaseLookupError(f"相インデックスは整数: {index!r}")
        index = int(index)
        if not 0 <= index < len(self._phases):
            raise PhaseLookupError(
                f"相インデックスが範囲外です: {index}（登録相数 {len(self._phases)}）"
            )
        return index

    def network(self, index) -> Leaf | Series | Parallel:
        """相インデックスのネットワークを返す."""
        return self[index].network

    def resolve_staggered(self, phases, options: SolverOptions | None = None) -> int:
        """staggered 格子の相指定から中心相インデックスを決める.

        Args:
            phases: 成分ごとの相インデックス。頂点成分は4点のタプル
                （例: 2D で (center, center, (v1, v2, v3, v4))）。先頭が中心相。
            options: vertex_phase_policy を参照する

        Returns:
            中心相インデックス

        Raises:
            PhaseLookupError: いずれかのインデックスが範囲外
            PhaseMismatchError: policy="raise" で頂点相が中心相と異なる場合
        """
        options = options or DEFAULT_OPTIONS
        if not isinstance(phases, (tuple, list)):
            return self.check_index(phases)

        flat = []
        for p in phases:
            flat.extend(p if isinstance(p, tuple) else (p,))
        if not flat:
            raise PhaseLookupError("相インデックスが空です。")
        center = self.check_index(flat[0])
        others = {self.check_index(p) for p in flat[1:]}
        others.discard(center)
        if others:
            message = (
                f"頂点の相 {sorted(others)} が中心の相 {center} と異なります。"
                "中心の相を使用します。"
            )
            if options.vertex_phase_policy == "raise":
                raise PhaseMismatchError(
                    f"頂点の相 {sorted(others)} が中心の相 {center} と異なります。"
                )
            if options.vertex_phase_policy == "warn":
                warnings.warn(message, PhaseMismatchWarning, stacklevel=3)
        return center


def as_registry(phases) -> PhaseRegistry:
    """PhaseRegistry またはネットワーク・MaterialPhase の列をレジストリにする."""
    if isinstance(phases, PhaseRegistry):
        return phases
    return PhaseRegistry(phases)
