"""レオロジー計算の例外階層.

  RheologyError          — 基底クラス
  ConvergenceError       — Newton 反復が上限回数内に収束しない
  DomainError            — 負値・非有限の不変量など、構成則の定義域外入力
  NetworkError           — 不正なネットワーク構成（構築時に検出）
  PhaseLookupError       — 相インデックスが登録範囲外
  PhaseMismatchError     — staggered 格子で中心相と頂点相が不一致（policy="raise"）
  PhaseMismatchWarning   — 同上（policy="warn"）

いずれも呼び出し側で回復可能な局所的エラーであり、
場全体の計算では点ごとに隔離できる（field.py の on_error="mask"）。
"""

from __future__ import annotations


class RheologyError(Exception):
    """レオロジー計算エラーの基底クラス."""


class ConvergenceError(RheologyError):
    """Newton 反復の非収束.

    Attributes:
        stage: 反復の種類（"series", "parallel", "plastic"）
        iterations: 実行した反復回数
        residual: 最終の相対残差
    """

    def __init__(self, stage: str, iterations: int, residual: float) -> None:
        self.stage = stage
        self.iterations = iterations
        self.residual = residual
        super().__init__(
            f"{stage} 反復が収束しません: iterations={iterations}, residual={residual:.3e}"
        )

    def __reduce__(self):
        # ワーカープロセスからの受け渡し用
        return (type(self), (self.stage, self.iterations, self.residual))


class DomainError(RheologyError, ValueError):
    """構成則の定義域外の入力（負値・非有限値・ゼロ歪み速度など）."""


class NetworkError(RheologyError, ValueError):
    """不正なレオロジーネットワーク構成."""


class PhaseLookupError(RheologyError, IndexError):
    """相インデックスが相レジストリの範囲外."""


class PhaseMismatchError(PhaseLookupError):
    """staggered 格子の中心相と頂点相が一致しない."""


class PhaseMismatchWarning(UserWarning):
    """staggered 格子の中心相と頂点相が一致しない（中心相で計算を継続）."""
