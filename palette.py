"""
パレット（基本顔料色の集合）と配合表示用のヘルパー

探索エンジンは検証済みのパレットしか受け取らない。
不正な色やIDの重複は build_palette() の時点で ValueError になる。
"""

from dataclasses import dataclass
from functools import reduce
from math import gcd
from typing import Union

from color_mixer import normalize_hex, describe_color


@dataclass(frozen=True)
class PigmentColor:
    """パレットの1色（追加後は不変）"""

    id: Union[int, str]
    hex: str


@dataclass(frozen=True)
class RecipeEntry:
    """配合の1行: パレット色と部数"""

    color_id: Union[int, str]
    hex: str
    parts: int


# 初期パレット（赤・青・黄）と初期ターゲット
DEFAULT_PALETTE = (
    PigmentColor(1, "#ff0000"),
    PigmentColor(2, "#0000ff"),
    PigmentColor(3, "#ffff00"),
)
DEFAULT_TARGET = "#3b82f6"


def make_pigment(color_id, hex_color: str) -> PigmentColor:
    """IDとHEXを検証してPigmentColorを作る"""
    if color_id is None or isinstance(color_id, bool) or not isinstance(color_id, (int, str)):
        raise ValueError(f"不正な色IDです: {color_id!r}")
    if isinstance(color_id, str) and not color_id.strip():
        raise ValueError("色IDが空です")
    return PigmentColor(color_id, normalize_hex(hex_color))


def build_palette(entries) -> tuple:
    """
    入力からパレットのスナップショットを作る

    Args:
        entries: PigmentColor または {"id": ..., "hex": ...} の並び

    Returns:
        PigmentColor のタプル（入力順）
    """
    palette = []
    seen = set()

    for entry in entries:
        if isinstance(entry, PigmentColor):
            pigment = make_pigment(entry.id, entry.hex)
        elif isinstance(entry, dict):
            if "id" not in entry or "hex" not in entry:
                raise ValueError(f"パレットの色には 'id' と 'hex' が必要です: {entry!r}")
            pigment = make_pigment(entry["id"], entry["hex"])
        else:
            raise ValueError(f"不正なパレットの色です: {entry!r}")

        # URL上では 1 と "1" を区別できないので文字列表現で一意にする
        key = str(pigment.id)
        if key in seen:
            raise ValueError(f"色IDが重複しています: {pigment.id!r}")
        seen.add(key)
        palette.append(pigment)

    return tuple(palette)


def next_color_id(palette) -> int:
    """新しい色に振る整数ID（既存の整数・数字文字列IDの最大値 + 1）"""
    numeric = [int(str(p.id)) for p in palette if str(p.id).isdecimal()]
    return max(numeric, default=0) + 1


def simplify_parts(parts) -> list:
    """
    部数を最大公約数で割って表示用に簡約する（4:2 -> 2:1）

    0 の部数はそのまま 0。
    """
    parts = [int(p) for p in parts]
    active = [p for p in parts if p > 0]
    if not active:
        return parts

    divisor = reduce(gcd, active)
    return [p // divisor for p in parts]


def recipe_to_dict(recipe) -> list:
    """配合をAPI/表示用の辞書リストに変換（部数0の色は除く）"""
    simplified = simplify_parts([entry.parts for entry in recipe])
    total = sum(entry.parts for entry in recipe)

    items = []
    for entry, display_parts in zip(recipe, simplified):
        if entry.parts <= 0:
            continue
        item = describe_color(entry.hex)
        item.update(
            {
                "id": entry.color_id,
                "parts": entry.parts,
                "display_parts": display_parts,
                "percent": round(entry.parts / total * 100, 1),
            }
        )
        items.append(item)
    return items
