#!/usr/bin/env python3
"""
Pigment Color Model
===================
色の知覚空間変換・類似度スコア・顔料混色（Mixbox潜在空間）

    similarity("#3b82f6", "#3b82f6")  -> 100.0
    mix([("#ff0000", 5)])             -> "#ff0000"

すべて純粋関数（同じ入力なら同じ出力、乱数なし）。
不正なHEX文字列は呼び出し側の契約違反で、検証は normalize_hex() で行う。
"""

import re
from functools import lru_cache

import numpy as np
import mixbox

# 混色結果が「顔料なし」の場合に返す色（不透明の黒）
EMPTY_MIX = "#000000"

# これ以下の部数は 0 とみなす
PARTS_EPSILON = 1e-6

# Mixbox潜在空間の次元数
LATENT_SIZE = 7

# RGB to XYZ matrix (sRGB, D65)
RGB_TO_XYZ = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041]
])

# D65 白色点
REFERENCE_WHITE = np.array([95.047, 100.000, 108.883])

# CIE94 (graphic arts)
CIE94_K1 = 0.045
CIE94_K2 = 0.015

_HEX_PATTERN = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def normalize_hex(value: str) -> str:
    """
    入力値を "#rrggbb"（小文字）に正規化する

    "#RGB" / "RRGGBB" / 前後の空白も受け付ける。
    それ以外は ValueError。
    """
    if not isinstance(value, str):
        raise ValueError(f"HEXカラーは文字列で指定してください: {value!r}")

    match = _HEX_PATTERN.match(value.strip())
    if match is None:
        raise ValueError(f"不正なHEXカラーです: {value!r}")

    digits = match.group(1).lower()
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return "#" + digits


def hex_to_rgb(hex_color: str) -> np.ndarray:
    """HEXカラーコードをRGBに変換"""
    hex_color = hex_color.lstrip("#")
    return np.array([int(hex_color[i : i + 2], 16) for i in (0, 2, 4)])


def rgb_to_hex(rgb) -> str:
    """RGBをHEXカラーコードに変換"""
    return "#{:02x}{:02x}{:02x}".format(
        int(np.clip(rgb[0], 0, 255)),
        int(np.clip(rgb[1], 0, 255)),
        int(np.clip(rgb[2], 0, 255)),
    )


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """RGBをCIE Lab色空間に変換（人間の知覚に近い）"""
    rgb_normalized = np.clip(np.asarray(rgb, dtype=float) / 255.0, 0.0, 1.0)

    # sRGBガンマ補正
    mask = rgb_normalized > 0.04045
    rgb_linear = np.where(mask, ((rgb_normalized + 0.055) / 1.055) ** 2.4, rgb_normalized / 12.92)

    xyz = np.dot(RGB_TO_XYZ, rgb_linear * 100)

    # XYZ to Lab (D65 white point)
    xyz_normalized = xyz / REFERENCE_WHITE

    mask = xyz_normalized > 0.008856
    f = np.where(mask, np.cbrt(xyz_normalized), (7.787 * xyz_normalized) + (16 / 116))

    L = (116 * f[1]) - 16
    a = 500 * (f[0] - f[1])
    b = 200 * (f[1] - f[2])

    return np.array([L, a, b])


@lru_cache(maxsize=65536)
def lab_of_hex(hex_color: str) -> tuple:
    """HEX -> Lab（キャッシュ付き。探索中は同じ色を何度も評価するため）"""
    return tuple(float(v) for v in rgb_to_lab(hex_to_rgb(hex_color)))


def delta_e_cie94(lab1, lab2) -> float:
    """
    CIE94色差（ΔE94）を計算

    彩度・色相の重みは lab1 の彩度から求める（非対称）。
    色相差は浮動小数点の桁落ちで負になり得るので 0 で下限を取る。
    """
    L1, a1, b1 = lab1
    L2, a2, b2 = lab2

    c1 = np.hypot(a1, b1)
    c2 = np.hypot(a2, b2)
    sc = 1 + CIE94_K1 * c1
    sh = 1 + CIE94_K2 * c1

    delta_l = L1 - L2
    delta_c = c1 - c2
    delta_a = a1 - a2
    delta_b = b1 - b2
    delta_h = np.sqrt(max(0.0, delta_a ** 2 + delta_b ** 2 - delta_c ** 2))

    return float(np.sqrt(delta_l ** 2 + (delta_c / sc) ** 2 + (delta_h / sh) ** 2))


def similarity(color_a: str, color_b: str) -> float:
    """
    2色の一致度（0〜100、100 = 知覚的に同一）

    Returns:
        max(0, 100 - ΔE94)
    """
    diff = delta_e_cie94(lab_of_hex(color_a), lab_of_hex(color_b))
    return max(0.0, 100.0 - diff)


@lru_cache(maxsize=1024)
def latent_of_hex(hex_color: str) -> tuple:
    """顔料色をMixboxの7次元潜在表現に変換（キャッシュ付き）"""
    rgb = hex_to_rgb(hex_color)
    return tuple(mixbox.rgb_to_latent((int(rgb[0]), int(rgb[1]), int(rgb[2]))))


def mix(recipe) -> str:
    """
    配合から混色結果を計算（Mixbox潜在空間での加重平均 = 減法混色の近似）

    Args:
        recipe: [(HEX, 部数), ...]

    Returns:
        混色結果のHEX。部数の合計が 0 なら EMPTY_MIX
    """
    recipe = [(hex_color, parts) for hex_color, parts in recipe]
    total_parts = sum(parts for _, parts in recipe)
    if total_parts <= PARTS_EPSILON:
        return EMPTY_MIX

    latent_mix = np.zeros(LATENT_SIZE)
    for hex_color, parts in recipe:
        if parts > PARTS_EPSILON:
            latent_mix += np.asarray(latent_of_hex(hex_color)) * (parts / total_parts)

    return rgb_to_hex(mixbox.latent_to_rgb(latent_mix.tolist()))


def describe_color(hex_color: str) -> dict:
    """表示用の色情報（HEX / RGB / Lab）"""
    L, a, b = lab_of_hex(hex_color)
    return {
        "hex": hex_color,
        "rgb": hex_to_rgb(hex_color).tolist(),
        "lab": [round(L, 1), round(a, 1), round(b, 1)],
    }
