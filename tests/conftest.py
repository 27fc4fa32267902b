"""Shared fixtures: a fast stand-in for the pigment mixer and a scripted RNG."""

import numpy as np
import pytest

from color_mixer import EMPTY_MIX, hex_to_rgb, rgb_to_hex


def average_mix(recipe):
    """Linear RGB average weighted by parts (cheap substitute for Mixbox)."""
    recipe = [(hex_color, parts) for hex_color, parts in recipe if parts > 0]
    total = sum(parts for _, parts in recipe)
    if total == 0:
        return EMPTY_MIX
    rgb = sum(hex_to_rgb(hex_color) * parts for hex_color, parts in recipe) / total
    return rgb_to_hex(np.round(rgb))


class ScriptedRng:
    """Returns queued values from random(); raises if consulted unexpectedly."""

    def __init__(self, values=()):
        self.values = list(values)

    def random(self):
        if not self.values:
            raise AssertionError("random() was not expected to be called")
        return self.values.pop(0)


@pytest.fixture
def mix_fn():
    return average_mix


@pytest.fixture
def scripted_rng():
    return ScriptedRng
