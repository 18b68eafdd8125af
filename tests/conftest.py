"""
Conftest: shared frame builders for all MoshBrosh test modules.

Frames are synthetic float RGBA textures. Random texture is used wherever a
test needs block matching to have a unique answer: flat or striped content
produces ties that the scan order then resolves.
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from moshbrosh.frame import FrameBuffer


def make_texture(width=64, height=64, seed=0):
    """Random RGB texture with opaque alpha."""
    rng = np.random.RandomState(seed)
    rgba = rng.rand(height, width, 4).astype(np.float32)
    rgba[:, :, 3] = 1.0
    return FrameBuffer.from_array(rgba)


def make_gray(values):
    """Frame whose R=G=B equals `values` (2D array), so luma == values."""
    values = np.asarray(values, dtype=np.float32)
    rgba = np.ones(values.shape + (4,), dtype=np.float32)
    rgba[:, :, 0] = values
    rgba[:, :, 1] = values
    rgba[:, :, 2] = values
    return FrameBuffer.from_array(rgba)


def shifted(frame, dx=0, dy=0):
    """Content moved right by dx and down by dy, wrapping at the edges."""
    return FrameBuffer.from_array(np.roll(frame.pixels, (dy, dx), axis=(0, 1)))


def make_sequence(count, width=32, height=32, seed=100):
    """Independent random frames, one per index."""
    return [make_texture(width, height, seed + i) for i in range(count)]


@pytest.fixture
def texture():
    """A 64x64 random RGBA frame."""
    return make_texture(64, 64, seed=7)


@pytest.fixture
def panning_sequence():
    """20 frames of one texture panning right 2 px per frame."""
    base = make_texture(48, 32, seed=3)
    return [shifted(base, dx=2 * i) for i in range(20)]
