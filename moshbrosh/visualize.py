"""
MoshBrosh — Motion Vector Preview
Draws a displacement field as arrows over a frame, to see what a window
will do before rendering it.
"""

import cv2
import numpy as np

from .frame import FrameBuffer
from .motion import DisplacementField


def draw_vectors(
    frame: FrameBuffer,
    field: DisplacementField,
    color=(0, 255, 0),
    scale: float = 1.0,
) -> np.ndarray:
    """Arrow per block from its center toward the source it reads from.

    Zero vectors are drawn as a single dot.

    Returns:
        (H, W, 3) uint8 RGB image.
    """
    canvas = np.ascontiguousarray(frame.to_uint8())
    half = field.block_size // 2
    for by in range(field.blocks_y):
        for bx in range(field.blocks_x):
            dx, dy = field.vector(bx, by)
            cx = min(bx * field.block_size + half, frame.width - 1)
            cy = min(by * field.block_size + half, frame.height - 1)
            if dx == 0 and dy == 0:
                cv2.circle(canvas, (cx, cy), 1, color, -1)
                continue
            tip = (int(round(cx + dx * scale)), int(round(cy + dy * scale)))
            cv2.arrowedLine(canvas, (cx, cy), tip, color, 1, tipLength=0.3)
    return canvas
