"""Rotation helpers shared by the camera and mesh placement."""

import math

import numpy as np
import numpy.typing as npt


def rotation_matrix(pitch: float, yaw: float, roll: float) -> npt.NDArray[np.float64]:
    """Build the rotation Rx(pitch) @ Ry(yaw) @ Rz(roll).

    Angles are in degrees. Pitch rotates about the x-axis, yaw about the
    y-axis and roll about the z-axis.
    """
    p, y, r = (math.radians(a) for a in (pitch, yaw, roll))
    cp, sp = math.cos(p), math.sin(p)
    cy, sy = math.cos(y), math.sin(y)
    cr, sr = math.cos(r), math.sin(r)

    rx = np.array([[1.0, 0.0, 0.0], [0.0, cp, -sp], [0.0, sp, cp]])
    ry = np.array([[cy, 0.0, sy], [0.0, 1.0, 0.0], [-sy, 0.0, cy]])
    rz = np.array([[cr, -sr, 0.0], [sr, cr, 0.0], [0.0, 0.0, 1.0]])
    return rx @ ry @ rz
