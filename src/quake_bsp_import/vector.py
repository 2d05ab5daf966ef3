"""
Vector and geometry utilities for the Quake BSP importer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class Vector3:
    """3D vector in BSP (right-handed, Z up) coordinates."""
    x: float
    y: float
    z: float

    def __add__(self, other: Vector3) -> Vector3:
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __mul__(self, scalar: float) -> Vector3:
        return Vector3(self.x * scalar, self.y * scalar, self.z * scalar)

    def __truediv__(self, scalar: float) -> Vector3:
        return Vector3(self.x / scalar, self.y / scalar, self.z / scalar)

    def __repr__(self) -> str:
        return f"Vector3({self.x:.2f}, {self.y:.2f}, {self.z:.2f})"

    @classmethod
    def zero(cls) -> Vector3:
        """Return zero vector."""
        return cls(0.0, 0.0, 0.0)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> Vector3:
        """Create vector from numpy array."""
        return cls(float(arr[0]), float(arr[1]), float(arr[2]))

    def to_tuple(self) -> Tuple[float, float, float]:
        """Convert to tuple."""
        return (self.x, self.y, self.z)

    def flipped(self) -> Vector3:
        """Mirror X to convert BSP space into the left-handed output space."""
        return Vector3(-self.x, self.y, self.z)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounding box."""
    mins: Vector3
    maxs: Vector3


@dataclass(frozen=True)
class Plane:
    """BSP plane: normal, distance and axial type."""
    normal: Vector3
    dist: float
    type: int = 0
