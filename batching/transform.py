# batching/transform.py
from __future__ import annotations
from typing import Dict

def sensor_to_display(x1: float, y1: float, x2: float, y2: float) -> Dict[str, float]:
    """
    Map a sensor-oriented box (two opposite corners, normalized 0-1) to display space.

    Sensor and display differ by a 90 deg clockwise rotation followed by a
    vertical flip:
      rotate: (x, y) -> (y, 1 - x)
      flip:   (x, y) -> (x, 1 - y)
      both:   (x, y) -> (y, x)
    The swap can invert corner order, so min/max are re-taken per axis.
    """
    ax, ay = y1, x1
    bx, by = y2, x2

    xmin, xmax = min(ax, bx), max(ax, bx)
    ymin, ymax = min(ay, by), max(ay, by)

    return {"x": xmin, "y": ymin, "width": xmax - xmin, "height": ymax - ymin}
