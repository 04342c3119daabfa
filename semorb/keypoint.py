"""Keypoint record and response-based filtering."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class KeyPoint:
    """A detected image feature."""

    x: float
    y: float
    size: float = 0.0
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0
    class_id: int = -1

    @property
    def pt(self) -> tuple[float, float]:
        """The keypoint position as an (x, y) pair."""
        return (self.x, self.y)


def retain_best(keypoints: list[KeyPoint], n: int) -> list[KeyPoint]:
    """Return at most ``n`` keypoints with the strongest response.

    The result is ordered by decreasing response; ties keep their input order.
    """
    if n < 0:
        raise ValueError("n must not be negative")
    ranked = sorted(keypoints, key=lambda kp: kp.response, reverse=True)
    return ranked[:n]