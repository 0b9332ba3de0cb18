from __future__ import annotations

import copy
import math
from dataclasses import dataclass
from enum import StrEnum

from .cognitive_core import SeededRng


class ShapeType(StrEnum):
    CIRCLE = "circle"
    SQUARE = "square"
    TRIANGLE = "triangle"
    DIAMOND = "diamond"
    HEXAGON = "hexagon"


# Colours used for rule-correct objects, and the near-miss shade each one is
# mimicked with when an object is planted as a trap.
VALID_COLORS: tuple[str, ...] = ("#00D4AA", "#4ECDC4", "#7B68EE", "#FFD93D", "#00BFFF")
TRAP_COLORS: dict[str, str] = {
    "#00D4AA": "#00AA88",
    "#4ECDC4": "#3DBDB4",
    "#7B68EE": "#6B58DE",
    "#FFD93D": "#EEC82D",
    "#00BFFF": "#00AFEF",
}
DECOY_COLORS: tuple[str, ...] = (
    "#FF6B6B",
    "#4A4A5A",
    "#666677",
    "#555566",
    "#7A7A8A",
    "#884444",
    "#448844",
    "#444488",
    "#886644",
    "#448886",
)

MIN_SIZE = 45.0
MAX_SIZE = 70.0


@dataclass(frozen=True, slots=True)
class Point:
    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True, slots=True)
class PlayArea:
    """Rectangle objects are placed in, in presentation coordinates."""

    x: float = 30.0
    y: float = 140.0
    width: float = 330.0
    height: float = 520.0

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("play area must have positive width and height")

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def max_distance(self) -> float:
        """Distance from the centre to a corner."""

        return math.hypot(self.width / 2.0, self.height / 2.0)

    def random_point(self, rng: SeededRng) -> Point:
        return Point(
            rng.uniform(self.x, self.x + self.width),
            rng.uniform(self.y, self.y + self.height),
        )

    def contains(self, p: Point) -> bool:
        return self.x <= p.x <= self.x + self.width and self.y <= p.y <= self.y + self.height


@dataclass(slots=True)
class GameElement:
    """One interactive object for a single round.

    History fields (``move_count`` through ``gaze_time_ms``) are carried
    forward from the element with the same slot id in the previous round.
    """

    element_id: str
    shape: ShapeType
    color: str
    x: float
    y: float
    size: float
    opacity: float = 1.0

    has_moved: bool = False
    move_count: int = 0
    appeared_round: int = 1
    was_selected_before: bool = False
    was_relevant_last_round: bool = False
    is_symmetric: bool = True
    distance_from_center: float = 0.0
    brightness: float = 1.0
    gaze_time_ms: float = 0.0

    is_correct: bool = False
    is_trap: bool = False

    @property
    def position(self) -> Point:
        return Point(self.x, self.y)

    def move_to(self, p: Point, *, center: Point) -> None:
        self.x = p.x
        self.y = p.y
        self.distance_from_center = p.distance_to(center)

    def mark_correct(self) -> None:
        self.is_correct = True
        self.is_trap = False

    def mark_trap(self) -> None:
        self.is_trap = True
        self.is_correct = False


def snapshot_elements(elements: list[GameElement]) -> tuple[GameElement, ...]:
    """Deep copy of an element set, safe to keep after the round ends."""

    return tuple(copy.deepcopy(e) for e in elements)


def find_element(elements: list[GameElement] | tuple[GameElement, ...], element_id: str) -> GameElement | None:
    for e in elements:
        if e.element_id == element_id:
            return e
    return None


def find_open_position(
    rng: SeededRng,
    area: PlayArea,
    placed: list[Point],
    *,
    min_distance: float = 80.0,
    attempts: int = 50,
    min_radius: float | None = None,
    max_radius: float | None = None,
) -> Point:
    """Rejection-sample a point at least ``min_distance`` from ``placed``.

    Optional ``min_radius``/``max_radius`` restrict candidates to a band around
    the area centre. When no candidate qualifies the last attempt is returned,
    so placement always makes progress on crowded boards.
    """

    center = area.center
    candidate = center
    for _ in range(max(1, attempts)):
        candidate = _band_point(rng, area, center, min_radius, max_radius)
        if all(candidate.distance_to(p) >= min_distance for p in placed):
            return candidate
    return candidate


def _band_point(
    rng: SeededRng,
    area: PlayArea,
    center: Point,
    min_radius: float | None,
    max_radius: float | None,
) -> Point:
    if min_radius is None and max_radius is None:
        return area.random_point(rng)

    lo = 0.0 if min_radius is None else max(0.0, min_radius)
    hi = area.max_distance if max_radius is None else min(area.max_distance, max_radius)
    if hi <= lo:
        hi = lo + 1.0
    # Polar sample, retried until it lands inside the rectangle.
    p = area.random_point(rng)
    for _ in range(20):
        r = rng.uniform(lo, hi)
        theta = rng.uniform(0.0, 2.0 * math.pi)
        p = Point(center.x + r * math.cos(theta), center.y + r * math.sin(theta))
        if area.contains(p):
            return p
    return Point(
        min(max(p.x, area.x), area.x + area.width),
        min(max(p.y, area.y), area.y + area.height),
    )
