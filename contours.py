# contours.py

from dataclasses import dataclass
from enum import Enum

import numpy as np

# ------------------------------------------------------------------
# 1. CONTOUR TYPES
# ------------------------------------------------------------------


class ContourType(str, Enum):
    """How remaining work is weighted across the remaining months."""

    FLAT = "flat"
    FRONT = "front"          # early taper
    BACK = "back"            # late taper
    BELL = "bell"            # middle peak
    TURTLE = "turtle"        # flattened bell, slow ends
    DOUBLE = "double"        # mobilization + closeout peaks
    EARLY = "early"          # sharp early peak
    LATE = "late"            # sharp late peak
    SCURVE = "scurve"        # construction S-curve (derivative)
    RAMPUP = "rampup"
    RAMPDOWN = "rampdown"

    @property
    def label(self) -> str:
        return CONTOUR_LABELS[self]

    @classmethod
    def parse(cls, value) -> "ContourType":
        """Lenient lookup by value or name; anything unknown is flat."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower().replace("-", "").replace("_", "")
        text = CONTOUR_ALIASES.get(text, text)
        for member in cls:
            if text == member.value:
                return member
        return cls.FLAT


CONTOUR_ALIASES = {
    "frontloaded": "front",
    "backloaded": "back",
    "doublepeak": "double",
    "earlypeak": "early",
    "latepeak": "late",
}

CONTOUR_LABELS = {
    ContourType.FLAT: "Flat",
    ContourType.FRONT: "Front",
    ContourType.BACK: "Back",
    ContourType.BELL: "Bell",
    ContourType.TURTLE: "Turtle",
    ContourType.DOUBLE: "Double",
    ContourType.EARLY: "Early Pk",
    ContourType.LATE: "Late Pk",
    ContourType.SCURVE: "S-Curve",
    ContourType.RAMPUP: "Ramp Up",
    ContourType.RAMPDOWN: "Ramp Dn",
}


# ------------------------------------------------------------------
# 2. RAW WEIGHT FUNCTIONS (position p in [0, 1] -> weight)
# ------------------------------------------------------------------

def _peak(p, center, width):
    return np.exp(-((p - center) * width) ** 2)


def _flat(p):
    return np.ones_like(p)


def _front(p):
    return 2 - p * 1.5


def _back(p):
    return 0.5 + p * 1.5


def _bell(p):
    return _peak(p, 0.5, 3) * 1.5 + 0.5


def _turtle(p):
    return _peak(p, 0.5, 2) * 0.8 + 0.6


def _double(p):
    return (_peak(p, 0.25, 5) + _peak(p, 0.75, 5)) * 0.8 + 0.4


def _early(p):
    return _peak(p, 0.2, 4) * 1.8 + 0.2


def _late(p):
    return _peak(p, 0.8, 4) * 1.8 + 0.2


def _scurve(p):
    # bell with longer tails; its running sum traces the S
    return _peak(p, 0.5, 2.5) * 1.2 + 0.4


def _rampup(p):
    return 0.1 + p * 1.9


def _rampdown(p):
    return 2 - p * 1.9


CONTOUR_FUNCTIONS = {
    ContourType.FLAT: _flat,
    ContourType.FRONT: _front,
    ContourType.BACK: _back,
    ContourType.BELL: _bell,
    ContourType.TURTLE: _turtle,
    ContourType.DOUBLE: _double,
    ContourType.EARLY: _early,
    ContourType.LATE: _late,
    ContourType.SCURVE: _scurve,
    ContourType.RAMPUP: _rampup,
    ContourType.RAMPDOWN: _rampdown,
}


def contour_weights(months: int, contour) -> np.ndarray:
    """
    Weights for spreading a quantity over `months` periods.

    The result always sums to `months`, so `quantity / months * weight[i]`
    reconstructs the full quantity whatever the shape.
    """
    months = max(1, int(months))
    contour = ContourType.parse(contour)

    if months > 1:
        positions = np.arange(months, dtype=float) / (months - 1)
    else:
        positions = np.array([0.5])

    raw = CONTOUR_FUNCTIONS[contour](positions)
    return raw / raw.sum() * months


# ------------------------------------------------------------------
# 3. DEFAULT CONTOUR FROM % COMPLETE
# ------------------------------------------------------------------

# (upper bound on % complete, contour); checked in order
AUTO_CONTOUR_BANDS = (
    (15, ContourType.SCURVE),    # early stage: slow start
    (40, ContourType.BELL),      # ramping up: peak mid-way
    (70, ContourType.BACK),
    (90, ContourType.RAMPDOWN),  # winding down
)


@dataclass(frozen=True)
class ContourChoice:
    contour: ContourType
    is_auto: bool


def default_contour(percent_complete: float) -> ContourType:
    for upper, contour in AUTO_CONTOUR_BANDS:
        if percent_complete < upper:
            return contour
    # closeout
    return ContourType.FLAT


def select_contour(percent_complete: float, override=None) -> ContourChoice:
    """A user override always wins (manual); otherwise pick from % complete (auto)."""
    if override:
        return ContourChoice(ContourType.parse(override), is_auto=False)
    return ContourChoice(default_contour(percent_complete), is_auto=True)
