"""Supported aspect ratios with their output dimensions and credit cost."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

# Cost charged when the requested ratio is not in the table
DEFAULT_COST = Decimal("1.0")
DEFAULT_ASPECT_RATIO = "16:9"


@dataclass(frozen=True)
class AspectRatioOption:
    value: str
    label: str
    width: int
    height: int
    cost: Decimal


ASPECT_RATIO_OPTIONS: tuple[AspectRatioOption, ...] = (
    AspectRatioOption("16:9", "Landscape (16:9)", 1920, 1080, Decimal("1.0")),
    AspectRatioOption("9:16", "Portrait (9:16)", 1080, 1920, Decimal("1.0")),
    AspectRatioOption("1:1", "Square (1:1)", 1080, 1080, Decimal("0.8")),
    AspectRatioOption("4:3", "Classic (4:3)", 1440, 1080, Decimal("0.9")),
    AspectRatioOption("3:4", "Portrait Classic (3:4)", 1080, 1440, Decimal("0.9")),
    AspectRatioOption("21:9", "Ultrawide (21:9)", 2560, 1080, Decimal("1.2")),
    AspectRatioOption("9:21", "Portrait Ultrawide (9:21)", 1080, 2520, Decimal("1.2")),
)

_OPTIONS_BY_VALUE = {option.value: option for option in ASPECT_RATIO_OPTIONS}


def get_aspect_ratio_option(aspect_ratio: str) -> Optional[AspectRatioOption]:
    return _OPTIONS_BY_VALUE.get(aspect_ratio)


def calculate_cost(aspect_ratio: str) -> Decimal:
    """Credit cost for a ratio; unknown ratios fall back to DEFAULT_COST."""
    option = get_aspect_ratio_option(aspect_ratio)
    return option.cost if option else DEFAULT_COST
