"""Global enums: must match DB CHECK constraints exactly."""

from enum import Enum


class Side(str, Enum):
    OVER = "over"
    UNDER = "under"

    @property
    def other(self) -> "Side":
        return Side.UNDER if self is Side.OVER else Side.OVER
