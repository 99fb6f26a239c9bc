"""WatchRegistry: which addresses a watcher observes, one pair per game."""

from dataclasses import dataclass

from src.ou_common.enums import Side


@dataclass(frozen=True)
class WatchedPair:
    over: str
    under: str

    def address(self, side: Side) -> str:
        return self.over if side is Side.OVER else self.under


class WatchRegistry:
    def __init__(self) -> None:
        self._pairs: dict[int, WatchedPair] = {}

    def __contains__(self, game_id: int) -> bool:
        return game_id in self._pairs

    def __len__(self) -> int:
        return len(self._pairs)

    def add(self, game_id: int, pair: WatchedPair) -> bool:
        """Register `pair` for the game. Returns False if the game is already watched."""
        existing = self._pairs.get(game_id)
        if existing is not None:
            if existing != pair:
                raise ValueError(f"Game {game_id} is already watched on {existing}")
            return False
        self._pairs[game_id] = pair
        return True

    def remove(self, game_id: int) -> WatchedPair | None:
        return self._pairs.pop(game_id, None)

    def get(self, game_id: int) -> WatchedPair | None:
        return self._pairs.get(game_id)

    def game_ids(self) -> set[int]:
        return set(self._pairs)

    def items(self) -> list[tuple[int, WatchedPair]]:
        return list(self._pairs.items())
