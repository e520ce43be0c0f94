"""
Single-elimination bracket state machine for one tournament category.

States:
    LOADING           -> no rounds yet; call load()
    ROUND_IN_PLAY(r)  -> round r is shown and editable
    CHAMPION_DECLARED -> final round closed, champion name/score editable

Rounds are immutable values kept in an ordered list indexed by round number.
Round 0 holds one slot per configured player; every later round holds half
the slots of the one before it. Going back only moves the cursor. Advancing
from round r replaces round r+1 with an empty round and drops anything
beyond it.

Precondition violations (advancing from the final, declaring a champion
before the final, going back from round 0) are no-ops: the method returns
None/False and the state is unchanged.
"""

import enum
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from streetpaddle.utils.constants import ROUND_KEY_PREFIX

logger = logging.getLogger(__name__)


class BracketState(str, enum.Enum):
    """Bracket lifecycle state."""

    LOADING = "loading"
    ROUND_IN_PLAY = "round_in_play"
    CHAMPION_DECLARED = "champion_declared"


def is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


def round_title(slot_count: int, round_index: int) -> str:
    """
    Display title for a round.

    Args:
        slot_count: Number of player slots in the round
        round_index: Zero-based round index

    Returns:
        "Final", "Semifinal", "Champion" or "Round N"
    """
    if slot_count == 2:
        return "Final"
    if slot_count == 4:
        return "Semifinal"
    if slot_count == 1:
        return "Champion"
    return f"Round {round_index + 1}"


@dataclass(frozen=True)
class BracketRound:
    """One round: parallel player-name and score slots."""

    index: int
    player_names: Tuple[str, ...]
    scores: Tuple[str, ...]
    completed: bool = False
    version: int = 0

    def __post_init__(self):
        if len(self.player_names) != len(self.scores):
            raise ValueError("player_names and scores must have the same length")

    @classmethod
    def empty(cls, index: int, size: int) -> "BracketRound":
        return cls(index=index, player_names=("",) * size, scores=("",) * size)

    @property
    def size(self) -> int:
        return len(self.player_names)

    @property
    def key(self) -> str:
        return f"{ROUND_KEY_PREFIX}{self.index}"

    def _check_slot(self, slot_index: int) -> None:
        if not 0 <= slot_index < self.size:
            raise ValueError(f"Slot {slot_index} out of range for round {self.index} ({self.size} slots)")

    def with_name(self, slot_index: int, name: str) -> "BracketRound":
        self._check_slot(slot_index)
        names = list(self.player_names)
        names[slot_index] = name
        return replace(self, player_names=tuple(names), version=self.version + 1)

    def with_score(self, slot_index: int, score: str) -> "BracketRound":
        self._check_slot(slot_index)
        scores = list(self.scores)
        scores[slot_index] = score
        return replace(self, scores=tuple(scores), version=self.version + 1)

    def mark_completed(self) -> "BracketRound":
        return replace(self, completed=True)

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "key": self.key,
            "title": round_title(self.size, self.index),
            "player_names": list(self.player_names),
            "scores": list(self.scores),
            "completed": self.completed,
            "version": self.version,
        }


@dataclass(frozen=True)
class Champion:
    name: str = ""
    score: str = ""


class BracketEngine:
    """Bracket state for one (tournament, category) pair."""

    def __init__(self, tournament_id: int, category: str):
        self.tournament_id = tournament_id
        self.category = category
        self.state = BracketState.LOADING
        self.player_count = 0
        self.champion = Champion()
        self._rounds: List[BracketRound] = []
        self._current = 0

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(
        self,
        player_count: int,
        rounds: Sequence[BracketRound] = (),
        champion: Optional[Champion] = None,
    ) -> None:
        """
        Materialize the bracket from configuration and persisted rounds.

        Persisted rounds are replayed in index order while they form a
        consistent halving chain from round 0; the first inconsistent round
        and everything after it is ignored. The engine then moves to the
        furthest point the history supports.

        Args:
            player_count: Configured number of players (power of two, >= 2)
            rounds: Persisted rounds, any order
            champion: Persisted champion record, if one exists

        Raises:
            ValueError: If player_count is not a power of two >= 2
        """
        if player_count < 2 or not is_power_of_two(player_count):
            raise ValueError(f"Player count must be a power of two >= 2, got {player_count}")

        self.player_count = player_count
        self._rounds = []
        expected_size = player_count
        for persisted in sorted(rounds, key=lambda r: r.index):
            if persisted.index != len(self._rounds) or persisted.size != expected_size:
                logger.warning(
                    f"Ignoring persisted round {persisted.index} ({persisted.size} slots) "
                    f"for tournament {self.tournament_id} / {self.category}: expected "
                    f"round {len(self._rounds)} with {expected_size} slots"
                )
                break
            self._rounds.append(persisted)
            if not persisted.completed or expected_size == 2:
                break
            expected_size //= 2

        if not self._rounds:
            self._rounds.append(BracketRound.empty(0, player_count))

        last = self._rounds[-1]
        self._current = last.index
        self.champion = Champion()
        if last.completed and last.size == 2:
            self.state = BracketState.CHAMPION_DECLARED
            self.champion = champion or Champion()
        else:
            if last.completed:
                self._rounds.append(BracketRound.empty(last.index + 1, last.size // 2))
                self._current = last.index + 1
            self.state = BracketState.ROUND_IN_PLAY

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def rounds(self) -> Tuple[BracketRound, ...]:
        return tuple(self._rounds)

    @property
    def current_index(self) -> Optional[int]:
        if self.state == BracketState.LOADING:
            return None
        return self._current

    @property
    def current_round(self) -> Optional[BracketRound]:
        if self.state == BracketState.LOADING:
            return None
        return self._rounds[self._current]

    @property
    def title(self) -> str:
        if self.state == BracketState.LOADING:
            return "Loading"
        if self.state == BracketState.CHAMPION_DECLARED:
            return round_title(1, len(self._rounds))
        current = self._rounds[self._current]
        return round_title(current.size, current.index)

    def get_round(self, round_index: int) -> BracketRound:
        if not 0 <= round_index < len(self._rounds):
            raise ValueError(f"Round {round_index} does not exist")
        return self._rounds[round_index]

    @property
    def can_advance(self) -> bool:
        return self.state == BracketState.ROUND_IN_PLAY and self._rounds[self._current].size > 2

    @property
    def can_declare_champion(self) -> bool:
        return self.state == BracketState.ROUND_IN_PLAY and self._rounds[self._current].size == 2

    @property
    def can_go_back(self) -> bool:
        if self.state == BracketState.CHAMPION_DECLARED:
            return True
        return self.state == BracketState.ROUND_IN_PLAY and self._current > 0

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(self) -> Optional[BracketRound]:
        """
        Close the current round and open the next one with empty slots.

        Returns:
            The completed round (to persist), or None if the current round is
            the final or the bracket is not in play
        """
        if not self.can_advance:
            logger.info(
                f"Advance rejected for tournament {self.tournament_id} / {self.category} "
                f"in state {self.state.value}"
            )
            return None

        completed = self._rounds[self._current].mark_completed()
        next_round = BracketRound.empty(completed.index + 1, completed.size // 2)
        self._rounds = self._rounds[: completed.index] + [completed, next_round]
        self._current = next_round.index
        self.champion = Champion()
        return completed

    def declare_champion(self) -> Optional[BracketRound]:
        """
        Close the final and move to the champion view with empty champion fields.

        Returns:
            The completed final round (to persist), or None if the current
            round is not the final
        """
        if not self.can_declare_champion:
            logger.info(
                f"Champion declaration rejected for tournament {self.tournament_id} / "
                f"{self.category} in state {self.state.value}"
            )
            return None

        final = self._rounds[self._current].mark_completed()
        self._rounds = self._rounds[: final.index] + [final]
        self.champion = Champion()
        self.state = BracketState.CHAMPION_DECLARED
        return final

    def go_back(self) -> bool:
        """
        Move to the previous view without touching stored rounds.

        Returns:
            True if the view changed
        """
        if self.state == BracketState.CHAMPION_DECLARED:
            self.state = BracketState.ROUND_IN_PLAY
            self._current = len(self._rounds) - 1
            self.champion = Champion()
            return True
        if self.state == BracketState.ROUND_IN_PLAY and self._current > 0:
            self._current -= 1
            return True
        return False

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _require_loaded(self) -> None:
        if self.state == BracketState.LOADING:
            raise ValueError("Bracket is still loading")

    def edit_slot(self, round_index: int, slot_index: int, name: str) -> BracketRound:
        """
        Set a player name. Free text; only None is rejected.

        Raises:
            ValueError: If name is None or the round/slot does not exist
        """
        self._require_loaded()
        if name is None:
            raise ValueError("name is required")
        updated = self.get_round(round_index).with_name(slot_index, name)
        self._rounds[round_index] = updated
        return updated

    def edit_score(self, round_index: int, slot_index: int, score: str) -> BracketRound:
        """
        Set a score. Free text; only None is rejected.

        Raises:
            ValueError: If score is None or the round/slot does not exist
        """
        self._require_loaded()
        if score is None:
            raise ValueError("score is required")
        updated = self.get_round(round_index).with_score(slot_index, score)
        self._rounds[round_index] = updated
        return updated

    def set_champion(self, name: str, score: str = "") -> Optional[Champion]:
        """Fill in the champion. Only valid once a champion has been declared."""
        if self.state != BracketState.CHAMPION_DECLARED:
            logger.info(f"Champion edit rejected for tournament {self.tournament_id} / {self.category}")
            return None
        if name is None or score is None:
            raise ValueError("champion name and score are required")
        self.champion = Champion(name=name, score=score)
        return self.champion

    def to_dict(self) -> Dict:
        return {
            "tournament_id": self.tournament_id,
            "category": self.category,
            "state": self.state.value,
            "player_count": self.player_count,
            "current_round": self.current_index,
            "title": self.title,
            "rounds": [r.to_dict() for r in self._rounds],
            "champion": (
                {"name": self.champion.name, "score": self.champion.score}
                if self.state == BracketState.CHAMPION_DECLARED
                else None
            ),
            "can_advance": self.can_advance,
            "can_declare_champion": self.can_declare_champion,
            "can_go_back": self.can_go_back,
        }
