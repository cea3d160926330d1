import os
import random
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Union

from dotenv import load_dotenv

log = logging.getLogger(__name__)


# =========================
# ENV / CONFIG
# =========================
load_dotenv()

WORDS_FILE = os.getenv("IMPOSTER_WORDS_FILE", "words.txt")

MIN_PLAYERS = 3
def _positive_int(var: str, default: int) -> int:
    value = int(os.getenv(var, str(default)))
    if value < 1:
        raise ValueError(f"{var} must be at least 1, got {value}")
    return value


REVEAL_SECONDS = _positive_int("IMPOSTER_REVEAL_SECONDS", 5)
TICK_SECONDS = 1.0

FALLBACK_WORDS = ["Pizza", "Airplane", "Volcano", "Bicycle", "Chocolate", "Pyramid", "Robot", "Castle"]


# =========================
# WORDS
# =========================
def load_words(path: str = WORDS_FILE) -> List[str]:
    words: List[str] = []
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                w = line.strip()
                if not w or w.startswith("#"):
                    continue
                words.append(w)

    if not words:
        log.warning("No words loaded from %s, using built-in list", path)
        words = list(FALLBACK_WORDS)

    seen = set()
    out = []
    for w in words:
        if w not in seen:
            seen.add(w)
            out.append(w)
    return out


class WordSource:
    """Read-only, non-empty collection of candidate secret words."""

    def __init__(self, words: Iterable[str]):
        self._words = tuple(words)
        if not self._words:
            raise ValueError("word source must not be empty")

    @classmethod
    def from_file(cls, path: str = WORDS_FILE) -> "WordSource":
        return cls(load_words(path))

    @property
    def words(self) -> Sequence[str]:
        return self._words

    def __len__(self) -> int:
        return len(self._words)


# =========================
# STATE
# =========================
class Stage(str, Enum):
    SETUP = "setup"
    PLAYING = "playing"


class Marker(Enum):
    IMPOSTOR = "impostor"


Role = Union[str, Marker]


@dataclass
class Participant:
    name: str
    role: Role
    revealed: bool = False

    @property
    def is_impostor(self) -> bool:
        return self.role is Marker.IMPOSTOR


@dataclass
class SessionState:
    stage: Stage = Stage.SETUP

    # insertion order is display order
    roster: List[str] = field(default_factory=list)

    round: List[Participant] = field(default_factory=list)
    round_no: int = 0

    first_player: Optional[str] = None
    show_first_player: bool = False

    # slot index -> seconds left; present only while round[index].revealed
    timers: Dict[int, int] = field(default_factory=dict)

    def round_names(self) -> List[str]:
        return [p.name for p in self.round]


class ValidationError(Exception):
    """A command was rejected; the session is unchanged."""


# =========================
# ROUND GENERATION
# =========================
class RoundGenerator:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate(self, roster: Sequence[str], words: Union[WordSource, Sequence[str]]) -> List[Participant]:
        """Build one round: a shuffled copy of ``roster`` where a single slot is
        the impostor and every other slot holds the same secret word.

        ``rng.shuffle`` is a Fisher-Yates shuffle, so every ordering of the
        roster is equally likely.
        """
        names = list(roster)
        if len(names) < MIN_PLAYERS:
            raise ValueError(f"need at least {MIN_PLAYERS} participants, got {len(names)}")
        if len(set(names)) != len(names):
            raise ValueError("participant names must be unique")

        pool = words.words if isinstance(words, WordSource) else tuple(words)
        if not pool:
            raise ValueError("no candidate words")

        word = self.rng.choice(pool)
        self.rng.shuffle(names)
        impostor_index = self.rng.randrange(len(names))

        return [
            Participant(name=n, role=Marker.IMPOSTOR if i == impostor_index else word)
            for i, n in enumerate(names)
        ]


class FirstPlayerSelector:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def pick(self, names: Sequence[str], previous: Optional[str] = None) -> str:
        if not names:
            raise ValueError("cannot pick a first player from an empty list")
        if len(names) == 1:
            return names[0]

        pool = [n for n in names if n != previous]
        if not pool:
            pool = list(names)
        return self.rng.choice(pool)


# =========================
# REVEAL TIMERS
# =========================
class RevealTimerManager:
    """Per-slot reveal countdowns.

    Each revealed slot owns exactly one asyncio task that ticks every
    ``TICK_SECONDS``. A tick only applies if the task is still the registered
    one for its slot and the round it was started in is still current, so a
    tick racing a manual hide or a new round is dropped.
    """

    def __init__(
        self,
        state: SessionState,
        seconds: int = REVEAL_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if seconds < 1:
            raise ValueError(f"reveal countdown must be at least 1 second, got {seconds}")
        self.state = state
        self.seconds = seconds
        self._sleep = sleep
        self._tasks: Dict[int, asyncio.Task] = {}

    def active(self) -> List[int]:
        return sorted(self._tasks)

    def toggle(self, index: int) -> None:
        players = self.state.round
        if not 0 <= index < len(players):
            return

        if players[index].revealed:
            self.hide(index)
            return

        loop = asyncio.get_running_loop()
        self._cancel(index)
        players[index].revealed = True
        self.state.timers[index] = self.seconds
        self._tasks[index] = loop.create_task(
            self._countdown(index, self.state.round_no)
        )

    def hide(self, index: int) -> None:
        self._cancel(index)
        self.state.timers.pop(index, None)
        if 0 <= index < len(self.state.round):
            self.state.round[index].revealed = False

    def cancel_all(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        self.state.timers.clear()
        for p in self.state.round:
            p.revealed = False

    def _cancel(self, index: int) -> None:
        task = self._tasks.pop(index, None)
        if task and not task.done():
            task.cancel()

    async def _countdown(self, index: int, round_no: int) -> None:
        try:
            while True:
                await self._sleep(TICK_SECONDS)
                if not self._tick(index, round_no):
                    return
        except asyncio.CancelledError:
            return

    def _tick(self, index: int, round_no: int) -> bool:
        # stale: round replaced, slot hidden, or a newer task owns the slot
        if round_no != self.state.round_no:
            return False
        if self._tasks.get(index) is not asyncio.current_task():
            return False
        if index not in self.state.timers:
            return False

        left = self.state.timers[index] - 1
        if left > 0:
            self.state.timers[index] = left
            log.debug("slot %s: %ss left", index, left)
            return True

        self._tasks.pop(index, None)
        self.state.timers.pop(index, None)
        self.state.round[index].revealed = False
        log.info("slot %s auto-hidden", index)
        return False


# =========================
# SESSION
# =========================
class SessionController:
    """The only place session state is mutated.

    Commands are plain synchronous methods; they must run on the event loop
    that owns the reveal timers.
    """

    def __init__(
        self,
        words: Optional[WordSource] = None,
        rng: Optional[random.Random] = None,
        reveal_seconds: int = REVEAL_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.words = words or WordSource.from_file()
        self.state = SessionState()
        self.generator = RoundGenerator(rng)
        self.selector = FirstPlayerSelector(rng)
        self.timers = RevealTimerManager(self.state, seconds=reveal_seconds, sleep=sleep)

    # ---- roster ----
    def add_participant(self, name: str) -> bool:
        if self.state.stage is not Stage.SETUP:
            return False
        name = (name or "").strip()
        if not name or name in self.state.roster:
            return False
        self.state.roster.append(name)
        return True

    def remove_participant(self, name: str) -> bool:
        if self.state.stage is not Stage.SETUP or name not in self.state.roster:
            return False
        self.state.roster = [n for n in self.state.roster if n != name]
        return True

    # ---- round lifecycle ----
    def start_game(self) -> None:
        if self.state.stage is not Stage.SETUP:
            return
        self._require_roster()

        players = self.generator.generate(self.state.roster, self.words)
        first = self.selector.pick([p.name for p in players])

        self.timers.cancel_all()
        self._install_round(players, first)
        self.state.stage = Stage.PLAYING
        log.info("game started with %d players", len(players))

    def new_round(self) -> None:
        if self.state.stage is not Stage.PLAYING:
            return
        self._require_roster()

        players = self.generator.generate(self.state.roster, self.words)
        first = self.selector.pick([p.name for p in players], previous=self.state.first_player)

        self.timers.cancel_all()
        self._install_round(players, first)
        log.info("round %d started", self.state.round_no)

    def shuffle_first_player(self) -> None:
        if self.state.stage is not Stage.PLAYING:
            return
        names = self.state.round_names() or list(self.state.roster)
        if not names:
            return
        self.state.first_player = self.selector.pick(names, previous=self.state.first_player)

    def toggle_first_player(self) -> None:
        if self.state.stage is Stage.PLAYING:
            self.state.show_first_player = not self.state.show_first_player

    def toggle_reveal(self, index: int) -> None:
        if self.state.stage is Stage.PLAYING:
            self.timers.toggle(index)

    def reset_session(self) -> None:
        self.timers.cancel_all()
        self.state.stage = Stage.SETUP
        self.state.roster = []
        self.state.round = []
        self.state.first_player = None
        self.state.show_first_player = False
        log.info("session reset")

    def close(self) -> None:
        pending = self.timers.active()
        if pending:
            log.info("closing with reveal timers on slots %s", pending)
        self.timers.cancel_all()

    def _require_roster(self) -> None:
        if len(self.state.roster) < MIN_PLAYERS:
            raise ValidationError(f"insufficient participants: need at least {MIN_PLAYERS}")

    def _install_round(self, players: List[Participant], first: str) -> None:
        self.state.round_no += 1
        self.state.round = players
        self.state.first_player = first
        self.state.show_first_player = False

    # ---- rendering ----
    def snapshot(self) -> Dict[str, Any]:
        s = self.state
        players = []
        for i, p in enumerate(s.round):
            entry: Dict[str, Any] = {"name": p.name, "revealed": p.revealed}
            if p.revealed:
                entry["impostor"] = p.is_impostor
                entry["role"] = "IMPOSTOR" if p.is_impostor else p.role
                entry["seconds_left"] = s.timers.get(i)
            players.append(entry)

        return {
            "stage": s.stage.value,
            "roster": list(s.roster),
            "round_no": s.round_no,
            "players": players,
            "first_player": s.first_player if s.show_first_player else None,
            "show_first_player": s.show_first_player,
            "timers": {str(i): left for i, left in sorted(s.timers.items())},
            "can_start": s.stage is Stage.SETUP and len(s.roster) >= MIN_PLAYERS,
        }
