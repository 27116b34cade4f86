"""
Adaptive kernel selection.

An ``AutoTuner`` holds competing implementations ("candidates") of one
operation. Candidates that share a shape bucket carry the same fingerprint
and are told apart by an ordinal. The first time a candidate is seen it is built
and executed once; the graph executor charges the wall time between the
first and the final node a candidate tagged to that candidate. Afterwards
the fastest candidate is replayed without measuring again.

Statistics survive ``clear()``, which only drops the registered candidates,
so a later call whose shapes fall into the same bucket reuses the decision.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .errors import ConfigurationError
from .shape import ShapeLike, as_shape

if TYPE_CHECKING:
    from .expression import Expr

logger = logging.getLogger(__name__)

# shape dimensions are divided by this before hashing
COARSEN_FACTOR = 4

Recorder = Callable[..., "Expr"]


class TunerState(Enum):
    """Lifecycle of one fingerprint."""
    UNSEEN = "unseen"
    MEASURING = "measuring"
    RESOLVED = "resolved"


@dataclass
class TimingStats:
    """Accumulated wall time for one fingerprint."""
    total: float = 0.0
    runs: int = 0

    @property
    def average(self) -> float:
        return self.total / self.runs if self.runs else float("inf")


@dataclass(frozen=True)
class Candidate:
    """
    One algorithm variant.

    ``build`` receives a recorder ``record(expr, is_final=False)`` that tags
    the nodes it creates, and returns the result expression.
    """
    fingerprint: int
    ordinal: int
    build: Callable[[Recorder], "Expr"]


def coarsen(shape: ShapeLike, factor: int = COARSEN_FACTOR) -> Tuple[int, ...]:
    """Integer-divide every dimension so nearby sizes share a bucket."""
    return tuple(d // factor for d in as_shape(shape))


def fingerprint(*shapes: ShapeLike, flags: Sequence = ()) -> int:
    """Hash the coarsened operand shapes, then fold in the operation flags."""
    h = hash(tuple(coarsen(s) for s in shapes))
    return hash((h, tuple(flags)))


def candidate_key(base: int, ordinal: int) -> int:
    """Fingerprint of the ``ordinal``-th algorithm for a shape bucket."""
    return hash((base, ordinal))


Key = Tuple[int, int]


class AutoTuner:
    """
    Measures competing candidates and replays the fastest.

    Candidates are identified by ``(fingerprint, ordinal)``; several
    ordinals may share one fingerprint. Not thread-safe: one tuner serves
    one graph, or is passed explicitly to the operation that needs it.
    """

    def __init__(self, rounds: int = 1):
        if rounds < 1:
            raise ConfigurationError(f"rounds must be >= 1, got {rounds}")
        self.rounds = rounds
        self._candidates: List[Candidate] = []
        self._stats: Dict[Key, TimingStats] = {}
        self._timers: Dict[Key, float] = {}

    def clear(self):
        """Drop registered candidates; collected timings are kept."""
        self._candidates = []
        self._timers.clear()

    def reset(self):
        """Drop candidates and every collected timing."""
        self.clear()
        self._stats.clear()

    def insert(self, candidate, build: Optional[Callable[[Recorder], "Expr"]] = None,
               ordinal: Optional[int] = None):
        """
        Register a candidate.

        Accepts a ``Candidate`` or ``(fingerprint, build, ordinal)``; the
        ordinal defaults to the registration position, starting at 1.
        """
        if not isinstance(candidate, Candidate):
            if build is None:
                raise ConfigurationError("a fingerprint needs a build callable")
            if ordinal is None:
                ordinal = len(self._candidates) + 1
            candidate = Candidate(candidate, ordinal, build)
        self._candidates.append(candidate)

    @property
    def candidates(self) -> List[Candidate]:
        return list(self._candidates)

    def _ordinals(self, fingerprint: int) -> Set[int]:
        known = {o for (f, o) in self._stats if f == fingerprint}
        known.update(c.ordinal for c in self._candidates if c.fingerprint == fingerprint)
        return known

    def stats(self, fingerprint: int, ordinal: Optional[int] = None) -> Optional[TimingStats]:
        """
        Timings of one candidate.

        ``ordinal`` may be omitted when only one candidate has been seen
        under ``fingerprint``.
        """
        if ordinal is None:
            ordinals = self._ordinals(fingerprint)
            if len(ordinals) > 1:
                raise ConfigurationError(
                    "fingerprint has several candidates, pass an ordinal",
                    context={'ordinals': sorted(ordinals)},
                )
            if not ordinals:
                return None
            (ordinal,) = ordinals
        return self._stats.get((fingerprint, ordinal))

    def _runs(self, key: Key) -> int:
        stats = self._stats.get(key)
        return stats.runs if stats is not None else 0

    def state(self, fingerprint: int) -> TunerState:
        """RESOLVED once every candidate seen under ``fingerprint`` has all its rounds."""
        runs = [self._runs((fingerprint, o)) for o in self._ordinals(fingerprint)]
        if not any(runs):
            return TunerState.UNSEEN
        if all(r >= self.rounds for r in runs):
            return TunerState.RESOLVED
        return TunerState.MEASURING

    # hooks called by the graph executor for tagged nodes

    def start(self, fingerprint: int, ordinal: int = 0):
        key = (fingerprint, ordinal)
        if self._runs(key) >= self.rounds or key in self._timers:
            return
        self._timers[key] = time.perf_counter()

    def stop(self, fingerprint: int, ordinal: int = 0):
        key = (fingerprint, ordinal)
        begin = self._timers.pop(key, None)
        if begin is None:
            return
        stats = self._stats.setdefault(key, TimingStats())
        stats.total += time.perf_counter() - begin
        stats.runs += 1

    def _build(self, candidate: Candidate, tagged: Optional[List["Expr"]] = None) -> "Expr":
        def record(expr: "Expr", is_final: bool = False) -> "Expr":
            if tagged is not None:
                tagged.append(expr)
            return expr.record(self, candidate.fingerprint, is_final, candidate.ordinal)
        return candidate.build(record)

    def _measure(self, candidate: Candidate) -> "Expr":
        tagged: List["Expr"] = []
        expr = self._build(candidate, tagged)
        # tagged nodes run again even when deduplication handed back computed ones
        for e in tagged:
            if not e.kind.is_leaf:
                e.node.value = None
        expr.graph.forward(expr, reuse=True)
        return expr

    def best(self) -> Candidate:
        """Registered candidate with the lowest average time."""
        timed = [c for c in self._candidates if self._runs((c.fingerprint, c.ordinal))]
        if not timed:
            raise ConfigurationError(
                "no candidate has reported a timing",
                context={'candidates': len(self._candidates)},
            )
        return min(timed, key=lambda c: self._stats[(c.fingerprint, c.ordinal)].average)

    def run(self) -> "Expr":
        """
        Execute the selection and return the chosen candidate's result.

        Candidates short of their rounds are built and executed one after
        another; once every candidate is resolved only the winner is built.
        Errors raised by a candidate propagate unchanged.

        Raises:
            ConfigurationError: if no candidate is registered
        """
        if not self._candidates:
            raise ConfigurationError("no algorithm candidates registered")

        built: Dict[Key, "Expr"] = {}
        for candidate in self._candidates:
            key = (candidate.fingerprint, candidate.ordinal)
            if self._runs(key) >= self.rounds:
                continue
            built[key] = self._measure(candidate)
            logger.debug("measured candidate %d: %s", candidate.ordinal, self._stats.get(key))

        winner = self.best()
        if built:
            logger.debug("selected candidate %d of %d", winner.ordinal, len(self._candidates))
        key = (winner.fingerprint, winner.ordinal)
        if key in built:
            return built[key]
        return self._build(winner)
