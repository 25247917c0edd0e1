"""Branch prediction strategies for the pipeline simulator."""

from __future__ import annotations

import enum

PRED_BUF_SIZE = 4096


class Strategy(enum.Enum):
    """Available branch prediction strategies."""

    AT = "AT"  # Always Taken
    NT = "NT"  # Always Not Taken
    BTFNT = "BTFNT"  # Backward Taken, Forward Not Taken
    BPB = "BPB"  # Branch Prediction Buffer with 2-bit history


_STRATEGY_NAMES = {
    Strategy.NT: "Always Not Taken",
    Strategy.AT: "Always Taken",
    Strategy.BTFNT: "Back Taken Forward Not Taken",
    Strategy.BPB: "Branch Prediction Buffer",
}


class _State(enum.IntEnum):
    STRONG_TAKEN = 0
    WEAK_TAKEN = 1
    WEAK_NOT_TAKEN = 2
    STRONG_NOT_TAKEN = 3


_ON_TAKEN = {
    _State.STRONG_NOT_TAKEN: _State.WEAK_NOT_TAKEN,
    _State.WEAK_NOT_TAKEN: _State.WEAK_TAKEN,
    _State.WEAK_TAKEN: _State.STRONG_TAKEN,
    _State.STRONG_TAKEN: _State.STRONG_TAKEN,
}

_ON_NOT_TAKEN = {
    _State.STRONG_TAKEN: _State.WEAK_TAKEN,
    _State.WEAK_TAKEN: _State.WEAK_NOT_TAKEN,
    _State.WEAK_NOT_TAKEN: _State.STRONG_NOT_TAKEN,
    _State.STRONG_NOT_TAKEN: _State.STRONG_NOT_TAKEN,
}


class BranchPredictor:
    """Predicts conditional branches using one of several strategies."""

    def __init__(self, strategy: Strategy | str = Strategy.NT) -> None:
        self.strategy = Strategy(strategy)
        self._buffer = [_State.WEAK_TAKEN] * PRED_BUF_SIZE

    def predict(self, pc: int, inst_type: object, op1: int, op2: int, offset: int) -> bool:
        """Return True when the branch at ``pc`` is predicted taken."""
        strategy = Strategy(self.strategy)
        if strategy is Strategy.NT:
            return False
        if strategy is Strategy.AT:
            return True
        if strategy is Strategy.BTFNT:
            return offset < 0
        state = self._buffer[pc % PRED_BUF_SIZE]
        return state in (_State.STRONG_TAKEN, _State.WEAK_TAKEN)

    def update(self, pc: int, branch: bool) -> None:
        """Record the real outcome of the branch at ``pc`` in the history buffer."""
        index = pc % PRED_BUF_SIZE
        table = _ON_TAKEN if branch else _ON_NOT_TAKEN
        self._buffer[index] = table[self._buffer[index]]

    def strategy_name(self) -> str:
        """Human-readable name of the active strategy."""
        return _STRATEGY_NAMES[Strategy(self.strategy)]