import pytest

from rvpipesim.branch_predictor import PRED_BUF_SIZE, BranchPredictor, Strategy


def test_always_not_taken():
    predictor = BranchPredictor(Strategy.NT)
    assert not predictor.predict(0x100, None, 1, 2, -8)
    assert not predictor.predict(0x100, None, 1, 2, 8)


def test_always_taken():
    predictor = BranchPredictor(Strategy.AT)
    assert predictor.predict(0x100, None, 1, 2, -8)
    assert predictor.predict(0x100, None, 1, 2, 8)


def test_backward_taken_forward_not_taken():
    predictor = BranchPredictor(Strategy.BTFNT)
    assert predictor.predict(0x100, None, 0, 0, -4)
    assert not predictor.predict(0x100, None, 0, 0, 4)
    assert not predictor.predict(0x100, None, 0, 0, 0)


def test_buffer_starts_weakly_taken():
    predictor = BranchPredictor(Strategy.BPB)
    assert predictor.predict(0x200, None, 0, 0, 16)
    predictor.update(0x200, False)
    assert not predictor.predict(0x200, None, 0, 0, 16)
    predictor.update(0x200, True)
    assert predictor.predict(0x200, None, 0, 0, 16)


def test_buffer_saturates_at_strong_taken():
    predictor = BranchPredictor(Strategy.BPB)
    for _ in range(5):
        predictor.update(0x40, True)
    predictor.update(0x40, False)
    assert predictor.predict(0x40, None, 0, 0, 4)
    predictor.update(0x40, False)
    assert not predictor.predict(0x40, None, 0, 0, 4)


def test_buffer_saturates_at_strong_not_taken():
    predictor = BranchPredictor(Strategy.BPB)
    for _ in range(5):
        predictor.update(0x40, False)
    predictor.update(0x40, True)
    assert not predictor.predict(0x40, None, 0, 0, 4)
    predictor.update(0x40, True)
    assert predictor.predict(0x40, None, 0, 0, 4)


def test_buffer_entries_alias_modulo_size():
    predictor = BranchPredictor(Strategy.BPB)
    predictor.update(0x10, False)
    assert not predictor.predict(0x10 + PRED_BUF_SIZE, None, 0, 0, 4)
    assert predictor.predict(0x14, None, 0, 0, 4)


def test_update_does_not_affect_static_strategies():
    predictor = BranchPredictor(Strategy.AT)
    predictor.update(0x10, False)
    predictor.update(0x10, False)
    assert predictor.predict(0x10, None, 0, 0, 4)


@pytest.mark.parametrize(
    "strategy, name",
    [
        (Strategy.NT, "Always Not Taken"),
        (Strategy.AT, "Always Taken"),
        (Strategy.BTFNT, "Back Taken Forward Not Taken"),
        (Strategy.BPB, "Branch Prediction Buffer"),
    ],
)
def test_strategy_names(strategy, name):
    assert BranchPredictor(strategy).strategy_name() == name


def test_strategy_from_string():
    assert BranchPredictor("BTFNT").strategy is Strategy.BTFNT


def test_strategy_can_be_switched():
    predictor = BranchPredictor()
    assert predictor.strategy is Strategy.NT
    predictor.strategy = Strategy.AT
    assert predictor.predict(0, None, 0, 0, 4)


def test_unknown_strategy_rejected():
    with pytest.raises(ValueError):
        BranchPredictor("SOMETIMES")