from __future__ import annotations

import pytest

from oracle_engine.selector import AgentSelector
from oracle_engine.states import ROSTER, Agent

from conftest import START_MS, FixedRng, make_message


def history_of(*agents: Agent, last_age_s: float = 10.0):
    n = len(agents)
    last_ts = START_MS - int(last_age_s * 1000)
    return [make_message(a, f"msg {i}", last_ts - (n - 1 - i) * 1000, i) for i, a in enumerate(agents)]


def test_empty_history_starts_with_first_agent_and_resets_rotation():
    selector = AgentSelector(rng=FixedRng(0.0), rotation_index=2)

    assert selector.select_next([], START_MS) == ROSTER[0]
    assert selector.rotation_index == 0


@pytest.mark.parametrize("prior_index", range(len(ROSTER)))
def test_loop_guard_forces_next_agent(prior_index):
    looping = ROSTER[prior_index]
    # rng would choose self-response; loop guard must win
    selector = AgentSelector(rng=FixedRng(0.0), rotation_index=prior_index)

    chosen = selector.select_next(history_of(looping, looping, looping), START_MS)

    assert chosen != looping
    assert chosen == ROSTER[(prior_index + 1) % len(ROSTER)]
    assert selector.rotation_index == (prior_index + 1) % len(ROSTER)


def test_loop_guard_needs_three_messages():
    selector = AgentSelector(rng=FixedRng(0.0), rotation_index=1)

    chosen = selector.select_next(history_of(Agent.PREDICTOR, Agent.PREDICTOR), START_MS)

    # two in a row is not a loop; the self-response draw applies
    assert chosen == Agent.PREDICTOR
    assert selector.rotation_index == 1


def test_self_response_keeps_rotation_index():
    selector = AgentSelector(rng=FixedRng(0.1), rotation_index=1)

    chosen = selector.select_next(history_of(Agent.ANALYZER, Agent.PREDICTOR, last_age_s=5), START_MS)

    assert chosen == Agent.PREDICTOR
    assert selector.rotation_index == 1


def test_self_response_draw_above_threshold_rotates():
    selector = AgentSelector(rng=FixedRng(0.15), rotation_index=1)

    chosen = selector.select_next(history_of(Agent.ANALYZER, Agent.PREDICTOR, last_age_s=5), START_MS)

    assert chosen == Agent.QUANTUM_ERASER
    assert selector.rotation_index == 2


@pytest.mark.parametrize("age", [60, 61, 600])
def test_no_self_response_after_window(age):
    selector = AgentSelector(rng=FixedRng(0.0), rotation_index=1)

    chosen = selector.select_next(history_of(Agent.ANALYZER, Agent.PREDICTOR, last_age_s=age), START_MS)

    assert chosen != Agent.PREDICTOR
    assert chosen == Agent.QUANTUM_ERASER


def test_rotation_wraps_around_roster():
    selector = AgentSelector(rng=FixedRng(0.99), rotation_index=3)

    chosen = selector.select_next(history_of(Agent.RETROCAUSAL), START_MS)

    assert chosen == Agent.ANALYZER
    assert selector.rotation_index == 0


def test_restore_rejects_out_of_range_index():
    selector = AgentSelector()
    selector.restore(2)
    assert selector.rotation_index == 2

    selector.restore(7)
    assert selector.rotation_index == 0
