"""Tests for candymachine.machine — the statechart engine and interpreter."""

import logging
import random

import pytest

from candymachine.helpers import build_state_nodes
from candymachine.machine import Interpreter, InterpreterStatus, Statechart, create_candy_machine
from candymachine.types import (
    ActionType,
    Context,
    ContractViolation,
    Event,
    EventType,
    GuardType,
    MachineConfig,
    State,
    StateNode,
    Transition,
)


# ── Helpers ────────────────────────────────────────────────────────────────────

NOW = 1000.0
NON_TERMINAL = [s for s in State if s != State.SHUTDOWN]


def _chart(**kwargs) -> Statechart:
    return create_candy_machine(rng=random.Random(0), clock=lambda: NOW, **kwargs)


def _nodes(configs) -> dict:
    """Build a table where every state not in ``configs`` is empty."""
    full = {s: {} for s in State}
    full.update(configs)
    return build_state_nodes(full)


def _ctx(**kwargs) -> Context:
    kwargs.setdefault("last_dispensed_at", NOW)
    return Context(**kwargs)


@pytest.fixture
def chart():
    return _chart()


@pytest.fixture
def machine(chart):
    m = Interpreter(chart)
    m.start()
    return m


# ── Validation ─────────────────────────────────────────────────────────────────

class TestValidation:
    def test_candy_machine_is_valid(self, chart):
        assert chart.initial == State.NO_COIN
        assert set(chart.nodes) == set(State)

    def test_table_copied_on_construction(self):
        nodes = _nodes({State.SLOT_CLOSED: {"on": {EventType.HALF_TURN: State.NO_COIN}}})
        chart = Statechart(nodes, State.NO_COIN, clock=lambda: NOW)
        del nodes[State.SHUTDOWN]
        nodes[State.SLOT_CLOSED].on[EventType.HALF_TURN] = Transition(target="NO_COIN")
        assert State.SHUTDOWN in chart.nodes
        assert chart.transition(State.SLOT_CLOSED, EventType.HALF_TURN, _ctx()).matches(State.NO_COIN)

    def test_missing_state_raises(self):
        nodes = _nodes({})
        del nodes[State.SLOT_CLOSED]
        with pytest.raises(ValueError, match="SLOT_CLOSED"):
            Statechart(nodes, State.NO_COIN)

    def test_invalid_initial_state_raises(self):
        with pytest.raises(ValueError, match="Initial state"):
            Statechart(_nodes({}), "NO_COIN")

    def test_invalid_target_raises(self):
        nodes = _nodes({})
        nodes[State.NO_COIN] = StateNode(on={EventType.HALF_TURN: Transition(target="SLOT_CLOSED")})
        with pytest.raises(ValueError, match="target"):
            Statechart(nodes, State.NO_COIN)

    def test_invalid_action_type_raises(self):
        nodes = _nodes({})
        nodes[State.NO_COIN] = StateNode(entry=("LOG_SALES",))
        with pytest.raises(ValueError, match="action"):
            Statechart(nodes, State.NO_COIN)

    def test_invalid_guard_raises(self):
        nodes = _nodes({})
        nodes[State.NO_COIN] = StateNode(
            on={EventType.HALF_TURN: Transition(target=State.SLOT_CLOSED, guard="always")}
        )
        with pytest.raises(ValueError, match="guard"):
            Statechart(nodes, State.NO_COIN)

    def test_final_state_with_target_raises(self):
        nodes = _nodes({State.SHUTDOWN: {"final": True, "on": {EventType.HALF_TURN: State.NO_COIN}}})
        with pytest.raises(ValueError, match="Final state"):
            Statechart(nodes, State.NO_COIN)

    def test_automatic_cycle_refused(self):
        nodes = _nodes({
            State.NO_COIN: {"always": [(GuardType.HAS_VALID_COIN, State.VALID_COIN)]},
            State.VALID_COIN: {"always": [(GuardType.HAS_VALID_COIN, State.NO_COIN)]},
        })
        with pytest.raises(ValueError, match="cycle"):
            Statechart(nodes, State.NO_COIN)

    def test_automatic_self_loop_refused(self):
        nodes = _nodes({State.NO_COIN: {"always": [(GuardType.HAS_VALID_COIN, State.NO_COIN)]}})
        with pytest.raises(ValueError, match="NO_COIN → NO_COIN"):
            Statechart(nodes, State.NO_COIN)


# ── Pure transitions ───────────────────────────────────────────────────────────

class TestTransition:
    def test_half_turn_without_coin(self, chart):
        snapshot = chart.transition(State.NO_COIN, Event(EventType.HALF_TURN))
        assert snapshot.matches(State.SLOT_CLOSED)
        assert snapshot.context.current_coin_value == 0
        assert snapshot.context.total_value == 0
        assert snapshot.context.num_sales == 0

    @pytest.mark.parametrize("coin", [50, 100, 200])
    def test_valid_coin_settles_in_valid_coin(self, chart, coin):
        snapshot = chart.transition(State.NO_COIN, Event.add_coin(coin), _ctx())
        assert snapshot.matches(State.VALID_COIN)
        assert snapshot.context.current_coin_value == coin

    @pytest.mark.parametrize("coin", [1, 5, 20, 75, 150, 1000])
    def test_invalid_coin_settles_in_invalid_coin(self, chart, coin):
        snapshot = chart.transition(State.NO_COIN, Event.add_coin(coin), _ctx())
        assert snapshot.matches(State.INVALID_COIN)
        assert snapshot.context.current_coin_value == coin

    def test_zero_coin_stays_in_no_coin(self, chart):
        ctx = _ctx()
        snapshot = chart.transition(State.NO_COIN, Event.add_coin(0), ctx)
        assert snapshot.matches(State.NO_COIN)
        assert snapshot.context == ctx
        assert snapshot.changed is False

    @pytest.mark.parametrize("state, coin", [(State.VALID_COIN, 100), (State.INVALID_COIN, 75)])
    def test_remove_coin_clears(self, chart, state, coin):
        snapshot = chart.transition(state, EventType.REMOVE_COIN, _ctx(current_coin_value=coin))
        assert snapshot.matches(State.NO_COIN)
        assert snapshot.context.current_coin_value == 0

    def test_half_turn_with_valid_coin_records_sale(self, chart):
        ctx = _ctx(current_coin_value=200, total_value=300, num_sales=2)
        snapshot = chart.transition(State.VALID_COIN, EventType.HALF_TURN, ctx)
        assert snapshot.matches(State.SLOT_CLOSED)
        assert snapshot.context.total_value == 500
        assert snapshot.context.num_sales == 3
        assert snapshot.context.current_coin_value == 0
        assert snapshot.context.last_dispensed_at == NOW

    def test_half_turn_from_no_coin_keeps_totals(self, chart):
        ctx = _ctx(total_value=300, num_sales=2)
        snapshot = chart.transition(State.NO_COIN, EventType.HALF_TURN, ctx)
        assert snapshot.matches(State.SLOT_CLOSED)
        assert snapshot.context == ctx

    def test_slot_closed_reopens(self, chart):
        snapshot = chart.transition(State.SLOT_CLOSED, EventType.HALF_TURN, _ctx())
        assert snapshot.matches(State.NO_COIN)

    def test_unhandled_event_is_noop(self, chart):
        ctx = _ctx(current_coin_value=100)
        snapshot = chart.transition(State.VALID_COIN, Event.add_coin(50), ctx)
        assert snapshot.matches(State.VALID_COIN)
        assert snapshot.context is ctx
        assert snapshot.changed is False

    @pytest.mark.parametrize("state", NON_TERMINAL)
    def test_tamper_is_contract_violation(self, chart, state):
        with pytest.raises(ContractViolation) as exc:
            chart.transition(state, EventType.TAMPER, _ctx())
        assert exc.value.event_type == EventType.TAMPER
        assert exc.value.action == ActionType.INVALID_ACTION
        assert exc.value.state == state

    def test_shutdown_runs_entry_actions(self, chart, caplog):
        ctx = _ctx(total_value=150, num_sales=2)
        with caplog.at_level(logging.INFO, logger="candymachine.actions"):
            snapshot = chart.transition(State.NO_COIN, EventType.SHUTDOWN, ctx)
        assert snapshot.matches(State.SHUTDOWN)
        assert snapshot.done is True
        assert "$1.50 earned from 2 sales" in caplog.text
        assert "shutting down" in caplog.text
        assert caplog.text.index("Day's sales") < caplog.text.index("shutting down")

    @pytest.mark.parametrize("event", [Event(e) for e in EventType if e != EventType.ADD_COIN] + [Event.add_coin(100)])
    def test_any_event_after_shutdown_fails(self, chart, event):
        with pytest.raises(ContractViolation) as exc:
            chart.transition(State.SHUTDOWN, event, _ctx())
        assert exc.value.event_type == event.type

    def test_accepts_snapshot_as_source(self, chart):
        start = chart.initial_state()
        snapshot = chart.transition(start, Event.add_coin(100))
        assert snapshot.matches(State.VALID_COIN)

    def test_failing_step_discards_earlier_actions(self):
        nodes = _nodes({
            State.NO_COIN: {
                "on": {EventType.ADD_COIN: {"actions": [ActionType.RECORD_COIN, ActionType.INVALID_ACTION]}},
            },
        })
        chart = Statechart(nodes, State.NO_COIN, clock=lambda: NOW)
        with pytest.raises(ContractViolation):
            chart.transition(State.NO_COIN, Event.add_coin(100), _ctx())

    def test_guarded_handler_blocked(self):
        nodes = _nodes({
            State.NO_COIN: {
                "on": {EventType.HALF_TURN: {"target": State.SLOT_CLOSED, "guard": GuardType.HAS_VALID_COIN}},
            },
        })
        chart = Statechart(nodes, State.NO_COIN, clock=lambda: NOW)
        assert chart.transition(State.NO_COIN, EventType.HALF_TURN, _ctx()).matches(State.NO_COIN)
        assert chart.transition(
            State.NO_COIN, EventType.HALF_TURN, _ctx(current_coin_value=100)
        ).matches(State.SLOT_CLOSED)

    def test_automatic_chain_settles(self):
        nodes = _nodes({
            State.NO_COIN: {"on": {EventType.ADD_COIN: {"actions": ActionType.RECORD_COIN}},
                            "always": [(GuardType.HAS_VALID_COIN, State.VALID_COIN)]},
            State.VALID_COIN: {"always": [(GuardType.HAS_VALID_COIN, State.SLOT_CLOSED)]},
        })
        chart = Statechart(nodes, State.NO_COIN, clock=lambda: NOW)
        assert chart.transition(State.NO_COIN, Event.add_coin(50), _ctx()).matches(State.SLOT_CLOSED)

    def test_automatic_step_cap(self):
        nodes = _nodes({
            State.NO_COIN: {"on": {EventType.ADD_COIN: {"actions": ActionType.RECORD_COIN}},
                            "always": [(GuardType.HAS_VALID_COIN, State.VALID_COIN)]},
            State.VALID_COIN: {"always": [(GuardType.HAS_VALID_COIN, State.SLOT_CLOSED)]},
        })
        chart = Statechart(nodes, State.NO_COIN, config=MachineConfig(max_automatic_steps=1), clock=lambda: NOW)
        with pytest.raises(RuntimeError, match="Safety limit"):
            chart.transition(State.NO_COIN, Event.add_coin(50), _ctx())

    def test_custom_denominations(self):
        chart = _chart(config=MachineConfig(valid_coins=(25,)))
        assert chart.transition(State.NO_COIN, Event.add_coin(25), _ctx()).matches(State.VALID_COIN)
        assert chart.transition(State.NO_COIN, Event.add_coin(100), _ctx()).matches(State.INVALID_COIN)


# ── Interpreter ────────────────────────────────────────────────────────────────

class TestInterpreter:
    def test_start_settles_in_no_coin(self, chart):
        m = Interpreter(chart)
        snapshot = m.start()
        assert snapshot.matches(State.NO_COIN)
        assert snapshot.context == Context(last_dispensed_at=NOW)
        assert m.status == InterpreterStatus.RUNNING

    def test_double_start_is_safe(self, machine):
        first = machine.state
        assert machine.start() is first

    def test_send_before_start_raises(self, chart):
        with pytest.raises(RuntimeError, match="start"):
            Interpreter(chart).send(EventType.HALF_TURN)

    def test_sale_scenario(self, machine):
        machine.send(Event.add_coin(100))
        snapshot = machine.send(EventType.HALF_TURN)
        assert snapshot.matches(State.SLOT_CLOSED)
        assert snapshot.context.total_value == 100
        assert snapshot.context.num_sales == 1
        assert snapshot.context.current_coin_value == 0

    def test_half_turn_without_coin(self, machine):
        snapshot = machine.send(EventType.HALF_TURN)
        assert snapshot.matches(State.SLOT_CLOSED)
        assert snapshot.context.current_coin_value == 0
        assert snapshot.context.total_value == 0
        assert snapshot.context.num_sales == 0

    def test_full_day(self, machine):
        machine.send(Event.add_coin(75))
        assert machine.state.matches(State.INVALID_COIN)
        machine.send(EventType.REMOVE_COIN)
        machine.send(Event.add_coin(200))
        machine.send(EventType.HALF_TURN)
        machine.send(EventType.HALF_TURN)
        machine.send(Event.add_coin(50))
        machine.send(EventType.HALF_TURN)
        machine.send(EventType.HALF_TURN)
        snapshot = machine.send(EventType.SHUTDOWN)
        assert snapshot.matches(State.SHUTDOWN)
        assert snapshot.context.total_value == 250
        assert snapshot.context.num_sales == 2

    @pytest.mark.parametrize("coin", [None, 100, 75])
    def test_tamper_leaves_state_and_context(self, machine, coin):
        if coin is not None:
            machine.send(Event.add_coin(coin))
        before = machine.state
        with pytest.raises(ContractViolation):
            machine.send(EventType.TAMPER)
        assert machine.state is before

    def test_tamper_when_slot_closed(self, machine):
        machine.send(EventType.HALF_TURN)
        with pytest.raises(ContractViolation):
            machine.send(EventType.TAMPER)
        assert machine.state.matches(State.SLOT_CLOSED)

    def test_events_after_shutdown_fail(self, machine):
        machine.send(EventType.SHUTDOWN)
        for event in (EventType.HALF_TURN, EventType.SHUTDOWN, Event.add_coin(100)):
            with pytest.raises(ContractViolation):
                machine.send(event)
            assert machine.state.matches(State.SHUTDOWN)

    def test_failing_step_leaves_context(self):
        nodes = _nodes({
            State.NO_COIN: {
                "on": {EventType.ADD_COIN: {"actions": [ActionType.RECORD_COIN, ActionType.INVALID_ACTION]}},
            },
        })
        m = Interpreter(Statechart(nodes, State.NO_COIN, clock=lambda: NOW))
        m.start()
        with pytest.raises(ContractViolation):
            m.send(Event.add_coin(100))
        assert m.state.context.current_coin_value == 0

    def test_observers_notified_on_start_and_send(self, chart):
        seen = []
        m = Interpreter(chart).on_transition(lambda s: seen.append((s.value, s.context.current_coin_value)))
        m.start()
        m.send(Event.add_coin(100))
        m.send(EventType.REMOVE_COIN)
        assert seen == [
            (State.NO_COIN, 0),
            (State.VALID_COIN, 100),
            (State.NO_COIN, 0),
        ]

    def test_observers_not_notified_on_failure(self, chart):
        seen = []
        m = Interpreter(chart).on_transition(seen.append)
        m.start()
        with pytest.raises(ContractViolation):
            m.send(EventType.TAMPER)
        assert len(seen) == 1

    def test_snapshots_are_not_mutated(self, machine):
        first = machine.send(Event.add_coin(100))
        machine.send(EventType.HALF_TURN)
        assert first.context.current_coin_value == 100
        assert first.context.num_sales == 0

    def test_stop_ignores_events(self, machine, caplog):
        machine.stop()
        with caplog.at_level(logging.WARNING, logger="candymachine.machine"):
            snapshot = machine.send(EventType.HALF_TURN)
        assert snapshot.matches(State.NO_COIN)
        assert machine.status == InterpreterStatus.STOPPED
        assert "ignoring HALF_TURN" in caplog.text

    def test_history_recorded(self, machine):
        machine.send(EventType.HALF_TURN)
        with pytest.raises(ContractViolation):
            machine.send(EventType.TAMPER)
        history = machine.get_history()
        assert [(e.source, e.event_type, e.target) for e in history] == [
            (State.NO_COIN, EventType.HALF_TURN, State.SLOT_CLOSED),
            (State.SLOT_CLOSED, EventType.TAMPER, State.SLOT_CLOSED),
        ]
        assert history[0].succeeded
        assert not history[1].succeeded

    def test_history_last_n(self, machine):
        machine.send(EventType.HALF_TURN)
        machine.send(EventType.HALF_TURN)
        assert len(machine.get_history(last_n=1)) == 1

    def test_history_is_bounded(self):
        m = Interpreter(_chart(config=MachineConfig(history_size=3)))
        m.start()
        for _ in range(5):
            m.send(EventType.HALF_TURN)
        assert len(m.get_history()) == 3
