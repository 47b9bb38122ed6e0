"""
Statechart engine and interpreter.

Features:
- Declarative transition table: automatic (guard-only) transitions,
  event handlers, a catch-all handler and entry actions per state
- Validation on construction, including refusal of automatic-transition
  cycles
- Atomic steps: actions run on a working copy of the context; a contract
  violation discards the whole step
- Safety cap on automatic transitions per event
- Interpreter with observers and a bounded history (deque) for debugging
  and introspection

Usage:
    from candymachine import Event, EventType, Interpreter, State, create_candy_machine

    machine = Interpreter(create_candy_machine())
    machine.on_transition(lambda snapshot: print(snapshot.value.name))
    machine.start()
    machine.send(Event.add_coin(100))
    snapshot = machine.send(EventType.HALF_TURN)
    assert snapshot.matches(State.SLOT_CLOSED)
"""

import logging
import random
import time
from collections import deque
from dataclasses import replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from candymachine import actions, guards
from candymachine.helpers import build_state_nodes
from candymachine.types import (
    ActionResult,
    ActionType,
    Context,
    ContractViolation,
    Event,
    EventType,
    GuardType,
    MachineConfig,
    State,
    StateNode,
    StateSnapshot,
    TransitionHistoryEntry,
)

logger = logging.getLogger(__name__)

Observer = Callable[[StateSnapshot], None]


class Statechart:
    """
    A validated machine definition.

    Holds the transition table, initial state and configuration. It keeps
    no runtime state of its own: ``initial_state()`` and ``transition()``
    are pure with respect to the chart, so it can be shared between
    interpreters and used directly in tests.

    Raises:
        ValueError: On an invalid table (see ``_validate``).
    """

    def __init__(
        self,
        nodes: Dict[State, StateNode],
        initial: State,
        config: Optional[MachineConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.nodes = {state: replace(node, on=dict(node.on)) for state, node in nodes.items()}
        self.initial = initial
        self.config = config or MachineConfig()
        self._rng = rng
        self._clock = clock or time.time

        self._validate()

        logger.info(
            f"{self.__class__.__name__} initialised — "
            f"{len(self.nodes)} states, "
            f"{sum(len(n.on) + len(n.automatic) for n in self.nodes.values())} transitions, "
            f"starting at {self.initial.name}"
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        """Validate configuration. Raises ValueError on problems."""
        for state in State:
            if state not in self.nodes:
                raise ValueError(f"State {state} has no transition table entry")

        if not isinstance(self.initial, State):
            raise ValueError(f"Initial state {self.initial} not found in states enum")

        for state, node in self.nodes.items():
            if not isinstance(state, State):
                raise ValueError(f"Table key {state} not in states enum")
            handlers = list(node.on.items())
            if node.catch_all is not None:
                handlers.append(("*", node.catch_all))
            for event_type, handler in handlers:
                if event_type != "*" and not isinstance(event_type, EventType):
                    raise ValueError(f"{state.name}: event {event_type} not in events enum")
                if handler.target is not None and not isinstance(handler.target, State):
                    raise ValueError(f"{state.name}: target {handler.target} not in states enum")
                if node.final and handler.target is not None:
                    raise ValueError(f"Final state {state.name} may not transition to {handler.target}")
                self._validate_actions(state, handler.actions)
                if handler.guard is not None and not isinstance(handler.guard, GuardType):
                    raise ValueError(f"{state.name}: guard {handler.guard} not in guards enum")
            for auto in node.automatic:
                if not isinstance(auto.target, State):
                    raise ValueError(f"{state.name}: automatic target {auto.target} not in states enum")
                if not isinstance(auto.guard, GuardType):
                    raise ValueError(f"{state.name}: automatic guard {auto.guard} not in guards enum")
                if node.final:
                    raise ValueError(f"Final state {state.name} may not have automatic transitions")
                self._validate_actions(state, auto.actions)
            self._validate_actions(state, node.entry)

        cycle = self._find_automatic_cycle()
        if cycle:
            raise ValueError(
                "Automatic transition cycle: " + " → ".join(s.name for s in cycle)
            )

    @staticmethod
    def _validate_actions(state: State, action_list) -> None:
        for action in action_list:
            if not isinstance(action, ActionType):
                raise ValueError(f"{state.name}: action {action} not in actions enum")

    def _find_automatic_cycle(self) -> Optional[List[State]]:
        """Return a cycle in the automatic-transition graph, or None."""
        visiting: List[State] = []
        done = set()

        def visit(state: State) -> Optional[List[State]]:
            if state in visiting:
                return visiting[visiting.index(state):] + [state]
            if state in done:
                return None
            visiting.append(state)
            for auto in self.nodes[state].automatic:
                cycle = visit(auto.target)
                if cycle:
                    return cycle
            visiting.pop()
            done.add(state)
            return None

        for state in self.nodes:
            cycle = visit(state)
            if cycle:
                return cycle
        return None

    # ------------------------------------------------------------------
    # Pure stepping
    # ------------------------------------------------------------------

    def initial_state(self) -> StateSnapshot:
        """
        Return the settled start snapshot.

        Creates a fresh context, runs the initial state's entry actions
        and resolves automatic transitions.

        Raises:
            ContractViolation: If an entry action refuses to run.
        """
        context = Context(last_dispensed_at=self._clock())
        result = self._execute(self.nodes[self.initial].entry, context, None)
        state, result = self._settle(self.initial, result, None)
        if not result.ok:
            result.error.state = self.initial
            raise result.error
        return StateSnapshot(
            value=state,
            context=result.context,
            changed=True,
            done=self.nodes[state].final,
        )

    def transition(
        self,
        state: Union[State, StateSnapshot],
        event: Union[Event, EventType, str],
        context: Optional[Context] = None,
    ) -> StateSnapshot:
        """
        Compute the snapshot reached by sending ``event`` in ``state``.

        Args:
            state: Source state, or a snapshot supplying state and context.
            event: The event to process.
            context: Source context (default: the snapshot's, or a fresh one).

        Returns:
            The settled StateSnapshot. ``changed`` is False when the event
            was ignored or left state and context untouched.

        Raises:
            ContractViolation: If an action refused the event. Nothing is
                applied in that case.
            RuntimeError: If automatic transitions exceed the configured cap.
        """
        event = Event.of(event)
        if isinstance(state, StateSnapshot):
            context = state.context if context is None else context
            state = state.value
        if context is None:
            context = Context(last_dispensed_at=self._clock())

        new_state, result = self._process(state, context, event)
        if not result.ok:
            result.error.state = state
            raise result.error

        return StateSnapshot(
            value=new_state,
            context=result.context,
            event=event,
            changed=new_state != state or result.context != context,
            done=self.nodes[new_state].final,
        )

    def _process(self, state: State, context: Context, event: Event) -> Tuple[State, ActionResult]:
        handler = self.nodes[state].handler_for(event.type)
        if handler is None:
            logger.debug(f"Ignored {event.type.name} in {state.name}")
            return state, ActionResult.success(context)

        if not guards.evaluate(handler.guard, context, event, self.config.valid_coins):
            logger.debug(f"Guard {handler.guard.name} blocked {event.type.name} in {state.name}")
            return state, ActionResult.success(context)

        result = self._execute(handler.actions, context, event)
        if not result.ok:
            return state, result

        if handler.target is not None and handler.target != state:
            state = handler.target
            result = self._execute(self.nodes[state].entry, result.context, event)

        return self._settle(state, result, event)

    def _settle(self, state: State, result: ActionResult, event: Optional[Event]) -> Tuple[State, ActionResult]:
        """Apply automatic transitions until none fires."""
        steps = 0
        while result.ok:
            auto = next(
                (
                    a for a in self.nodes[state].automatic
                    if guards.evaluate(a.guard, result.context, event, self.config.valid_coins)
                ),
                None,
            )
            if auto is None:
                break

            steps += 1
            if steps > self.config.max_automatic_steps:
                raise RuntimeError(
                    f"Safety limit reached ({self.config.max_automatic_steps} automatic "
                    f"transitions) in {state.name}"
                )

            logger.debug(f"Automatic: {state.name} → {auto.target.name} ({auto.guard.name})")
            result = self._execute(auto.actions, result.context, event)
            if result.ok:
                state = auto.target
                result = self._execute(self.nodes[state].entry, result.context, event)
        return state, result

    def _execute(self, action_list, context: Context, event: Optional[Event]) -> ActionResult:
        """Run actions in order, stopping at the first failure."""
        for action in action_list:
            result = actions.apply(action, context, event, rng=self._rng, clock=self._clock)
            if not result.ok:
                return result
            context = result.context
        return ActionResult.success(context)


class InterpreterStatus(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


class Interpreter:
    """
    Runtime for a Statechart.

    Holds the current snapshot, processes one event at a time to
    quiescence and notifies observers after every settled state.
    """

    def __init__(self, statechart: Statechart):
        self.machine = statechart
        self.status = InterpreterStatus.NOT_STARTED
        self._state: Optional[StateSnapshot] = None
        self._observers: List[Observer] = []
        self._history: deque = deque(maxlen=statechart.config.history_size)

    @property
    def state(self) -> Optional[StateSnapshot]:
        """The current snapshot (None before ``start()``)."""
        return self._state

    def on_transition(self, callback: Observer) -> "Interpreter":
        """Register an observer called with every settled snapshot."""
        self._observers.append(callback)
        return self

    def start(self) -> StateSnapshot:
        """Create the initial context, settle the initial state and notify observers."""
        if self.status == InterpreterStatus.RUNNING:
            return self._state

        logger.info("--- Candy machine is open for business ---")
        self._state = self.machine.initial_state()
        self.status = InterpreterStatus.RUNNING
        logger.info(f"Started in {self._state.value.name}")
        self._notify()
        return self._state

    def send(self, event: Union[Event, EventType, str]) -> StateSnapshot:
        """
        Process one event and return the settled snapshot.

        Raises:
            RuntimeError: If the interpreter has not been started.
            ContractViolation: If an action refused the event. State and
                context are left unchanged.
        """
        event = Event.of(event)
        if self.status == InterpreterStatus.NOT_STARTED:
            raise RuntimeError("Interpreter has not been started — call start() first")
        if self.status == InterpreterStatus.STOPPED:
            logger.warning(f"Interpreter stopped — ignoring {event.type.name}")
            return self._state

        source = self._state.value
        try:
            snapshot = self.machine.transition(self._state, event)
        except ContractViolation as e:
            logger.error(f"Contract violation in {source.name}: {e.action.name} refused {e}")
            self._history.append(
                TransitionHistoryEntry(
                    source=source,
                    event_type=event.type,
                    target=source,
                    error_message=f"{e.action.name} refused {e}",
                )
            )
            raise

        if snapshot.value != source:
            logger.info(f"Transition: {source.name} → {snapshot.value.name} via {event.type.name}")
        self._history.append(
            TransitionHistoryEntry(source=source, event_type=event.type, target=snapshot.value)
        )
        self._state = snapshot
        self._notify()
        return snapshot

    def stop(self) -> None:
        """Stop accepting events. Context is kept as it is."""
        if self.status == InterpreterStatus.RUNNING:
            logger.info(f"Stopped in {self._state.value.name}")
        self.status = InterpreterStatus.STOPPED

    def _notify(self) -> None:
        for observer in list(self._observers):
            observer(self._state)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_history(self, last_n: Optional[int] = None) -> List[TransitionHistoryEntry]:
        """
        Return processed-event history.

        Args:
            last_n: If provided, return only the last N entries.
        """
        history = list(self._history)
        return history[-last_n:] if last_n is not None else history


def create_candy_machine(
    config: Optional[MachineConfig] = None,
    rng: Optional[random.Random] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Statechart:
    """Build the candy machine statechart."""
    nodes = build_state_nodes({
        State.NO_COIN: {
            "always": [
                (GuardType.HAS_VALID_COIN, State.VALID_COIN),
                (GuardType.HAS_INVALID_COIN, State.INVALID_COIN),
            ],
            "on": {
                EventType.HALF_TURN: State.SLOT_CLOSED,
                EventType.ADD_COIN: {"actions": ActionType.RECORD_COIN},
                EventType.SHUTDOWN: State.SHUTDOWN,
                EventType.TAMPER: {"actions": ActionType.INVALID_ACTION},
            },
        },
        State.INVALID_COIN: {
            "on": {
                EventType.REMOVE_COIN: {"target": State.NO_COIN, "actions": ActionType.CLEAR_COIN},
                EventType.TAMPER: {"actions": ActionType.INVALID_ACTION},
            },
        },
        State.VALID_COIN: {
            "on": {
                EventType.HALF_TURN: {
                    "target": State.SLOT_CLOSED,
                    "actions": [
                        ActionType.RECORD_SALE,
                        ActionType.DISPENSE_CANDY,
                        ActionType.CLEAR_COIN,
                    ],
                },
                EventType.REMOVE_COIN: {"target": State.NO_COIN, "actions": ActionType.CLEAR_COIN},
                EventType.TAMPER: {"actions": ActionType.INVALID_ACTION},
            },
        },
        State.SLOT_CLOSED: {
            "on": {
                EventType.HALF_TURN: State.NO_COIN,
                EventType.TAMPER: {"actions": ActionType.INVALID_ACTION},
            },
        },
        State.SHUTDOWN: {
            "final": True,
            "entry": [ActionType.LOG_SALES, ActionType.SHUT_DOWN],
            "any": {"actions": ActionType.INVALID_ACTION},
        },
    })
    return Statechart(nodes, State.NO_COIN, config=config, rng=rng, clock=clock)
