"""
python-candymachine
~~~~~~~~~~~~~~~~~~~

A coin-operated candy machine modelled as a statechart: guarded
automatic transitions, ordered actions and an immutable context.

Quick start:
    from candymachine import Interpreter, Event, EventType, create_candy_machine

    machine = Interpreter(create_candy_machine())
    machine.start()
    machine.send(Event.add_coin(100))
    machine.send(EventType.HALF_TURN)
"""

from candymachine.machine import Interpreter, InterpreterStatus, Statechart, create_candy_machine
from candymachine.types import (
    VALID_COINS,
    ActionResult,
    ActionType,
    AutomaticTransition,
    CandyColour,
    CandyQuality,
    Context,
    ContractViolation,
    Event,
    EventType,
    GuardType,
    MachineConfig,
    State,
    StateNode,
    StateSnapshot,
    Transition,
    TransitionHistoryEntry,
)
from candymachine.helpers import (
    build_state_nodes,
    create_transition,
    dollars_to_cents,
    format_cents,
    log_action_execution,
)

__all__ = [
    "Interpreter",
    "InterpreterStatus",
    "Statechart",
    "create_candy_machine",
    "VALID_COINS",
    "ActionResult",
    "ActionType",
    "AutomaticTransition",
    "CandyColour",
    "CandyQuality",
    "Context",
    "ContractViolation",
    "Event",
    "EventType",
    "GuardType",
    "MachineConfig",
    "State",
    "StateNode",
    "StateSnapshot",
    "Transition",
    "TransitionHistoryEntry",
    "build_state_nodes",
    "create_transition",
    "dollars_to_cents",
    "format_cents",
    "log_action_execution",
]
