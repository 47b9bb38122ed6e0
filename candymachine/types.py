"""
Candy machine data types and structures.

Defines the core types used by the statechart engine:
- State / EventType / ActionType / GuardType: Closed enumerations
- Event: Immutable input sent to the interpreter
- Context: Business data carried across every state
- Transition / AutomaticTransition / StateNode: The transition table
- StateSnapshot: Settled state handed to observers
- TransitionHistoryEntry: Tracks processed events
- MachineConfig: Tunable engine settings
- ActionResult / ContractViolation: Typed action outcomes
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union


VALID_COINS: Tuple[int, ...] = (50, 100, 200)


class State(Enum):
    """States the candy machine can be in."""

    NO_COIN = "NO_COIN"            # Coin slot is open
    INVALID_COIN = "INVALID_COIN"  # Invalid coin is in the slot
    VALID_COIN = "VALID_COIN"      # Valid coin is in the slot
    SLOT_CLOSED = "SLOT_CLOSED"    # Slot closed, candy dispensed if paid
    SHUTDOWN = "SHUTDOWN"          # Turned off for the day


class EventType(Enum):
    """Kinds of event that can be sent to the machine."""

    HALF_TURN = "HALF_TURN"
    ADD_COIN = "ADD_COIN"
    REMOVE_COIN = "REMOVE_COIN"
    SHUTDOWN = "SHUTDOWN"
    TAMPER = "TAMPER"


class ActionType(Enum):
    """Operations performed on a transition or on state entry."""

    RECORD_COIN = "RECORD_COIN"
    CLEAR_COIN = "CLEAR_COIN"
    RECORD_SALE = "RECORD_SALE"
    DISPENSE_CANDY = "DISPENSE_CANDY"
    LOG_SALES = "LOG_SALES"
    SHUT_DOWN = "SHUT_DOWN"
    INVALID_ACTION = "INVALID_ACTION"  # Always fails


class GuardType(Enum):
    """Predicates that allow or prevent a transition."""

    HAS_VALID_COIN = "HAS_VALID_COIN"
    HAS_INVALID_COIN = "HAS_INVALID_COIN"


class CandyColour(Enum):
    RED = "red"
    GREEN = "green"
    BLUE = "blue"


class CandyQuality(Enum):
    GREAT = "tasty"
    REGULAR = "basic"
    DISGUSTING = "disgusting"


class ContractViolation(Exception):
    """
    Raised when an action is invoked with an event it cannot accept.

    Covers the INVALID_ACTION sentinel (tampering, anything after
    shutdown) and RECORD_COIN receiving a non ADD_COIN event.

    Attributes:
        event_type: The offending event kind.
        action: The action that refused the event.
        state: The state the machine was in, once known.
    """

    def __init__(
        self,
        event_type: Optional[EventType],
        action: ActionType,
        state: Optional[State] = None,
    ):
        self.event_type = event_type
        self.action = action
        self.state = state
        kind = event_type.value if event_type is not None else "<no event>"
        super().__init__(kind)


@dataclass(frozen=True)
class Event:
    """
    A single input to the interpreter.

    Only ADD_COIN carries a payload: the coin value in integer cents.

    Raises:
        ValueError: If the payload does not match the event kind.
    """

    type: EventType
    value: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.type, EventType):
            raise ValueError(f"Event type must be an EventType, got {self.type!r}")
        if self.type == EventType.ADD_COIN:
            if not isinstance(self.value, int) or isinstance(self.value, bool):
                raise ValueError(f"ADD_COIN requires an integer value in cents, got {self.value!r}")
            if self.value < 0:
                raise ValueError(f"Coin value must be >= 0, got {self.value}")
        elif self.value is not None:
            raise ValueError(f"{self.type.name} does not carry a value, got {self.value!r}")

    @classmethod
    def add_coin(cls, value: int) -> "Event":
        return cls(EventType.ADD_COIN, value)

    @classmethod
    def of(cls, event: Union["Event", EventType, str]) -> "Event":
        """Coerce an Event, an EventType or an event name into an Event."""
        if isinstance(event, Event):
            return event
        if isinstance(event, str):
            try:
                event = EventType[event]
            except KeyError:
                raise ValueError(f"Unknown event {event!r}") from None
        return cls(event)


@dataclass(frozen=True)
class Context:
    """
    Data stored by the machine regardless of current state.

    Frozen: actions return a replaced copy, so snapshots handed to
    observers never change underneath them.
    """

    current_coin_value: int = 0
    total_value: int = 0
    num_sales: int = 0
    last_dispensed_at: float = field(default_factory=time.time)

    def __post_init__(self):
        for name in ("current_coin_value", "total_value", "num_sales"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    def to_dict(self) -> dict:
        return {
            "current_coin_value": self.current_coin_value,
            "total_value": self.total_value,
            "num_sales": self.num_sales,
            "last_dispensed_at": self.last_dispensed_at,
        }


@dataclass(frozen=True)
class Transition:
    """
    An event-triggered transition.

    Args:
        target: State to move to. None means stay (actions still fire).
        actions: Actions executed in order before the state changes.
        guard: Optional guard; the transition is ignored when it is False.
    """

    target: Optional[State] = None
    actions: Tuple[ActionType, ...] = ()
    guard: Optional[GuardType] = None


@dataclass(frozen=True)
class AutomaticTransition:
    """A guarded transition with no triggering event."""

    guard: GuardType
    target: State
    actions: Tuple[ActionType, ...] = ()


@dataclass(frozen=True)
class StateNode:
    """
    Transition table entry for a single state.

    Args:
        automatic: Automatic transitions, evaluated in declared order.
        on: Event kind → Transition.
        catch_all: Handler for any event kind missing from ``on``.
        entry: Actions executed every time the state is entered.
        final: Terminal state; may not declare outgoing targets.
    """

    automatic: Tuple[AutomaticTransition, ...] = ()
    on: dict = field(default_factory=dict)
    catch_all: Optional[Transition] = None
    entry: Tuple[ActionType, ...] = ()
    final: bool = False

    def handler_for(self, event_type: EventType) -> Optional[Transition]:
        """Return the handler for an event kind, falling back to the catch-all."""
        return self.on.get(event_type, self.catch_all)


@dataclass(frozen=True)
class StateSnapshot:
    """
    A settled machine state.

    Args:
        value: The current state.
        context: The context at the time the state settled.
        event: The event that produced this snapshot (None at start).
        changed: True if the state or context differs from before the event.
        done: True once a final state has been reached.
    """

    value: State
    context: Context
    event: Optional[Event] = None
    changed: bool = False
    done: bool = False

    def matches(self, state: Union[State, str]) -> bool:
        """True if the snapshot is in ``state`` (a State or its name)."""
        if isinstance(state, str):
            return self.value.value == state
        return self.value == state


@dataclass
class TransitionHistoryEntry:
    """
    Records the processing of a single event.

    Tracks the source and target state and any contract violation for
    debugging and analysis.
    """

    source: State
    event_type: Optional[EventType]
    target: State
    timestamp: float = field(default_factory=time.time)
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        """True if the event was processed without a contract violation."""
        return self.error_message is None

    def to_dict(self) -> dict:
        """Serialise to a plain dictionary."""
        return {
            "source": self.source.name,
            "event": self.event_type.name if self.event_type is not None else None,
            "target": self.target.name,
            "timestamp": self.timestamp,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class ActionResult:
    """
    Outcome of applying a single action.

    Exactly one of ``context`` and ``error`` is set.
    """

    context: Optional[Context] = None
    error: Optional[ContractViolation] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, context: Context) -> "ActionResult":
        return cls(context=context)

    @classmethod
    def failure(cls, error: ContractViolation) -> "ActionResult":
        return cls(error=error)


@dataclass(frozen=True)
class MachineConfig:
    """
    Engine and business settings.

    Args:
        valid_coins: Accepted coin denominations in cents.
        max_automatic_steps: Cap on automatic transitions per event.
        history_size: Number of history entries kept by the interpreter.

    Raises:
        ValueError: On an empty or non-positive denomination set, or a
            non-positive step cap or history size.
    """

    valid_coins: Tuple[int, ...] = VALID_COINS
    max_automatic_steps: int = 100
    history_size: int = 100

    def __post_init__(self):
        if not self.valid_coins:
            raise ValueError("valid_coins must not be empty")
        if any(coin <= 0 for coin in self.valid_coins):
            raise ValueError(f"valid_coins must all be > 0, got {self.valid_coins}")
        if self.max_automatic_steps < 1:
            raise ValueError(f"max_automatic_steps must be >= 1, got {self.max_automatic_steps}")
        if self.history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {self.history_size}")
