"""
Helper utilities for building statecharts.

Provides convenience functions and decorators that reduce boilerplate
when defining transition tables and actions.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import wraps
from typing import Dict, Iterable, Optional, Union

from candymachine.types import (
    ActionResult,
    ActionType,
    AutomaticTransition,
    EventType,
    GuardType,
    State,
    StateNode,
    Transition,
)

logger = logging.getLogger(__name__)


def _actions(actions: Union[None, ActionType, Iterable[ActionType]]) -> tuple:
    if actions is None:
        return ()
    if isinstance(actions, ActionType):
        return (actions,)
    return tuple(actions)


def create_transition(
    target: Optional[State] = None,
    actions: Union[None, ActionType, Iterable[ActionType]] = None,
    guard: Optional[GuardType] = None,
) -> Transition:
    """
    Create a Transition, accepting a single action or a list of them.

    Example:
        create_transition(State.NO_COIN, ActionType.CLEAR_COIN)
    """
    return Transition(target=target, actions=_actions(actions), guard=guard)


def build_state_nodes(configs: Dict[State, dict]) -> Dict[State, StateNode]:
    """
    Build a transition table from a compact configuration.

    Each state maps to a plain dict instead of nested StateNode(),
    Transition() and AutomaticTransition() calls.

    Args:
        configs: Mapping of state → config dict. Supported keys:
            - ``always`` (list, optional): ``(guard, target)`` pairs,
              evaluated in order.
            - ``on`` (dict, optional): event kind → target State, a dict
              with ``target`` / ``actions`` / ``guard`` keys, or a
              Transition.
            - ``any`` (optional): catch-all handler, same forms as ``on``.
            - ``entry`` (optional): action or list of actions.
            - ``final`` (bool, optional, default False).

    Returns:
        Dict mapping each state to a StateNode.

    Raises:
        ValueError: If a config dict contains an unknown key.

    Example:
        nodes = build_state_nodes({
            State.SLOT_CLOSED: {"on": {EventType.HALF_TURN: State.NO_COIN}},
            State.SHUTDOWN: {"final": True, "entry": [ActionType.LOG_SALES]},
        })
    """
    allowed = {"always", "on", "any", "entry", "final"}
    result = {}
    for state, config in configs.items():
        unknown = set(config) - allowed
        if unknown:
            raise ValueError(f"State {state} config has unknown keys: {sorted(unknown)}")
        result[state] = StateNode(
            automatic=tuple(
                AutomaticTransition(guard=guard, target=target)
                for guard, target in config.get("always", [])
            ),
            on={
                EventType(event_type): _to_transition(handler)
                for event_type, handler in config.get("on", {}).items()
            },
            catch_all=_to_transition(config["any"]) if "any" in config else None,
            entry=_actions(config.get("entry")),
            final=config.get("final", False),
        )
    return result


def _to_transition(handler) -> Transition:
    if isinstance(handler, Transition):
        return handler
    if isinstance(handler, State):
        return Transition(target=handler)
    if isinstance(handler, dict):
        return create_transition(
            target=handler.get("target"),
            actions=handler.get("actions"),
            guard=handler.get("guard"),
        )
    raise ValueError(f"Cannot build a transition from {handler!r}")


def format_cents(cents: int) -> str:
    """Format an amount of cents as dollars, e.g. 150 → ``$1.50``."""
    return f"${Decimal(cents) / 100:.2f}"


def dollars_to_cents(text: str) -> Optional[int]:
    """
    Convert a dollar amount typed by a user into integer cents.

    Returns None if the text is not a finite, non-negative number.
    Fractions of a cent are rounded half-up.
    """
    try:
        amount = Decimal(text.strip().lstrip("$"))
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    try:
        return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None


def log_action_execution(func):
    """
    Decorator that adds automatic entry/exit logging to action functions.

    Logs the action name and outcome at DEBUG level without requiring
    manual logger calls inside every action.

    Usage:
        @log_action_execution
        def _clear_coin(context, event, **kwargs) -> ActionResult:
            return ActionResult.success(replace(context, current_coin_value=0))
    """

    @wraps(func)
    def wrapper(context, event, **kwargs) -> ActionResult:
        name = func.__name__.lstrip("_").upper()
        logger.debug(f"{name}: Starting...")
        result = func(context, event, **kwargs)
        if result.ok:
            logger.debug(f"{name}: Complete")
        else:
            logger.debug(f"{name}: Failed ({result.error})")
        return result

    return wrapper
