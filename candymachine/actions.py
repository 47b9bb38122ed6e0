"""
Action executor.

Actions never raise for a refused event: they return an ActionResult
carrying a ContractViolation, and the engine decides what to do with it.
Business reports (candy dispensed, day's sales, shutdown) go through the
module logger.
"""

import logging
import random
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional, Tuple

from candymachine.helpers import format_cents, log_action_execution
from candymachine.types import (
    ActionResult,
    ActionType,
    CandyColour,
    CandyQuality,
    Context,
    ContractViolation,
    Event,
    EventType,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

_COLOURS = (CandyColour.RED, CandyColour.GREEN, CandyColour.BLUE)
_QUALITIES = (CandyQuality.DISGUSTING, CandyQuality.GREAT, CandyQuality.REGULAR)


def choose_candy(rng: Optional[random.Random] = None) -> Tuple[CandyColour, CandyQuality]:
    """Pick a colour and a quality with two independent uniform draws."""
    rng = rng or random
    return rng.choice(_COLOURS), rng.choice(_QUALITIES)


@log_action_execution
def _record_coin(context: Context, event: Optional[Event], **kwargs) -> ActionResult:
    if event is None or event.type != EventType.ADD_COIN:
        return ActionResult.failure(
            ContractViolation(event.type if event else None, ActionType.RECORD_COIN)
        )
    return ActionResult.success(replace(context, current_coin_value=event.value))


@log_action_execution
def _clear_coin(context: Context, event: Optional[Event], **kwargs) -> ActionResult:
    return ActionResult.success(replace(context, current_coin_value=0))


@log_action_execution
def _record_sale(context: Context, event: Optional[Event], clock: Clock = time.time, **kwargs) -> ActionResult:
    return ActionResult.success(
        replace(
            context,
            total_value=context.total_value + context.current_coin_value,
            num_sales=context.num_sales + 1,
            last_dispensed_at=clock(),
        )
    )


@log_action_execution
def _dispense_candy(context: Context, event: Optional[Event], rng: Optional[random.Random] = None, **kwargs) -> ActionResult:
    colour, quality = choose_candy(rng)
    logger.info(f"--- A {quality.value} {colour.value} candy has been dispensed, enjoy! ---")
    return ActionResult.success(context)


@log_action_execution
def _log_sales(context: Context, event: Optional[Event], **kwargs) -> ActionResult:
    last_sale = datetime.fromtimestamp(context.last_dispensed_at).isoformat(sep=" ", timespec="seconds")
    logger.info(
        f"--- Day's sales: {format_cents(context.total_value)} earned from "
        f"{context.num_sales} sales. Last sale dated {last_sale} ---"
    )
    return ActionResult.success(context)


@log_action_execution
def _shut_down(context: Context, event: Optional[Event], **kwargs) -> ActionResult:
    logger.info("--- Candy machine is shutting down for the day ---")
    return ActionResult.success(context)


@log_action_execution
def _invalid_action(context: Context, event: Optional[Event], **kwargs) -> ActionResult:
    return ActionResult.failure(
        ContractViolation(event.type if event else None, ActionType.INVALID_ACTION)
    )


def apply(
    action: ActionType,
    context: Context,
    event: Optional[Event] = None,
    rng: Optional[random.Random] = None,
    clock: Optional[Clock] = None,
) -> ActionResult:
    """
    Apply a single action and return the resulting context or failure.

    Args:
        action: The action to run.
        context: Context before the action. Never modified.
        event: The event being processed (None for entry actions at start).
        rng: Random source for DISPENSE_CANDY (default: module ``random``).
        clock: Time source for RECORD_SALE (default: ``time.time``).

    Raises:
        ValueError: If ``action`` is not an ActionType.
    """
    clock = clock or time.time
    if action == ActionType.RECORD_COIN:
        return _record_coin(context, event)
    if action == ActionType.CLEAR_COIN:
        return _clear_coin(context, event)
    if action == ActionType.RECORD_SALE:
        return _record_sale(context, event, clock=clock)
    if action == ActionType.DISPENSE_CANDY:
        return _dispense_candy(context, event, rng=rng)
    if action == ActionType.LOG_SALES:
        return _log_sales(context, event)
    if action == ActionType.SHUT_DOWN:
        return _shut_down(context, event)
    if action == ActionType.INVALID_ACTION:
        return _invalid_action(context, event)
    raise ValueError(f"Unknown action {action!r}")
