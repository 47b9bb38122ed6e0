"""Guard predicates deciding whether a transition may fire."""

from typing import Iterable, Optional

from candymachine.types import VALID_COINS, Context, Event, GuardType


def has_coin(current_coin_value: int) -> bool:
    return current_coin_value != 0


def is_valid_coin(current_coin_value: int, valid_coins: Iterable[int] = VALID_COINS) -> bool:
    return current_coin_value in valid_coins


def evaluate(
    guard: Optional[GuardType],
    context: Context,
    event: Optional[Event] = None,
    valid_coins: Iterable[int] = VALID_COINS,
) -> bool:
    """
    Evaluate a guard against the context and the pending event.

    A missing guard always passes. HAS_VALID_COIN and HAS_INVALID_COIN
    are mutually exclusive and both False when no coin is present.

    Raises:
        ValueError: If ``guard`` is not a GuardType.
    """
    if guard is None:
        return True
    coin = context.current_coin_value
    if guard == GuardType.HAS_VALID_COIN:
        return has_coin(coin) and is_valid_coin(coin, valid_coins)
    if guard == GuardType.HAS_INVALID_COIN:
        return has_coin(coin) and not is_valid_coin(coin, valid_coins)
    raise ValueError(f"Unknown guard {guard!r}")
