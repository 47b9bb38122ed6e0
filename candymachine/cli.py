"""
Interactive command-line front end.

Maps single-key choices to events and prints every settled state. The
loop owns no transition logic: it only sends events and observes.
"""

import argparse
import logging
from typing import Callable, Optional

from candymachine.helpers import dollars_to_cents
from candymachine.machine import Interpreter, Statechart, create_candy_machine
from candymachine.types import ContractViolation, Event, EventType, State, StateSnapshot

logger = logging.getLogger(__name__)

INPUT_MAPPING = {
    "a": EventType.ADD_COIN,
    "b": EventType.HALF_TURN,
    "c": EventType.REMOVE_COIN,
    "d": EventType.SHUTDOWN,
    "e": EventType.TAMPER,
}

MENU = (
    "What action would you like to perform?",
    "  a) Insert a coin",
    "  b) Rotate the knob by half a turn",
    "  c) Remove a coin",
    "  d) Turn off the candy machine",
    "  e) Tamper with the candy machine to try and get free candy",
)


def _read_coin(input_fn: Callable[[str], str], output: Callable[[str], None]) -> int:
    while True:
        output("What dollar value coin would you like to insert?")
        cents = dollars_to_cents(input_fn("> $"))
        output("")
        if cents is not None:
            return cents
        output("That is not a dollar amount, try again.")


def run_candy_machine(
    input_fn: Callable[[str], str] = input,
    output: Callable[[str], None] = print,
    statechart: Optional[Statechart] = None,
) -> Optional[StateSnapshot]:
    """
    Run the interactive loop until the machine shuts down or breaks.

    Returns the last observed snapshot.
    """
    machine = Interpreter(statechart or create_candy_machine())
    machine.on_transition(lambda snapshot: output(f"Current state: {snapshot.value.value}"))

    try:
        machine.start()
        while not machine.state.matches(State.SHUTDOWN):
            for line in MENU:
                output(line)
            choice = input_fn("> ").strip().lower()
            output("")
            if choice not in INPUT_MAPPING:
                continue
            event_type = INPUT_MAPPING[choice]
            if event_type == EventType.ADD_COIN:
                machine.send(Event.add_coin(_read_coin(input_fn, output)))
            else:
                machine.send(event_type)
    except ContractViolation as e:
        last = machine.state.value.value if machine.state else None
        output(f"Uh oh, someone broke the candy machine: {last} + {e}")
    finally:
        machine.stop()

    return machine.state


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="candymachine", description="Run the candy machine.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format="%(message)s")
    try:
        run_candy_machine()
    except (EOFError, KeyboardInterrupt):
        logger.info("Input closed — leaving the candy machine")
    return 0
