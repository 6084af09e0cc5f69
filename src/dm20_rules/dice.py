"""
Dice resolution core.

Parses compact dice notation (``NdS``, optional keep/drop and flat
modifier), rolls it, and rolls d20s under normal/advantage/disadvantage.
Every roller accepts manual overrides so tests and table-side physical dice
flow through exactly the same resolution logic as random rolls.

Notation:
    ``2d6+3``     two six-sided dice plus three
    ``4d6kh3``    four d6, keep the highest three
    ``2d20kl1``   two d20, keep the lowest
    ``5d10dl2-1`` five d10, drop the lowest two, minus one
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from enum import Enum

from .errors import ValidationError

MAX_DICE = 100
MIN_SIDES = 2
MAX_SIDES = 1000

_DICE_RE = re.compile(r"^(\d+)d(\d+)(?:(kh|kl|dh|dl)(\d+))?([+-]\d+)?$")


class RollMode(str, Enum):
    NORMAL = "normal"
    ADVANTAGE = "advantage"
    DISADVANTAGE = "disadvantage"


def resolve_roll_mode(
    advantage: bool = False,
    disadvantage: bool = False,
    mode: RollMode | None = None,
) -> RollMode:
    """Combine an explicit mode with advantage/disadvantage flags.

    Advantage and disadvantage from any source cancel to normal.
    """
    adv = advantage or mode == RollMode.ADVANTAGE
    dis = disadvantage or mode == RollMode.DISADVANTAGE
    if adv and not dis:
        return RollMode.ADVANTAGE
    if dis and not adv:
        return RollMode.DISADVANTAGE
    return RollMode.NORMAL


# ---------------------------------------------------------------------------
# Dice expressions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DiceExpression:
    count: int
    sides: int
    keep_mode: str | None = None
    keep_count: int | None = None
    modifier: int = 0

    @property
    def notation(self) -> str:
        text = f"{self.count}d{self.sides}"
        if self.keep_mode:
            text += f"{self.keep_mode}{self.keep_count}"
        if self.modifier:
            text += f"{self.modifier:+d}"
        return text


@dataclass
class DiceRoll:
    """Outcome of rolling a dice expression."""

    expression: DiceExpression
    rolls: list[int]
    kept: list[int]
    modifier: int
    total: int

    @property
    def dropped(self) -> list[int]:
        remaining = list(self.kept)
        dropped = []
        for value in self.rolls:
            if value in remaining:
                remaining.remove(value)
            else:
                dropped.append(value)
        return dropped

    def describe(self) -> str:
        parts = f"[{', '.join(str(r) for r in self.rolls)}]"
        if self.expression.keep_mode:
            parts += f" keep [{', '.join(str(r) for r in self.kept)}]"
        if self.modifier:
            parts += f" {'+' if self.modifier > 0 else '-'} {abs(self.modifier)}"
        return f"{self.expression.notation}: {parts} = {self.total}"


def parse_dice(expression: str) -> DiceExpression:
    """Parse dice notation like ``'2d6+3'`` or ``'4d6kh3'``.

    Whitespace and case are ignored.

    Raises:
        ValidationError: If the notation is malformed or out of range.
    """
    normalized = re.sub(r"\s+", "", expression or "").lower()
    m = _DICE_RE.match(normalized)
    if not m:
        raise ValidationError(f"Invalid dice notation: {expression!r}", field="expression")

    count, sides = int(m.group(1)), int(m.group(2))
    keep_mode = m.group(3)
    keep_count = int(m.group(4)) if m.group(4) is not None else None
    modifier = int(m.group(5) or 0)

    if not 1 <= count <= MAX_DICE:
        raise ValidationError(f"Dice count must be 1-{MAX_DICE}, got {count}", field="expression")
    if not MIN_SIDES <= sides <= MAX_SIDES:
        raise ValidationError(f"Die size must be {MIN_SIDES}-{MAX_SIDES}, got {sides}", field="expression")
    if keep_count is not None and keep_count > count:
        raise ValidationError(
            f"Cannot {keep_mode} {keep_count} from {count} dice", field="expression"
        )
    return DiceExpression(count, sides, keep_mode, keep_count, modifier)


def _apply_keep(rolls: list[int], keep_mode: str | None, n: int | None) -> list[int]:
    if keep_mode is None or n is None:
        return list(rolls)
    ordered = sorted(rolls, reverse=True)
    if keep_mode == "kh":
        return ordered[:n]
    if keep_mode == "kl":
        return ordered[len(ordered) - n:]
    if keep_mode == "dh":
        return ordered[n:]
    return ordered[:len(ordered) - n]


def roll_dice(
    expression: str | DiceExpression,
    rng: random.Random | None = None,
    manual_rolls: list[int] | None = None,
) -> DiceRoll:
    """Roll a dice expression.

    Args:
        expression: Notation string or an already parsed expression.
        rng: Random source. Defaults to the ``random`` module.
        manual_rolls: Physical results for the first dice; any dice not
            covered are rolled.

    Raises:
        ValidationError: On malformed notation or an impossible manual roll.
    """
    parsed = parse_dice(expression) if isinstance(expression, str) else expression
    source = rng or random
    manual = list(manual_rolls or [])
    if len(manual) > parsed.count:
        raise ValidationError(
            f"{len(manual)} manual rolls given for {parsed.count} dice", field="manual_rolls"
        )
    for value in manual:
        if not 1 <= value <= parsed.sides:
            raise ValidationError(
                f"Manual roll {value} is not possible on a d{parsed.sides}", field="manual_rolls"
            )

    rolls = manual + [source.randint(1, parsed.sides) for _ in range(parsed.count - len(manual))]
    kept = _apply_keep(rolls, parsed.keep_mode, parsed.keep_count)
    return DiceRoll(
        expression=parsed,
        rolls=rolls,
        kept=kept,
        modifier=parsed.modifier,
        total=sum(kept) + parsed.modifier,
    )


# ---------------------------------------------------------------------------
# d20 rolls
# ---------------------------------------------------------------------------

@dataclass
class D20Roll:
    """A d20 roll, with both dice reported under advantage/disadvantage."""

    mode: RollMode
    rolls: list[int]
    natural: int
    modifier: int = 0
    manual: bool = False
    notes: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.natural + self.modifier

    @property
    def is_critical(self) -> bool:
        return self.natural == 20

    @property
    def is_fumble(self) -> bool:
        return self.natural == 1

    def describe(self) -> str:
        if len(self.rolls) > 1:
            dice = f"{self.mode.value} [{', '.join(str(r) for r in self.rolls)}] -> {self.natural}"
        else:
            dice = str(self.natural)
        if self.modifier:
            return f"{dice} {'+' if self.modifier > 0 else '-'} {abs(self.modifier)} = {self.total}"
        return f"{dice} = {self.total}"


def _check_d20(value: int, field_name: str) -> int:
    if not 1 <= value <= 20:
        raise ValidationError(f"A d20 cannot roll {value}", field=field_name)
    return value


def roll_d20(
    mode: RollMode = RollMode.NORMAL,
    modifier: int = 0,
    manual_roll: int | None = None,
    manual_rolls: list[int] | None = None,
    rng: random.Random | None = None,
) -> D20Roll:
    """Roll a d20, optionally with advantage or disadvantage.

    Args:
        mode: Roll mode. Advantage keeps the higher of two dice and
            disadvantage the lower; both dice are reported.
        modifier: Flat modifier added to the kept die.
        manual_roll: A single physical die. Under advantage/disadvantage it
            stands for both dice.
        manual_rolls: An explicit pair of dice for advantage/disadvantage.
            Under a normal roll only the first value is used.
        rng: Random source. Defaults to the ``random`` module.
    """
    source = rng or random
    manual = manual_roll is not None or manual_rolls is not None

    if manual_rolls is not None:
        if len(manual_rolls) != 2:
            raise ValidationError("manual_rolls must contain exactly two d20 values", field="manual_rolls")
        pair = [_check_d20(v, "manual_rolls") for v in manual_rolls]
    elif manual_roll is not None:
        value = _check_d20(manual_roll, "manual_roll")
        pair = [value, value]
    else:
        pair = [source.randint(1, 20), source.randint(1, 20)] if mode != RollMode.NORMAL else [source.randint(1, 20)]

    if mode == RollMode.ADVANTAGE:
        rolls, natural = pair, max(pair)
    elif mode == RollMode.DISADVANTAGE:
        rolls, natural = pair, min(pair)
    else:
        rolls, natural = [pair[0]], pair[0]

    return D20Roll(mode=mode, rolls=rolls, natural=natural, modifier=modifier, manual=manual)
