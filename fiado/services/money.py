from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterable, Union

MoneyLike = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# folga usada nas regras de negócio (status, saldo excedido, correção de legado)
TOLERANCE = Decimal("0.01")


def to_money(v: MoneyLike | None) -> Decimal:
    if v is None:
        return ZERO
    if not isinstance(v, Decimal):
        # float passa por str pra não carregar o erro binário
        v = Decimal(str(v))
    return v.quantize(CENT, rounding=ROUND_HALF_UP)


def floor_money(v: MoneyLike) -> Decimal:
    """Trunca para centavos (nunca arredonda pra cima)."""
    if not isinstance(v, Decimal):
        v = Decimal(str(v))
    return v.quantize(CENT, rounding=ROUND_DOWN)


def money_sum(values: Iterable[MoneyLike | None]) -> Decimal:
    total = ZERO
    for v in values:
        total += to_money(v)
    return total


def almost_equal(a: MoneyLike, b: MoneyLike) -> bool:
    return abs(to_money(a) - to_money(b)) < TOLERANCE


def format_brl(value: MoneyLike | None) -> str:
    value = to_money(value)
    s = f"{value:,.2f}"
    s = s.replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {s}"
