from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from ptpay.config import settings


def _round_money(value: float | Decimal) -> float:
    return float(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PayrollRules:
    """Business and statutory rates used by payroll calculations.

    Built from settings by default; tests and other jurisdictions pass
    their own instance.
    """

    cpf_rate: float = 0.17
    default_session_price: float = 90.0
    commission_ratio: float = 0.5
    default_class_rate: float = 50.0
    default_class_duration_minutes: int = 60
    edit_commission_table: dict[str, float] = field(
        default_factory=lambda: {
            "solo_package": 40.0,
            "solo_single": 50.0,
            "buddy": 60.0,
            "house_call": 70.0,
        }
    )

    @classmethod
    def from_settings(cls) -> PayrollRules:
        return cls(
            cpf_rate=settings.CPF_RATE,
            default_session_price=settings.DEFAULT_SESSION_PRICE,
            commission_ratio=settings.PT_COMMISSION_RATIO,
            default_class_rate=settings.DEFAULT_CLASS_RATE,
            default_class_duration_minutes=settings.DEFAULT_CLASS_DURATION_MINUTES,
            edit_commission_table=dict(settings.EDIT_COMMISSION_TABLE),
        )

    def edit_commission_for(self, session_type: Any) -> float:
        key = session_type.value if hasattr(session_type, "value") else str(session_type)
        return float(self.edit_commission_table[key])


def resolve_commission(session: Any, rules: PayrollRules | None = None) -> float:
    """Coach commission for one PT session.

    An approved payment amount wins, then the stored commission, then the
    configured share of the session price (default price when unset).
    """
    if session.payment_amount is not None:
        return float(session.payment_amount)
    if session.commission_amount is not None:
        return float(session.commission_amount)
    rules = rules or PayrollRules.from_settings()
    price = session.session_price if session.session_price is not None else rules.default_session_price
    return float(price) * rules.commission_ratio
