from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from .payer import PayerIdentity


@dataclass(frozen=True)
class Enrollment:
    id: str
    payer: PayerIdentity
    program_name: str


@dataclass(frozen=True)
class Agreement:
    """Institutional agreement (convenio) that reduces the program cost by a percentage."""
    id: str
    name: str
    percent: Decimal
    active: bool = True
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None

    def applies_on(self, on_date: date) -> bool:
        if not self.active or self.percent <= 0:
            return False
        if self.valid_from and on_date < self.valid_from:
            return False
        if self.valid_until and on_date > self.valid_until:
            return False
        return True
