# import
from .payer import Admin, Payer, PayerIdentity, Student, Teacher, payer_from_ref
from .enrollment import Agreement, Enrollment
from .gateway import (
    AccessToken,
    GatewaySession,
    GatewayTransactionStatus,
    OrderLine,
    PaymentMethod,
    QrCharge,
    QrChargeRequest,
)
from .settlement import Settlement, SettlementMethod, SettlementState
from .event import SettlementEvent, SettlementOutcome
from .installment import Installment, InstallmentStatus
from .plan import PaymentPlan

__all__ = [
    "Admin", "Payer", "PayerIdentity", "Student", "Teacher", "payer_from_ref",
    "Agreement", "Enrollment",
    "AccessToken", "GatewaySession", "GatewayTransactionStatus", "OrderLine", "PaymentMethod",
    "QrCharge", "QrChargeRequest",
    "Settlement", "SettlementMethod", "SettlementState",
    "SettlementEvent", "SettlementOutcome",
    "Installment", "InstallmentStatus",
    "PaymentPlan",
]
