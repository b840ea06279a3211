"""Shared fixtures: in-memory ledger, fixed clock, gateway mock and recording ports."""
import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.routers.v1 import get_gateway, get_ledger_repo, get_notification_port
from application.service.manual_settlement import ManualSettlementService
from application.service.settlement_orchestrator import SettlementOrchestrator
from domain.config import PlanConfig, SettlementConfig
from domain.entities import Enrollment, Payer, PaymentPlan, QrCharge, Student
from domain.exceptions import InstallmentNotFoundError, PlanAlreadyExistsError, PlanLockedError, PlanNotFoundError
from domain.interfaces import GatewayPort, MetricsPort
from domain.services import PlanGenerator

TODAY = date(2025, 3, 10)
NOW = datetime(2025, 3, 10, 10, 0, 0)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryLedgerRepository:
    """
    LedgerRepository kept in a dict.

    lock_installment hands out a copy and writes it back only when the block
    exits cleanly, with one asyncio.Lock per installment.
    """

    def __init__(self):
        self.plans: dict[str, PaymentPlan] = {}
        self.commits = 0
        self._locks: dict[str, asyncio.Lock] = {}

    def _find_installment(self, installment_id: str):
        for plan in self.plans.values():
            for installment in plan.installments:
                if installment.id == installment_id:
                    return installment
        return None

    def _settlements(self):
        for plan in self.plans.values():
            for installment in plan.installments:
                yield from installment.settlements

    async def save_plan(self, plan: PaymentPlan, replaces: Optional[str] = None) -> PaymentPlan:
        if replaces:
            old = self.plans.get(replaces)
            if old is None:
                raise PlanNotFoundError(f"Plan {replaces} not found")
            if old.has_settlements:
                raise PlanLockedError(f"Plan {replaces} has settlements")
        others = [p for p in self.plans.values() if p.id != replaces]
        if any(p.enrollment_id == plan.enrollment_id for p in others):
            raise PlanAlreadyExistsError(f"Enrollment {plan.enrollment_id} already has a plan")
        if replaces:
            del self.plans[replaces]
        self.plans[plan.id] = copy.deepcopy(plan)
        self.commits += 1
        return plan

    async def get_plan(self, plan_id: str) -> Optional[PaymentPlan]:
        plan = self.plans.get(plan_id)
        return copy.deepcopy(plan) if plan else None

    async def get_plan_by_enrollment(self, enrollment_id: str) -> Optional[PaymentPlan]:
        plan = next((p for p in self.plans.values() if p.enrollment_id == enrollment_id), None)
        return copy.deepcopy(plan) if plan else None

    async def delete_plan(self, plan_id: str) -> None:
        plan = self.plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        if plan.has_settlements:
            raise PlanLockedError(f"Plan {plan_id} has settlements")
        del self.plans[plan_id]
        self.commits += 1

    async def get_installment(self, installment_id: str):
        installment = self._find_installment(installment_id)
        return copy.deepcopy(installment) if installment else None

    @asynccontextmanager
    async def lock_installment(self, installment_id: str):
        lock = self._locks.setdefault(installment_id, asyncio.Lock())
        async with lock:
            stored = self._find_installment(installment_id)
            if stored is None:
                raise InstallmentNotFoundError(f"Installment {installment_id} not found")
            working = copy.deepcopy(stored)
            # Give concurrent callers a chance to queue on the lock
            await asyncio.sleep(0)
            yield working
            stored.settlements = copy.deepcopy(working.settlements)
            self.commits += 1

    async def get_settlement(self, settlement_id: str):
        found = next((s for s in self._settlements() if s.id == settlement_id), None)
        return copy.deepcopy(found) if found else None

    async def get_settlement_by_reference(self, reference: str):
        found = next((s for s in self._settlements() if s.reference == reference), None)
        return copy.deepcopy(found) if found else None

    async def reference_exists(self, reference: str) -> bool:
        return any(s.reference == reference for s in self._settlements())


class RecordingNotifier:
    """NotificationPort that keeps every event it is handed."""

    def __init__(self, delivered: bool = True):
        self.events = []
        self.delivered = delivered

    async def publish(self, event, request_id=None) -> bool:
        self.events.append(event)
        return self.delivered


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def plan_config():
    return PlanConfig(
        epsilon_cents=1,
        upfront_ratio=Decimal("0.20"),
        upfront_due_days=15,
        min_installments=1,
        max_installments=12,
    )


@pytest.fixture
def settlement_config():
    return SettlementConfig(
        reference_min=188888889,
        reference_max=999999999,
        reference_attempts=20,
        in_flight_seconds=60,
        reconciliation_epsilon_cents=1,
    )


@pytest.fixture
def repo():
    return InMemoryLedgerRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def metrics(mocker):
    return mocker.Mock(spec=MetricsPort)


@pytest.fixture
def student():
    return Student(id="s-100")


@pytest.fixture
def enrollment(student):
    return Enrollment(id="enr-100", payer=student, program_name="Diplomado en Finanzas")


@pytest.fixture
def payer(student):
    return Payer(
        identity=student,
        full_name="Ana Pérez",
        document_id="6543210",
        phone="70012345",
        email="ana.perez@example.com",
    )


@pytest.fixture
async def saved_plan(repo, enrollment, plan_config):
    """3 installments of 1000.00 each, the first one due this month."""
    plan = PlanGenerator(plan_config).generate(enrollment, 300000, 3, today=TODAY)
    await repo.save_plan(plan)
    return plan


@pytest.fixture
def installment(saved_plan):
    return saved_plan.installments[0]


@pytest.fixture
def qr_charge(clock):
    return QrCharge(
        qr_base64="iVBORw0KGgoAAAANSUhEUgAA",
        transaction_id="9001",
        expires_at=clock.now + timedelta(hours=1),
        raw={"error": 0, "status": 1, "values": {"transactionId": 9001}},
    )


@pytest.fixture
def gateway(mocker, qr_charge):
    mock_gateway = mocker.AsyncMock(spec=GatewayPort)
    mock_gateway.resolve_payment_method_id.return_value = 4
    mock_gateway.generate_qr.return_value = qr_charge
    return mock_gateway


@pytest.fixture
def orchestrator(repo, gateway, notifier, metrics, settlement_config, clock):
    return SettlementOrchestrator(
        repo,
        gateway,
        notification_port=notifier,
        metrics_port=metrics,
        config=settlement_config,
        clock=clock,
    )


@pytest.fixture
def manual_service(repo, notifier, metrics, settlement_config, clock):
    return ManualSettlementService(
        repo,
        notification_port=notifier,
        metrics_port=metrics,
        config=settlement_config,
        clock=clock,
    )


@pytest.fixture
def api(repo, gateway, notifier):
    """TestClient wired to the in-memory ledger, the gateway mock and the recording notifier."""
    # Routes run on the wall clock, so the QR must expire relative to it
    gateway.generate_qr.return_value = QrCharge(
        qr_base64="iVBORw0KGgoAAAANSUhEUgAA",
        transaction_id="9001",
        expires_at=datetime.now() + timedelta(hours=1),
        raw={"error": 0, "status": 1},
    )
    app.dependency_overrides[get_ledger_repo] = lambda: repo
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notification_port] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()
