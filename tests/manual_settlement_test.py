"""
Tests for manual settlements (cash, bank transfer).

Tests verify:
- Registration checks the remaining balance but does not change it
- Approval confirms exactly once and sends a success event
- Rejection fails a manual settlement and sends a failure event; QR settlements cannot be rejected
- Concurrent approvals never overpay an installment and partial approvals that fit all apply
"""
import asyncio

import pytest

from domain.entities import Admin, SettlementMethod, SettlementOutcome, SettlementState
from domain.exceptions import (
    AlreadyPaidError,
    InsufficientRemainingError,
    InvalidSettlementError,
    ReconciliationMismatchError,
    SettlementNotFoundError,
    SettlementStateError,
)

ADMIN = Admin(id="adm-1")


async def test_register_does_not_change_balance(manual_service, repo, installment, student, metrics):
    settlement = await manual_service.register(installment.id, 40000, student, notes="Depósito BNB")

    assert settlement.method == SettlementMethod.MANUAL
    assert settlement.state == SettlementState.REQUESTED
    assert settlement.notes == "Depósito BNB"
    assert settlement.reference is not None
    inst = await repo.get_installment(installment.id)
    assert inst.paid_cents == 0
    assert len(inst.settlements) == 1
    metrics.increment_settlement_confirmation.assert_called_with("manual", "registered")


@pytest.mark.parametrize("amount", [0, -500])
async def test_register_rejects_non_positive_amount(manual_service, installment, student, amount):
    with pytest.raises(InvalidSettlementError):
        await manual_service.register(installment.id, amount, student)


async def test_register_rejects_more_than_remaining(manual_service, installment, student):
    with pytest.raises(InsufficientRemainingError):
        await manual_service.register(installment.id, 100001, student)


async def test_register_on_paid_installment(manual_service, installment, student):
    settlement = await manual_service.register(installment.id, 100000, student)
    await manual_service.approve(settlement.id, ADMIN)

    with pytest.raises(AlreadyPaidError):
        await manual_service.register(installment.id, 1000, student)


async def test_approve_confirms_and_notifies(manual_service, repo, installment, student, notifier, clock):
    settlement = await manual_service.register(installment.id, 100000, student)

    result = await manual_service.approve(settlement.id, ADMIN, notes="Verificado en extracto")

    assert result.confirmed_now is True
    assert result.settlement.verified_by == "admin:adm-1"
    assert result.settlement.confirmed_at == clock.now
    assert result.settlement.notes == "Verificado en extracto"
    inst = await repo.get_installment(installment.id)
    assert inst.is_paid

    assert len(notifier.events) == 1
    payload = notifier.events[0].to_payload()
    assert payload["outcome"] == "success"
    assert payload["payerId"] == student.id
    assert payload["amount"] == 1000.0


async def test_approve_twice_is_noop(manual_service, installment, student, notifier, metrics):
    settlement = await manual_service.register(installment.id, 50000, student)
    await manual_service.approve(settlement.id, ADMIN)

    again = await manual_service.approve(settlement.id, ADMIN)

    assert again.confirmed_now is False
    assert len(notifier.events) == 1
    metrics.increment_settlement_confirmation.assert_called_with("manual", "duplicate")


async def test_reject_fails_settlement(manual_service, repo, installment, student, notifier, metrics):
    settlement = await manual_service.register(installment.id, 50000, student)

    rejected = await manual_service.reject(settlement.id, ADMIN, "Comprobante ilegible")

    assert rejected.state == SettlementState.FAILED
    assert rejected.failure_reason == "Comprobante ilegible"
    assert rejected.verified_by == "admin:adm-1"
    stored = await repo.get_settlement(settlement.id)
    assert stored.state == SettlementState.FAILED
    assert notifier.events[0].outcome == SettlementOutcome.FAILURE
    assert notifier.events[0].reason == "Comprobante ilegible"
    metrics.increment_settlement_confirmation.assert_called_with("manual", "rejected")


async def test_rejected_settlement_cannot_be_approved(manual_service, installment, student):
    settlement = await manual_service.register(installment.id, 50000, student)
    await manual_service.reject(settlement.id, ADMIN, "Duplicado")

    with pytest.raises(ReconciliationMismatchError):
        await manual_service.approve(settlement.id, ADMIN)


async def test_confirmed_settlement_cannot_be_rejected(manual_service, installment, student):
    settlement = await manual_service.register(installment.id, 50000, student)
    await manual_service.approve(settlement.id, ADMIN)

    with pytest.raises(SettlementStateError):
        await manual_service.reject(settlement.id, ADMIN, "Tarde")


async def test_unknown_settlement(manual_service):
    with pytest.raises(SettlementNotFoundError):
        await manual_service.approve("missing", ADMIN)
    with pytest.raises(SettlementNotFoundError):
        await manual_service.reject("missing", ADMIN, "n/a")


async def test_concurrent_approvals_never_overpay(manual_service, repo, installment, student, notifier):
    first = await manual_service.register(installment.id, 60000, student)
    second = await manual_service.register(installment.id, 60000, student)

    results = await asyncio.gather(
        manual_service.approve(first.id, ADMIN),
        manual_service.approve(second.id, ADMIN),
        return_exceptions=True,
    )

    confirmed = [r for r in results if not isinstance(r, Exception)]
    mismatches = [r for r in results if isinstance(r, ReconciliationMismatchError)]
    assert len(confirmed) == 1
    assert len(mismatches) == 1
    inst = await repo.get_installment(installment.id)
    assert inst.paid_cents == 60000
    assert sorted(e.outcome.value for e in notifier.events) == ["failure", "success"]


async def test_concurrent_partial_approvals_both_apply(manual_service, repo, installment, student, notifier):
    first = await manual_service.register(installment.id, 30000, student)
    second = await manual_service.register(installment.id, 40000, student)

    results = await asyncio.gather(
        manual_service.approve(first.id, ADMIN),
        manual_service.approve(second.id, ADMIN),
    )

    assert all(r.confirmed_now for r in results)
    inst = await repo.get_installment(installment.id)
    assert inst.paid_cents == 70000
    assert inst.remaining_cents == 30000
    assert [e.outcome.value for e in notifier.events] == ["success", "success"]


async def test_qr_settlement_cannot_be_rejected(manual_service, orchestrator, repo, installment, payer, notifier):
    issued = await orchestrator.request_qr(installment.id, payer)

    with pytest.raises(SettlementStateError):
        await manual_service.reject(issued.settlement.id, ADMIN, "No corresponde")

    inst = await repo.get_installment(installment.id)
    assert inst.settlements[0].state == SettlementState.REQUESTED
    assert inst.settlements[0].qr_image is not None
    assert notifier.events == []
