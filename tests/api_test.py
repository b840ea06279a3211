"""
HTTP API tests with the ledger, gateway and notification sink replaced through
dependency overrides.
"""
import pytest
from fastapi import status

from domain.entities import GatewayTransactionStatus

PAYER = {"kind": "student", "id": "s-100"}
QR_PAYLOAD = {
    "payer": PAYER,
    "full_name": "Ana Pérez",
    "document_id": "6543210",
    "phone": "70012345",
    "email": "ana.perez@example.com",
}


def create_plan(api, **overrides):
    body = {
        "enrollment_id": "enr-100",
        "payer": PAYER,
        "program_name": "Diplomado en Finanzas",
        "program_cost_cents": 300000,
        "installment_count": 3,
    }
    body.update(overrides)
    return api.post("/v1/plans", json=body, headers={"X-Request-ID": "test-plan-1"})


def first_installment_id(api):
    plan = create_plan(api).json()
    return plan["installments"][0]["id"]


class TestPlans:
    def test_create_plan(self, api):
        response = create_plan(api, discount_percent="10", include_upfront_deposit=True)

        assert response.status_code == status.HTTP_201_CREATED
        plan = response.json()
        assert plan["total_cents"] == 270000
        assert plan["payer"] == "student:s-100"
        assert plan["remaining_cents"] == 270000
        assert [i["amount_cents"] for i in plan["installments"]] == [54000, 72000, 72000, 72000]
        assert plan["installments"][0]["is_upfront_deposit"] is True
        assert all(i["status"] == "pending" for i in plan["installments"])

    def test_invalid_terms(self, api, repo):
        response = create_plan(api, installment_count=0)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["detail"]["error"] == "invalid_plan"
        assert repo.plans == {}

    def test_duplicate_plan(self, api):
        create_plan(api)
        response = create_plan(api)

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["error"] == "plan_already_exists"

    def test_replace_plan(self, api):
        first = create_plan(api).json()
        response = create_plan(api, installment_count=6, replace_existing=True)

        assert response.status_code == status.HTTP_201_CREATED
        assert len(response.json()["installments"]) == 6
        assert api.get(f"/v1/plans/{first['id']}").status_code == status.HTTP_404_NOT_FOUND

    def test_get_and_delete_plan(self, api):
        plan = create_plan(api).json()

        response = api.get(f"/v1/plans/{plan['id']}")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["id"] == plan["id"]

        response = api.delete(f"/v1/plans/{plan['id']}")
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert api.get(f"/v1/plans/{plan['id']}").status_code == status.HTTP_404_NOT_FOUND

    def test_plan_not_found(self, api):
        response = api.get("/v1/plans/missing")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == {"error": "plan_not_found", "message": "Payment plan not found"}


class TestQr:
    def test_issue_then_reuse(self, api, gateway):
        installment_id = first_installment_id(api)

        first = api.post(f"/v1/installments/{installment_id}/qr", json=QR_PAYLOAD)
        assert first.status_code == status.HTTP_201_CREATED
        body = first.json()
        assert body["reused"] is False
        assert body["amount_cents"] == 100000
        assert body["qr_base64"] == "iVBORw0KGgoAAAANSUhEUgAA"
        assert body["transaction_id"] == "9001"

        second = api.post(f"/v1/installments/{installment_id}/qr", json=QR_PAYLOAD)
        assert second.status_code == status.HTTP_200_OK
        assert second.json()["settlement_id"] == body["settlement_id"]
        assert second.json()["reused"] is True
        assert gateway.generate_qr.await_count == 1

    def test_supersede(self, api, gateway):
        installment_id = first_installment_id(api)
        first = api.post(f"/v1/installments/{installment_id}/qr", json=QR_PAYLOAD).json()

        response = api.post(f"/v1/installments/{installment_id}/qr?supersede=true", json=QR_PAYLOAD)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["settlement_id"] != first["settlement_id"]
        installment = api.get(f"/v1/installments/{installment_id}").json()
        states = {s["id"]: s["state"] for s in installment["settlements"]}
        assert states[first["settlement_id"]] == "failed"

    def test_unknown_installment(self, api):
        response = api.post("/v1/installments/missing/qr", json=QR_PAYLOAD)
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestCallback:
    def _issue(self, api):
        installment_id = first_installment_id(api)
        qr = api.post(f"/v1/installments/{installment_id}/qr", json=QR_PAYLOAD).json()
        return installment_id, qr

    def test_approved_callback_confirms(self, api, notifier):
        installment_id, qr = self._issue(api)

        response = api.post("/v1/payments/callback", json={
            "PedidoID": qr["reference"],
            "Estado": "Aprobado",
            "Monto": "1000.00",
            "Fecha": "2025-03-10",
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"error": 0, "status": 1, "message": "Notificación recibida", "values": True}
        installment = api.get(f"/v1/installments/{installment_id}").json()
        assert installment["status"] == "paid"
        assert installment["settlements"][0]["state"] == "confirmed"
        assert len(notifier.events) == 1

    def test_callback_from_query_params(self, api):
        installment_id, qr = self._issue(api)

        response = api.post(f"/v1/payments/callback?PedidoID={qr['reference']}&Estado=APROBADO")

        assert response.json()["error"] == 0
        installment = api.get(f"/v1/installments/{installment_id}").json()
        assert installment["paid_cents"] == 100000

    def test_duplicate_callback_acknowledged(self, api, notifier):
        _, qr = self._issue(api)
        payload = {"PedidoID": qr["reference"], "Estado": "Aprobado"}

        api.post("/v1/payments/callback", json=payload)
        response = api.post("/v1/payments/callback", json=payload)

        assert response.json()["error"] == 0
        assert len(notifier.events) == 1

    def test_missing_reference(self, api):
        response = api.post("/v1/payments/callback", json={"Estado": "Aprobado"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {
            "error": 1, "status": 0, "message": "Referencia de pago no encontrada", "values": False,
        }

    def test_unknown_reference_still_acknowledged(self, api):
        response = api.post("/v1/payments/callback", json={"PedidoID": "123456789", "Estado": "Aprobado"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["error"] == 1

    def test_amount_mismatch_acknowledged_with_error(self, api):
        installment_id, qr = self._issue(api)

        response = api.post("/v1/payments/callback", json={
            "PedidoID": qr["reference"], "Estado": "Aprobado", "Monto": "10.00",
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["error"] == 1
        installment = api.get(f"/v1/installments/{installment_id}").json()
        assert installment["paid_cents"] == 0

    @pytest.mark.parametrize("amount", ["Infinity", "NaN", "-Infinity"])
    def test_non_numeric_amount_is_ignored(self, api, amount):
        installment_id, qr = self._issue(api)

        response = api.post("/v1/payments/callback", json={
            "PedidoID": qr["reference"], "Estado": "APROBADO", "Monto": amount,
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["error"] == 0
        installment = api.get(f"/v1/installments/{installment_id}").json()
        assert installment["paid_cents"] == 100000

    def test_non_numeric_amount_for_unknown_reference(self, api):
        response = api.post("/v1/payments/callback", json={
            "PedidoID": "123456789", "Estado": "APROBADO", "Monto": "Infinity",
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["error"] == 1


class TestPoll:
    def test_poll_confirms_completed_payment(self, api, gateway):
        installment_id = first_installment_id(api)
        qr = api.post(f"/v1/installments/{installment_id}/qr", json=QR_PAYLOAD).json()
        gateway.query_transaction.return_value = GatewayTransactionStatus(
            payment_status=1,
            description="Pagado",
            amount_cents=100000,
            transaction_id="9001",
            raw={"error": 0},
        )

        response = api.get(f"/v1/settlements/{qr['settlement_id']}/status")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["confirmed_now"] is True
        assert body["payment_status"] == 1
        assert body["settlement"]["state"] == "confirmed"
        assert body["settlement"]["gateway_amount_cents"] == 100000

    def test_poll_unknown_settlement(self, api):
        assert api.get("/v1/settlements/missing/status").status_code == status.HTTP_404_NOT_FOUND


class TestManualSettlements:
    def test_register_approve(self, api, notifier):
        installment_id = first_installment_id(api)

        registered = api.post(f"/v1/installments/{installment_id}/settlements", json={
            "payer": PAYER, "amount_cents": 40000, "notes": "Depósito en ventanilla",
        })
        assert registered.status_code == status.HTTP_201_CREATED
        settlement = registered.json()
        assert settlement["method"] == "manual"
        assert settlement["state"] == "requested"

        approved = api.post(f"/v1/settlements/{settlement['id']}/approve", json={"verifier_id": "adm-1"})
        assert approved.status_code == status.HTTP_200_OK
        assert approved.json()["confirmed_now"] is True
        assert approved.json()["settlement"]["verified_by"] == "admin:adm-1"

        installment = api.get(f"/v1/installments/{installment_id}").json()
        assert installment["status"] == "partially_paid"
        assert installment["remaining_cents"] == 60000
        assert len(notifier.events) == 1

    def test_register_more_than_remaining(self, api):
        installment_id = first_installment_id(api)
        response = api.post(f"/v1/installments/{installment_id}/settlements", json={
            "payer": PAYER, "amount_cents": 100001,
        })
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["error"] == "insufficient_remaining"

    def test_reject(self, api):
        installment_id = first_installment_id(api)
        settlement = api.post(f"/v1/installments/{installment_id}/settlements", json={
            "payer": PAYER, "amount_cents": 40000,
        }).json()

        response = api.post(f"/v1/settlements/{settlement['id']}/reject", json={
            "verifier_id": "adm-1", "reason": "Comprobante duplicado",
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["state"] == "failed"
        assert response.json()["failure_reason"] == "Comprobante duplicado"

    def test_reject_qr_settlement_conflicts(self, api):
        installment_id = first_installment_id(api)
        qr = api.post(f"/v1/installments/{installment_id}/qr", json=QR_PAYLOAD).json()

        response = api.post(f"/v1/settlements/{qr['settlement_id']}/reject", json={
            "verifier_id": "adm-1", "reason": "No corresponde",
        })

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["error"] == "invalid_settlement_state"

    def test_plan_with_settlements_cannot_be_deleted(self, api):
        plan = create_plan(api).json()
        api.post(f"/v1/installments/{plan['installments'][0]['id']}/settlements", json={
            "payer": PAYER, "amount_cents": 1000,
        })

        response = api.delete(f"/v1/plans/{plan['id']}")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["error"] == "plan_locked"


def test_health(api):
    response = api.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "ok"
