"""Tests for the HTTP tax authority client (httpx MockTransport)."""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from opensri.exceptions import PermanentAuthorityError, TransientAuthorityError
from opensri.sri.client import HttpTaxAuthorityClient, build_payload, map_authority_status
from opensri.storage.database.models import (
    DocumentKind,
    DocumentStatus,
    FiscalDocument,
    FiscalDocumentLine,
)
from tests.support.fakes import ACCESS_KEY

BASE_URL = "http://sri.test"


def make_document(kind: DocumentKind = DocumentKind.INVOICE) -> FiscalDocument:
    document = FiscalDocument(
        id=1,
        kind=kind,
        document_number="000000001",
        issue_date=date(2024, 10, 15),
        customer_id_type="05",
        customer_id_number="1712345678",
        customer_name="Ana Pérez",
        customer_email="ana.perez@example.com",
        subtotal=Decimal("100.00"),
        tax_amount=Decimal("15.00"),
        total_amount=Decimal("115.00"),
        lines=[
            FiscalDocumentLine(
                line_number=1,
                code="MUG-001",
                description="Taza",
                quantity=Decimal("2"),
                unit_price=Decimal("50.00"),
                discount=Decimal("0.00"),
                tax_rate=Decimal("15"),
                tax_code="4",
                line_subtotal=Decimal("100.00"),
                line_tax=Decimal("15.00"),
            )
        ],
    )
    if kind is DocumentKind.CREDIT_NOTE:
        document.reason = "Devolución"
        document.modified_document_type = "01"
        document.modified_document_number = "001-001-000000007"
        document.modified_document_date = date(2024, 10, 1)
    return document


class Gateway:
    """Programmable fake of the SRI gateway."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.logins = 0
        self.login_reply: httpx.Response | None = None
        self.routes: dict[tuple[str, str], list] = {}

    def on(self, method: str, path: str, *responses) -> None:
        self.routes[(method, path)] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/auth/login":
            self.logins += 1
            if self.login_reply is not None:
                return self.login_reply
            return httpx.Response(200, json={"token": f"jwt-{self.logins}"})

        queue = self.routes[(request.method, request.url.path)]
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def gateway() -> Gateway:
    return Gateway()


@pytest.fixture
def client(gateway) -> HttpTaxAuthorityClient:
    http_client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(gateway))
    return HttpTaxAuthorityClient(
        BASE_URL, "api@opensri.test", "secret", http_client=http_client
    )


def accepted(estado: str = "AUTORIZADO") -> httpx.Response:
    return httpx.Response(
        201,
        json={
            "success": True,
            "data": {
                "claveAcceso": ACCESS_KEY,
                "estado": estado,
                "numeroAutorizacion": ACCESS_KEY if estado == "AUTORIZADO" else None,
            },
        },
    )


@pytest.mark.parametrize(
    "estado, status",
    [
        ("AUTORIZADO", DocumentStatus.AUTHORIZED),
        ("autorizado", DocumentStatus.AUTHORIZED),
        ("RECIBIDA", DocumentStatus.RECEIVED),
        ("DEVUELTA", DocumentStatus.RETURNED),
        ("NO_AUTORIZADO", DocumentStatus.NOT_AUTHORIZED),
        ("ERROR_SRI", DocumentStatus.AUTHORITY_ERROR),
        ("ALGO_NUEVO", DocumentStatus.PENDING),
        (None, DocumentStatus.PENDING),
    ],
)
def test_map_authority_status(estado, status):
    assert map_authority_status(estado) is status


class TestPayload:
    def test_invoice_payload(self):
        payload = build_payload(make_document())

        assert payload["secuencial"] == "000000001"
        assert payload["comprador"]["identificacion"] == "1712345678"
        assert payload["detalles"][0]["codigoIva"] == "4"
        assert payload["detalles"][0]["cantidad"] == 2.0
        assert "motivo" not in payload

    def test_credit_note_payload(self):
        payload = build_payload(make_document(DocumentKind.CREDIT_NOTE))

        assert payload["motivo"] == "Devolución"
        assert payload["documentoModificado"]["numero"] == "001-001-000000007"


class TestSubmit:
    def test_authorized(self, client, gateway):
        gateway.on("POST", "/api/invoices", accepted())

        response = client.submit(make_document())

        assert response.status is DocumentStatus.AUTHORIZED
        assert response.access_key == ACCESS_KEY
        assert response.authorization_number == ACCESS_KEY
        request = gateway.requests[-1]
        assert request.headers["Authorization"] == "Bearer jwt-1"
        assert json.loads(request.content)["secuencial"] == "000000001"

    def test_credit_notes_use_their_endpoint(self, client, gateway):
        gateway.on("POST", "/api/credit-notes", accepted("RECIBIDA"))

        response = client.submit(make_document(DocumentKind.CREDIT_NOTE))

        assert response.status is DocumentStatus.RECEIVED
        assert gateway.requests[-1].url.path == "/api/credit-notes"

    def test_gateway_error_body_is_an_authority_error(self, client, gateway):
        gateway.on(
            "POST",
            "/api/invoices",
            httpx.Response(200, json={"success": False, "message": "Firma inválida"}),
        )

        response = client.submit(make_document())

        assert response.status is DocumentStatus.AUTHORITY_ERROR
        assert response.message == "Firma inválida"
        assert response.access_key is None

    def test_token_is_reused(self, client, gateway):
        gateway.on("POST", "/api/invoices", accepted())

        client.submit(make_document())
        client.submit(make_document())

        assert gateway.logins == 1

    def test_expired_token_logs_in_again(self, client, gateway):
        gateway.on(
            "POST",
            "/api/invoices",
            httpx.Response(401, json={"message": "expired"}),
            accepted(),
        )

        response = client.submit(make_document())

        assert response.status is DocumentStatus.AUTHORIZED
        assert gateway.logins == 2

    def test_timeout_is_transient(self, client, gateway):
        gateway.on("POST", "/api/invoices", httpx.ReadTimeout("read timed out"))

        with pytest.raises(TransientAuthorityError):
            client.submit(make_document())

    def test_connection_error_is_transient(self, client, gateway):
        gateway.on("POST", "/api/invoices", httpx.ConnectError("refused"))

        with pytest.raises(TransientAuthorityError):
            client.submit(make_document())

    @pytest.mark.parametrize("status_code", [500, 502, 503, 408, 429])
    def test_server_errors_are_transient(self, client, gateway, status_code):
        gateway.on("POST", "/api/invoices", httpx.Response(status_code, text="unavailable"))

        with pytest.raises(TransientAuthorityError) as exc_info:
            client.submit(make_document())

        assert exc_info.value.status_code == status_code

    @pytest.mark.parametrize("status_code", [400, 404, 422])
    def test_client_errors_are_permanent(self, client, gateway, status_code):
        gateway.on(
            "POST",
            "/api/invoices",
            httpx.Response(status_code, json={"message": "Identificación inválida"}),
        )

        with pytest.raises(PermanentAuthorityError) as exc_info:
            client.submit(make_document())

        assert exc_info.value.authority_message == "Identificación inválida"

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_rejected_credentials_are_transient(self, client, gateway, status_code):
        gateway.on(
            "POST",
            "/api/invoices",
            httpx.Response(status_code, json={"message": "Invalid credentials"}),
        )

        with pytest.raises(TransientAuthorityError) as exc_info:
            client.submit(make_document())

        assert exc_info.value.status_code == status_code
        assert gateway.logins == (2 if status_code == 401 else 1)

    @pytest.mark.parametrize(
        "login_reply",
        [
            httpx.Response(401, json={"message": "Invalid credentials"}),
            httpx.Response(400, json={"message": "email is required"}),
            httpx.Response(200, json={"user": "api"}),
            httpx.Response(200, text="<html>login</html>"),
        ],
    )
    def test_login_failures_are_transient(self, client, gateway, login_reply):
        gateway.login_reply = login_reply
        gateway.on("POST", "/api/invoices", accepted())

        with pytest.raises(TransientAuthorityError):
            client.submit(make_document())

        assert all(r.url.path == "/api/auth/login" for r in gateway.requests)

    @pytest.mark.parametrize(
        "reply",
        [
            httpx.Response(201, text="<html>gateway maintenance</html>"),
            httpx.Response(201, json=["AUTORIZADO"]),
        ],
    )
    def test_malformed_reply_is_transient(self, client, gateway, reply):
        gateway.on("POST", "/api/invoices", reply)

        with pytest.raises(TransientAuthorityError):
            client.submit(make_document())


class TestCheckStatus:
    def test_reads_estado_from_data(self, client, gateway):
        gateway.on(
            "GET",
            f"/api/invoices/status/{ACCESS_KEY}",
            httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {"estado": "AUTORIZADO", "numeroAutorizacion": "N1"},
                },
            ),
        )

        response = client.check_status(ACCESS_KEY, DocumentKind.INVOICE)

        assert response.status is DocumentStatus.AUTHORIZED
        assert response.authorization_number == "N1"
        assert response.access_key == ACCESS_KEY

    def test_reads_estado_from_body(self, client, gateway):
        gateway.on(
            "GET",
            f"/api/credit-notes/status/{ACCESS_KEY}",
            httpx.Response(200, json={"estado": "RECHAZADO", "mensaje": "Clave duplicada"}),
        )

        response = client.check_status(ACCESS_KEY, DocumentKind.CREDIT_NOTE)

        assert response.status is DocumentStatus.REJECTED
        assert response.message == "Clave duplicada"

    def test_maintenance_page_is_transient(self, client, gateway):
        gateway.on(
            "GET",
            f"/api/invoices/status/{ACCESS_KEY}",
            httpx.Response(200, text="<html>gateway maintenance</html>"),
        )

        with pytest.raises(TransientAuthorityError) as exc_info:
            client.check_status(ACCESS_KEY, DocumentKind.INVOICE)

        assert exc_info.value.status_code == 200


def test_from_settings(test_settings):
    client = HttpTaxAuthorityClient.from_settings(test_settings)
    try:
        assert client.base_url == "http://sri.test"
    finally:
        client.close()
