"""Tax authority (SRI) client.

The pipeline only depends on :class:`TaxAuthorityClient`. The HTTP adapter
talks to the SRI gateway API:

- ``POST /api/auth/login`` -> ``{"token": "..."}`` (JWT, cached until a 401)
- ``POST /api/invoices`` / ``POST /api/credit-notes`` ->
  ``{"success": true, "data": {"claveAcceso": ..., "estado": ..., "numeroAutorizacion": ...}}``
- ``GET /api/{invoices|credit-notes}/status/{claveAcceso}`` -> ``{"estado": ...}``

Error classification:
- timeouts, transport errors, 5xx, 408 and 429 -> :class:`TransientAuthorityError`
- 401/403 and any login failure -> :class:`TransientAuthorityError` (our
  credentials, not the document)
- a success reply whose body is not a JSON object -> :class:`TransientAuthorityError`
- any other 4xx -> :class:`PermanentAuthorityError`
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import httpx

from opensri.exceptions import PermanentAuthorityError, TransientAuthorityError
from opensri.storage.database.models import DocumentKind, DocumentStatus, FiscalDocument
from opensri.utils.config import Settings
from opensri.utils.logging import get_logger

logger = get_logger(__name__)

AUTHORITY_STATUS_MAP: dict[str, DocumentStatus] = {
    "PENDIENTE": DocumentStatus.PENDING,
    "PROCESANDO": DocumentStatus.PROCESSING,
    "RECIBIDA": DocumentStatus.RECEIVED,
    "AUTORIZADO": DocumentStatus.AUTHORIZED,
    "RECHAZADO": DocumentStatus.REJECTED,
    "NO_AUTORIZADO": DocumentStatus.NOT_AUTHORIZED,
    "DEVUELTA": DocumentStatus.RETURNED,
    "ERROR": DocumentStatus.AUTHORITY_ERROR,
    "ERROR_SRI": DocumentStatus.AUTHORITY_ERROR,
}

TRANSIENT_CLIENT_CODES = {408, 429}
AUTH_CODES = {401, 403}


def map_authority_status(estado: Any) -> DocumentStatus:
    """Translate an authority status string. Unknown values count as pending."""
    if not estado:
        return DocumentStatus.PENDING
    return AUTHORITY_STATUS_MAP.get(str(estado).strip().upper(), DocumentStatus.PENDING)


@dataclass
class AuthorityResponse:
    """Outcome reported by the authority for a submission or status query."""

    status: DocumentStatus
    access_key: str | None = None
    authorization_number: str | None = None
    message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def raw_json(self) -> str:
        return json.dumps(self.raw, default=str, ensure_ascii=False)


class TaxAuthorityClient(Protocol):
    """Opaque gateway to the tax authority."""

    def submit(self, document: FiscalDocument) -> AuthorityResponse: ...

    def check_status(self, access_key: str, kind: DocumentKind) -> AuthorityResponse: ...


def _money(value: Decimal | None) -> float:
    return float(value or 0)


def build_payload(document: FiscalDocument) -> dict[str, Any]:
    """Serialize a document to the gateway's JSON payload."""
    detalles = [
        {
            "codigoPrincipal": line.code,
            "descripcion": line.description,
            "cantidad": _money(line.quantity),
            "precioUnitario": _money(line.unit_price),
            "descuento": _money(line.discount),
            "codigoIva": line.tax_code or "4",
        }
        for line in document.lines
    ]

    payload: dict[str, Any] = {
        "secuencial": document.document_number,
        "fechaEmision": document.issue_date.isoformat(),
        "comprador": {
            "tipoIdentificacion": document.customer_id_type,
            "identificacion": document.customer_id_number,
            "razonSocial": document.customer_name,
            "direccion": document.customer_address or "",
            "telefono": document.customer_phone or "",
            "email": document.customer_email or "",
        },
        "detalles": detalles,
        "informacionAdicional": {
            "Email": document.customer_email or "",
            "Direccion": document.customer_address or "",
        },
    }

    if document.kind is DocumentKind.CREDIT_NOTE:
        payload["motivo"] = document.reason
        payload["documentoModificado"] = {
            "tipo": document.modified_document_type,
            "numero": document.modified_document_number,
            "fechaEmision": (
                document.modified_document_date.isoformat()
                if document.modified_document_date
                else None
            ),
        }

    return payload


def _endpoint(kind: DocumentKind) -> str:
    return "/api/invoices" if kind is DocumentKind.INVOICE else "/api/credit-notes"


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "error"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {response.status_code}: {response.text[:500]}"


class HttpTaxAuthorityClient:
    """:class:`TaxAuthorityClient` over the SRI gateway REST API."""

    def __init__(
        self,
        base_url: str,
        email: str,
        password: str,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Gateway base URL
            email: Login email
            password: Login password
            timeout: Read timeout in seconds
            connect_timeout: Connect timeout in seconds
            http_client: Optional preconfigured client (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._email = email
        self._password = password
        self._client = http_client or httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers={"Accept": "application/json", "User-Agent": "OpenSRI/1.0"},
        )
        self._token: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpTaxAuthorityClient:
        return cls(
            base_url=settings.sri_api_url,
            email=settings.sri_email,
            password=settings.sri_password.get_secret_value(),
            timeout=settings.sri_timeout,
            connect_timeout=settings.sri_connect_timeout,
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("sri_timeout", path=path, error=str(e))
            raise TransientAuthorityError(
                f"Tax authority request timed out: {path}", original_error=e
            ) from e
        except httpx.TransportError as e:
            logger.warning("sri_transport_error", path=path, error=str(e))
            raise TransientAuthorityError(
                f"Cannot reach the tax authority at {self.base_url}", original_error=e
            ) from e

    def _raise_for_status(self, response: httpx.Response, path: str) -> None:
        if response.is_success:
            return

        message = _error_message(response)
        status = response.status_code
        if status >= 500 or status in TRANSIENT_CLIENT_CODES:
            logger.warning("sri_transient_http_error", path=path, status=status)
            raise TransientAuthorityError(
                f"Tax authority temporarily unavailable ({status})",
                status_code=status,
                authority_message=message,
            )

        if status in AUTH_CODES:
            logger.error("sri_credentials_rejected", path=path, status=status, message=message)
            raise TransientAuthorityError(
                f"Tax authority rejected our credentials ({status}): {message}",
                status_code=status,
                authority_message=message,
            )

        logger.error("sri_permanent_http_error", path=path, status=status, message=message)
        raise PermanentAuthorityError(
            f"Tax authority refused the request ({status}): {message}",
            status_code=status,
            authority_message=message,
        )

    def _authenticate(self) -> str:
        if self._token:
            return self._token

        logger.info("sri_authenticating", base_url=self.base_url)
        response = self._send(
            "POST",
            "/api/auth/login",
            json={"email": self._email, "password": self._password},
        )
        if not response.is_success:
            message = _error_message(response)
            logger.error("sri_login_failed", status=response.status_code, message=message)
            raise TransientAuthorityError(
                f"Tax authority login failed ({response.status_code}): {message}",
                status_code=response.status_code,
                authority_message=message,
            )

        token = self._json_body(response, "/api/auth/login").get("token")
        if not token:
            raise TransientAuthorityError("Authentication response is missing the token")
        self._token = token
        return token

    def _json_body(self, response: httpx.Response, path: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            logger.warning("sri_invalid_body", path=path, status=response.status_code)
            raise TransientAuthorityError(
                f"Tax authority returned a non-JSON reply: {path}",
                status_code=response.status_code,
                authority_message=response.text[:200],
                original_error=e,
            ) from e
        if not isinstance(body, dict):
            logger.warning("sri_invalid_body", path=path, status=response.status_code)
            raise TransientAuthorityError(
                f"Tax authority returned an unexpected reply: {path}",
                status_code=response.status_code,
            )
        return body

    def _authorized_request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send with the bearer token, logging in again once on a 401."""
        for attempt in range(2):
            token = self._authenticate()
            response = self._send(
                method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs
            )
            if response.status_code == 401 and attempt == 0:
                logger.info("sri_token_expired", path=path)
                self._token = None
                continue
            break

        self._raise_for_status(response, path)
        return response

    # ------------------------------------------------------------------
    # TaxAuthorityClient
    # ------------------------------------------------------------------

    def submit(self, document: FiscalDocument) -> AuthorityResponse:
        path = _endpoint(document.kind)
        logger.info(
            "sri_submitting",
            document_id=document.id,
            kind=document.kind.value,
            document_number=document.document_number,
        )
        response = self._authorized_request("POST", path, json=build_payload(document))
        body = self._json_body(response, path)

        if not body.get("success"):
            # Accepted at HTTP level but refused by the gateway's own processing
            return AuthorityResponse(
                status=DocumentStatus.AUTHORITY_ERROR,
                message=body.get("message") or "Unknown tax authority error",
                raw=body,
            )

        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        return AuthorityResponse(
            status=map_authority_status(data.get("estado")),
            access_key=data.get("claveAcceso") or None,
            authorization_number=data.get("numeroAutorizacion") or None,
            message=body.get("message"),
            raw=body,
        )

    def check_status(self, access_key: str, kind: DocumentKind) -> AuthorityResponse:
        path = f"{_endpoint(kind)}/status/{access_key}"
        response = self._authorized_request("GET", path)
        body = self._json_body(response, path)
        data = body.get("data") if isinstance(body.get("data"), dict) else body

        return AuthorityResponse(
            status=map_authority_status(data.get("estado")),
            access_key=access_key,
            authorization_number=data.get("numeroAutorizacion") or None,
            message=data.get("mensaje") or body.get("message"),
            raw=body,
        )
