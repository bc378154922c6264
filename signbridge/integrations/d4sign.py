"""
D4Sign Integration for SignBridge
=================================
Create contracts from a D4Sign template and register their signers.

Setup:
1. D4Sign -> Dev API -> generate tokenAPI and cryptKey
2. Set D4SIGN_TOKEN and D4SIGN_CRYPT_KEY
3. Create one safe (cofre) per salesperson and map them in VAULT_ROUTES
4. Upload the contract template and set TEMPLATE_UUID_CONTRATO

API Docs: https://docapi.d4sign.com.br/docs
"""

import os
from typing import Any

import httpx

from signbridge.core.errors import SignatureServiceError, TransientNetworkError
from signbridge.core.models import Signer
from signbridge.integrations.http import D4SIGN_POLICY, ResilientClient, RetryPolicy
from signbridge.shared.logging import get_logger
from signbridge.shared.security import hash_pii

logger = get_logger("signbridge.d4sign")

D4SIGN_API_BASE = "https://secure.d4sign.com.br/api/v1"
D4SIGN_DOCUMENT_URL = "https://secure.d4sign.com.br/Plus/{document_id}"

# Every signer entry sent to createlist carries these keys.
SIGNER_DEFAULTS = {
    "act": "1",
    "foreign": "0",
    "foreign_lang": "ptBR",
    "certificadoicpbr": "0",
    "assinatura_presencial": "0",
    "docauth": "0",
    "docauthandselfie": "0",
    "embed_methodauth": "email",
    "embed_smsnumber": "",
    "upload_allow": "0",
    "upload_obs": "0",
    "skip_email": "0",
}


def _flag(value: Any) -> str:
    if isinstance(value, str):
        return "1" if value.strip().lower() in ("1", "true", "yes", "sim") else "0"
    return "1" if value else "0"


def normalize_signer(signer: Signer | dict) -> dict:
    """Turn a signer into a complete createlist entry, applying defaults."""
    if isinstance(signer, Signer):
        signer = signer.model_dump()

    email = (signer.get("email") or "").strip()
    if not email:
        raise SignatureServiceError("Signer entry has no email", details={"signer": signer})

    entry = dict(SIGNER_DEFAULTS)
    entry["email"] = email
    entry["display_name"] = (signer.get("name") or email).strip()
    if signer.get("act"):
        entry["act"] = str(signer["act"])
    if "foreign" in signer:
        entry["foreign"] = _flag(signer["foreign"])
    if signer.get("language"):
        entry["foreign_lang"] = str(signer["language"]).replace("-", "")
    if "notify" in signer:
        entry["skip_email"] = "0" if signer["notify"] else "1"
    return entry


def extract_document_id(payload: Any) -> str | None:
    """Find the document uuid in a creation response (object or 1-item list)."""
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return None
    for key in ("uuid", "uuid_document"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class D4SignClient:
    """Client for the D4Sign document API."""

    def __init__(
        self,
        http: ResilientClient,
        token: str | None = None,
        crypt_key: str | None = None,
        base_url: str | None = None,
        document_url: str | None = None,
        policy: RetryPolicy = D4SIGN_POLICY,
    ):
        self.http = http
        self.token = token or os.environ.get("D4SIGN_TOKEN", "")
        self.crypt_key = crypt_key or os.environ.get("D4SIGN_CRYPT_KEY", "")
        self.base_url = (base_url or D4SIGN_API_BASE).rstrip("/")
        self.document_url_pattern = document_url or D4SIGN_DOCUMENT_URL
        self.policy = policy

    @property
    def auth_params(self) -> dict:
        return {"tokenAPI": self.token, "cryptKey": self.crypt_key}

    @property
    def headers(self) -> dict:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, body: dict, operation: str) -> httpx.Response:
        try:
            return await self.http.request(
                "POST",
                f"{self.base_url}{path}",
                self.policy,
                params=self.auth_params,
                headers=self.headers,
                json=body,
            )
        except TransientNetworkError as exc:
            raise SignatureServiceError(
                f"D4Sign unreachable during {operation}: {exc.message}",
                details={"reason": exc.reason, "attempts": exc.attempts},
            ) from exc

    def _json(self, response: httpx.Response, operation: str) -> Any:
        try:
            data = response.json()
        except ValueError:
            logger.error(
                f"D4Sign {operation} returned non-JSON ({response.status_code}): {response.text[:1000]}",
                extra={"action": operation},
            )
            raise SignatureServiceError(
                f"D4Sign {operation} returned a non-JSON response ({response.status_code})",
                details={"status": response.status_code, "body": response.text[:1000]},
            )

        if not response.is_success:
            logger.error(
                f"D4Sign {operation} failed: {response.status_code} {response.text[:1000]}",
                extra={"action": operation},
            )
            raise SignatureServiceError(
                f"D4Sign {operation} failed ({response.status_code})",
                details={"status": response.status_code, "body": data},
            )
        return data

    async def create_from_template(
        self,
        vault_id: str,
        template_id: str,
        title: str,
        variables: dict[str, str],
    ) -> str:
        """
        Create a document in ``vault_id`` from a template.

        Returns the new document uuid.
        """
        response = await self._post(
            f"/documents/{vault_id}/makedocumentbytemplate",
            {"name_document": title, "templates": {template_id: variables}},
            "create_from_template",
        )
        data = self._json(response, "create_from_template")

        document_id = extract_document_id(data)
        if not document_id:
            logger.error(
                f"D4Sign create_from_template response has no document id: {response.text[:1000]}",
                extra={"action": "create_from_template"},
            )
            raise SignatureServiceError(
                "D4Sign response has no document id",
                details={"status": response.status_code, "body": data},
            )
        return document_id

    async def register_signers(self, document_id: str, signers: list[Signer | dict]) -> None:
        """Attach signers to a created document."""
        if not signers:
            raise SignatureServiceError(
                "At least one signer is required", details={"document_id": document_id}
            )
        entries = [normalize_signer(s) for s in signers]
        response = await self._post(
            f"/documents/{document_id}/createlist",
            {"signers": entries},
            "register_signers",
        )
        self._json(response, "register_signers")

    async def get_download_link(
        self,
        document_id: str,
        format: str = "pdf",
        language: str = "pt",
    ) -> str:
        """Get a time-limited download URL for a document."""
        response = await self._post(
            f"/documents/{document_id}/download",
            {"type": format.upper(), "language": language},
            "download",
        )
        data = self._json(response, "download")
        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise SignatureServiceError(
                "D4Sign download response has no url",
                details={"document_id": document_id, "body": data},
            )
        return url

    async def send_for_signature(
        self,
        document_id: str,
        message: str = "",
        skip_email: bool = False,
        workflow: bool = False,
    ) -> None:
        """Notify the registered signers that the document is ready."""
        response = await self._post(
            f"/documents/{document_id}/sendtosigner",
            {
                "message": message,
                "skip_email": "1" if skip_email else "0",
                "workflow": "1" if workflow else "0",
            },
            "send_for_signature",
        )
        self._json(response, "send_for_signature")

    async def create_document(
        self,
        vault_id: str,
        template_id: str,
        title: str,
        variables: dict[str, str],
        signers: list[Signer | dict],
    ) -> str:
        """
        Create a document and register its signers.

        If signer registration fails the document stays in D4Sign without
        signers; its id is logged and attached to the raised error.
        """
        document_id = await self.create_from_template(vault_id, template_id, title, variables)

        try:
            await self.register_signers(document_id, signers)
        except SignatureServiceError as exc:
            logger.error(
                f"Signer registration failed; document {document_id} left without signers",
                extra={"document_id": document_id, "action": "orphaned_document"},
            )
            exc.details.setdefault("document_id", document_id)
            raise

        logger.info(
            f"D4Sign document {document_id} created",
            extra={
                "document_id": document_id,
                "action": "document_created",
                "data": {
                    "signers": [
                        hash_pii(s.email if isinstance(s, Signer) else s.get("email", ""))
                        for s in signers
                    ]
                },
            },
        )
        return document_id

    def document_url(self, document_id: str) -> str:
        return self.document_url_pattern.format(document_id=document_id)
