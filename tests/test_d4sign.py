"""Tests for the D4Sign client."""

import json

import httpx
import pytest

from signbridge.core.errors import SignatureServiceError
from signbridge.core.models import Signer
from signbridge.integrations.d4sign import D4SignClient, extract_document_id, normalize_signer
from signbridge.integrations.http import ResilientClient, RetryPolicy

FAST_POLICY = RetryPolicy(attempts=2, base_delay=0, timeout=5)
VAULT = "d2a7f1c4-5b6e-4f3a-8c9d-0e1f2a3b4c5d"
TEMPLATE = "8c1e8b3a-1f0e-4c1b-9a51-2b7f6f0d9e11"
DOC = "0b5c2a3e-8f7d-4e6c-9b1a-2d3c4e5f6a7b"


def make_d4sign(routes: dict) -> tuple[D4SignClient, list[httpx.Request]]:
    """``routes`` maps the last path segment to a response factory."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        action = request.url.path.rsplit("/", 1)[-1]
        return routes[action](request)

    http = ResilientClient(transport=httpx.MockTransport(handler))
    client = D4SignClient(http, token="tok", crypt_key="crypt", policy=FAST_POLICY)
    return client, seen


def body_of(request: httpx.Request) -> dict:
    return json.loads(request.content)


class TestNormalizeSigner:
    def test_applies_defaults(self):
        entry = normalize_signer({"email": "ana@acme.com.br"})

        assert entry["email"] == "ana@acme.com.br"
        assert entry["display_name"] == "ana@acme.com.br"
        assert entry["act"] == "1"
        assert entry["foreign"] == "0"
        assert entry["skip_email"] == "0"
        assert entry["certificadoicpbr"] == "0"

    def test_maps_signer_model(self):
        entry = normalize_signer(
            Signer(email="john@acme.com", name="John", act="2", foreign=True, language="en-US", notify=False)
        )

        assert entry["display_name"] == "John"
        assert entry["act"] == "2"
        assert entry["foreign"] == "1"
        assert entry["foreign_lang"] == "enUS"
        assert entry["skip_email"] == "1"

    def test_requires_email(self):
        with pytest.raises(SignatureServiceError):
            normalize_signer({"name": "Nobody"})


class TestExtractDocumentId:
    def test_object_and_list_shapes(self):
        assert extract_document_id({"message": "success", "uuid": DOC}) == DOC
        assert extract_document_id([{"uuid_document": DOC}]) == DOC

    def test_unrecognized_shapes(self):
        assert extract_document_id({"message": "error"}) is None
        assert extract_document_id([]) is None
        assert extract_document_id("ok") is None


class TestCreateFromTemplate:
    @pytest.mark.asyncio
    async def test_returns_document_id(self):
        client, seen = make_d4sign(
            {"makedocumentbytemplate": lambda r: httpx.Response(200, json={"message": "success", "uuid": DOC})}
        )

        document_id = await client.create_from_template(VAULT, TEMPLATE, "Contrato Acme", {"Vendedor": "Lucas"})

        request = seen[0]
        assert document_id == DOC
        assert request.url.path.endswith(f"/documents/{VAULT}/makedocumentbytemplate")
        assert request.url.params["tokenAPI"] == "tok"
        assert request.url.params["cryptKey"] == "crypt"
        assert body_of(request) == {
            "name_document": "Contrato Acme",
            "templates": {TEMPLATE: {"Vendedor": "Lucas"}},
        }

    @pytest.mark.asyncio
    async def test_missing_document_id_fails(self):
        client, _ = make_d4sign(
            {"makedocumentbytemplate": lambda r: httpx.Response(200, json={"message": "queued"})}
        )

        with pytest.raises(SignatureServiceError):
            await client.create_from_template(VAULT, TEMPLATE, "t", {})

    @pytest.mark.asyncio
    async def test_non_json_response_fails(self):
        client, _ = make_d4sign(
            {"makedocumentbytemplate": lambda r: httpx.Response(200, text="<html>maintenance</html>")}
        )

        with pytest.raises(SignatureServiceError) as excinfo:
            await client.create_from_template(VAULT, TEMPLATE, "t", {})

        assert "maintenance" in excinfo.value.details["body"]

    @pytest.mark.asyncio
    async def test_error_status_fails(self):
        client, _ = make_d4sign(
            {"makedocumentbytemplate": lambda r: httpx.Response(401, json={"message": "invalid token"})}
        )

        with pytest.raises(SignatureServiceError) as excinfo:
            await client.create_from_template(VAULT, TEMPLATE, "t", {})

        assert excinfo.value.details["status"] == 401


class TestCreateDocument:
    @pytest.mark.asyncio
    async def test_creates_then_registers_signers(self):
        client, seen = make_d4sign(
            {
                "makedocumentbytemplate": lambda r: httpx.Response(200, json={"uuid": DOC}),
                "createlist": lambda r: httpx.Response(200, json={"message": [{"success": "1"}]}),
            }
        )

        document_id = await client.create_document(
            VAULT, TEMPLATE, "Contrato", {"a": "b"}, [Signer(email="ana@acme.com.br", name="Ana")]
        )

        assert document_id == DOC
        assert [r.url.path.rsplit("/", 1)[-1] for r in seen] == ["makedocumentbytemplate", "createlist"]
        assert seen[1].url.path.endswith(f"/documents/{DOC}/createlist")
        signers = body_of(seen[1])["signers"]
        assert signers[0]["email"] == "ana@acme.com.br"
        assert signers[0]["display_name"] == "Ana"

    @pytest.mark.asyncio
    async def test_failed_registration_keeps_document_id(self):
        client, seen = make_d4sign(
            {
                "makedocumentbytemplate": lambda r: httpx.Response(200, json={"uuid": DOC}),
                "createlist": lambda r: httpx.Response(400, json={"message": "invalid email"}),
            }
        )

        with pytest.raises(SignatureServiceError) as excinfo:
            await client.create_document(VAULT, TEMPLATE, "Contrato", {}, [{"email": "x@y.z"}])

        assert excinfo.value.details["document_id"] == DOC
        # no rollback call
        assert len(seen) == 2


class TestOptionalCapabilities:
    @pytest.mark.asyncio
    async def test_download_link(self):
        client, seen = make_d4sign(
            {"download": lambda r: httpx.Response(200, json={"url": "https://d4.example/file.pdf", "name": "x"})}
        )

        url = await client.get_download_link(DOC)

        assert url == "https://d4.example/file.pdf"
        assert body_of(seen[0]) == {"type": "PDF", "language": "pt"}

    @pytest.mark.asyncio
    async def test_send_for_signature(self):
        client, seen = make_d4sign(
            {"sendtosigner": lambda r: httpx.Response(200, json={"message": "File sent successfully"})}
        )

        await client.send_for_signature(DOC, message="Segue o contrato")

        assert body_of(seen[0]) == {"message": "Segue o contrato", "skip_email": "0", "workflow": "0"}

    def test_document_url(self):
        client = D4SignClient(ResilientClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))))

        assert client.document_url(DOC) == f"https://secure.d4sign.com.br/Plus/{DOC}"
