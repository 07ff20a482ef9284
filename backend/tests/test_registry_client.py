"""Tests for the registry HTTP client: error mapping, auth and multipart uploads."""
import httpx
import pytest

from surveyor.services.registry_client import NetworkError, RegistryClient, RemoteServiceError


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, client, registry):
        await client.create_person({"first_name": "Ada"})
        request = registry.requests[0]
        assert request.headers["authorization"] == "Bearer field-token"
        assert str(request.url) == "http://registry.test/api/v1/identity/persons/"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self, settings, registry):
        anonymous = RegistryClient(settings.model_copy(update={"API_TOKEN": None}), transport=registry.transport)
        await anonymous.create_household({"household_size": 1})
        assert "authorization" not in registry.requests[0].headers
        await anonymous.aclose()

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self, client, registry):
        registry.fail_if = lambda request: "timeout"
        with pytest.raises(NetworkError):
            await client.submit_survey({"session": "s1"})

    @pytest.mark.asyncio
    async def test_connection_failure_is_network_error(self, client, registry):
        registry.fail_if = lambda request: "network"
        with pytest.raises(NetworkError) as exc_info:
            await client.create_person({})
        assert exc_info.value.status_code is None
        assert not exc_info.value.permanent

    @pytest.mark.asyncio
    async def test_http_error_keeps_status_and_detail(self, client, registry):
        registry.fail_if = lambda request: 500
        with pytest.raises(RemoteServiceError) as exc_info:
            await client.create_person({})
        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == {"detail": "rejected"}
        assert not isinstance(exc_info.value, NetworkError)

    @pytest.mark.parametrize(
        "status,permanent",
        [(400, True), (404, True), (422, True), (408, False), (429, False), (500, False), (503, False)],
    )
    def test_permanent_classification(self, status, permanent):
        assert RemoteServiceError("x", status_code=status).permanent is permanent


class TestPersons:
    @pytest.mark.asyncio
    async def test_update_person_patches_by_id(self, client, registry):
        await client.update_person({"id": "srv-4", "phone": "+24106000000"})
        request = registry.requests[0]
        assert request.method == "PATCH"
        assert registry.path(request) == "/identity/persons/srv-4/"

    @pytest.mark.asyncio
    async def test_update_person_without_id_is_rejected(self, client, registry):
        with pytest.raises(RemoteServiceError) as exc_info:
            await client.update_person({"phone": "+24106000000"})
        assert exc_info.value.permanent
        assert registry.requests == []


class TestDocumentUpload:
    @pytest.mark.asyncio
    async def test_multipart_upload(self, client, registry, tmp_path):
        doc = tmp_path / "birth_certificate.png"
        doc.write_bytes(b"\x89PNG-data")

        await client.upload_document({"file_path": str(doc), "person_id": "srv-2", "document_type": "BIRTH"})

        request = registry.requests[0]
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert b'filename="birth_certificate.png"' in body
        assert b"image/png" in body
        assert b"\x89PNG-data" in body
        assert b'name="person_id"' in body
        assert b"srv-2" in body

    @pytest.mark.asyncio
    async def test_missing_file_is_permanent_failure(self, client, registry, tmp_path):
        with pytest.raises(RemoteServiceError) as exc_info:
            await client.upload_document({"file_path": str(tmp_path / "gone.jpg")})
        assert exc_info.value.status_code == 410
        assert exc_info.value.permanent
        assert registry.requests == []

    @pytest.mark.asyncio
    async def test_payload_without_file_path_is_rejected(self, client):
        with pytest.raises(RemoteServiceError):
            await client.upload_document({"person_id": "srv-2"})


class TestScoringEndpoints:
    @pytest.mark.asyncio
    async def test_bulk_calculate_unwraps_results(self, settings):
        async def handler(request):
            return httpx.Response(200, json={"results": [{"person_id": "p1"}]})

        wrapped = RegistryClient(settings, transport=httpx.MockTransport(handler))
        assert await wrapped.bulk_calculate(["p1"]) == [{"person_id": "p1"}]
        await wrapped.aclose()

    @pytest.mark.asyncio
    async def test_invalid_json_is_remote_error(self, settings):
        async def handler(request):
            return httpx.Response(200, content=b"<html>proxy login</html>")

        captive = RegistryClient(settings, transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteServiceError):
            await captive.get_weighting_profile()
        await captive.aclose()

    @pytest.mark.asyncio
    async def test_empty_response_is_empty_dict(self, settings):
        async def handler(request):
            return httpx.Response(204)

        quiet = RegistryClient(settings, transport=httpx.MockTransport(handler))
        assert await quiet.submit_survey({"session": "s1"}) == {}
        await quiet.aclose()
