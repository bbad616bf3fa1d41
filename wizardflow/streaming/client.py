from __future__ import annotations
import logging
from typing import Any, AsyncIterator, Dict, Optional
import httpx
from wizardflow.core.config import Settings, settings as default_settings
from wizardflow.core.errors import BackendError
from wizardflow.schemas.artifact import GeneratedArtifact
from wizardflow.schemas.wizard import GenerationRequest, InvestigationRequest

log = logging.getLogger(__name__)

INVESTIGATE_PATH = "/api/website-builder/investigate"
GENERATE_PATH = "/api/website-builder/generate"
CHAT_PATH = "/api/wizard-chatbot/message"
DOWNLOAD_PATH = "/api/website-builder/download"


class StreamHandle:
    """An open streaming response plus the means to abort it."""

    def __init__(self, response: httpx.Response, client: Optional[httpx.AsyncClient] = None):
        self._response = response
        self._client = client
        self.closed = False

    def chunks(self) -> AsyncIterator[bytes]:
        return self._response.aiter_bytes()

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._response.aclose()
        if self._client is not None:
            await self._client.aclose()


class BackendClient:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        cfg = settings or default_settings
        self.base_url = base_url or cfg.backend_base_url
        self.timeout = cfg.api_timeout_s
        self.stream_timeout = httpx.Timeout(cfg.api_timeout_s, read=cfg.stream_read_timeout_s)
        self._transport = transport

    def _client(self, timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self._transport)

    async def _open_stream(self, path: str, payload: Dict[str, Any]) -> StreamHandle:
        client = self._client(self.stream_timeout)
        try:
            request = client.build_request(
                "POST", path, json=payload, headers={"Accept": "text/event-stream"},
            )
            response = await client.send(request, stream=True)
        except BaseException:
            await client.aclose()
            raise

        if response.status_code >= 400:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            await client.aclose()
            raise BackendError.from_message(body or response.reason_phrase, status_code=response.status_code)
        return StreamHandle(response, client)

    async def open_investigation(self, request: InvestigationRequest) -> StreamHandle:
        payload = request.model_dump(by_alias=True, exclude_none=True)
        log.info("Opening investigation stream (resume=%s)", request.resume_from_category,
                 extra={"session_id": "-", "stage": "investigation"})
        return await self._open_stream(INVESTIGATE_PATH, payload)

    async def open_generation(self, request: GenerationRequest) -> StreamHandle:
        payload = request.model_dump(by_alias=True, exclude_none=True)
        log.info("Opening generation stream", extra={"session_id": "-", "stage": "build"})
        return await self._open_stream(GENERATE_PATH, payload)

    async def refine(self, message: str, artifact: GeneratedArtifact | None) -> dict:
        payload = {
            "message": message,
            "currentWebsite": artifact.model_dump(by_alias=True) if artifact else None,
        }
        async with self._client(self.timeout) as client:
            r = await client.post(CHAT_PATH, json=payload)
            if r.status_code >= 400:
                raise BackendError.from_message(r.text or r.reason_phrase, status_code=r.status_code)
            return r.json()

    async def download_package(self, artifact: GeneratedArtifact) -> bytes:
        payload = {"manifest": artifact.manifest, "files": artifact.files}
        async with self._client(self.timeout) as client:
            r = await client.post(DOWNLOAD_PATH, json=payload)
            if r.status_code >= 400:
                raise BackendError.from_message(r.text or r.reason_phrase, status_code=r.status_code)
            return r.content
