"""
ExternalWorkerClient: forwards an execution request to an out-of-process
worker over HTTP and waits for the reply, bounded by a timeout.

- timeout → BackendTimeoutError at once; a best-effort
  ``POST /cancel/{invocation_id}`` goes out in the background
- connect/read failures, 5xx, malformed or mismatched replies → BackendUnavailableError
- caller cancellation → best-effort cancel (bounded by the cancel timeout), then
  the CancelledError propagates

Cancel requests use their own short-lived client, never the one whose request
failed.
"""

import asyncio
import logging
from typing import Any

import httpx
import pydantic

from scriptstep.engines.errors import BackendTimeoutError, BackendUnavailableError
from scriptstep.engines.mode import ExecutionRequest
from scriptstep.schemas import CapabilityProjection, WorkerRequest, WorkerResponse

_log = logging.getLogger(__name__)

# Background cancel requests; a reference is kept until each one finishes
_pending_cancels: set["asyncio.Task[None]"] = set()


async def wait_for_pending_cancels() -> None:
    """Wait until every background cancel request has finished."""
    if _pending_cancels:
        await asyncio.gather(*list(_pending_cancels), return_exceptions=True)


class ExternalWorkerClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float,
        cancel_timeout: float = 2.0,
        auth_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._cancel_timeout = cancel_timeout
        self._transport = transport
        self._headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
        )

    async def execute(self, request: ExecutionRequest, projection: dict[str, Any]) -> WorkerResponse:
        body = WorkerRequest(
            script_unit=request.script,
            capability_context=CapabilityProjection.model_validate(projection),
            input_records=list(request.records),
            indexes=list(request.indexes),
            mode=request.mode,
            invocation_id=request.invocation_id,
        ).to_wire()
        extra = {"invocation_id": request.invocation_id, "worker": self._base_url}

        try:
            async with self._client(self._timeout) as client:
                resp = await asyncio.wait_for(client.post("/execute", json=body), self._timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            _log.warning("worker request timed out after %ss", self._timeout, extra=extra)
            self._cancel_in_background(request.invocation_id)
            raise BackendTimeoutError(
                f"External worker did not answer within {self._timeout}s"
            ) from e
        except asyncio.CancelledError:
            _log.info("worker request cancelled by caller", extra=extra)
            await self._cancel(request.invocation_id)
            raise
        except httpx.HTTPError as e:
            _log.error("worker unreachable: %s", e, extra=extra)
            raise BackendUnavailableError(f"External worker unreachable: {e}") from e

        return self._parse(resp, request.invocation_id)

    def _parse(self, resp: httpx.Response, invocation_id: str) -> WorkerResponse:
        if resp.status_code >= 400:
            raise BackendUnavailableError(
                f"External worker answered HTTP {resp.status_code}: {resp.text[:200]}"
            )
        try:
            reply = WorkerResponse.model_validate(resp.json())
        except (ValueError, pydantic.ValidationError) as e:
            raise BackendUnavailableError(f"External worker sent a malformed reply: {e}") from e
        if reply.invocation_id != invocation_id:
            # Late or duplicate reply for another invocation
            _log.warning(
                "discarding worker reply for %s while waiting for %s",
                reply.invocation_id,
                invocation_id,
            )
            raise BackendUnavailableError(
                f"External worker replied for invocation '{reply.invocation_id}', "
                f"expected '{invocation_id}'"
            )
        return reply

    def _cancel_in_background(self, invocation_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._cancel(invocation_id))
        _pending_cancels.add(task)
        task.add_done_callback(_pending_cancels.discard)

    async def _cancel(self, invocation_id: str) -> None:
        """Best-effort ``POST /cancel/{id}`` on a fresh client; failures are logged, never raised."""
        try:
            async with self._client(self._cancel_timeout) as client:
                resp = await asyncio.wait_for(
                    client.post(f"/cancel/{invocation_id}"), self._cancel_timeout
                )
        except (asyncio.TimeoutError, httpx.HTTPError) as e:
            _log.warning("cancel of %s failed: %s", invocation_id, str(e) or type(e).__name__)
            return
        _log.debug("cancel of %s answered HTTP %s", invocation_id, resp.status_code)
