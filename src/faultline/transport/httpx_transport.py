"""
Faultline httpx Transport

An ``httpx.AsyncBaseTransport`` that runs every request through an
InterceptionPipeline before (maybe) handing it to a real transport.

Example:
    pipeline = InterceptionPipeline(rules)
    transport = InterceptingTransport(pipeline)

    async with httpx.AsyncClient(transport=transport, base_url="http://api.local") as client:
        token = CancellationToken()
        response = await client.get("/api/user/1", extensions={TOKEN_EXTENSION: token})
"""

import logging
from typing import Optional

import httpx

from ..engine.field_omit import to_jsonable
from ..engine.pipeline import InterceptionPipeline
from ..engine.types import InterceptRequest
from ..errors import SimulatedNetworkError, SimulatedTimeout

logger = logging.getLogger("faultline.transport")

# Request extension key carrying a CancellationToken
TOKEN_EXTENSION = 'faultline.token'
RULE_HEADER = 'X-Faultline-Rule'


class InterceptingTransport(httpx.AsyncBaseTransport):
    """
    httpx transport with Faultline interception.

    Pass-through requests go to ``inner``. Simulated failures are raised as
    the httpx exceptions a real network problem would produce:
    ``httpx.ReadTimeout`` for timeouts, ``httpx.ConnectError`` for offline
    and random failures. Cancelled requests raise RequestAborted.
    """

    def __init__(
        self,
        pipeline: Optional[InterceptionPipeline] = None,
        inner: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize transport.

        Args:
            pipeline: Pipeline to install onto this transport
            inner: Transport for pass-through requests
                (httpx.AsyncHTTPTransport if None)
        """
        self.inner = inner or httpx.AsyncHTTPTransport()
        self.pipeline: Optional[InterceptionPipeline] = None
        if pipeline is not None:
            pipeline.install(self)

    def attach(self, pipeline: InterceptionPipeline) -> None:
        self.pipeline = pipeline

    def detach(self) -> None:
        self.pipeline = None

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        pipeline = self.pipeline
        if pipeline is None:
            return await self.inner.handle_async_request(request)

        intercept = InterceptRequest(
            url=str(request.url),
            method=request.method,
            content_type=request.headers.get('content-type'),
        )
        result = await pipeline.handle(intercept, request.extensions.get(TOKEN_EXTENSION))

        if result.passed_through:
            logger.debug(f"{request.method} {request.url} {result.state.value}, sending to inner transport")
            return await self.inner.handle_async_request(request)

        try:
            result.raise_for_state()
        except SimulatedTimeout as e:
            raise httpx.ReadTimeout(str(e), request=request) from e
        except SimulatedNetworkError as e:
            raise httpx.ConnectError(str(e), request=request) from e

        response = result.response
        headers = {RULE_HEADER: result.rule.id}
        if response.status in (204, 304):
            return httpx.Response(response.status, headers=headers, request=request)

        return httpx.Response(
            response.status,
            json=to_jsonable(response.body),
            headers=headers,
            request=request,
        )

    async def aclose(self) -> None:
        await self.inner.aclose()
