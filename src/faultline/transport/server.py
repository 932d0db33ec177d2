"""
Faultline Mock Server

FastAPI-based development server that answers requests from Faultline rules.

Features:
- Rule matching with path parameters
- Simulated latency, timeouts, offline and random failures
- Envelope and HTTP error responses with field omission
- Pass-through proxying to a real upstream
- Admin API for runtime rule and configuration updates
- Metrics and logging
"""

from __future__ import annotations  # Enable forward references for type hints

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Dict, Any, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from ..common import RuleLoader, configure_logging, parse_rule_document
from ..engine.field_omit import to_jsonable
from ..engine.network import CancellationToken, Outcome
from ..engine.pipeline import InterceptionPipeline, InterceptResult, RequestState
from ..engine.types import InterceptRequest, Rule
from ..errors import RuleConfigError

FAILURE_HEADER = 'X-Faultline-Failure'
RULE_HEADER = 'X-Faultline-Rule'
MATCHED_HEADER = 'X-Faultline-Matched'

# Headers that must not be copied between proxied requests/responses
HOP_BY_HOP_HEADERS = {'host', 'content-length', 'transfer-encoding', 'connection', 'content-encoding'}


@dataclass
class ServerConfig:
    """Configuration for the mock server process."""

    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "info"

    # Pass-through target; None answers unmatched requests with fallback_status
    upstream: Optional[str] = None
    upstream_timeout: float = 30.0
    fallback_status: int = 404

    # Status codes standing in for simulated transport failures
    timeout_status: int = 504
    offline_status: int = 502

    # How often a pending request checks for a client disconnect
    disconnect_poll_interval: float = 0.1

    # Admin API
    admin_enabled: bool = True
    admin_prefix: str = "/__faultline__"


class MockServer:
    """
    FastAPI server serving Faultline rules.

    Example:
        # Load rules and start server
        server = MockServer('rules.yaml')
        server.start(port=8080)

        # Proxy everything no rule claims to a real backend
        server = MockServer('rules.yaml', config=ServerConfig(upstream='http://localhost:3000'))
        server.start()
    """

    def __init__(
        self,
        rules_file: Optional[str] = None,
        config: Optional[ServerConfig] = None,
        pipeline: Optional[InterceptionPipeline] = None,
        upstream_transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize mock server.

        Args:
            rules_file: Optional YAML/JSON rule file
            config: Optional ServerConfig for server behavior
            pipeline: Optional InterceptionPipeline (will create if None)
            upstream_transport: Optional httpx transport for pass-through
                requests (mainly for tests)
        """
        self.config = config or ServerConfig()
        self.rules_file = rules_file
        self.upstream_transport = upstream_transport

        self.logger = logging.getLogger("faultline.server")

        self.pipeline = pipeline or InterceptionPipeline()
        if rules_file:
            self.reload_rules()

        self.attached = False
        self.app = self._create_app()
        if not self.pipeline.install(self):
            self.logger.warning(
                f"Pipeline is already installed on {type(self.pipeline.transport).__name__}; "
                "all requests will be passed through"
            )

    def attach(self, pipeline: InterceptionPipeline) -> None:
        self.pipeline = pipeline
        self.attached = True

    def detach(self) -> None:
        # Without a pipeline every request is passed through
        self.attached = False

    def reload_rules(self) -> None:
        """Reload rules and global config from the rule file."""
        rules, global_config = RuleLoader(self.rules_file).load()
        self.pipeline.refresh(rules, global_config)
        self.logger.info(f"Loaded {len(rules)} rules from {self.rules_file}")

    def _create_app(self) -> FastAPI:
        """Create FastAPI application with routes."""
        app = FastAPI(
            title="Faultline Mock Server",
            description="Development server answering requests from fault injection rules",
            version="1.0.0"
        )

        if self.config.admin_enabled:
            prefix = self.config.admin_prefix

            @app.get(f"{prefix}/metrics")
            async def get_metrics():
                """Get server metrics."""
                return JSONResponse(content=self.pipeline.metrics.to_dict())

            @app.post(f"{prefix}/reset")
            async def reset_metrics():
                """Reset metrics."""
                self.pipeline.reset_metrics()
                return JSONResponse(content={'status': 'reset'})

            @app.get(f"{prefix}/rules")
            async def list_rules():
                """List the current rule table."""
                rules = [rule.to_dict() for rule in self.pipeline.rules]
                return JSONResponse(content=to_jsonable({'total': len(rules), 'rules': rules}))

            @app.put(f"{prefix}/rules")
            async def replace_rules(request: Request):
                """Replace the rule table; body is a list of rules or {"rules": [...]}."""
                try:
                    body = await request.json()
                except ValueError:
                    return JSONResponse(content={'error': 'Body must be JSON'}, status_code=400)

                raw_rules = body.get('rules', []) if isinstance(body, dict) else body
                try:
                    rules, _ = parse_rule_document({'rules': raw_rules}, 'request body')
                except RuleConfigError as e:
                    return JSONResponse(content={'error': str(e)}, status_code=400)

                self.pipeline.refresh(rules=rules)
                return JSONResponse(content={'status': 'updated', 'total': len(rules)})

            @app.get(f"{prefix}/config")
            async def get_config():
                """Get current global configuration."""
                return JSONResponse(content=self.pipeline.config.to_dict())

            @app.post(f"{prefix}/config")
            async def update_config(request: Request):
                """Update global configuration; omitted keys keep their value."""
                try:
                    body = await request.json()
                except ValueError:
                    return JSONResponse(content={'error': 'Body must be JSON'}, status_code=400)
                if not isinstance(body, dict):
                    return JSONResponse(content={'error': 'Body must be a JSON object'}, status_code=400)

                try:
                    config = self.pipeline.config.merged(body)
                except RuleConfigError as e:
                    return JSONResponse(content={'error': str(e)}, status_code=400)

                self.pipeline.refresh(config=config)
                if 'log_level' in body or 'logLevel' in body:
                    configure_logging(config.log_level)
                return JSONResponse(content={'status': 'updated'})

            @app.post(f"{prefix}/match")
            async def dry_run_match(request: Request):
                """Show which rule would handle {"method": ..., "url": ...} without running it."""
                try:
                    body = await request.json()
                except ValueError:
                    return JSONResponse(content={'error': 'Body must be JSON'}, status_code=400)
                if not isinstance(body, dict) or not body.get('url'):
                    return JSONResponse(content={'error': "Body needs a 'url'"}, status_code=400)

                return JSONResponse(content=self.describe_match(body.get('method', 'GET'), body['url']))

        # Main catch-all route for mocking
        @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"])
        async def mock_request(request: Request, path: str):
            """Handle incoming requests through the interception pipeline."""
            return await self._handle_request(request)

        return app

    def describe_match(self, method: str, url: str) -> Dict[str, Any]:
        """
        Dry-run match of a request against the current rules.

        Args:
            method: HTTP method
            url: Request path or URL

        Returns:
            Match details with the delay the rule would apply
        """
        match_url = self.pipeline.match_url(url)
        result = self.pipeline.matcher.find_match(self.pipeline.rules, match_url, method)
        details = result.to_dict()
        details['match_url'] = match_url
        if result.matched:
            details['delay_ms'] = self.pipeline.simulator.resolve_delay(result.rule, self.pipeline.config)
            details['error_mode'] = result.rule.network.error_mode
            details['fail_rate'] = result.rule.network.fail_rate
            details['passthrough'] = result.rule.passthrough
        return details

    async def _watch_disconnect(self, request: Request, token: CancellationToken) -> None:
        """Cancel the token when the client goes away."""
        while not token.cancelled:
            if await request.is_disconnected():
                self.logger.debug(f"Client disconnected: {request.method} {request.url}")
                token.cancel()
                return
            await asyncio.sleep(self.config.disconnect_poll_interval)

    async def _handle_request(self, request: Request) -> Response:
        """
        Handle incoming request.

        Args:
            request: FastAPI Request object

        Returns:
            Response built from the pipeline result
        """
        # Read body first; disconnect polling consumes receive() messages
        body = await request.body()

        if not self.attached:
            return await self._pass_through(request, body)

        intercept = InterceptRequest(
            url=str(request.url),
            method=request.method,
            content_type=request.headers.get('content-type'),
        )
        token = CancellationToken()
        watcher = asyncio.ensure_future(self._watch_disconnect(request, token))
        try:
            result = await self.pipeline.handle(intercept, token)
        finally:
            watcher.cancel()

        if result.passed_through:
            return await self._pass_through(request, body, result)

        if result.state is RequestState.ABORTED:
            # Client is gone, nobody reads this
            return Response(status_code=499)

        if result.state is RequestState.FAILED:
            status = self.config.timeout_status if result.outcome is Outcome.TIMEOUT else self.config.offline_status
            return Response(
                status_code=status,
                headers={FAILURE_HEADER: result.outcome.value, RULE_HEADER: result.rule.id}
            )

        return self._create_response(result)

    def _create_response(self, result: InterceptResult) -> Response:
        """Turn a resolved pipeline result into a FastAPI response."""
        response = result.response
        headers = {RULE_HEADER: result.rule.id, MATCHED_HEADER: 'true'}

        if response.status in (204, 304) or response.status < 200:
            return Response(status_code=response.status, headers=headers)

        return JSONResponse(
            content=to_jsonable(response.body),
            status_code=response.status,
            headers=headers
        )

    async def _pass_through(
        self,
        request: Request,
        body: bytes,
        result: Optional[InterceptResult] = None
    ) -> Response:
        """Proxy to the upstream, or answer with the fallback response."""
        if not self.config.upstream:
            return JSONResponse(
                content={
                    'error': 'No matching rule',
                    'state': result.state.value if result else 'detached',
                    'reason': result.reason if result else 'interception not installed',
                    'method': request.method,
                    'path': request.url.path,
                },
                status_code=self.config.fallback_status,
                headers={MATCHED_HEADER: 'false'}
            )

        target = self.config.upstream.rstrip('/') + request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"

        forward_headers = {
            k: v for k, v in request.headers.items()
            if k.lower() not in HOP_BY_HOP_HEADERS
        }

        client_kwargs: Dict[str, Any] = {'timeout': self.config.upstream_timeout}
        if self.upstream_transport is not None:
            client_kwargs['transport'] = self.upstream_transport

        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                upstream = await client.request(
                    method=request.method,
                    url=target,
                    headers=forward_headers,
                    content=body
                )
        except httpx.RequestError as e:
            self.logger.warning(f"Upstream request failed for {request.method} {target}: {e}")
            return JSONResponse(
                content={'error': 'Upstream request failed', 'detail': str(e)},
                status_code=502,
                headers={MATCHED_HEADER: 'false'}
            )

        response_headers = {
            k: v for k, v in upstream.headers.items()
            if k.lower() not in HOP_BY_HOP_HEADERS
        }
        response_headers[MATCHED_HEADER] = 'false'
        return Response(content=upstream.content, status_code=upstream.status_code, headers=response_headers)

    def start(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        access_log: bool = True
    ):
        """
        Start the mock server.

        Args:
            host: Host to bind to (overrides config)
            port: Port to bind to (overrides config)
            access_log: Enable access logging
        """
        actual_host = host or self.config.host
        actual_port = port or self.config.port

        print(f"Faultline Mock Server starting...")
        print(f"   Host: {actual_host}:{actual_port}")
        print(f"   Rules loaded: {len(self.pipeline.rules)}")
        if self.config.upstream:
            print(f"   Upstream: {self.config.upstream}")
        if self.config.admin_enabled:
            print(f"   Admin API: http://{actual_host}:{actual_port}{self.config.admin_prefix}/rules")
        print()

        uvicorn.run(
            self.app,
            host=actual_host,
            port=actual_port,
            log_level=self.config.log_level,
            access_log=access_log
        )

    def get_app(self) -> FastAPI:
        """
        Get the FastAPI app instance for testing or custom deployment.

        Returns:
            FastAPI application instance
        """
        return self.app


def create_mock_server(
    rules_file: Optional[str] = None,
    rules: Optional[List[Rule]] = None,
    host: str = "127.0.0.1",
    port: int = 8080,
    upstream: Optional[str] = None,
    admin_enabled: bool = True,
    log_level: str = "info"
) -> MockServer:
    """
    Convenience function to create and configure a mock server.

    Args:
        rules_file: YAML/JSON rule file
        rules: Rules to serve when no file is given
        host: Host to bind to
        port: Port to bind to
        upstream: Base URL for pass-through requests
        admin_enabled: Enable the admin API
        log_level: Server log level

    Returns:
        Configured MockServer instance

    Example:
        server = create_mock_server('rules.yaml', port=8080, upstream='http://localhost:3000')
        server.start()
    """
    config = ServerConfig(
        host=host,
        port=port,
        upstream=upstream,
        admin_enabled=admin_enabled,
        log_level=log_level
    )
    pipeline = InterceptionPipeline(rules or [])
    return MockServer(rules_file, config=config, pipeline=pipeline)
