"""
Faultline Mitmproxy Addon

Mitmproxy addon that answers proxied requests from Faultline rules.
Matched requests never reach the real server: they get a synthetic
response, or the flow is killed to simulate a network failure.

Run it with:
    FAULTLINE_RULES=rules.yaml mitmdump -s mitm_addon.py
or through ``faultline proxy rules.yaml``.
"""

import json
import logging
import os
from typing import Optional

from mitmproxy import http

from faultline.common import RuleLoader, configure_logging
from faultline.engine.field_omit import to_jsonable
from faultline.engine.network import CancellationToken
from faultline.engine.pipeline import InterceptionPipeline, RequestState
from faultline.engine.types import InterceptRequest

logger = logging.getLogger("faultline.proxy")

TOKEN_METADATA = 'faultline_token'
STATE_METADATA = 'faultline_state'
RULE_HEADER = 'X-Faultline-Rule'


class FaultlineAddon:
    """
    Mitmproxy addon running each request through an InterceptionPipeline.

    The rule file is read lazily from the FAULTLINE_RULES environment
    variable unless a pipeline is passed in directly.
    """

    def __init__(self, pipeline: Optional[InterceptionPipeline] = None):
        """
        Initialize addon.

        Args:
            pipeline: Pipeline to install; built from FAULTLINE_RULES if None
        """
        self.pipeline: Optional[InterceptionPipeline] = None
        self.initialized = False

        if pipeline is not None:
            pipeline.install(self)
            self.initialized = True

    def attach(self, pipeline: InterceptionPipeline) -> None:
        self.pipeline = pipeline

    def detach(self) -> None:
        self.pipeline = None

    def _lazy_init(self) -> None:
        """
        Build the pipeline from environment configuration on first use.

        Mitmproxy may re-import the addon module, so configuration travels
        through environment variables instead of constructor arguments.
        """
        if self.initialized:
            return
        self.initialized = True

        configure_logging(os.environ.get('FAULTLINE_LOG_LEVEL', 'info'))

        rules_file = os.environ.get('FAULTLINE_RULES', '')
        if not rules_file:
            logger.warning("FAULTLINE_RULES not set, all traffic passes through")
            InterceptionPipeline().install(self)
            return

        rules, config = RuleLoader(rules_file).load()
        InterceptionPipeline(rules, config).install(self)
        logger.info(f"Loaded {len(rules)} rules from {rules_file}")

    async def request(self, flow: http.HTTPFlow) -> None:
        """
        Called when a client request has been read.

        Args:
            flow: The HTTP flow; ``flow.response`` is set for mocked requests
        """
        self._lazy_init()
        if self.pipeline is None:
            return

        token = CancellationToken()
        flow.metadata[TOKEN_METADATA] = token

        req = flow.request
        intercept = InterceptRequest(
            url=req.pretty_url,
            method=req.method,
            content_type=req.headers.get('content-type'),
        )
        result = await self.pipeline.handle(intercept, token)
        flow.metadata[STATE_METADATA] = result.state.value

        if result.passed_through:
            return

        if result.state is RequestState.RESOLVED:
            response = result.response
            flow.response = http.Response.make(
                response.status,
                json.dumps(to_jsonable(response.body)).encode('utf-8'),
                {'Content-Type': 'application/json', RULE_HEADER: result.rule.id}
            )
            return

        # Failed or aborted: drop the connection like a dead network would
        if result.outcome is not None:
            flow.metadata['faultline_outcome'] = result.outcome.value
        if flow.killable:
            flow.kill()

    def error(self, flow: http.HTTPFlow) -> None:
        """Called on flow errors such as a client disconnect."""
        token = flow.metadata.get(TOKEN_METADATA)
        if token is not None:
            token.cancel()


# Module-level addon list - mitmproxy looks for this
addons = [FaultlineAddon()]
