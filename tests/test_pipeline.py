"""
Tests for Faultline Interception Pipeline

Tests the request state machine including:
- Bypass predicates and unmatched pass-through
- Resolved, failed and aborted requests
- Snapshot refresh and idempotent installation
- Path prefix stripping and metrics
"""

import asyncio
import logging

import pytest

from faultline.engine.network import CancellationToken, NetworkSimulator, Outcome
from faultline.engine.pipeline import BypassFilter, InterceptionPipeline, RequestState
from faultline.engine.response import ENVELOPE
from faultline.engine.types import BypassConfig, GlobalConfig, InterceptRequest, Rule
from faultline.errors import RequestAborted, SimulatedNetworkError, SimulatedOffline, SimulatedTimeout


LOGIN_RULE = {
    'url': '/api/user/login',
    'method': 'POST',
    'network': {'delay': 0},
    'response': {'status': 200, 'errNo': 0, 'result': {'token': 't'}},
}


def handle(pipeline, url, method='GET', content_type=None, token=None):
    """Run one request through the pipeline synchronously."""
    return asyncio.run(pipeline.handle(InterceptRequest(url, method, content_type), token))


class FakeTransport:
    """Transport recording attach/detach calls."""

    def __init__(self):
        self.pipeline = None
        self.calls = []

    def attach(self, pipeline):
        self.pipeline = pipeline
        self.calls.append('attach')

    def detach(self):
        self.pipeline = None
        self.calls.append('detach')


@pytest.fixture
def pipeline():
    """Pipeline with the login rule and a user detail rule."""
    rules = [
        Rule.from_dict(LOGIN_RULE),
        Rule.from_dict({'id': 'user', 'url': '/api/user/:id', 'response': {'result': {'name': 'Ada'}}}),
    ]
    return InterceptionPipeline(rules, rng=lambda: 0.25)


class TestEndToEnd:
    """Test the login scenario."""

    def test_login_resolves(self, pipeline):
        result = handle(pipeline, '/api/user/login', 'POST')

        assert result.state is RequestState.RESOLVED
        assert result.outcome is Outcome.PROCEED
        assert result.response.kind == ENVELOPE
        assert result.response.status == 200
        assert result.response.body['err_no'] == 0
        assert result.response.body['result'] == {'token': 't'}
        assert not result.passed_through

    def test_login_offline_fails_without_body(self):
        offline = dict(LOGIN_RULE, network={'delay': 0, 'errorMode': 'offline'})
        pipeline = InterceptionPipeline([Rule.from_dict(offline)])

        result = handle(pipeline, '/api/user/login', 'POST')

        assert result.state is RequestState.FAILED
        assert result.outcome is Outcome.OFFLINE
        assert result.response is None

    def test_path_params_reported(self, pipeline):
        result = handle(pipeline, 'http://localhost:3000/api/user/42?verbose=1')

        assert result.state is RequestState.RESOLVED
        assert result.rule.id == 'user'
        assert result.params == {'id': '42'}

    def test_to_dict(self, pipeline):
        data = handle(pipeline, '/api/user/42').to_dict()

        assert data['state'] == 'resolved'
        assert data['rule_id'] == 'user'
        assert data['status'] == 200


class TestPassThrough:
    """Test bypassed and unmatched requests."""

    def test_unmatched(self, pipeline):
        result = handle(pipeline, '/api/orders')

        assert result.state is RequestState.UNMATCHED
        assert result.passed_through
        assert result.response is None

    def test_method_mismatch_unmatched(self, pipeline):
        assert handle(pipeline, '/api/user/login', 'GET').state is RequestState.RESOLVED
        assert handle(pipeline, '/api/user/login', 'DELETE').state is RequestState.UNMATCHED

    def test_options_bypassed_by_default(self, pipeline):
        result = handle(pipeline, '/api/user/login', 'OPTIONS')

        assert result.state is RequestState.BYPASSED
        assert result.reason == 'method OPTIONS'

    def test_disabled_config_bypasses(self, pipeline):
        pipeline.refresh(config=GlobalConfig(enabled=False))

        result = handle(pipeline, '/api/user/login', 'POST')

        assert result.state is RequestState.BYPASSED
        assert result.reason == 'interception disabled'

    def test_pass_through_rule_wins_first_match(self):
        """Test that a mockType none rule lets the request out and shadows later rules."""
        rules = [
            Rule.from_dict({'id': 'real-login', 'url': '/api/user/login', 'method': 'POST', 'mockType': 'none'}),
            Rule.from_dict(LOGIN_RULE),
        ]
        pipeline = InterceptionPipeline(rules)

        result = handle(pipeline, '/api/user/login', 'POST')

        assert result.state is RequestState.UNMATCHED
        assert result.passed_through
        assert result.rule.id == 'real-login'
        assert result.response is None
        assert pipeline.metrics.unmatched == 1

    def test_pass_through_rule_ignores_network_policy(self):
        rule = Rule.from_dict({'url': '/api/x', 'mockType': 'none', 'network': {'errorMode': 'offline'}})

        assert handle(InterceptionPipeline([rule]), '/api/x').state is RequestState.UNMATCHED

    def test_bypass_runs_before_matching(self):
        rule = Rule(id='opt', url='/api/x', method='GET')
        pipeline = InterceptionPipeline([rule], GlobalConfig(bypass=BypassConfig(methods=['GET'])))

        assert handle(pipeline, '/api/x').state is RequestState.BYPASSED


class TestBypassFilter:
    """Test individual bypass predicates."""

    def test_content_type_prefix(self):
        bypass = BypassFilter(BypassConfig(content_types=['multipart/']))

        hit, reason = bypass.should_bypass(
            InterceptRequest('/upload', 'POST', 'Multipart/form-data; boundary=x')
        )

        assert hit
        assert reason.startswith('content type')
        assert not bypass.should_bypass(InterceptRequest('/upload', 'POST', 'application/json'))[0]

    def test_origin(self):
        bypass = BypassFilter(BypassConfig(origins=['https://cdn.example.com']))

        assert bypass.should_bypass(InterceptRequest('https://cdn.example.com/app.js'))[0]
        assert not bypass.should_bypass(InterceptRequest('https://api.example.com/app.js'))[0]

    def test_relative_url_uses_base_origin(self):
        bypass = BypassFilter(BypassConfig(origins=['http://localhost:5173']), base_origin='http://localhost:5173')

        assert bypass.should_bypass(InterceptRequest('/assets/logo.svg'))[0]

    def test_url_pattern(self):
        bypass = BypassFilter(BypassConfig(url_patterns=[r'\.(png|svg)$', r'^/health']))

        assert bypass.should_bypass(InterceptRequest('/static/logo.png'))[0]
        assert bypass.should_bypass(InterceptRequest('/health/live'))[0]
        assert not bypass.should_bypass(InterceptRequest('/api/health'))[0]

    def test_invalid_url_pattern_ignored(self, caplog):
        caplog.set_level(logging.WARNING, logger='faultline')

        bypass = BypassFilter(BypassConfig(url_patterns=['(unclosed', r'\.css$']))

        assert len(bypass.url_patterns) == 1
        assert bypass.should_bypass(InterceptRequest('/site.css'))[0]
        assert 'Invalid bypass URL pattern' in caplog.text

    def test_methods_case_insensitive(self):
        bypass = BypassFilter(BypassConfig(methods=['head']))

        assert bypass.should_bypass(InterceptRequest('/x', 'HEAD'))[0]
        assert not bypass.should_bypass(InterceptRequest('/x', 'OPTIONS'))[0]


class TestFailures:
    """Test simulated transport failures."""

    def test_timeout(self):
        rule = Rule.from_dict({'url': '/api/slow', 'network': {'errorMode': 'timeout'}})
        result = handle(InterceptionPipeline([rule]), '/api/slow')

        assert result.state is RequestState.FAILED
        assert result.outcome is Outcome.TIMEOUT

    def test_random_fail(self):
        rule = Rule.from_dict({'url': '/api/flaky', 'network': {'failRate': 50}})

        failing = handle(InterceptionPipeline([rule], rng=lambda: 0.1), '/api/flaky')
        passing = handle(InterceptionPipeline([rule], rng=lambda: 0.9), '/api/flaky')

        assert failing.outcome is Outcome.RANDOM_FAIL
        assert passing.state is RequestState.RESOLVED

    def test_failure_waits_for_delay_first(self):
        rule = Rule.from_dict({'url': '/api/slow', 'network': {'delay': 30, 'errorMode': 'timeout'}})

        result = handle(InterceptionPipeline([rule]), '/api/slow')

        assert result.state is RequestState.FAILED
        assert result.delay_ms == 30


class TestRaiseForState:
    """Test conversion of results into exceptions."""

    @pytest.mark.parametrize('network,error', [
        ({'errorMode': 'timeout'}, SimulatedTimeout),
        ({'errorMode': 'offline'}, SimulatedOffline),
    ])
    def test_failures_raise(self, network, error):
        rule = Rule.from_dict({'url': '/api/x', 'network': network})
        result = handle(InterceptionPipeline([rule]), '/api/x')

        with pytest.raises(error):
            result.raise_for_state()

    def test_random_fail_raises_network_error(self):
        rule = Rule.from_dict({'url': '/api/x', 'network': {'failRate': 100}})
        result = handle(InterceptionPipeline([rule], rng=lambda: 0.0), '/api/x')

        with pytest.raises(SimulatedNetworkError) as exc_info:
            result.raise_for_state()

        assert exc_info.value.outcome == 'random_fail'
        assert str(exc_info.value) == 'Failed to fetch'

    def test_aborted_raises(self, pipeline):
        token = CancellationToken()
        token.cancel()
        result = handle(pipeline, '/api/user/1', token=token)

        with pytest.raises(RequestAborted):
            result.raise_for_state()

    def test_resolved_does_not_raise(self, pipeline):
        handle(pipeline, '/api/user/1').raise_for_state()
        handle(pipeline, '/nowhere').raise_for_state()


class TestCancellation:
    """Test aborted requests."""

    def test_pre_cancelled_token(self):
        rule = Rule.from_dict({'url': '/api/slow', 'network': {'delay': 5000}})
        simulator = NetworkSimulator()
        pipeline = InterceptionPipeline([rule], simulator=simulator)
        token = CancellationToken()
        token.cancel()

        result = handle(pipeline, '/api/slow', token=token)

        assert result.state is RequestState.ABORTED
        assert result.reason == 'cancelled before delay'
        assert simulator.pending_timers == 0

    def test_cancel_during_delay(self):
        """Test that cancellation wins over a pending timeout failure."""
        rule = Rule.from_dict({'url': '/api/slow', 'network': {'delay': 5000, 'errorMode': 'timeout'}})
        simulator = NetworkSimulator()
        pipeline = InterceptionPipeline([rule], simulator=simulator)
        token = CancellationToken()

        async def scenario():
            asyncio.get_running_loop().call_later(0.01, token.cancel)
            return await pipeline.handle(InterceptRequest('/api/slow'), token)

        result = asyncio.run(scenario())

        assert result.state is RequestState.ABORTED
        assert result.outcome is None
        assert simulator.pending_timers == 0
        assert token.listener_count == 0

    def test_unmatched_ignores_cancelled_token(self, pipeline):
        token = CancellationToken()
        token.cancel()

        assert handle(pipeline, '/nowhere', token=token).state is RequestState.UNMATCHED


class TestRefresh:
    """Test rule table snapshots."""

    def test_refresh_replaces_rules(self, pipeline):
        pipeline.refresh(rules=[Rule(id='orders', url='/api/orders')])

        assert [rule.id for rule in pipeline.rules] == ['orders']
        assert handle(pipeline, '/api/orders').state is RequestState.RESOLVED
        assert handle(pipeline, '/api/user/1').state is RequestState.UNMATCHED

    def test_refresh_keeps_other_half(self, pipeline):
        config = GlobalConfig(network_profile='fast4g')
        pipeline.refresh(config=config)

        assert pipeline.config is config
        assert len(pipeline.rules) == 2

    def test_in_flight_request_keeps_snapshot(self):
        rule = Rule.from_dict({'id': 'slow', 'url': '/api/slow', 'network': {'delay': 30}})
        pipeline = InterceptionPipeline([rule])

        async def scenario():
            task = asyncio.ensure_future(pipeline.handle(InterceptRequest('/api/slow')))
            await asyncio.sleep(0.005)
            pipeline.refresh(rules=[])
            return await task

        result = asyncio.run(scenario())

        assert result.state is RequestState.RESOLVED
        assert result.rule.id == 'slow'
        assert handle(pipeline, '/api/slow').state is RequestState.UNMATCHED

    def test_rules_are_a_tuple(self, pipeline):
        assert isinstance(pipeline.rules, tuple)


class TestInstall:
    """Test transport installation."""

    def test_install_is_idempotent(self, pipeline):
        first = FakeTransport()
        second = FakeTransport()

        assert pipeline.install(first) is True
        assert pipeline.install(second) is False
        assert pipeline.transport is first
        assert first.calls == ['attach']
        assert second.calls == []

    def test_uninstall(self, pipeline):
        transport = FakeTransport()
        pipeline.install(transport)

        pipeline.uninstall()
        pipeline.uninstall()

        assert not pipeline.installed
        assert transport.calls == ['attach', 'detach']

    def test_reinstall_after_uninstall(self, pipeline):
        pipeline.install(FakeTransport())
        pipeline.uninstall()

        assert pipeline.install(FakeTransport()) is True


class TestMatchConfig:
    """Test prefix stripping before matching."""

    def test_strip_prefix(self):
        rule = Rule(id='user', url='/api/user/:id')
        pipeline = InterceptionPipeline([rule], GlobalConfig(strip_prefixes=['proxy/']))

        result = handle(pipeline, '/proxy/api/user/5?x=1')

        assert result.state is RequestState.RESOLVED
        assert result.params == {'id': '5'}

    def test_match_url(self):
        pipeline = InterceptionPipeline(config=GlobalConfig(strip_prefixes=['/dev']))

        assert pipeline.match_url('http://localhost:8080/dev/api/x?y=1') == '/api/x?y=1'
        assert pipeline.match_url('/devices/list') == '/devices/list'


class TestMetrics:
    """Test outcome counters."""

    def test_counts(self, pipeline):
        handle(pipeline, '/api/user/1')
        handle(pipeline, '/api/user/2')
        handle(pipeline, '/nowhere')
        handle(pipeline, '/api/user/1', 'OPTIONS')

        metrics = pipeline.metrics.to_dict()

        assert metrics['total_requests'] == 4
        assert metrics['resolved'] == 2
        assert metrics['unmatched'] == 1
        assert metrics['bypassed'] == 1
        assert metrics['mock_rate'] == 50.0

    def test_reset(self, pipeline):
        handle(pipeline, '/api/user/1')
        pipeline.reset_metrics()

        assert pipeline.metrics.total_requests == 0
        assert pipeline.metrics.to_dict()['mock_rate'] == 0
