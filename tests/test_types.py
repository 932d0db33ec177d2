"""
Tests for Faultline rule types.

Tests from_dict/to_dict of rules and global configuration, including the
camelCase and legacy keys found in older rule files.
"""

import pytest

from faultline.engine.types import (
    BypassConfig,
    FieldOmitPolicy,
    GlobalConfig,
    NETWORK_PROFILES,
    NetworkPolicy,
    RandomOmitPolicy,
    ResponsePolicy,
    Rule,
    normalize_method,
)
from faultline.errors import RuleConfigError


class TestNormalizeMethod:
    """Test HTTP method normalization."""

    @pytest.mark.parametrize('raw,expected', [
        ('get', 'GET'),
        ('Post', 'POST'),
        (' patch ', 'PATCH'),
        ('DELETE', 'DELETE'),
        ('OPTIONS', 'GET'),
        ('fetch', 'GET'),
        ('', 'GET'),
        (None, 'GET'),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_method(raw) == expected


class TestNetworkPolicy:
    """Test network policy parsing."""

    def test_defaults(self):
        policy = NetworkPolicy.from_dict(None)

        assert policy.delay is None
        assert policy.profile is None
        assert policy.error_mode == 'none'
        assert policy.fail_rate == 0.0

    def test_camel_case_keys(self):
        policy = NetworkPolicy.from_dict({'delay': 200, 'errorMode': 'timeout', 'failRate': 15})

        assert policy.delay == 200
        assert policy.error_mode == 'timeout'
        assert policy.fail_rate == 15.0

    def test_legacy_timeout_flag(self):
        assert NetworkPolicy.from_dict({'timeout': True}).error_mode == 'timeout'

    def test_legacy_offline_flag(self):
        assert NetworkPolicy.from_dict({'offline': True, 'timeout': False}).error_mode == 'offline'

    def test_error_mode_beats_legacy_flags(self):
        assert NetworkPolicy.from_dict({'errorMode': 'none', 'offline': True}).error_mode == 'none'

    def test_fail_rate_clamped(self):
        assert NetworkPolicy.from_dict({'failRate': 250}).fail_rate == 100.0
        assert NetworkPolicy.from_dict({'failRate': -5}).fail_rate == 0.0

    def test_negative_delay_clamped(self):
        assert NetworkPolicy.from_dict({'delay': -100}).delay == 0

    def test_invalid_error_mode(self):
        with pytest.raises(RuleConfigError, match='Unknown error mode'):
            NetworkPolicy.from_dict({'errorMode': 'flaky'})

    def test_invalid_delay(self):
        with pytest.raises(RuleConfigError):
            NetworkPolicy.from_dict({'delay': 'slow'})

    def test_invalid_fail_rate(self):
        with pytest.raises(RuleConfigError):
            NetworkPolicy.from_dict({'failRate': 'often'})


class TestResponsePolicy:
    """Test response policy parsing."""

    def test_camel_case_keys(self):
        policy = ResponsePolicy.from_dict({
            'status': 200,
            'errNo': 1001,
            'errMsg': 'Bad password',
            'detailErrMsg': 'hash mismatch',
            'result': {'ok': False},
        })

        assert policy.err_no == 1001
        assert policy.err_msg == 'Bad password'
        assert policy.detail_err_msg == 'hash mismatch'
        assert policy.result == {'ok': False}

    def test_business_section(self):
        """Test that business fields can live in their own section."""
        policy = ResponsePolicy.from_dict({'status': 200}, {'errNo': 7, 'errMsg': 'Busy'})

        assert policy.err_no == 7
        assert policy.err_msg == 'Busy'

    def test_response_section_wins_over_business(self):
        policy = ResponsePolicy.from_dict({'errNo': 1}, {'errNo': 2})

        assert policy.err_no == 1

    def test_custom_result_key(self):
        assert ResponsePolicy.from_dict({'customResult': [1, 2]}).result == [1, 2]

    def test_invalid_status(self):
        with pytest.raises(RuleConfigError):
            ResponsePolicy.from_dict({'status': 'teapot'})

    def test_invalid_err_no(self):
        with pytest.raises(RuleConfigError, match='err_no must be an integer'):
            ResponsePolicy.from_dict({'errNo': 'E42'})

    def test_section_not_a_mapping(self):
        with pytest.raises(RuleConfigError, match='response must be a mapping'):
            ResponsePolicy.from_dict(['status', 200])

    def test_business_error_has_null_result(self):
        policy = ResponsePolicy.from_dict(
            {'customResult': {'ok': True}}, {'errNo': 4001, 'errMsg': 'Locked'}, mock_type='businessError'
        )

        assert policy.err_no == 4001
        assert policy.err_msg == 'Locked'
        assert policy.result is None

    def test_success_ignores_business(self):
        policy = ResponsePolicy.from_dict({'customResult': [1]}, {'errNo': 4001}, mock_type='success')

        assert policy.err_no == 0
        assert policy.result == [1]


class TestFieldOmitPolicy:
    """Test field omission policy parsing."""

    def test_random_defaults(self):
        policy = RandomOmitPolicy.from_dict({})

        assert policy.depth_limit == 5
        assert policy.omit_mode == 'delete'
        assert policy.seed is None

    def test_camel_case_random(self):
        policy = FieldOmitPolicy.from_dict({
            'enabled': True,
            'mode': 'random',
            'random': {
                'probability': 30,
                'maxOmitCount': 2,
                'excludeFields': ['result.id'],
                'depthLimit': 3,
                'omitMode': 'null',
                'seed': '42',
            },
        })

        assert policy.enabled
        assert policy.mode == 'random'
        assert policy.random.max_omit_count == 2
        assert policy.random.exclude_fields == ['result.id']
        assert policy.random.depth_limit == 3
        assert policy.random.omit_mode == 'null'
        assert policy.random.seed == 42

    def test_invalid_mode(self):
        with pytest.raises(RuleConfigError):
            FieldOmitPolicy.from_dict({'mode': 'everything'})

    def test_invalid_omit_mode(self):
        with pytest.raises(RuleConfigError):
            RandomOmitPolicy.from_dict({'omitMode': 'blank'})

    @pytest.mark.parametrize('data', [
        {'maxOmitCount': 'two'},
        {'depthLimit': 'deep'},
        {'seed': 'abc'},
    ])
    def test_invalid_numbers(self, data):
        with pytest.raises(RuleConfigError, match='must be an integer'):
            RandomOmitPolicy.from_dict(data)

    def test_random_section_not_a_mapping(self):
        with pytest.raises(RuleConfigError):
            FieldOmitPolicy.from_dict({'mode': 'random', 'random': 30})


class TestRule:
    """Test rule parsing."""

    def test_minimal_rule(self):
        rule = Rule.from_dict({'url': '/api/x'})

        assert rule.id == 'GET /api/x'
        assert rule.method == 'GET'
        assert rule.enabled
        assert rule.response.status == 200

    def test_url_pattern_key(self):
        rule = Rule.from_dict({'urlPattern': '/api/user/:id', 'method': 'put'})

        assert rule.url == '/api/user/:id'
        assert rule.method == 'PUT'

    def test_field_omit_camel_case(self):
        rule = Rule.from_dict({'url': '/x', 'fieldOmit': {'enabled': True, 'fields': ['a']}})

        assert rule.field_omit.enabled
        assert rule.field_omit.fields == ['a']

    def test_missing_url(self):
        with pytest.raises(RuleConfigError, match='has no url'):
            Rule.from_dict({'id': 'broken'})

    def test_not_a_mapping(self):
        with pytest.raises(RuleConfigError):
            Rule.from_dict(['/api/x'])

    def test_network_not_a_mapping(self):
        with pytest.raises(RuleConfigError, match='network must be a mapping'):
            Rule.from_dict({'url': '/x', 'network': 'offline'})

    def test_mock_type_none_passes_through(self):
        rule = Rule.from_dict({'url': '/x', 'mockType': 'none', 'response': {'customResult': {'a': 1}}})

        assert rule.passthrough
        assert Rule.from_dict(rule.to_dict()).passthrough

    def test_mock_type_business_error(self):
        rule = Rule.from_dict({
            'url': '/x',
            'mockType': 'businessError',
            'business': {'errNo': 500100, 'errMsg': 'Session expired'},
            'response': {'customResult': {'a': 1}},
        })

        assert not rule.passthrough
        assert rule.response.err_no == 500100
        assert rule.response.result is None

    def test_other_mock_types_are_mocked(self):
        assert not Rule.from_dict({'url': '/x', 'mockType': 'success'}).passthrough
        assert not Rule.from_dict({'url': '/x', 'mockType': 'networkError'}).passthrough
        assert not Rule.from_dict({'url': '/x'}).passthrough

    def test_unknown_mock_type(self):
        with pytest.raises(RuleConfigError, match='Unknown mock type'):
            Rule.from_dict({'url': '/x', 'mockType': 'sometimes'})

    def test_rule_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            Rule.from_dict({})

    def test_round_trip_through_dict(self):
        rule = Rule.from_dict({
            'id': 'login',
            'url': '/api/login',
            'method': 'POST',
            'network': {'delay': 10, 'errorMode': 'offline'},
            'response': {'status': 201, 'result': {'token': 't'}},
        })

        assert Rule.from_dict(rule.to_dict()) == rule

    def test_rules_are_frozen(self):
        rule = Rule(id='a', url='/a')

        with pytest.raises(AttributeError):
            rule.url = '/b'

    def test_with_changes(self):
        rule = Rule(id='a', url='/a')

        disabled = rule.with_changes(enabled=False)

        assert not disabled.enabled
        assert rule.enabled


class TestGlobalConfig:
    """Test global configuration parsing."""

    def test_defaults(self):
        config = GlobalConfig.from_dict({})

        assert config.enabled
        assert config.bypass.methods == ['OPTIONS']
        assert config.strip_prefixes == []
        assert config.profile_table() == NETWORK_PROFILES

    def test_match_section(self):
        config = GlobalConfig.from_dict({'match': {'stripPrefixes': ['/proxy']}})

        assert config.strip_prefixes == ['/proxy']

    def test_camel_case(self):
        config = GlobalConfig.from_dict({
            'networkProfile': 'slow3g',
            'networkProfiles': {'lab': '75'},
            'logLevel': 'DEBUG',
            'bypass': {'methods': ['options', 'head'], 'contentTypes': ['multipart/']},
        })

        assert config.network_profile == 'slow3g'
        assert config.profile_table()['lab'] == 75
        assert config.log_level == 'debug'
        assert config.bypass == BypassConfig(methods=['OPTIONS', 'HEAD'], content_types=['multipart/'])

    def test_invalid_profiles(self):
        with pytest.raises(RuleConfigError):
            GlobalConfig.from_dict({'networkProfiles': {'lab': 'fast'}})

    def test_round_trip_through_dict(self):
        config = GlobalConfig.from_dict({'networkProfile': '2g', 'strip_prefixes': ['/dev']})

        assert GlobalConfig.from_dict(config.to_dict()) == config

    def test_match_not_a_mapping(self):
        with pytest.raises(RuleConfigError):
            GlobalConfig.from_dict({'match': ['/proxy']})


class TestGlobalConfigMerge:
    """Test partial updates of the global configuration."""

    def test_camel_case_keys_replace_values(self):
        config = GlobalConfig.from_dict({'networkProfile': 'fast4g', 'strip_prefixes': ['/old']})

        merged = config.merged({'networkProfile': 'slow3g', 'match': {'stripPrefixes': ['/proxy']}})

        assert merged.network_profile == 'slow3g'
        assert merged.strip_prefixes == ['/proxy']

    def test_unmentioned_keys_kept(self):
        config = GlobalConfig.from_dict({'networkProfile': '2g', 'bypass': {'methods': ['HEAD']}})

        merged = config.merged({'enabled': False})

        assert not merged.enabled
        assert merged.network_profile == '2g'
        assert merged.bypass.methods == ['HEAD']

    def test_snake_case_keys(self):
        merged = GlobalConfig().merged({'network_profiles': {'lab': 80}, 'log_level': 'INFO'})

        assert merged.profile_table()['lab'] == 80
        assert merged.log_level == 'info'

    def test_explicit_null_clears_profile(self):
        merged = GlobalConfig(network_profile='2g').merged({'network_profile': None})

        assert merged.network_profile is None

    def test_invalid_value(self):
        with pytest.raises(RuleConfigError):
            GlobalConfig().merged({'networkProfiles': {'lab': 'fast'}})
