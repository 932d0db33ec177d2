"""
Faultline Rule Types

Dataclasses describing mock rules, their network/response/field-omission
policies and the global configuration shared by every request.

All types can be built from plain dictionaries (as loaded from YAML or JSON)
via ``from_dict`` and rendered back with ``to_dict``.
"""

from dataclasses import dataclass, field, replace
from typing import List, Dict, Any, Optional

from ..errors import RuleConfigError


VALID_METHODS = ('GET', 'POST', 'PUT', 'DELETE', 'PATCH')
ERROR_MODES = ('none', 'timeout', 'offline')
OMIT_MODES = ('delete', 'undefined', 'null')
FIELD_OMIT_MODES = ('manual', 'random')
MOCK_TYPES = ('none', 'success', 'businessError', 'networkError')

# Delay table in milliseconds for named network profiles
NETWORK_PROFILES: Dict[str, int] = {
    'none': 0,
    'fast4g': 150,
    'slow3g': 500,
    '2g': 1500,
}


def normalize_method(method: Optional[str]) -> str:
    """Upper-case a method name, falling back to GET for unknown values."""
    upper = (method or '').strip().upper()
    return upper if upper in VALID_METHODS else 'GET'


def _to_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RuleConfigError(f"{name} must be an integer, got {value!r}")


def _mapping(value: Any, name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RuleConfigError(f"{name} must be a mapping, got {type(value).__name__}")
    return value


def _clamp_percent(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise RuleConfigError(f"{name} must be a number between 0 and 100, got {value!r}")
    return min(max(number, 0.0), 100.0)


@dataclass(frozen=True)
class NetworkPolicy:
    """Simulated network conditions for a rule."""

    delay: Optional[int] = None  # explicit delay in ms, wins over profile
    profile: Optional[str] = None  # named entry of the profile table
    error_mode: str = 'none'  # none, timeout, offline
    fail_rate: float = 0.0  # 0 to 100

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'NetworkPolicy':
        """
        Create NetworkPolicy from dictionary.

        Accepts both ``errorMode`` and the older boolean ``timeout`` /
        ``offline`` flags.
        """
        data = _mapping(data, 'network')

        error_mode = data.get('error_mode', data.get('errorMode'))
        if error_mode is None:
            if data.get('timeout'):
                error_mode = 'timeout'
            elif data.get('offline'):
                error_mode = 'offline'
            else:
                error_mode = 'none'
        if error_mode not in ERROR_MODES:
            raise RuleConfigError(f"Unknown error mode: {error_mode!r} (expected one of {ERROR_MODES})")

        delay = data.get('delay')
        if delay is not None:
            delay = max(_to_int(delay, 'delay'), 0)

        return cls(
            delay=delay,
            profile=data.get('profile'),
            error_mode=error_mode,
            fail_rate=_clamp_percent(data.get('fail_rate', data.get('failRate', 0)), 'fail_rate'),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'delay': self.delay,
            'profile': self.profile,
            'error_mode': self.error_mode,
            'fail_rate': self.fail_rate,
        }


@dataclass(frozen=True)
class ResponsePolicy:
    """What a matched rule responds with."""

    status: int = 200
    err_no: int = 0
    err_msg: str = ''
    detail_err_msg: str = ''
    result: Any = None
    error_body: Any = None  # only used when status >= 400

    @classmethod
    def from_dict(
        cls,
        data: Optional[Dict[str, Any]],
        business: Optional[Dict[str, Any]] = None,
        mock_type: Optional[str] = None
    ) -> 'ResponsePolicy':
        """
        Create ResponsePolicy from dictionary.

        Args:
            data: Response section of a rule
            business: Optional separate ``business`` section holding
                errNo/errMsg/detailErrMsg
            mock_type: Legacy ``mockType`` of the rule. ``success`` ignores
                the business section, ``businessError`` uses it with a
                null result.

        Returns:
            ResponsePolicy
        """
        data = dict(_mapping(data, 'response'))
        business = _mapping(business, 'business')
        if mock_type == 'success':
            business = {}
        if business:
            data = {**business, **data}

        status = _to_int(data.get('status', 200), 'status')

        if mock_type == 'businessError':
            result = None
        else:
            result = data.get('result', data.get('customResult'))

        return cls(
            status=status,
            err_no=_to_int(data.get('err_no', data.get('errNo', 0)) or 0, 'err_no'),
            err_msg=data.get('err_msg', data.get('errMsg', '')) or '',
            detail_err_msg=data.get('detail_err_msg', data.get('detailErrMsg', '')) or '',
            result=result,
            error_body=data.get('error_body', data.get('errorBody')),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'status': self.status,
            'err_no': self.err_no,
            'err_msg': self.err_msg,
            'detail_err_msg': self.detail_err_msg,
            'result': self.result,
            'error_body': self.error_body,
        }


@dataclass(frozen=True)
class RandomOmitPolicy:
    """Settings for random field omission."""

    probability: float = 0.0  # 0 to 100, per eligible field
    max_omit_count: int = 0
    exclude_fields: List[str] = field(default_factory=list)
    depth_limit: int = 5
    omit_mode: str = 'delete'  # delete, undefined, null
    seed: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RandomOmitPolicy':
        """Create RandomOmitPolicy from dictionary."""
        data = _mapping(data, 'random')

        omit_mode = data.get('omit_mode', data.get('omitMode', 'delete'))
        if omit_mode not in OMIT_MODES:
            raise RuleConfigError(f"Unknown omit mode: {omit_mode!r} (expected one of {OMIT_MODES})")

        seed = data.get('seed')
        max_omit_count = data.get('max_omit_count', data.get('maxOmitCount', 0)) or 0
        return cls(
            probability=_clamp_percent(data.get('probability', 0), 'probability'),
            max_omit_count=max(_to_int(max_omit_count, 'max_omit_count'), 0),
            exclude_fields=list(data.get('exclude_fields', data.get('excludeFields', [])) or []),
            depth_limit=_to_int(data.get('depth_limit', data.get('depthLimit', 5)), 'depth_limit'),
            omit_mode=omit_mode,
            seed=_to_int(seed, 'seed') if seed is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'probability': self.probability,
            'max_omit_count': self.max_omit_count,
            'exclude_fields': list(self.exclude_fields),
            'depth_limit': self.depth_limit,
            'omit_mode': self.omit_mode,
            'seed': self.seed,
        }


@dataclass(frozen=True)
class FieldOmitPolicy:
    """Deliberate removal of response fields."""

    enabled: bool = False
    mode: str = 'manual'  # manual, random
    fields: List[str] = field(default_factory=list)
    random: RandomOmitPolicy = field(default_factory=RandomOmitPolicy)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'FieldOmitPolicy':
        """Create FieldOmitPolicy from dictionary."""
        data = _mapping(data, 'field_omit')

        mode = data.get('mode', 'manual')
        if mode not in FIELD_OMIT_MODES:
            raise RuleConfigError(f"Unknown field omission mode: {mode!r}")

        return cls(
            enabled=bool(data.get('enabled', False)),
            mode=mode,
            fields=list(data.get('fields', []) or []),
            random=RandomOmitPolicy.from_dict(data.get('random')),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'enabled': self.enabled,
            'mode': self.mode,
            'fields': list(self.fields),
            'random': self.random.to_dict(),
        }


@dataclass(frozen=True)
class Rule:
    """
    A declarative mapping from request shape to simulated outcome.

    Rules are frozen: the pipeline hands the same instance to every stage of
    a request, so nothing downstream can change it mid-flight.
    """

    id: str
    url: str
    method: str = 'GET'
    enabled: bool = True
    network: NetworkPolicy = field(default_factory=NetworkPolicy)
    response: ResponsePolicy = field(default_factory=ResponsePolicy)
    field_omit: FieldOmitPolicy = field(default_factory=FieldOmitPolicy)
    passthrough: bool = False  # matched requests go to the real network

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rule':
        """
        Create Rule from dictionary.

        Args:
            data: Rule dictionary; ``url`` may also be given as ``urlPattern``.
                A legacy ``mockType`` of ``none`` makes a pass-through rule.

        Returns:
            Rule

        Raises:
            RuleConfigError: If the rule has no URL or holds invalid values
        """
        if not isinstance(data, dict):
            raise RuleConfigError(f"Rule must be a mapping, got {type(data).__name__}")

        url = data.get('url', data.get('url_pattern', data.get('urlPattern')))
        if not url:
            raise RuleConfigError(f"Rule {data.get('id', '<unnamed>')!r} has no url")

        method = normalize_method(data.get('method'))

        mock_type = data.get('mock_type', data.get('mockType'))
        if mock_type is not None and mock_type not in MOCK_TYPES:
            raise RuleConfigError(f"Unknown mock type: {mock_type!r} (expected one of {MOCK_TYPES})")

        return cls(
            id=str(data.get('id') or f"{method} {url}"),
            url=url,
            method=method,
            enabled=bool(data.get('enabled', True)),
            network=NetworkPolicy.from_dict(data.get('network')),
            response=ResponsePolicy.from_dict(data.get('response'), data.get('business'), mock_type),
            field_omit=FieldOmitPolicy.from_dict(data.get('field_omit', data.get('fieldOmit'))),
            passthrough=bool(data.get('passthrough', mock_type == 'none')),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'url': self.url,
            'method': self.method,
            'enabled': self.enabled,
            'network': self.network.to_dict(),
            'response': self.response.to_dict(),
            'field_omit': self.field_omit.to_dict(),
            'passthrough': self.passthrough,
        }

    def with_changes(self, **changes: Any) -> 'Rule':
        """Return a copy of the rule with some attributes replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class BypassConfig:
    """Predicates that make the engine decline a request."""

    methods: List[str] = field(default_factory=lambda: ['OPTIONS'])
    content_types: List[str] = field(default_factory=list)
    origins: List[str] = field(default_factory=list)
    url_patterns: List[str] = field(default_factory=list)  # regular expressions

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'BypassConfig':
        """Create BypassConfig from dictionary."""
        data = _mapping(data, 'bypass')
        return cls(
            methods=[m.upper() for m in data.get('methods', ['OPTIONS'])],
            content_types=list(data.get('content_types', data.get('contentTypes', []))),
            origins=list(data.get('origins', [])),
            url_patterns=list(data.get('url_patterns', data.get('urlPatterns', []))),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'methods': list(self.methods),
            'content_types': list(self.content_types),
            'origins': list(self.origins),
            'url_patterns': list(self.url_patterns),
        }


@dataclass(frozen=True)
class GlobalConfig:
    """Configuration shared by every request the pipeline sees."""

    enabled: bool = True
    network_profile: Optional[str] = None  # default profile for rules without their own
    network_profiles: Dict[str, int] = field(default_factory=dict)  # extra/overriding profiles
    strip_prefixes: List[str] = field(default_factory=list)
    bypass: BypassConfig = field(default_factory=BypassConfig)
    log_level: str = 'warning'

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'GlobalConfig':
        """Create GlobalConfig from dictionary."""
        data = _mapping(data, 'config')

        match = _mapping(data.get('match'), 'match')
        strip_prefixes = data.get('strip_prefixes', match.get('strip_prefixes', match.get('stripPrefixes', [])))

        profiles = data.get('network_profiles', data.get('networkProfiles', {})) or {}
        try:
            profiles = {str(name): int(ms) for name, ms in profiles.items()}
        except (TypeError, ValueError, AttributeError):
            raise RuleConfigError(f"network_profiles must map names to delays in ms, got {profiles!r}")

        return cls(
            enabled=bool(data.get('enabled', True)),
            network_profile=data.get('network_profile', data.get('networkProfile')),
            network_profiles=profiles,
            strip_prefixes=list(strip_prefixes or []),
            bypass=BypassConfig.from_dict(data.get('bypass')),
            log_level=str(data.get('log_level', data.get('logLevel', 'warning'))).lower(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'enabled': self.enabled,
            'network_profile': self.network_profile,
            'network_profiles': dict(self.network_profiles),
            'strip_prefixes': list(self.strip_prefixes),
            'bypass': self.bypass.to_dict(),
            'log_level': self.log_level,
        }

    def merged(self, data: Dict[str, Any]) -> 'GlobalConfig':
        """
        Return a copy with the keys present in ``data`` replaced.

        ``data`` takes the same spellings as ``from_dict``; keys it does not
        mention keep their current values.
        """
        data = _mapping(data, 'config')
        update = GlobalConfig.from_dict(data)

        changes = {}
        for name, aliases in _CONFIG_KEYS.items():
            if any(key in data for key in aliases):
                changes[name] = getattr(update, name)

        match = _mapping(data.get('match'), 'match')
        if 'strip_prefixes' in match or 'stripPrefixes' in match:
            changes['strip_prefixes'] = update.strip_prefixes

        return replace(self, **changes)

    def profile_table(self) -> Dict[str, int]:
        """Built-in profiles merged with the configured ones."""
        return {**NETWORK_PROFILES, **self.network_profiles}


_CONFIG_KEYS = {
    'enabled': ('enabled',),
    'network_profile': ('network_profile', 'networkProfile'),
    'network_profiles': ('network_profiles', 'networkProfiles'),
    'strip_prefixes': ('strip_prefixes',),
    'bypass': ('bypass',),
    'log_level': ('log_level', 'logLevel'),
}


@dataclass
class InterceptRequest:
    """Normalized description of an outgoing call handed to the pipeline."""

    url: str
    method: str = 'GET'
    content_type: Optional[str] = None
