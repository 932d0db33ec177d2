"""
Faultline Engine

Interception-and-synthesis engine: rule matching, network simulation,
response synthesis and field omission.
"""

from .types import (
    Rule,
    NetworkPolicy,
    ResponsePolicy,
    FieldOmitPolicy,
    RandomOmitPolicy,
    GlobalConfig,
    BypassConfig,
    InterceptRequest,
    NETWORK_PROFILES,
    normalize_method,
)
from .matcher import RuleMatcher, MatchResult, PathMatch, url_matches, match_path, match_rule
from .field_omit import UNDEFINED, omit_fields, to_jsonable
from .network import CancellationToken, NetworkPlan, NetworkSimulator, Outcome, WaitResult
from .response import ResponseEnvelope, ResponseSynthesizer, SynthesizedResponse, get_status_text
from .pipeline import InterceptionPipeline, InterceptResult, InterceptMetrics, RequestState, Transport
from .random_source import Mulberry32, SystemRandomSource, make_random_source

__all__ = [
    # Types
    'Rule',
    'NetworkPolicy',
    'ResponsePolicy',
    'FieldOmitPolicy',
    'RandomOmitPolicy',
    'GlobalConfig',
    'BypassConfig',
    'InterceptRequest',
    'NETWORK_PROFILES',
    'normalize_method',

    # Matcher
    'RuleMatcher',
    'MatchResult',
    'PathMatch',
    'url_matches',
    'match_path',
    'match_rule',

    # Field omission
    'UNDEFINED',
    'omit_fields',
    'to_jsonable',

    # Network
    'CancellationToken',
    'NetworkPlan',
    'NetworkSimulator',
    'Outcome',
    'WaitResult',

    # Response
    'ResponseEnvelope',
    'ResponseSynthesizer',
    'SynthesizedResponse',
    'get_status_text',

    # Pipeline
    'InterceptionPipeline',
    'InterceptResult',
    'InterceptMetrics',
    'RequestState',
    'Transport',

    # Randomness
    'Mulberry32',
    'SystemRandomSource',
    'make_random_source',
]
