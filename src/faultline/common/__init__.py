"""
Faultline Common Utilities

Shared utilities and helpers used across Faultline modules.
"""

from .utils import RuleLoader, configure_logging, dump_rules, parse_rule_document
from .url_utils import URLNormalizer, apply_match_config

__all__ = [
    'RuleLoader',
    'configure_logging',
    'dump_rules',
    'parse_rule_document',
    'URLNormalizer',
    'apply_match_config',
]
