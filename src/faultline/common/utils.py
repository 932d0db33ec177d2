"""
Faultline Common Utilities

Rule file loading and small helpers shared by the CLI and transports.
"""

import json
import logging
from pathlib import Path
from typing import List, Dict, Any, Tuple

import yaml

from ..engine.types import GlobalConfig, Rule
from ..errors import RuleConfigError

LOG_FORMAT = '%(asctime)s %(levelname)-7s %(name)s: %(message)s'


def configure_logging(level: str = 'warning') -> None:
    """
    Set the level of all ``faultline`` loggers and attach a console handler.

    Args:
        level: debug, info, warning or error
    """
    root = logging.getLogger('faultline')
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


def parse_rule_document(data: Any, source: str = '<document>') -> Tuple[List[Rule], GlobalConfig]:
    """
    Build rules and global config from a loaded document.

    Accepted shapes:
    - ``{"rules": [...], "config": {...}}``
    - ``[...]`` (rules only, default config)

    Args:
        data: Parsed YAML/JSON document
        source: Name used in error messages

    Returns:
        (rules, config) tuple

    Raises:
        RuleConfigError: If the document shape or a rule is invalid
    """
    if data is None:
        return [], GlobalConfig()

    if isinstance(data, list):
        raw_rules, raw_config = data, {}
    elif isinstance(data, dict):
        if 'rules' not in data and 'config' not in data:
            raise RuleConfigError(
                f"Unexpected format in {source}. "
                f"Expected a mapping with 'rules' and/or 'config' keys, or a list of rules. "
                f"Found keys: {list(data.keys())}"
            )
        raw_rules = data.get('rules') or []
        raw_config = data.get('config') or {}
    else:
        raise RuleConfigError(f"Unexpected format in {source}: {type(data).__name__}")

    if not isinstance(raw_rules, list):
        raise RuleConfigError(f"'rules' in {source} must be a list")

    rules = []
    for index, raw_rule in enumerate(raw_rules):
        try:
            rules.append(Rule.from_dict(raw_rule))
        except RuleConfigError as e:
            raise RuleConfigError(f"{source}: rule #{index}: {e}") from e

    return rules, GlobalConfig.from_dict(raw_config)


class RuleLoader:
    """
    Loader for Faultline rule files.

    Reads YAML (``.yaml``/``.yml``) or JSON files holding a rule table and an
    optional global configuration.

    Example:
        loader = RuleLoader("rules.yaml")
        rules, config = loader.load()

        for rule in rules:
            print(rule.method, rule.url)
    """

    def __init__(self, file_path: str):
        """
        Initialize rule loader.

        Args:
            file_path: Path to a rule file
        """
        self.file_path = Path(file_path)

    def read(self) -> Any:
        """Parsed file contents."""
        if not self.file_path.exists():
            raise FileNotFoundError(f"Rule file not found: {self.file_path}")

        with open(self.file_path, 'r', encoding='utf-8') as f:
            try:
                if self.file_path.suffix.lower() == '.json':
                    return json.load(f)
                return yaml.safe_load(f)
            except (json.JSONDecodeError, yaml.YAMLError) as e:
                raise RuleConfigError(f"Cannot parse {self.file_path}: {e}") from e

    def load(self) -> Tuple[List[Rule], GlobalConfig]:
        """
        Load rules and global configuration.

        Returns:
            (rules, config) tuple

        Raises:
            FileNotFoundError: If the rule file doesn't exist
            RuleConfigError: If the file content is invalid
        """
        return parse_rule_document(self.read(), str(self.file_path))


def dump_rules(rules: List[Rule], config: GlobalConfig) -> Dict[str, Any]:
    """Document form of a rule table, the inverse of ``parse_rule_document``."""
    return {
        'rules': [rule.to_dict() for rule in rules],
        'config': config.to_dict(),
    }
