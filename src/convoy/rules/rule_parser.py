"""
Rule Parser - Loads rulesets from YAML and works out which providers they need.

Layout accepted by load_rules():
- a ruleset directory: optional `ruleset.yaml` (name, description, labels)
  plus rule files, each holding a list of rules; sub-directories are loaded
  as rulesets of their own
- a single rule file: loaded as a ruleset named after the file

A rule's `when` condition names provider capabilities as
`<provider>.<capability>` keys, possibly nested under `and` / `or` / `not`.
"""

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Set, Tuple

import structlog
import yaml

if TYPE_CHECKING:
    from ..core.run_context import RunContext


RULESET_FILE = "ruleset.yaml"
RULE_FILE_SUFFIXES = (".yaml", ".yml")
TEMP_RULESET_NAME = "ruleset"
TEMP_RULESET_DESCRIPTION = "temp ruleset"
_COMBINATORS = {"and", "or", "not"}


@dataclass
class Rule:
    """One rule as declared in a rule file"""
    rule_id: str
    when: Dict[str, Any] = field(default_factory=dict)
    labels: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def providers(self) -> Set[str]:
        """Names of the providers this rule's condition calls"""
        return _condition_providers(self.when)


@dataclass
class RuleSet:
    """Named collection of rules"""
    name: str
    description: str = ""
    labels: List[str] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)
    source: str = ""

    @property
    def providers(self) -> Set[str]:
        needed: Set[str] = set()
        for rule in self.rules:
            needed |= rule.providers
        return needed


def _condition_providers(condition: Any) -> Set[str]:
    found: Set[str] = set()
    if isinstance(condition, Mapping):
        for key, value in condition.items():
            if key in _COMBINATORS:
                found |= _condition_providers(value)
            elif "." in key:
                found.add(key.split(".", 1)[0])
    elif isinstance(condition, list):
        for item in condition:
            found |= _condition_providers(item)
    return found


class RuleParser:
    """
    Parses rule files into RuleSets.

    Example:
        >>> parser = RuleParser(providers)
        >>> rulesets, needed = parser.load_rules("rules/")
        >>> needed
        {'builtin': <BuiltinProvider ...>}
    """

    def __init__(self, providers: Mapping[str, Any]):
        """
        Initialize the parser.

        Args:
            providers: Known provider handles keyed by name
        """
        self.providers = providers
        self.logger = structlog.get_logger(__name__)

    def load_rules(self, path: str) -> Tuple[List[RuleSet], Dict[str, Any]]:
        """
        Load every ruleset found at path.

        Args:
            path: Ruleset directory or rule file

        Returns:
            Rulesets and the provider handles they need, keyed by name

        Raises:
            RuleParseError: If a file is malformed or a rule needs an
                unknown provider
        """
        root = Path(path)
        if root.is_dir():
            rulesets = self._load_directory(root)
        elif root.is_file():
            rulesets = [self._load_file_as_ruleset(root)]
        else:
            raise RuleParseError(f"Rules path does not exist: {path}")

        needed: Dict[str, Any] = {}
        for ruleset in rulesets:
            for provider_name in sorted(ruleset.providers):
                if provider_name not in self.providers:
                    raise RuleParseError(
                        f"Ruleset {ruleset.name} needs unknown provider {provider_name}"
                    )
                needed[provider_name] = self.providers[provider_name]

        self.logger.info(
            "rules_loaded",
            path=str(path),
            rulesets=[r.name for r in rulesets],
            rules=sum(len(r.rules) for r in rulesets),
            providers=sorted(needed),
        )
        return rulesets, needed

    def _load_directory(self, directory: Path) -> List[RuleSet]:
        rulesets: List[RuleSet] = []
        meta: Dict[str, Any] = {}
        rule_files: List[Path] = []
        sub_dirs: List[Path] = []

        for entry in sorted(directory.iterdir()):
            if entry.is_dir():
                sub_dirs.append(entry)
            elif entry.name == RULESET_FILE:
                meta = _read_yaml(entry) or {}
                if not isinstance(meta, dict):
                    raise RuleParseError(f"{entry} must be a mapping")
            elif entry.suffix in RULE_FILE_SUFFIXES:
                rule_files.append(entry)

        if rule_files:
            ruleset = RuleSet(
                name=str(meta.get("name") or directory.name),
                description=str(meta.get("description") or ""),
                labels=list(meta.get("labels") or []),
                source=str(directory),
            )
            for rule_file in rule_files:
                ruleset.rules.extend(_read_rules(rule_file))
            rulesets.append(ruleset)

        for sub_dir in sub_dirs:
            rulesets.extend(self._load_directory(sub_dir))
        return rulesets

    def _load_file_as_ruleset(self, rule_file: Path) -> RuleSet:
        return RuleSet(
            name=rule_file.stem,
            rules=_read_rules(rule_file),
            source=str(rule_file),
        )


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RuleParseError(f"Failed to parse {path}: {e}") from e
    except OSError as e:
        raise RuleParseError(f"Failed to read {path}: {e}") from e


def _read_rules(path: Path) -> List[Rule]:
    data = _read_yaml(path)
    if data is None:
        return []
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise RuleParseError(f"{path} must contain a list of rules")

    rules = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise RuleParseError(f"{path}: rule #{index} is not a mapping")
        rule_id = item.get("ruleID") or item.get("ruleId")
        if not rule_id:
            raise RuleParseError(f"{path}: rule #{index} has no ruleID")
        rules.append(
            Rule(
                rule_id=str(rule_id),
                when=item.get("when") or {},
                labels=list(item.get("labels") or []),
                raw=item,
            )
        )
    return rules


def stage_rule_paths(paths: Iterable[str], context: "RunContext") -> List[str]:
    """
    Group loose rule files into one temporary ruleset directory.

    Directories pass through unchanged. Files are copied into a run-scoped
    temporary directory holding a generated ruleset.yaml, so they evaluate
    together as a single ruleset.

    Args:
        paths: Rule files and/or ruleset directories
        context: Run context owning the temporary directory

    Returns:
        Paths to hand to RuleParser.load_rules()
    """
    staged: List[str] = []
    staging_dir = None

    for index, path in enumerate(paths):
        if os.path.isdir(path):
            staged.append(path)
            continue

        if staging_dir is None:
            staging_dir = context.temp_dir("analyze-rules-")
            with open(staging_dir / RULESET_FILE, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    {"name": TEMP_RULESET_NAME, "description": TEMP_RULESET_DESCRIPTION},
                    f,
                    sort_keys=False,
                )
            staged.append(str(staging_dir))

        shutil.copyfile(path, staging_dir / f"rules{index:04d}.yaml")

    return staged


def list_label_values(paths: Iterable[str], label_key: str) -> List[str]:
    """
    Collect every value of a label used by the rule files under paths.

    Args:
        paths: Rule files and/or directories (walked recursively)
        label_key: Label key, e.g. "source" or "target"

    Returns:
        Sorted unique label values
    """
    prefix = f"{label_key}="
    values: Set[str] = set()

    for path in paths:
        for rule_file in _iter_rule_files(Path(path)):
            for word in _iter_label_strings(_read_yaml(rule_file)):
                if word.startswith(prefix) and len(word) > len(prefix):
                    values.add(word[len(prefix):])

    return sorted(values)


def _iter_rule_files(path: Path) -> Iterable[Path]:
    if path.is_file():
        yield path
        return
    for root, dirs, files in os.walk(path):
        dirs.sort()
        for name in sorted(files):
            if name.endswith(RULE_FILE_SUFFIXES):
                yield Path(root) / name


def _iter_label_strings(data: Any) -> Iterable[str]:
    if isinstance(data, Mapping):
        for key, value in data.items():
            if key == "labels" and isinstance(value, list):
                for label in value:
                    if isinstance(label, str):
                        yield label
            else:
                yield from _iter_label_strings(value)
    elif isinstance(data, list):
        for item in data:
            yield from _iter_label_strings(item)


class RuleParseError(Exception):
    """Raised when rules cannot be loaded"""
    pass
