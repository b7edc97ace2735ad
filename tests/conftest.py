"""
Shared fakes for the test suite.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from convoy.core.rule_evaluation import RulesetResult
from convoy.providers import BaseProvider, InitConfig, ProviderConfig, ProviderKind


class FakeProvider(BaseProvider):
    """In-memory provider with scripted answers"""

    def __init__(
        self,
        config: ProviderConfig,
        additional: Optional[List[InitConfig]] = None,
        dependencies: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        init_error: Optional[Exception] = None,
        dependency_error: Optional[Exception] = None,
        stop_error: Optional[Exception] = None,
        delay: float = 0.0,
        events: Optional[List[str]] = None,
    ):
        super().__init__(config)
        self.additional = additional or []
        self.dependencies = dependencies or {}
        self.init_error = init_error
        self.dependency_error = dependency_error
        self.stop_error = stop_error
        self.delay = delay
        self.events = events if events is not None else []
        self.received_configs: List[InitConfig] = []
        self.stop_calls = 0
        self.dependency_calls = 0
        self.dependency_cancelled = False

    async def _initialize(self, init_configs):
        self.events.append(f"init:{self.name}")
        self.received_configs = list(init_configs)
        if self.init_error:
            raise self.init_error
        return self.additional

    async def _fetch_dependencies(self):
        self.dependency_calls += 1
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.dependency_cancelled = True
            raise
        self.events.append(f"deps:{self.name}")
        if self.dependency_error:
            raise self.dependency_error
        return self.dependencies

    async def _shutdown(self):
        self.stop_calls += 1
        self.events.append(f"stop:{self.name}")
        if self.stop_error:
            raise self.stop_error


class FakeEngine:
    """Rule engine returning one result per ruleset, in reverse name order"""

    def __init__(self, error: Optional[Exception] = None, events: Optional[List[str]] = None):
        self.error = error
        self.events = events if events is not None else []
        self.calls = []
        self.stopped = False

    def run_rules(self, rulesets, selectors):
        self.calls.append((list(rulesets), list(selectors)))
        self.events.append("rules")
        if self.error:
            raise self.error
        results = [
            RulesetResult(
                name=ruleset.name,
                violations=[{"ruleID": rule.rule_id} for rule in ruleset.rules],
            )
            for ruleset in rulesets
        ]
        return sorted(results, key=lambda r: r.name, reverse=True)

    def stop(self):
        self.stopped = True


def create_fake_engine(options):
    """Engine factory usable as --engine conftest:create_fake_engine"""
    return FakeEngine()


def make_config(name: str, *locations: str, kind: Optional[ProviderKind] = None) -> ProviderConfig:
    data = {"name": name, "initConfig": [{"location": loc} for loc in locations]}
    if kind is not None:
        data["kind"] = kind
    return ProviderConfig.model_validate(data)


@pytest.fixture
def events():
    return []
