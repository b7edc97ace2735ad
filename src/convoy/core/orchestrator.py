"""
Orchestrator - Central coordinator for one analysis run.

Data flow:
    configuration -> ConfigMerger -> ProviderLifecycleManager (providers Ready)
        -> {RuleEvaluationCoordinator, DependencyCollector} concurrently
        -> providers stopped -> OutputAggregator -> report builder

Rule evaluation runs in the foreground. Dependency collection runs as a
background task, spawned only in full analysis mode. Both are joined before
any provider is stopped and before any artifact is written. A failure in one
task does not cancel the other unless cancel_dependencies_on_failure is set.

Design Pattern: Pipeline + Observer
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from ..providers import BUILTIN_PROVIDER_NAME, BaseProvider, ProviderConfig, create_providers
from ..rules.rule_parser import RuleParser, RuleParseError, RuleSet, stage_rule_paths
from .config_merger import ConfigMerger, provider_locations
from .dependency_collector import DependencyCollectionResult, DependencyCollector
from .label_selector import LabelSelectorBuilder
from .output_aggregator import AnalysisArtifacts, OutputAggregator, ReportBuilder
from .provider_lifecycle import ProviderLifecycleManager
from .rule_evaluation import (
    EngineOptions,
    RuleEngine,
    RuleEvaluationCoordinator,
    RulesetResult,
)
from .run_context import RunContext
from .settings import AnalysisConfig


class RunPhase(Enum):
    """Analysis run phases"""
    PENDING = "pending"
    STARTING_PROVIDERS = "starting_providers"
    EVALUATING = "evaluating"
    WRITING_OUTPUT = "writing_output"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AnalysisRun:
    """State of a single run"""
    run_id: str
    phase: RunPhase = RunPhase.PENDING
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    artifacts: Optional[AnalysisArtifacts] = None
    error: Optional[str] = None


class AnalysisOrchestrator:
    """
    Runs rule evaluation and dependency collection against a set of providers.

    Responsibilities:
    1. Merge provider configurations and write the settings document
    2. Load rules and start the providers they need
    3. Evaluate rules while collecting dependencies
    4. Stop providers and write the artifacts

    Example:
        >>> orchestrator = AnalysisOrchestrator(config, engine_factory=make_engine)
        >>> artifacts = await orchestrator.run()
    """

    def __init__(
        self,
        config: AnalysisConfig,
        engine_factory: Callable[[EngineOptions], RuleEngine],
        provider_factory: Callable[[List[ProviderConfig]], Dict[str, BaseProvider]] = create_providers,
        report_builder: Optional[ReportBuilder] = None,
        selector_builder: Optional[LabelSelectorBuilder] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Run configuration
            engine_factory: Creates the rule engine for this run
            provider_factory: Creates provider handles from final configs
            report_builder: Downstream report builder (None = no report)
            selector_builder: Label selector builder (default label keys if None)
        """
        self.config = config
        self.engine_factory = engine_factory
        self.provider_factory = provider_factory
        self.report_builder = report_builder
        self.selector_builder = selector_builder or LabelSelectorBuilder()

        self.run_state: Optional[AnalysisRun] = None
        self.providers: Dict[str, BaseProvider] = {}
        self.final_configs: List[ProviderConfig] = []
        self.is_running = False

        self.logger = structlog.get_logger(__name__)

        # Observer pattern - callbacks
        self.observers: List[Callable[[str, Dict[str, Any]], None]] = []

    def subscribe(self, observer: Callable[[str, Dict[str, Any]], None]):
        """
        Subscribe to run events (Observer pattern).

        Args:
            observer: Callback receiving (event, data)
        """
        self.observers.append(observer)
        self.logger.debug("observer_subscribed", observer=getattr(observer, "__name__", repr(observer)))

    def _notify_observers(self, event: str, data: Dict[str, Any]):
        """Notify all observers of an event"""
        for observer in self.observers:
            try:
                observer(event, data)
            except Exception as e:
                self.logger.error(
                    "observer_error",
                    observer=getattr(observer, "__name__", repr(observer)),
                    error=str(e),
                )

    def _set_phase(self, phase: RunPhase):
        self.run_state.phase = phase
        self.logger.debug("run_phase_changed", run_id=self.run_state.run_id, phase=phase.value)

    async def run(self) -> AnalysisArtifacts:
        """
        Execute the full analysis run.

        Returns:
            Paths of the written artifacts

        Raises:
            ConfigurationError: Before any provider starts
            FatalProviderInitError: A non-fallback provider failed to start
            ProviderInitError: The fallback provider failed to start
            RuleEvaluationError: The rule engine failed
            OutputWriteError: An artifact could not be written
        """
        self.config.validate()

        with RunContext() as context:
            self.run_state = AnalysisRun(run_id=context.run_id)
            self.is_running = True

            self.logger.info(
                "run_started",
                run_id=context.run_id,
                input=self.config.input_path,
                output=self.config.output_dir,
                mode=self.config.mode.value,
            )
            self._notify_observers("run_started", {"run_id": context.run_id})

            try:
                artifacts = await self._execute(context)
            except BaseException as e:
                self._set_phase(RunPhase.FAILED)
                self.run_state.error = str(e)
                self.run_state.completed_at = datetime.now()
                self.logger.error("run_failed", run_id=context.run_id, error=str(e))
                self._notify_observers("run_failed", {"run_id": context.run_id, "error": str(e)})
                raise
            finally:
                self.is_running = False

        self._set_phase(RunPhase.COMPLETED)
        self.run_state.artifacts = artifacts
        self.run_state.completed_at = datetime.now()
        self.logger.info("run_completed", run_id=self.run_state.run_id, **artifacts.to_dict())
        self._notify_observers(
            "run_completed", {"run_id": self.run_state.run_id, "artifacts": artifacts.to_dict()}
        )
        return artifacts

    async def _execute(self, context: RunContext) -> AnalysisArtifacts:
        label_selector = self.selector_builder.selector(
            targets=self.config.targets, sources=self.config.sources
        )
        dependency_selector = self.selector_builder.dependency_selector(
            self.config.analyze_known_libraries
        )

        merger = ConfigMerger(
            proxy=self.config.proxy,
            context_lines=self.config.context_lines,
            mode=self.config.mode,
        )
        self.final_configs = merger.merge(self.config.with_default_builtin())

        aggregator = OutputAggregator(
            self.config.output_dir,
            json_output=self.config.json_output,
            report_builder=None if self.config.skip_static_report else self.report_builder,
        )
        # A failed run must not leave an earlier run's results behind
        aggregator.remove_previous_artifacts()
        aggregator.write_provider_settings(self.final_configs)

        self.providers = self.provider_factory(self.final_configs)
        rulesets, needed = self._load_rules(context)

        engine = self.engine_factory(
            EngineOptions(
                context_lines=self.config.context_lines,
                location_prefixes=provider_locations(self.final_configs),
                dependency_selector=dependency_selector,
            )
        )
        coordinator = RuleEvaluationCoordinator(engine, label_selector)

        self._set_phase(RunPhase.STARTING_PROVIDERS)
        async with ProviderLifecycleManager(self.providers) as lifecycle:
            try:
                ready = await lifecycle.start(needed)
                self._notify_observers("providers_ready", {"providers": [p.name for p in ready]})

                self._set_phase(RunPhase.EVALUATING)
                results, dependencies = await self._evaluate(coordinator, rulesets, ready)
            finally:
                # Engine goes down before the providers it queries
                coordinator.stop_engine()

        self._set_phase(RunPhase.WRITING_OUTPUT)
        artifacts = aggregator.write(results, dependencies)
        aggregator.build_report(artifacts)
        return artifacts

    def _load_rules(self, context: RunContext) -> Tuple[List[RuleSet], List[str]]:
        """Load every rules path; a path that fails is logged and skipped"""
        parser = RuleParser(self.providers)
        rulesets: List[RuleSet] = []
        needed: Dict[str, BaseProvider] = {}

        for path in stage_rule_paths(self.config.rules, context):
            self.logger.info("parsing_rules", rules=path)
            try:
                loaded, loaded_needed = parser.load_rules(path)
            except RuleParseError as e:
                self.logger.error("rules_parse_failed", rules=path, error=str(e))
                continue
            rulesets.extend(loaded)
            needed.update(loaded_needed)

        if not rulesets:
            self.logger.warning("no_rules_loaded", rules=self.config.rules)

        # The fallback serves every location, whether or not a rule names it
        if BUILTIN_PROVIDER_NAME in self.providers:
            needed.setdefault(BUILTIN_PROVIDER_NAME, self.providers[BUILTIN_PROVIDER_NAME])
        return rulesets, list(needed)

    async def _evaluate(
        self,
        coordinator: RuleEvaluationCoordinator,
        rulesets: Sequence[RuleSet],
        ready: Sequence[BaseProvider],
    ) -> Tuple[List[RulesetResult], Optional[DependencyCollectionResult]]:
        """
        Evaluate rules in the foreground while dependencies are collected.

        Returns:
            Sorted ruleset results, and the dependency result (None in
            source-only mode)
        """
        dep_task: Optional[asyncio.Task] = None
        if self.config.collects_dependencies:
            self.logger.info("running_dependency_analysis")
            dep_task = asyncio.create_task(DependencyCollector().collect(ready))

        try:
            self.logger.info("evaluating_rules", rulesets=len(rulesets))
            results = await coordinator.evaluate(rulesets)
        except BaseException:
            if dep_task is not None and self.config.cancel_dependencies_on_failure:
                self.logger.warning("dependency_analysis_cancelled")
                dep_task.cancel()
            raise
        finally:
            if dep_task is not None:
                # Barrier: providers stop only after both tasks are done
                await asyncio.gather(dep_task, return_exceptions=True)

        self._notify_observers("rules_evaluated", {"rulesets": len(results)})

        dependencies = None
        if dep_task is not None:
            dependencies = dep_task.result()
            self._notify_observers(
                "dependencies_collected",
                {"items": len(dependencies.items), "failures": dict(dependencies.failures)},
            )
        return results, dependencies

    def get_status(self) -> Dict[str, Any]:
        """
        Get current orchestrator status.

        Returns:
            Status dictionary
        """
        return {
            "run_id": self.run_state.run_id if self.run_state else None,
            "phase": self.run_state.phase.value if self.run_state else RunPhase.PENDING.value,
            "is_running": self.is_running,
            "providers": {name: p.state.value for name, p in self.providers.items()},
            "error": self.run_state.error if self.run_state else None,
        }
