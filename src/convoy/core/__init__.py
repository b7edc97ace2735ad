"""
Core module - Provider orchestration and rule-evaluation coordination.

This package contains the components that turn independently configured
providers into one consistent, deterministic analysis run.
"""

from .config_merger import ConfigMerger, provider_locations
from .label_selector import LabelSelectorBuilder, render
from .provider_lifecycle import ProviderLifecycleManager
from .dependency_collector import (
    DependencyCollector,
    DependencyCollectionResult,
    DependencyItem,
)
from .rule_evaluation import (
    EngineOptions,
    RuleEngine,
    RuleEvaluationCoordinator,
    RuleEvaluationError,
    RulesetResult,
)
from .output_aggregator import (
    AnalysisArtifacts,
    OutputAggregator,
    OutputWriteError,
    ReportBuilder,
)
from .run_context import RunContext
from .settings import AnalysisConfig, ConfigurationError, load_provider_settings
from .orchestrator import AnalysisOrchestrator, AnalysisRun, RunPhase


__all__ = [
    # Configuration
    "AnalysisConfig",
    "ConfigurationError",
    "load_provider_settings",
    "ConfigMerger",
    "provider_locations",
    # Rule selection
    "LabelSelectorBuilder",
    "render",
    # Providers
    "ProviderLifecycleManager",
    # Dependencies
    "DependencyCollector",
    "DependencyCollectionResult",
    "DependencyItem",
    # Rule evaluation
    "EngineOptions",
    "RuleEngine",
    "RuleEvaluationCoordinator",
    "RuleEvaluationError",
    "RulesetResult",
    # Output
    "AnalysisArtifacts",
    "OutputAggregator",
    "OutputWriteError",
    "ReportBuilder",
    # Orchestration
    "RunContext",
    "AnalysisOrchestrator",
    "AnalysisRun",
    "RunPhase",
]
