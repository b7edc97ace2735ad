"""
Rule Evaluation Coordinator - Drives the external rule engine.

The engine is an external collaborator; this module only hands it the parsed
rulesets and the label selector, waits for it, and orders what comes back.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field


class RulesetResult(BaseModel):
    """
    Violations produced by evaluating one ruleset.

    Produced by the engine; this package only reorders results, it never
    changes them. Fields the engine adds beyond these are kept as-is.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    name: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    violations: List[Dict[str, Any]] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
    unmatched: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the rule-violation artifact shape"""
        return self.model_dump(mode="json")


@dataclass
class EngineOptions:
    """Options an engine factory receives when a run creates its engine"""
    context_lines: int = 100
    location_prefixes: List[str] = field(default_factory=list)
    dependency_selector: str = ""


class RuleEngine(Protocol):
    """Rule-engine contract consumed by this package"""

    def run_rules(self, rulesets: Sequence[Any], selectors: Sequence[str]) -> List[RulesetResult]:
        ...

    def stop(self) -> None:
        ...


class RuleEvaluationCoordinator:
    """
    Runs every ruleset through the engine and sorts the results.

    Example:
        >>> coordinator = RuleEvaluationCoordinator(engine, label_selector)
        >>> results = await coordinator.evaluate(rulesets)
    """

    def __init__(self, engine: RuleEngine, label_selector: str = ""):
        """
        Initialize the coordinator.

        Args:
            engine: Rule engine to evaluate with
            label_selector: Rule label selector ("" = every rule is eligible)
        """
        self.engine = engine
        self.label_selector = label_selector

        self.logger = structlog.get_logger(__name__)

    @property
    def selectors(self) -> List[str]:
        """Zero or one selector handed to the engine"""
        return [self.label_selector] if self.label_selector else []

    async def evaluate(self, rulesets: Sequence[Any]) -> List[RulesetResult]:
        """
        Evaluate rulesets against the Ready providers.

        The engine call blocks until every rule has been evaluated; it runs in
        a worker thread so concurrent tasks on the event loop keep going. If
        the caller is cancelled, the cancellation is re-raised only after the
        engine thread has returned.

        Args:
            rulesets: Parsed rulesets

        Returns:
            Ruleset results sorted by ruleset name

        Raises:
            RuleEvaluationError: If the engine failed
        """
        self.logger.info(
            "rule_evaluation_started",
            rulesets=len(rulesets),
            selectors=self.selectors,
        )

        engine_run = asyncio.ensure_future(
            asyncio.to_thread(self.engine.run_rules, list(rulesets), self.selectors)
        )
        try:
            results = await asyncio.shield(engine_run)
        except asyncio.CancelledError:
            # The thread cannot be interrupted; providers stay up until it returns
            self.logger.warning("rule_evaluation_cancelled", waiting_for_engine=True)
            try:
                await engine_run
            except Exception as e:
                self.logger.error("rule_evaluation_failed", error=str(e))
            raise
        except Exception as e:
            self.logger.error("rule_evaluation_failed", error=str(e), exc_info=True)
            raise RuleEvaluationError(f"Rule evaluation failed: {e}") from e

        ordered = sort_results([
            r if isinstance(r, RulesetResult) else RulesetResult.model_validate(r)
            for r in results or []
        ])
        self.logger.info(
            "rule_evaluation_complete",
            rulesets=len(ordered),
            violations=sum(len(r.violations) for r in ordered),
        )
        return ordered

    def stop_engine(self):
        """Stop the engine, if it can be stopped"""
        stop = getattr(self.engine, "stop", None)
        if stop is None:
            return
        try:
            stop()
        except Exception as e:
            self.logger.error("rule_engine_stop_failed", error=str(e))


def sort_results(results: Sequence[RulesetResult]) -> List[RulesetResult]:
    """Stable sort of ruleset results by name"""
    return sorted(results, key=lambda result: result.name)


class RuleEvaluationError(Exception):
    """Raised when the rule engine fails"""
    pass
