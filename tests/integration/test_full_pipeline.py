"""
Integration test for the full analysis pipeline.

This test verifies that the entire CONVOY pipeline works end-to-end:
1. Provider configuration merging (settings.json)
2. Rule loading and ordered provider start-up
3. Rule evaluation alongside dependency collection
4. Provider shutdown and artifact writing

Specialized providers are in-memory fakes; the builtin provider is real.
"""

import asyncio
import json
import threading
import time

import pytest
import yaml

from conftest import FakeEngine, FakeProvider, make_config
from convoy.core import AnalysisConfig, AnalysisOrchestrator, RuleEvaluationError
from convoy.providers import (
    FatalProviderInitError,
    InitConfig,
    ProviderInitError,
    ProviderState,
    create_provider,
)


JAVA_DEPENDENCIES = {
    "file:///app/pom.xml": [
        {"name": "org.springframework.spring-core", "version": "5.3.20"},
        {"name": "junit.junit", "version": "4.13.2"},
    ],
}


@pytest.fixture
def workspace(tmp_path):
    """Application, rules and output directories for one run"""
    app = tmp_path / "app"
    app.mkdir()
    (app / "pom.xml").write_text("<project/>")

    rules = tmp_path / "rules"
    rules.mkdir()
    (rules / "ruleset.yaml").write_text(
        yaml.safe_dump({"name": "eap7", "description": "EAP 7 migration", "labels": ["source=eap7"]})
    )
    (rules / "rules.yaml").write_text(yaml.safe_dump([
        {"ruleID": "eap7-0001", "labels": ["target=quarkus"],
         "when": {"java.referenced": {"pattern": "javax.ejb.Stateless"}}},
        {"ruleID": "eap7-0002", "labels": ["target=quarkus"],
         "when": {"go.referenced": {"pattern": "net/http"}}},
        {"ruleID": "eap7-0003", "labels": ["discovery"],
         "when": {"builtin.file": {"pattern": "pom.xml"}}},
    ]))
    (rules / "cloud").mkdir()
    (rules / "cloud" / "rules.yaml").write_text(yaml.safe_dump([
        {"ruleID": "cloud-0001", "labels": ["target=cloud-readiness"],
         "when": {"builtin.filecontent": {"pattern": "localhost"}}},
    ]))

    return {"app": app, "rules": rules, "output": tmp_path / "out", "root": tmp_path}


class Harness:
    """Builds an orchestrator whose specialized providers are fakes"""

    def __init__(self, provider_options=None, engine_error=None, fallback_locations=None):
        self.provider_options = provider_options or {}
        self.fallback_locations = fallback_locations
        self.events = []
        self.engine = FakeEngine(error=engine_error, events=self.events)
        self.engine_options = None
        self.observed = []

    def provider_factory(self, configs):
        providers = {}
        for config in configs:
            if config.is_fallback:
                if self.fallback_locations is not None:
                    config = config.model_copy(update={
                        "init_config": [InitConfig(location=loc) for loc in self.fallback_locations]
                    })
                providers[config.name] = create_provider(config)
            else:
                providers[config.name] = FakeProvider(
                    config, events=self.events, **self.provider_options.get(config.name, {})
                )
        return providers

    def engine_factory(self, options):
        self.engine_options = options
        return self.engine

    def orchestrator(self, workspace, report_builder=None, **config_kwargs):
        config = AnalysisConfig(
            input_path=str(workspace["app"]),
            output_dir=str(workspace["output"]),
            rules=[str(workspace["rules"])],
            provider_configs=[
                make_config("java", str(workspace["app"])),
                make_config("go", str(workspace["app"])),
            ],
            **config_kwargs,
        )
        orchestrator = AnalysisOrchestrator(
            config,
            engine_factory=self.engine_factory,
            provider_factory=self.provider_factory,
            report_builder=report_builder,
        )
        orchestrator.subscribe(lambda event, data: self.observed.append(event))
        return orchestrator


class RecordingReportBuilder:
    def __init__(self):
        self.calls = []

    def build(self, analysis_output, dependency_output):
        self.calls.append((analysis_output, dependency_output))


@pytest.mark.integration
class TestFullPipeline:
    """End-to-end runs of AnalysisOrchestrator"""

    @pytest.mark.asyncio
    async def test_full_mode_with_one_failing_dependency_provider(self, workspace):
        """Test a full run survives one provider failing to list dependencies"""
        harness = Harness({
            "java": {"dependencies": JAVA_DEPENDENCIES, "delay": 0.05},
            "go": {"dependency_error": RuntimeError("no go.mod")},
        })
        orchestrator = harness.orchestrator(workspace)

        artifacts = await orchestrator.run()

        output = workspace["output"]
        rulesets = yaml.safe_load((output / "output.yaml").read_text())
        assert [r["name"] for r in rulesets] == ["cloud", "eap7"]

        dependencies = yaml.safe_load((output / "dependencies.yaml").read_text())
        assert dependencies == [{
            "provider": "java",
            "fileURI": "file:///app/pom.xml",
            "dependencies": JAVA_DEPENDENCIES["file:///app/pom.xml"],
        }]
        assert artifacts.dependency_output == output / "dependencies.yaml"

        settings = json.loads((output / "settings.json").read_text())
        assert [c["name"] for c in settings] == ["java", "go", "builtin"]
        assert settings[-1]["initConfig"] == [{
            "location": str(workspace["app"]),
            "analysisMode": "full",
            "contextLines": 100,
        }]

        assert harness.observed == [
            "run_started",
            "providers_ready",
            "rules_evaluated",
            "dependencies_collected",
            "run_completed",
        ]
        assert orchestrator.get_status()["phase"] == "completed"

    @pytest.mark.asyncio
    async def test_providers_start_in_order_and_stop_after_both_tasks(self, workspace):
        """Test builtin starts last and nothing stops before collection ends"""
        harness = Harness({"java": {"dependencies": JAVA_DEPENDENCIES, "delay": 0.2}})
        orchestrator = harness.orchestrator(workspace)

        await orchestrator.run()

        events = harness.events
        assert events[:2] == ["init:java", "init:go"]
        assert events.index("deps:java") < events.index("stop:java")
        assert events.index("rules") < events.index("stop:java")
        for provider in orchestrator.providers.values():
            assert provider.state is ProviderState.STOPPED
        assert orchestrator.providers["java"].stop_calls == 1
        assert harness.engine.stopped

    @pytest.mark.asyncio
    async def test_engine_receives_selectors_and_options(self, workspace):
        """Test the label selector and engine options reach the engine"""
        harness = Harness()
        orchestrator = harness.orchestrator(workspace, targets=["quarkus"], context_lines=10)

        await orchestrator.run()

        rulesets, selectors = harness.engine.calls[0]
        assert [r.name for r in rulesets] == ["eap7", "cloud"]
        assert selectors == ["(target=quarkus && source) || (discovery)"]
        assert harness.engine_options.context_lines == 10
        assert harness.engine_options.dependency_selector == "(!dep-source=open-source)"
        assert str(workspace["app"]) in harness.engine_options.location_prefixes

    @pytest.mark.asyncio
    async def test_source_only_mode_writes_no_dependencies(self, workspace):
        """Test source-only runs never collect or write dependencies"""
        workspace["output"].mkdir()
        (workspace["output"] / "dependencies.yaml").write_text("- stale\n")
        harness = Harness({"java": {"dependencies": JAVA_DEPENDENCIES}})
        report_builder = RecordingReportBuilder()
        orchestrator = harness.orchestrator(
            workspace, report_builder=report_builder, mode="source-only"
        )

        artifacts = await orchestrator.run()

        assert (workspace["output"] / "output.yaml").exists()
        assert not (workspace["output"] / "dependencies.yaml").exists()
        assert artifacts.dependency_output is None
        assert orchestrator.providers["java"].dependency_calls == 0
        assert report_builder.calls == [(workspace["output"] / "output.yaml", None)]
        assert "dependencies_collected" not in harness.observed

    @pytest.mark.asyncio
    async def test_no_dependencies_collected(self, workspace):
        """Test a full run with nothing collected omits the dependency artifact"""
        harness = Harness()
        orchestrator = harness.orchestrator(workspace)

        artifacts = await orchestrator.run()

        assert artifacts.dependency_output is None
        assert not (workspace["output"] / "dependencies.yaml").exists()

    @pytest.mark.asyncio
    async def test_rule_failure_writes_nothing_and_stops_providers(self, workspace):
        """Test an engine failure aborts the run after a clean shutdown"""
        harness = Harness(
            {"java": {"dependencies": JAVA_DEPENDENCIES, "delay": 0.1}},
            engine_error=RuntimeError("engine crashed"),
        )
        orchestrator = harness.orchestrator(workspace)

        with pytest.raises(RuleEvaluationError):
            await orchestrator.run()

        assert not (workspace["output"] / "output.yaml").exists()
        assert not (workspace["output"] / "dependencies.yaml").exists()
        java = orchestrator.providers["java"]
        # Collection was allowed to finish before shutdown
        assert java.dependency_cancelled is False
        assert harness.events.index("deps:java") < harness.events.index("stop:java")
        for provider in orchestrator.providers.values():
            assert provider.state is ProviderState.STOPPED
        assert harness.observed[-1] == "run_failed"
        assert orchestrator.get_status()["phase"] == "failed"

    @pytest.mark.asyncio
    async def test_rule_failure_can_cancel_collection(self, workspace):
        """Test collection is cancelled on failure when configured"""
        harness = Harness(
            {"java": {"dependencies": JAVA_DEPENDENCIES, "delay": 5}},
            engine_error=RuntimeError("engine crashed"),
        )
        orchestrator = harness.orchestrator(workspace, cancel_dependencies_on_failure=True)

        with pytest.raises(RuleEvaluationError):
            await orchestrator.run()

        assert orchestrator.providers["java"].dependency_cancelled is True
        assert orchestrator.providers["java"].state is ProviderState.STOPPED

    @pytest.mark.asyncio
    async def test_specialized_provider_init_failure_is_fatal(self, workspace):
        """Test a failing specialized provider aborts before builtin starts"""
        harness = Harness({"go": {"init_error": RuntimeError("no toolchain")}})
        orchestrator = harness.orchestrator(workspace)

        with pytest.raises(FatalProviderInitError):
            await orchestrator.run()

        assert orchestrator.providers["builtin"].state is ProviderState.CREATED
        assert orchestrator.providers["java"].state is ProviderState.STOPPED
        assert orchestrator.providers["go"].state is ProviderState.STOPPED
        assert harness.engine.calls == []
        assert harness.engine.stopped
        assert not (workspace["output"] / "output.yaml").exists()

    @pytest.mark.asyncio
    async def test_fallback_init_failure_propagates(self, workspace):
        """Test builtin without a usable location aborts before evaluation"""
        harness = Harness(fallback_locations=[str(workspace["root"] / "missing")])
        orchestrator = harness.orchestrator(workspace)

        with pytest.raises(ProviderInitError) as exc_info:
            await orchestrator.run()

        assert not isinstance(exc_info.value, FatalProviderInitError)
        assert exc_info.value.provider == "builtin"
        assert harness.engine.calls == []
        assert not (workspace["output"] / "output.yaml").exists()
        for provider in orchestrator.providers.values():
            assert provider.state is ProviderState.STOPPED
        assert orchestrator.providers["java"].stop_calls == 1
        assert orchestrator.providers["go"].stop_calls == 1

    @pytest.mark.asyncio
    async def test_failed_run_clears_previous_results(self, workspace):
        """Test a failing run leaves no earlier results next to its settings"""
        workspace["output"].mkdir()
        (workspace["output"] / "output.yaml").write_text("- name: old\n")
        (workspace["output"] / "dependencies.yaml").write_text("- provider: old\n")
        harness = Harness(engine_error=RuntimeError("engine crashed"))
        orchestrator = harness.orchestrator(workspace)

        with pytest.raises(RuleEvaluationError):
            await orchestrator.run()

        assert (workspace["output"] / "settings.json").exists()
        assert not (workspace["output"] / "output.yaml").exists()
        assert not (workspace["output"] / "dependencies.yaml").exists()

    @pytest.mark.asyncio
    async def test_cancelled_run_stops_providers_after_engine(self, workspace):
        """Test cancelling a run keeps providers up until the engine returns"""
        harness = Harness({"java": {"dependencies": JAVA_DEPENDENCIES}})
        orchestrator = harness.orchestrator(workspace)
        started = threading.Event()
        states_at_engine_exit = {}

        def slow_run_rules(rulesets, selectors):
            started.set()
            time.sleep(0.3)
            states_at_engine_exit.update(orchestrator.get_status()["providers"])
            return []

        harness.engine.run_rules = slow_run_rules

        task = asyncio.create_task(orchestrator.run())
        assert await asyncio.to_thread(started.wait, 5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert states_at_engine_exit == {"java": "ready", "go": "ready", "builtin": "ready"}
        for provider in orchestrator.providers.values():
            assert provider.state is ProviderState.STOPPED
        assert harness.engine.stopped
        assert not (workspace["output"] / "output.yaml").exists()
        assert harness.observed[-1] == "run_failed"

    @pytest.mark.asyncio
    async def test_unparsable_rules_skipped(self, workspace):
        """Test rules needing an unknown provider are skipped, not fatal"""
        extra = workspace["root"] / "python.yaml"
        extra.write_text(yaml.safe_dump([{"ruleID": "py-1", "when": {"python.referenced": {}}}]))
        harness = Harness()
        orchestrator = harness.orchestrator(workspace)
        orchestrator.config.rules.append(str(extra))

        await orchestrator.run()

        rulesets = yaml.safe_load((workspace["output"] / "output.yaml").read_text())
        assert [r["name"] for r in rulesets] == ["cloud", "eap7"]

    @pytest.mark.asyncio
    async def test_repeated_runs_are_identical(self, workspace):
        """Test two runs over the same input produce the same bytes"""
        first = Harness({"java": {"dependencies": JAVA_DEPENDENCIES}})
        await first.orchestrator(workspace).run()
        output_first = (workspace["output"] / "output.yaml").read_bytes()
        deps_first = (workspace["output"] / "dependencies.yaml").read_bytes()

        second = Harness({"java": {"dependencies": JAVA_DEPENDENCIES, "delay": 0.05}})
        await second.orchestrator(workspace).run()

        assert (workspace["output"] / "output.yaml").read_bytes() == output_first
        assert (workspace["output"] / "dependencies.yaml").read_bytes() == deps_first


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-m", "integration"])
