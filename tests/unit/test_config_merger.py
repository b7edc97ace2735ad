"""
Unit tests for ConfigMerger module.

Run with: pytest tests/unit/test_config_merger.py -v
"""

import os

import pytest

from conftest import make_config
from convoy.core.config_merger import ConfigMerger, provider_locations
from convoy.providers import AnalysisMode, InitConfig, ProviderConfig, ProviderKind, Proxy


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Working directory holding two project directories and a file"""
    (tmp_path / "app").mkdir()
    (tmp_path / "lib").mkdir()
    (tmp_path / "app.jar").write_bytes(b"PK")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def builtin_of(configs):
    return [c for c in configs if c.name == "builtin"][0]


class TestConfigMerger:
    """Test suite for ConfigMerger class"""

    def test_builtin_emitted_last(self, workspace):
        """Test non-builtin configs keep their order and builtin comes last"""
        configs = [
            make_config("java", "app"),
            make_config("builtin", "lib"),
            make_config("go", "lib"),
        ]

        merged = ConfigMerger().merge(configs)

        assert [c.name for c in merged] == ["java", "go", "builtin"]
        assert merged[-1].kind is ProviderKind.BUILTIN

    def test_builtin_added_when_absent(self, workspace):
        """Test a builtin config is synthesized from other providers' locations"""
        merged = ConfigMerger().merge([make_config("java", "app")])

        builtin = builtin_of(merged)
        assert [c.location for c in builtin.init_config] == [os.path.abspath("app")]

    def test_same_directory_spelled_differently_appears_once(self, workspace):
        """Test locations are deduplicated by normalized absolute path"""
        configs = [
            make_config("java", "app"),
            make_config("go", "./app/../app"),
            make_config("builtin", os.path.join(os.getcwd(), "app")),
        ]

        merged = ConfigMerger().merge(configs)

        locations = [c.location for c in builtin_of(merged).init_config]
        assert locations == [os.path.abspath("app")]

    def test_union_preserves_first_seen_order(self, workspace):
        """Test builtin locations follow the order they were first referenced"""
        configs = [
            make_config("java", "lib", "app"),
            make_config("go", "app"),
        ]

        merged = ConfigMerger().merge(configs)

        assert [c.location for c in builtin_of(merged).init_config] == [
            os.path.abspath("lib"),
            os.path.abspath("app"),
        ]

    def test_non_directories_excluded_from_builtin(self, workspace):
        """Test files and missing paths never reach builtin"""
        configs = [make_config("java", "app.jar", "missing", "app")]

        merged = ConfigMerger().merge(configs)

        assert [c.location for c in builtin_of(merged).init_config] == [os.path.abspath("app")]
        # The owning provider still gets them
        assert [c.location for c in merged[0].init_config] == ["app.jar", "missing", "app"]

    def test_empty_locations_ignored(self, workspace):
        """Test init configs without a location are not folded into builtin"""
        java = ProviderConfig(name="java", init_config=[InitConfig()])

        merged = ConfigMerger().merge([java])

        assert builtin_of(merged).init_config == []

    def test_explicit_builtin_config_preserved(self, workspace):
        """Test builtin's own provider-specific config wins for its location"""
        builtin = ProviderConfig.model_validate({
            "name": "builtin",
            "initConfig": [{
                "location": "app",
                "providerSpecificConfig": {"excludedDirs": ["target"]},
            }],
        })
        configs = [make_config("java", "./app"), builtin]

        merged = ConfigMerger().merge(configs)

        init_configs = builtin_of(merged).init_config
        assert len(init_configs) == 1
        assert init_configs[0].provider_specific_config == {"excludedDirs": ["target"]}

    def test_implicit_locations_have_no_specific_config(self, workspace):
        """Test provider-specific config of other providers is not copied"""
        java = ProviderConfig.model_validate({
            "name": "java",
            "initConfig": [{"location": "app", "providerSpecificConfig": {"mavenSettings": "x"}}],
        })

        merged = ConfigMerger().merge([java])

        assert builtin_of(merged).init_config[0].provider_specific_config is None
        assert merged[0].init_config[0].provider_specific_config == {"mavenSettings": "x"}

    def test_shared_settings_injected_everywhere(self, workspace):
        """Test proxy, context lines and mode reach every init config"""
        proxy = Proxy(http_proxy="http://proxy:3128", no_proxy="localhost")
        merger = ConfigMerger(proxy=proxy, context_lines=25, mode=AnalysisMode.SOURCE_ONLY)

        merged = merger.merge([make_config("java", "app"), make_config("go", "lib")])

        for config in merged:
            for init_config in config.init_config:
                assert init_config.proxy == proxy
                assert init_config.context_lines == 25
                assert init_config.analysis_mode is AnalysisMode.SOURCE_ONLY

    def test_inputs_not_modified(self, workspace):
        """Test merging returns new configs and leaves the input alone"""
        java = make_config("java", "app")

        ConfigMerger(context_lines=5).merge([java])

        assert java.init_config[0].context_lines is None

    def test_normalization_failure_falls_back_to_raw_string(self, workspace):
        """Test an unnormalizable location is keyed by its raw spelling"""

        def failing_normalize(location):
            raise OSError("cannot resolve")

        merger = ConfigMerger(normalize=failing_normalize)

        merged = merger.merge([make_config("java", "app"), make_config("go", "./app")])

        locations = [c.location for c in builtin_of(merged).init_config]
        assert locations == ["app", "./app"]

    def test_file_uri_locations(self, workspace):
        """Test file:// locations dedupe with plain paths"""
        app = os.path.abspath("app")
        configs = [make_config("java", f"file://{app}"), make_config("go", app)]

        merged = ConfigMerger().merge(configs)

        assert [c.location for c in builtin_of(merged).init_config] == [app]


class TestProviderLocations:
    """Test suite for provider_locations helper"""

    def test_every_location_in_order(self):
        """Test locations are listed across providers in order"""
        configs = [make_config("java", "/a", "/b"), make_config("builtin", "/c")]

        assert provider_locations(configs) == ["/a", "/b", "/c"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
