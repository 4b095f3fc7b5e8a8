"""Tests for the command line interface."""

from typer.testing import CliRunner

from venue_fusion.cli.main import app
from venue_fusion.ingestion.registry import reset_default_registry

runner = CliRunner()


class TestCli:
    """Smoke tests for CLI commands that need no network or database."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_connector_types(self) -> None:
        result = runner.invoke(app, ["connectors", "types"])
        assert result.exit_code == 0
        assert "static" in result.output
        assert "json_api" in result.output

    def test_connector_list_all(self, tmp_path, monkeypatch) -> None:
        config = tmp_path / "connectors.yaml"
        config.write_text(
            "connectors:\n"
            "  - name: sample\n"
            "    type: static\n"
            "    enabled: false\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("CONNECTORS_CONFIG_PATH", str(config))
        reset_default_registry()
        try:
            enabled = runner.invoke(app, ["connectors", "list"])
            everything = runner.invoke(app, ["connectors", "list", "--all"])
        finally:
            reset_default_registry()

        assert enabled.exit_code == 0
        assert "No connectors configured" in enabled.output
        assert everything.exit_code == 0
        assert "sample" in everything.output

    def test_invalid_update_type(self) -> None:
        result = runner.invoke(app, ["batch", "run", "--type", "weekly", "--sync"])
        assert result.exit_code == 1
