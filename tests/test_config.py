"""Tests for configuration management."""

from pathlib import Path

import pytest

from eqtl_mapper.utils.config import (
    Config,
    CovariateConfig,
    EngineConfig,
    load_config,
)


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        config = EngineConfig()
        assert config.mode == "both"
        assert config.cis_window == 1000000
        assert config.pval_threshold_cis == 1e-2
        assert config.pval_threshold_trans == 1e-5
        assert config.model == "linear"
        assert config.fdr_method == "bh"
        assert config.fdr_threshold == 0.05
        assert config.reorder_samples is False

    def test_custom_values(self) -> None:
        """Test custom configuration values."""
        config = EngineConfig(
            mode="trans",
            cis_window=500000,
            fdr_method="qvalue",
        )
        assert config.mode == "trans"
        assert config.cis_window == 500000
        assert config.fdr_method == "qvalue"


class TestCovariateConfig:
    """Tests for CovariateConfig."""

    def test_default_sex_encoding(self) -> None:
        """Test the canonical sex mapping."""
        config = CovariateConfig()
        assert config.categorical_encodings["sex"]["male"] == 0
        assert config.categorical_encodings["sex"]["F"] == 1
        assert config.one_hot == []

    def test_defaults_not_shared(self) -> None:
        """Test mutable defaults are per instance."""
        first = CovariateConfig()
        first.one_hot.append("batch")
        assert CovariateConfig().one_hot == []


class TestConfig:
    """Tests for Config class."""

    def test_default_config(self) -> None:
        """Test creating default configuration."""
        config = Config()
        assert config.pipeline is not None
        assert isinstance(config.engine, EngineConfig)
        assert isinstance(config.covariates, CovariateConfig)

    def test_load_yaml_config(self, temp_dir: Path) -> None:
        """Test loading configuration from YAML file."""
        config_content = """
output_dir: custom_results
n_jobs: 8
engine:
    mode: cis
    cis_window: 500000
    fdr_method: qvalue
covariates:
    one_hot: [batch]
    n_genotype_pcs: 3
"""
        config_path = temp_dir / "config.yaml"
        config_path.write_text(config_content)

        config = Config(config_path)
        assert config.pipeline.output_dir == "custom_results"
        assert config.pipeline.n_jobs == 8
        assert config.engine.mode == "cis"
        assert config.engine.cis_window == 500000
        assert config.engine.fdr_method == "qvalue"
        assert config.covariates.one_hot == ["batch"]
        assert config.covariates.n_genotype_pcs == 3

    def test_exponent_thresholds_parsed_as_floats(self, temp_dir: Path) -> None:
        """Test thresholds written as 1e-5 are read as numbers."""
        config_path = temp_dir / "config.yaml"
        config_path.write_text("engine:\n    pval_threshold_trans: 1e-5\n")

        config = Config(config_path)
        assert config.engine.pval_threshold_trans == pytest.approx(1e-5)
        assert config.validate() == []

    def test_load_nonexistent_file(self) -> None:
        """Test loading from nonexistent file raises error."""
        with pytest.raises(FileNotFoundError):
            Config("/nonexistent/path/config.yaml")

    def test_load_empty_file(self, temp_dir: Path) -> None:
        """Test an empty configuration file is rejected."""
        config_path = temp_dir / "empty.yaml"
        config_path.write_text("")
        with pytest.raises(ValueError):
            Config(config_path)

    def test_save_config(self, temp_dir: Path) -> None:
        """Test saving configuration to file."""
        config = Config()
        config.pipeline.output_dir = "test_output"
        config.engine.pval_threshold_trans = 1e-8

        save_path = temp_dir / "saved_config.yaml"
        config.save(save_path)

        assert save_path.exists()

        # Load and verify
        loaded_config = Config(save_path)
        assert loaded_config.pipeline.output_dir == "test_output"
        assert loaded_config.engine.pval_threshold_trans == 1e-8

    def test_validate_valid_config(self) -> None:
        """Test validation of valid configuration."""
        config = Config()
        errors = config.validate()
        assert len(errors) == 0

    def test_validate_invalid_values(self) -> None:
        """Test validation catches invalid settings."""
        config = Config()
        config.engine.mode = "everything"
        config.engine.fdr_threshold = 1.5
        config.engine.cis_window = -100

        errors = config.validate()
        assert len(errors) == 3

    def test_validate_missing_input(self) -> None:
        """Test validation reports missing input files."""
        config = Config()
        config.pipeline.expression_file = "/nonexistent/expression.tsv"
        errors = config.validate()
        assert any("Expression file" in error for error in errors)

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test configuration from EQTL_ environment variables."""
        monkeypatch.setenv("EQTL_MODE", "trans")
        monkeypatch.setenv("EQTL_CIS_WINDOW", "250000")
        monkeypatch.setenv("EQTL_N_JOBS", "2")
        monkeypatch.setenv("EQTL_VERBOSE", "false")

        config = Config.from_env()
        assert config.engine.mode == "trans"
        assert config.engine.cis_window == 250000
        assert config.pipeline.n_jobs == 2
        assert config.pipeline.verbose is False


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_default(self) -> None:
        """Test loading default configuration."""
        config = load_config()
        assert isinstance(config, Config)
        assert config.pipeline is not None

    def test_load_from_file(self, temp_dir: Path) -> None:
        """Test loading configuration from file."""
        config_content = "n_jobs: 16"
        config_path = temp_dir / "config.yaml"
        config_path.write_text(config_content)

        config = load_config(config_path)
        assert config.pipeline.n_jobs == 16
