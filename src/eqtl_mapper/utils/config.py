"""Configuration management for the eQTL mapping engine."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

MODES = ("cis", "trans", "both")
MODELS = ("linear", "anova")
FDR_METHODS = ("bh", "qvalue", "bonferroni")
DISTANCE_REFERENCES = ("tss", "window_start")


def _default_encodings() -> dict[str, dict[str, int]]:
    return {"sex": {"male": 0, "female": 1, "M": 0, "F": 1}}


@dataclass
class EngineConfig:
    """Settings for association testing, partitioning and correction."""

    mode: str = "both"
    cis_window: int = 1000000
    pval_threshold_cis: float = 1e-2
    pval_threshold_trans: float = 1e-5
    model: str = "linear"
    fdr_method: str = "bh"
    fdr_threshold: float = 0.05
    distance_reference: str = "tss"
    gene_block_size: int = 256
    variant_batch_size: int = 10000
    reorder_samples: bool = False


@dataclass
class CovariateConfig:
    """Settings for covariate encoding before residualization."""

    categorical_encodings: dict[str, dict[str, int]] = field(default_factory=_default_encodings)
    one_hot: list[str] = field(default_factory=list)
    n_genotype_pcs: int = 0
    scale: bool = False


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""

    # Input paths
    genotype_file: str | None = None
    expression_file: str | None = None
    covariate_file: str | None = None
    variant_positions_file: str | None = None
    gene_positions_file: str | None = None

    # Output paths
    output_dir: str = "results"
    log_dir: str = "logs"

    # Sub-configurations
    engine: EngineConfig = field(default_factory=EngineConfig)
    covariates: CovariateConfig = field(default_factory=CovariateConfig)

    # Runtime settings
    n_jobs: int = 4
    random_seed: int = 42
    verbose: bool = True


class Config:
    """Configuration manager for the eQTL mapping engine."""

    _SECTIONS = ("engine", "covariates")

    def __init__(self, config_path: str | Path | None = None) -> None:
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML configuration file.
                        If None, uses default configuration.
        """
        self._config = PipelineConfig()
        if config_path is not None:
            self.load(config_path)

    @property
    def pipeline(self) -> PipelineConfig:
        """Get the pipeline configuration."""
        return self._config

    @property
    def engine(self) -> EngineConfig:
        """Get engine configuration."""
        return self._config.engine

    @property
    def covariates(self) -> CovariateConfig:
        """Get covariate configuration."""
        return self._config.covariates

    def load(self, config_path: str | Path) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the configuration file.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ValueError: If the configuration file is empty or not a mapping.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is None:
            raise ValueError(f"Empty configuration file: {config_path}")
        if not isinstance(data, dict):
            raise ValueError(f"Configuration must be a mapping: {config_path}")

        self._update_config(data)

    def _update_config(self, data: dict[str, Any]) -> None:
        """Update configuration from dictionary."""
        for key, value in data.items():
            if key in self._SECTIONS and isinstance(value, dict):
                section = getattr(self._config, key)
                for sub_key, sub_value in value.items():
                    if hasattr(section, sub_key):
                        current = getattr(section, sub_key)
                        # YAML reads exponent literals such as 1e-5 as strings
                        if isinstance(current, float) and isinstance(sub_value, (str, int)):
                            sub_value = float(sub_value)
                        setattr(section, sub_key, sub_value)
            elif hasattr(self._config, key) and key not in self._SECTIONS:
                setattr(self._config, key, value)

    def save(self, config_path: str | Path) -> None:
        """
        Save current configuration to a YAML file.

        Args:
            config_path: Path to save the configuration.
        """
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self._config)

    def validate(self) -> list[str]:
        """
        Validate the configuration.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors = []
        engine = self.engine

        for attr in (
            "genotype_file",
            "expression_file",
            "covariate_file",
            "variant_positions_file",
            "gene_positions_file",
        ):
            path = getattr(self._config, attr)
            if path and not Path(path).exists():
                errors.append(f"{attr.replace('_', ' ').capitalize()} not found: {path}")

        if engine.mode not in MODES:
            errors.append(f"mode must be one of {MODES}")

        if engine.model not in MODELS:
            errors.append(f"model must be one of {MODELS}")

        if engine.fdr_method not in FDR_METHODS:
            errors.append(f"fdr_method must be one of {FDR_METHODS}")

        if engine.distance_reference not in DISTANCE_REFERENCES:
            errors.append(f"distance_reference must be one of {DISTANCE_REFERENCES}")

        if engine.cis_window < 0:
            errors.append("cis_window must be non-negative")

        for name in ("pval_threshold_cis", "pval_threshold_trans"):
            if not 0 < getattr(engine, name) <= 1:
                errors.append(f"{name} must be between 0 and 1")

        if not 0 < engine.fdr_threshold <= 1:
            errors.append("fdr_threshold must be between 0 and 1")

        if engine.gene_block_size < 1 or engine.variant_batch_size < 1:
            errors.append("gene_block_size and variant_batch_size must be positive")

        if self.covariates.n_genotype_pcs < 0:
            errors.append("n_genotype_pcs must be non-negative")

        if self._config.n_jobs < 1:
            errors.append("n_jobs must be at least 1")

        return errors

    @classmethod
    def from_env(cls) -> Config:
        """
        Create configuration from environment variables.

        Environment variables should be prefixed with EQTL_.

        Returns:
            Config instance with values from environment.
        """
        config = cls()

        env_mappings = {
            "EQTL_EXPRESSION_FILE": ("expression_file", str),
            "EQTL_GENOTYPE_FILE": ("genotype_file", str),
            "EQTL_OUTPUT_DIR": ("output_dir", str),
            "EQTL_N_JOBS": ("n_jobs", int),
            "EQTL_VERBOSE": ("verbose", lambda x: x.lower() == "true"),
            "EQTL_MODE": ("engine.mode", str),
            "EQTL_CIS_WINDOW": ("engine.cis_window", int),
            "EQTL_PVAL_THRESHOLD_CIS": ("engine.pval_threshold_cis", float),
            "EQTL_PVAL_THRESHOLD_TRANS": ("engine.pval_threshold_trans", float),
            "EQTL_FDR_METHOD": ("engine.fdr_method", str),
        }

        for env_var, (attr_path, converter) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                parts = attr_path.split(".")
                if len(parts) == 1:
                    setattr(config._config, parts[0], converter(value))
                else:
                    sub_config = getattr(config._config, parts[0])
                    setattr(sub_config, parts[1], converter(value))

        return config


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to configuration file.

    Returns:
        Loaded or default configuration.
    """
    return Config(config_path)
