"""
config.py — Pipeline configuration loading and validation.

MECHANISM ONLY. Policy (file names, duplicate handling, QC thresholds,
subset labels) lives in pipeline_config.yaml.

User settings are deep-merged over DEFAULT_CONFIG, so a config file only
needs to name what differs from the defaults.
"""

import copy
import os
from pathlib import Path
from typing import Optional

import yaml

from platemerge.barcodes import SAMPLE_CODE_FORMATS
from platemerge.errors import ConfigError
from platemerge.tables import DuplicatePolicy


class MissingFilePolicy:
    ABORT = "abort"
    SKIP = "skip"

    ALL = (ABORT, SKIP)


DEFAULT_CONFIG = {
    "project_root": ".",
    "inputs": {
        "index_table": "data/references/index_wells.tsv",
        "plates_dir": "data/plates",
        "plates": [],               # empty = every subdirectory of plates_dir
        "annotations": None,        # optional annotation spreadsheet
        "annotation_sheet": 0,
    },
    "plate_files": {
        "matrix": "expression/umicount",
        "gene_names": "gene_names.txt",
        "barcodes": "barcodes.txt",
    },
    "barcodes": {
        "sample_code_format": "v1",
    },
    "validation": {
        "duplicate_keys": DuplicatePolicy.ERROR,
        "on_missing_plate_file": MissingFilePolicy.ABORT,
    },
    "qc": {
        "enabled": True,
        "min_genes_per_cell": 200,
        "max_mito_fraction": 0.15,
        "min_cells_per_gene": 3,
        "mito_prefixes": ["mt-", "MT-"],
        "normalize": False,
        "target_sum": 10000,
    },
    "output": {
        "dir": "results",
        "merged": "merged_counts.h5ad",
        "manifest": "run_manifest.json",
        "subset": {
            "field": None,
            "values": [],
            "filename": "subset_counts.h5ad",
        },
    },
    "runtime": {
        "workers": 1,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def find_config_file() -> Optional[Path]:
    """Search for pipeline_config.yaml relative to this package, then cwd."""
    candidates = [
        Path(__file__).parent.parent / "config" / "pipeline_config.yaml",
        Path.cwd() / "config" / "pipeline_config.yaml",
        Path.cwd() / "pipeline_config.yaml",
    ]
    for c in candidates:
        if c.is_file():
            return c
    return None


def load_config(config_path: Optional[str] = None, overrides: Optional[dict] = None) -> dict:
    """
    Load pipeline config from YAML, merged over DEFAULT_CONFIG.
    Resolves project_root from PIPELINE_ROOT env var or config value.

    Args:
        config_path: Path to YAML file. If None, searches for
                     config/pipeline_config.yaml relative to this package,
                     then cwd; falls back to the defaults alone.
        overrides: Nested dict applied last (CLI options).
    """
    user = {}
    if config_path is None:
        config_path = find_config_file()
    if config_path is not None:
        if not Path(config_path).is_file():
            raise ConfigError("Config file not found", path=config_path)
        with open(config_path) as f:
            try:
                user = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML: {e}", path=config_path) from e
        if not isinstance(user, dict):
            raise ConfigError("Config root must be a mapping", path=config_path)

    config = _deep_merge(DEFAULT_CONFIG, user)
    if overrides:
        config = _deep_merge(config, overrides)

    config["_config_path"] = str(config_path) if config_path is not None else None
    config["_project_root"] = Path(
        os.environ.get("PIPELINE_ROOT", config.get("project_root", "."))
    ).resolve()

    validate_config(config)
    return config


def resolve_path(config: dict, relative_path) -> Path:
    """Resolve a config-relative path to absolute using project_root."""
    return config["_project_root"] / relative_path


def validate_config(config: dict):
    """
    Validate that required config fields are present and consistent.
    Raises ConfigError listing every failure.
    """
    errors = []

    inputs = config.get("inputs", {})
    for key in ("index_table", "plates_dir"):
        if not inputs.get(key):
            errors.append(f"inputs.{key} is required")
    if not isinstance(inputs.get("plates") or [], list):
        errors.append("inputs.plates must be a list of plate IDs")

    for key in ("matrix", "gene_names", "barcodes"):
        if not config.get("plate_files", {}).get(key):
            errors.append(f"plate_files.{key} is required")

    fmt = config.get("barcodes", {}).get("sample_code_format")
    if fmt not in SAMPLE_CODE_FORMATS:
        errors.append(
            f"barcodes.sample_code_format must be one of {sorted(SAMPLE_CODE_FORMATS)}, got {fmt!r}"
        )

    validation = config.get("validation", {})
    if validation.get("duplicate_keys") not in DuplicatePolicy.ALL:
        errors.append(f"validation.duplicate_keys must be one of {list(DuplicatePolicy.ALL)}")
    if validation.get("on_missing_plate_file") not in MissingFilePolicy.ALL:
        errors.append(
            f"validation.on_missing_plate_file must be one of {list(MissingFilePolicy.ALL)}"
        )

    qc = config.get("qc", {})
    if qc.get("enabled"):
        for key in ("min_genes_per_cell", "min_cells_per_gene"):
            value = qc.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(f"qc.{key} must be a non-negative integer")
        mito = qc.get("max_mito_fraction")
        if not isinstance(mito, (int, float)) or not 0 <= mito <= 1:
            errors.append("qc.max_mito_fraction must be between 0 and 1")
        if not qc.get("mito_prefixes"):
            errors.append("qc.mito_prefixes must list at least one prefix")
        if qc.get("normalize") and not qc.get("target_sum", 0) > 0:
            errors.append("qc.target_sum must be positive when qc.normalize is true")

    subset = config.get("output", {}).get("subset", {})
    if subset.get("field") and not subset.get("values"):
        errors.append("output.subset.values must be non-empty when output.subset.field is set")

    workers = config.get("runtime", {}).get("workers")
    if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
        errors.append("runtime.workers must be an integer >= 1")

    if errors:
        raise ConfigError(
            "Config validation failed:\n" + "\n".join(f"  - {e}" for e in errors),
            path=config.get("_config_path"),
        )
