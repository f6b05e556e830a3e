import pytest

from platemerge.config import DEFAULT_CONFIG, load_config, resolve_path
from platemerge.errors import ConfigError


@pytest.fixture(autouse=True)
def no_pipeline_root(monkeypatch):
    monkeypatch.delenv("PIPELINE_ROOT", raising=False)


def test_defaults_merged_under_user_values(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("qc:\n  min_genes_per_cell: 50\nruntime:\n  workers: 3\n")
    config = load_config(str(path))
    assert config["qc"]["min_genes_per_cell"] == 50
    assert config["qc"]["max_mito_fraction"] == DEFAULT_CONFIG["qc"]["max_mito_fraction"]
    assert config["runtime"]["workers"] == 3
    assert config["_config_path"] == str(path)


def test_overrides_win(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("output:\n  dir: out_a\n")
    config = load_config(str(path), overrides={"output": {"dir": "out_b"}})
    assert config["output"]["dir"] == "out_b"
    assert config["output"]["merged"] == DEFAULT_CONFIG["output"]["merged"]


def test_resolve_path_uses_project_root(tmp_path, monkeypatch):
    path = tmp_path / "cfg.yaml"
    path.write_text(f"project_root: {tmp_path}\n")
    config = load_config(str(path))
    assert resolve_path(config, "data/x.tsv") == tmp_path.resolve() / "data" / "x.tsv"

    monkeypatch.setenv("PIPELINE_ROOT", str(tmp_path / "elsewhere"))
    config = load_config(str(path))
    assert config["_project_root"] == (tmp_path / "elsewhere").resolve()


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "absent.yaml"))


def test_invalid_yaml(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("qc: [unclosed\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(str(path))


def test_validation_lists_every_problem(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "barcodes:\n  sample_code_format: v7\n"
        "validation:\n  duplicate_keys: last\n"
        "runtime:\n  workers: 0\n"
    )
    with pytest.raises(ConfigError) as excinfo:
        load_config(str(path))
    message = str(excinfo.value)
    assert "sample_code_format" in message
    assert "duplicate_keys" in message
    assert "runtime.workers" in message


def test_subset_field_needs_values(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("output:\n  subset:\n    field: FACSannotation\n")
    with pytest.raises(ConfigError, match="subset.values"):
        load_config(str(path))
