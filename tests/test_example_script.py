from __future__ import annotations

import importlib.util
from pathlib import Path

SCRIPT_PATH = Path(__file__).resolve().parents[1] / "examples" / "run_extinction_script.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("run_extinction_script", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_script_paths_resolve_next_to_the_script(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MPLCONFIGDIR", str(tmp_path / "mpl"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg"))
    script = _load_script()

    script_dir = SCRIPT_PATH.parent
    config = script.CONFIG
    assert config.output_dir == script_dir / script.OUTPUT_DIR
    assert config.plots_dir == script_dir / script.PLOTS_DIR
    assert config.annotation_csv == script_dir / script.ANNOTATION_CSV
    assert all(batch.folder.is_absolute() for batch in config.batches)
