import json
from pathlib import Path

from main import load_config, open_store


def test_load_config_missing_file(tmp_path: Path) -> None:
    assert load_config(tmp_path / "config.json") == {}


def test_load_config_reads_json(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"start_url": "https://example.test"}), encoding="utf-8")
    assert load_config(path)["start_url"] == "https://example.test"


def test_open_store_seeds_from_config_once(tmp_path: Path) -> None:
    state = tmp_path / "state.json"
    store = open_store({"state_path": str(state), "api_key": "seed", "delay_ms": 700})
    settings = store.load()
    assert (settings.api_key, settings.delay_ms, settings.is_running) == ("seed", 700, False)

    store.update(apiKey="saved")
    assert open_store({"state_path": str(state), "api_key": "seed"}).load().api_key == "saved"
