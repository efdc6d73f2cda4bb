import importlib.util
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "analyze.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("analyze_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_parse_set_args_decodes_json(cli):
    assert cli.parse_set_args(["a.b=3", "c=true", "d=text"]) == {"a.b": 3, "c": True, "d": "text"}
    with pytest.raises(ValueError):
        cli.parse_set_args(["novalue"])


def test_unreadable_audio_exits_cleanly(cli, tmp_path):
    bad = tmp_path / "bad.wav"
    bad.write_bytes(b"definitely not audio")
    out = tmp_path / "analysis.json"
    code = cli.main(["--reference", str(bad), "--user", str(bad), "--output_json", str(out)])
    assert code == 2
    assert not out.exists()


def test_unknown_override_exits_cleanly(cli):
    code = cli.main(["--reference", "r.wav", "--user", "u.wav", "--set", "analysis.nope=1"])
    assert code == 2

