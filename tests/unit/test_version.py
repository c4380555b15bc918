from __future__ import annotations

import json
from pathlib import Path

import dynarecord


def test_version_matches_version_json() -> None:
    version_file = Path(__file__).resolve().parents[2] / "src" / "dynarecord" / "version.json"
    data = json.loads(version_file.read_text(encoding="utf-8"))
    assert dynarecord.__repo_version__ == data["version"]
    if "-rc." in data["version"]:
        assert "-rc." not in dynarecord.__version__
        assert "rc" in dynarecord.__version__
    else:
        assert dynarecord.__version__ == data["version"]
