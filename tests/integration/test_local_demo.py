import json
import runpy
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
DEMO = ROOT / "scripts" / "local_demo.py"


def test_local_demo_runs_full_scenario(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["local_demo.py", "--buy", "500", "--no-events"])
    runpy.run_path(str(DEMO), run_name="__main__")

    out = capsys.readouterr().out
    assert '"step": "sold"' in out
    tail = out[out.rindex('{\n  "events"'):]
    assert json.loads(tail)["events"] == [
        "FundCreated",
        "FundTokenBought",
        "ProportionsUpdated",
        "Rebalanced",
        "FundTokenSold",
    ]
