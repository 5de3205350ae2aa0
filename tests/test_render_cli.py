import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR / "scripts"))

import render_email_tree  # noqa: E402


def _write(tmp_path, name, payload):
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_cli_renders_valid_tree(tmp_path, capsys, scenario_tree):
    tree_path = _write(tmp_path, "tree.json", scenario_tree)

    exit_code = render_email_tree.main([str(tree_path)])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert out.startswith("<!DOCTYPE html")
    assert ">Hi</h1>" in out


def test_cli_writes_file_with_settings(tmp_path, scenario_tree):
    tree_path = _write(tmp_path, "tree.json", scenario_tree)
    settings_path = _write(tmp_path, "settings.json", {"primaryColor": "#123456", "maxWidth": "640px"})
    out_path = tmp_path / "email.html"

    exit_code = render_email_tree.main(
        [str(tree_path), "--settings", str(settings_path), "--pretty", "--out", str(out_path)]
    )

    assert exit_code == 0
    html = out_path.read_text(encoding="utf-8")
    assert "\n" in html
    assert "max-width:640px" in html


def test_cli_plain_text(tmp_path, capsys, scenario_tree):
    tree_path = _write(tmp_path, "tree.json", scenario_tree)
    assert render_email_tree.main([str(tree_path), "--plain-text"]) == 0
    assert capsys.readouterr().out == "Hi\n\nbody\n"


def test_cli_rejects_invalid_tree(tmp_path, capsys):
    tree_path = _write(tmp_path, "tree.json", {"id": "x", "component": "Marquee"})

    exit_code = render_email_tree.main([str(tree_path)])

    captured = capsys.readouterr()
    assert exit_code == 1
    assert captured.out == ""
    assert "invalid: root: Unknown component type 'Marquee'" in captured.err


def test_cli_reports_unreadable_input(tmp_path, capsys):
    exit_code = render_email_tree.main([str(tmp_path / "missing.json")])
    assert exit_code == 1
    assert "error:" in capsys.readouterr().err
