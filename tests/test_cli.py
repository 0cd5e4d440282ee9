from typer.testing import CliRunner

from songbridge.cli import accept_top_candidates, app

runner = CliRunner()


def test_config_show():
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0
    assert "THRESHOLD_HIGH" in result.output


def test_unknown_catalog_is_rejected(tmp_path):
    playlist = tmp_path / "p.json"
    playlist.write_text("[]", encoding="utf-8")
    result = runner.invoke(app, ["transfer", "run", str(playlist), "--to", "tidal"])
    assert result.exit_code != 0


def test_accept_top_candidates():
    needs_review = [
        {"track_index": 0, "candidates": [{"id": "a"}, {"id": "b"}]},
        {"track_index": 1, "candidates": []},
    ]
    assert accept_top_candidates(needs_review) == [
        {"track_index": 0, "action": "select", "selected_variant_id": "a"}
    ]


def test_config_set_rejects_unknown_key():
    result = runner.invoke(app, ["config", "set", "NOT_A_SETTING", "1"])
    assert result.exit_code == 1
