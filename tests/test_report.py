import pandas as pd

from conftest import fake_fitter, make_spec

from contrast_batch import (
    format_summary,
    run_batch,
    significant_overlap,
    summary_table,
    write_batch_report,
)


def _outcome(base, lookup):
    specs = [
        make_spec("on"),
        make_spec("off", hold_constant_value="off"),
        make_spec("empty", hold_constant_value="maybe"),
    ]
    return run_batch(specs, base, lookup, fitter=fake_fitter)


def test_summary_table(base, lookup):
    summary = summary_table(_outcome(base, lookup))

    assert list(summary["comparison_id"]) == ["on", "off", "empty"]
    assert list(summary["status"]) == ["ok", "ok", "failed"]
    assert summary.loc[2, "error_kind"] == "EmptySubsetError"
    assert summary.loc[0, "n_features"] == len(base.features)
    assert summary.loc[0, "n_significant"] == 3


def test_format_summary_shows_top_rows_and_failures(base, lookup):
    text = format_summary(_outcome(base, lookup), top_n=2)
    assert "== on: top 2 of" in text
    assert "CD28" in text
    assert "== empty: FAILED (EmptySubsetError)" in text


def test_significant_overlap(base, lookup):
    overlap = significant_overlap(_outcome(base, lookup))
    expected = pd.DataFrame([[3, 3], [3, 3]], index=["on", "off"], columns=["on", "off"])
    pd.testing.assert_frame_equal(overlap, expected, check_dtype=False)


def test_write_batch_report(base, lookup, tmp_path):
    written = write_batch_report(_outcome(base, lookup), tmp_path)

    assert written["summary"].exists()
    assert written["overlap"].exists()
    assert written["overlap_plot"].exists()
    assert len(pd.read_csv(written["summary"])) == 3


def test_no_overlap_for_single_success(base, lookup, tmp_path):
    outcome = run_batch([make_spec("on")], base, lookup, fitter=fake_fitter)
    written = write_batch_report(outcome, tmp_path)
    assert written["overlap"] is None
    assert not (tmp_path / "significant_overlap.csv").exists()
