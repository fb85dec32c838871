import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest
from matplotlib.figure import Figure

from conftest import fake_fitter, make_spec

from contrast_batch import (
    ArtifactPersister,
    BatchOrchestrator,
    ContrastResult,
    FailureRecord,
    annotate_contrast,
    build_base_dataset,
    fit_contrast,
    run_batch,
)
from contrast_batch.dataset import scoped_subset
from contrast_batch.orchestrator import CANCELLED, process_comparison
from contrast_batch.results import FEATURE_COL, NAME_COL, PVALUE_COL


def test_every_spec_gets_an_outcome_in_order(base, lookup):
    specs = [
        make_spec("ok_on"),
        make_spec("bad_factor", varying_factor="donor", level_a="d1", level_b="d2"),
        make_spec("empty", hold_constant_value="maybe"),
        make_spec("unknown", hold_constant_factor="batch"),
        make_spec("ok_off", hold_constant_value="off"),
    ]
    outcome = run_batch(specs, base, lookup, fitter=fake_fitter)

    assert list(outcome) == [s.id for s in specs]
    assert list(outcome.succeeded) == ["ok_on", "ok_off"]
    assert outcome["bad_factor"].error_kind == "UnsupportedFactorError"
    assert outcome["empty"].error_kind == "EmptySubsetError"
    assert outcome["unknown"].error_kind == "UnknownFactorError"
    assert isinstance(outcome["ok_off"], ContrastResult)


def test_result_is_annotated(base, lookup):
    outcome = run_batch([make_spec("c1")], base, lookup, fitter=fake_fitter)
    table = outcome["c1"].table.set_index(FEATURE_COL)
    assert table.loc["F00", NAME_COL] == "CD28"
    assert pd.isna(table.loc["F02", NAME_COL])
    assert outcome["c1"].spec.id == "c1"


def test_unexpected_error_is_wrapped(base, lookup):
    def broken(subset, varying_factor, level_a, level_b):
        raise RuntimeError("boom")

    outcome = run_batch([make_spec("broken"), make_spec("next")], base, lookup, fitter=broken)
    failure = outcome["broken"]
    assert isinstance(failure, FailureRecord)
    assert failure.error_kind == "ComparisonFailed"
    assert "RuntimeError: boom" in failure.message
    assert outcome["next"].error_kind == "ComparisonFailed"


def test_subset_is_released_after_failure(base, lookup):
    seen = []

    def capture(subset, varying_factor, level_a, level_b):
        seen.append(subset)
        raise ValueError("bad values")

    result = process_comparison(make_spec("c1"), base, lookup, fitter=capture)
    assert not result.ok
    assert seen[0].released
    assert seen[0].counts.empty


def test_fitter_receives_selected_formula(base, lookup):
    formulas = []

    def capture(subset, varying_factor, level_a, level_b):
        formulas.append(subset.formula.formula)
        return fake_fitter(subset, varying_factor, level_a, level_b)

    run_batch([make_spec("c1", varying_factor="tlr", hold_constant_factor="dendrimer",
                         hold_constant_value="galnac", level_a="on", level_b="off")],
              base, lookup, fitter=capture)
    assert formulas == ["~ C(donor) + C(tlr)"]


def test_cancellation_records_remaining_specs(base, lookup):
    calls = []

    def stop_after_first():
        calls.append(1)
        return len(calls) > 1

    specs = [make_spec(f"c{i}") for i in range(4)]
    outcome = run_batch(specs, base, lookup, fitter=fake_fitter, should_stop=stop_after_first)

    assert list(outcome) == ["c0", "c1", "c2", "c3"]
    assert outcome["c0"].ok
    assert [outcome[c].error_kind for c in ["c1", "c2", "c3"]] == [CANCELLED] * 3


def test_duplicate_ids_are_rejected(base, lookup):
    with pytest.raises(ValueError, match="unique"):
        run_batch([make_spec("c1"), make_spec("c1")], base, lookup, fitter=fake_fitter)


def test_persister_writes_numbered_artifacts(base, lookup, tmp_path):
    specs = [
        make_spec("galnac vs control/on"),
        make_spec("bad", varying_factor="donor"),
        make_spec("off", hold_constant_value="off"),
    ]
    persister = ArtifactPersister(tmp_path)
    outcome = run_batch(specs, base, lookup, fitter=fake_fitter, persister=persister)

    assert sorted(p.name for p in tmp_path.iterdir()) == [
        "01_galnac_vs_control_on.csv",
        "01_galnac_vs_control_on_volcano.png",
        "03_off.csv",
        "03_off_volcano.png",
    ]
    assert set(outcome.artifacts) == {"galnac vs control/on", "off"}

    saved = pd.read_csv(tmp_path / "03_off.csv")
    pd.testing.assert_series_equal(
        saved[FEATURE_COL], outcome["off"].table[FEATURE_COL], check_dtype=False
    )


def test_persist_error_becomes_failure(base, lookup, tmp_path):
    blocker = tmp_path / "results"
    blocker.write_text("not a directory")
    outcome = run_batch(
        [make_spec("c1")], base, lookup, fitter=fake_fitter, persister=ArtifactPersister(blocker)
    )
    assert outcome["c1"].error_kind == "ComparisonFailed"
    assert "persist" in outcome["c1"].message


def test_process_pool_matches_sequential(base, lookup):
    specs = [make_spec("on"), make_spec("off", hold_constant_value="off")]
    sequential = BatchOrchestrator(base, lookup, fitter=fit_contrast).run(specs)
    pooled = BatchOrchestrator(base, lookup, fitter=fit_contrast, n_jobs=2).run(specs)

    assert list(pooled) == list(sequential)
    for cid in sequential:
        pd.testing.assert_frame_equal(pooled[cid].table, sequential[cid].table)


def test_base_design_terms_enter_the_model(counts_and_metadata, lookup):
    counts, meta = counts_and_metadata
    second_plate = {("d1", "control"), ("d2", "galnac")}
    plate = ["p2" if (r.donor, r.dendrimer) in second_plate else "p1" for r in meta.itertuples()]
    meta = meta.assign(plate=plate)
    plain = build_base_dataset(counts, meta)
    blocked = build_base_dataset(counts, meta, design="~ donor + plate + tlr")

    formulas = []

    def capture(subset, varying_factor, level_a, level_b):
        formulas.append(subset.formula.formula)
        return fit_contrast(subset, varying_factor, level_a, level_b)

    spec = make_spec("c1")
    without_plate = process_comparison(spec, plain, lookup, fitter=capture)
    with_plate = process_comparison(spec, blocked, lookup, fitter=capture)

    # the held-constant tlr term is left out of the model
    assert formulas == ["~ C(donor) + C(dendrimer)", "~ C(donor) + C(plate) + C(dendrimer)"]
    assert without_plate.ok and with_plate.ok
    p_without = without_plate.table.set_index(FEATURE_COL)[PVALUE_COL].sort_index()
    p_with = with_plate.table.set_index(FEATURE_COL)[PVALUE_COL].sort_index()
    assert not np.allclose(p_without, p_with, equal_nan=True)


def test_four_donor_tlr_example_cannot_be_fit(lookup):
    rng = np.random.default_rng(3)
    donors = ["d1", "d2", "d3", "d4"]
    rows = [
        {
            "sample_id": f"{donor}_{tlr}",
            "donor": donor,
            "tlr": tlr,
            "dendrimer": "control" if donor in ("d1", "d2") else "galnac",
        }
        for donor in donors
        for tlr in ["off", "on"]
    ]
    meta = pd.DataFrame(rows).set_index("sample_id")
    counts = pd.DataFrame(
        rng.poisson(100, size=(20, len(meta))),
        index=[f"F{i:02d}" for i in range(20)],
        columns=meta.index,
    )
    base = build_base_dataset(counts, meta)

    seen = {}

    def capture(subset, varying_factor, level_a, level_b):
        seen["samples"] = subset.samples
        seen["formula"] = subset.formula.formula
        return fit_contrast(subset, varying_factor, level_a, level_b)

    spec = make_spec("cmp1", level_a="control", level_b="galnac")
    outcome = run_batch([spec], base, lookup, fitter=capture)

    assert seen["samples"] == ["d1_on", "d2_on", "d3_on", "d4_on"]
    assert seen["formula"] == "~ C(donor) + C(dendrimer)"
    assert outcome["cmp1"].error_kind == "FitConvergenceError"
    assert "rank deficient" in outcome["cmp1"].message


def test_figure_is_closed_when_saving_fails(base, lookup, tmp_path, monkeypatch):
    spec = make_spec("c1")
    with scoped_subset(base, spec.hold_constant_factor, spec.hold_constant_value) as subset:
        rows = fake_fitter(subset, spec.varying_factor, spec.level_a, spec.level_b)
    result = annotate_contrast(spec.id, rows, lookup, spec=spec)

    def fail(self, *args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(Figure, "savefig", fail)
    plt.close("all")
    with pytest.raises(OSError, match="disk full"):
        ArtifactPersister(tmp_path).persist(result, 1)
    assert plt.get_fignums() == []
