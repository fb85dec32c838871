import numpy as np
import pandas as pd
import pytest

from contrast_batch import NameLookup, annotate_contrast, bh_fdr, significant_features
from contrast_batch.results import (
    EFFECT_COL,
    FEATURE_COL,
    MEAN_COL,
    NAME_COL,
    PADJ_COL,
    PVALUE_COL,
    RESULT_COLUMNS,
)


def test_bh_fdr_hand_computed():
    q = bh_fdr(np.array([0.01, 0.04, 0.03, 0.2]))
    np.testing.assert_allclose(q, [0.04, 0.16 / 3, 0.16 / 3, 0.2])


def test_bh_fdr_keeps_nan_out_of_the_count():
    q = bh_fdr(np.array([0.01, np.nan, 0.04, 0.03, 0.2]))
    assert np.isnan(q[1])
    np.testing.assert_allclose(q[[0, 2, 3, 4]], [0.04, 0.16 / 3, 0.16 / 3, 0.2])


def test_bh_fdr_all_nan():
    assert np.isnan(bh_fdr(np.array([np.nan, np.nan]))).all()


def _rows():
    return pd.DataFrame(
        {
            FEATURE_COL: ["a", "b", "c", "d"],
            EFFECT_COL: [0.5, np.nan, -2.0, 3.0],
            MEAN_COL: [12.0, 0.0, 40.0, 7.5],
            PVALUE_COL: [0.5, np.nan, 0.1, 0.1],
            PADJ_COL: [0.5, np.nan, 0.01, 0.2],
        }
    )


def test_annotate_sorts_by_pvalue_stably_with_missing_last():
    res = annotate_contrast("c1", _rows(), NameLookup({"c": "CD28"}))

    assert res.comparison_id == "c1"
    assert list(res.table[FEATURE_COL]) == ["c", "d", "a", "b"]
    assert list(res.table.columns) == RESULT_COLUMNS
    assert res.table[NAME_COL].iloc[0] == "CD28"
    assert res.table[NAME_COL].isna().tolist() == [False, True, True, True]
    assert res.n_tested == 3


def test_annotate_does_not_modify_input():
    rows = _rows()
    annotate_contrast("c1", rows, NameLookup())
    assert NAME_COL not in rows.columns
    assert list(rows[FEATURE_COL]) == ["a", "b", "c", "d"]


def test_significant_features_uses_both_thresholds():
    assert significant_features(_rows(), padj_thresh=0.05, effect_thresh=1.0) == ["c"]
    assert significant_features(_rows(), padj_thresh=0.3, effect_thresh=1.0) == ["c", "d"]


def test_lookup_strips_and_drops_empty_names():
    lookup = NameLookup({" F1 ": " CD28 ", "F2": "  ", "F3": np.nan})
    assert lookup("F1") == "CD28"
    assert lookup("F2") is None
    assert lookup("F3") is None
    assert len(lookup) == 1


def test_lookup_from_frame_keeps_first_id():
    df = pd.DataFrame({"id": ["F1", "F1", "F2"], "gene": ["CD28", "ICOS", "OX40"]})
    lookup = NameLookup.from_frame(df, "id", "gene")
    assert dict(lookup) == {"F1": "CD28", "F2": "OX40"}


def test_annotate_rejects_incomplete_fitter_output():
    rows = _rows().drop(columns=[MEAN_COL])
    with pytest.raises(ValueError, match="meanAbundance"):
        annotate_contrast("c1", rows, NameLookup())


def test_lookup_call_and_index_agree_on_key_type():
    lookup = NameLookup({"123": "CD28", "F7": "ICOS"})
    assert lookup(123) == lookup[123] == "CD28"
    assert lookup[" F7 "] == "ICOS"
    with pytest.raises(KeyError):
        lookup[456]
    assert lookup(456) is None
