import numpy as np
import pandas as pd
import pytest

from contrast_batch import (
    DuplicateSpecError,
    MalformedSpecError,
    load_comparison_specs,
    load_comparison_table,
)

HEADER = ["id", "holdConstantFactor", "holdConstantValue", "varyingFactor", "levelA", "levelB"]


def _table(rows, columns=HEADER):
    return pd.DataFrame(rows, columns=columns, dtype=object)


def test_blank_rows_are_dropped_and_order_kept():
    table = _table(
        [
            ["c1", "tlr", "on", "dendrimer", "galnac", "control"],
            [np.nan, np.nan, np.nan, np.nan, np.nan, np.nan],
            ["c2", "dendrimer", "control", "tlr", "on", "off"],
        ]
    )
    specs = load_comparison_specs(table)

    assert [s.id for s in specs] == ["c1", "c2"]
    assert specs[0].level_a == "galnac"
    assert specs[1].hold_constant_factor == "dendrimer"
    assert specs[1].row_number == 3


def test_whitespace_only_row_counts_as_blank():
    table = _table(
        [
            ["c1", "tlr", "on", "dendrimer", "galnac", "control"],
            ["  ", "", " ", np.nan, "", "\t"],
        ]
    )
    assert len(load_comparison_specs(table)) == 1


def test_header_matching_is_tolerant():
    columns = ["ID", "hold_constant_factor", "Hold Constant Value", "varying factor", "Level A", "level_b"]
    table = _table([["c1", "tlr", "on", "dendrimer", "galnac", "control"]], columns=columns)

    (spec,) = load_comparison_specs(table)
    assert spec.hold_constant_value == "on"
    assert spec.level_b == "control"


def test_numeric_cells_are_rendered_as_integers():
    table = _table([["c1", "donor", 2.0, "tlr", "on", "off"]])
    (spec,) = load_comparison_specs(table)
    assert spec.hold_constant_value == "2"


def test_missing_column_is_malformed():
    table = _table([["c1", "tlr", "on", "dendrimer", "galnac"]], columns=HEADER[:-1])
    with pytest.raises(MalformedSpecError, match="levelB"):
        load_comparison_specs(table)


def test_missing_cell_is_malformed():
    table = _table(
        [
            ["c1", "tlr", "on", "dendrimer", "galnac", "control"],
            ["c2", "tlr", "on", "dendrimer", np.nan, "control"],
        ]
    )
    with pytest.raises(MalformedSpecError, match="row 2"):
        load_comparison_specs(table)


def test_duplicate_id_is_rejected():
    table = _table(
        [
            ["c1", "tlr", "on", "dendrimer", "galnac", "control"],
            ["c1", "tlr", "off", "dendrimer", "galnac", "control"],
        ]
    )
    with pytest.raises(DuplicateSpecError, match="c1"):
        load_comparison_specs(table)


def test_load_comparison_table_skips_leading_rows(tmp_path):
    path = tmp_path / "comparisons.csv"
    path.write_text(
        "Comparison plan,,,,,\n"
        "generated for screen 7,,,,,\n"
        + ",".join(HEADER) + "\n"
        "c1,tlr,on,dendrimer,galnac,control\n"
        ",,,,,\n"
        "c2,dendrimer,control,tlr,on,off\n"
    )
    specs = load_comparison_specs(load_comparison_table(path, skip_rows=2))
    assert [s.id for s in specs] == ["c1", "c2"]


def test_label_describes_the_contrast():
    table = _table([["c1", "tlr", "on", "dendrimer", "galnac", "control"]])
    (spec,) = load_comparison_specs(table)
    assert spec.label == "dendrimer galnac vs control (tlr = on)"
