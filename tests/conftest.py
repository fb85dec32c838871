import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from contrast_batch import ComparisonSpec, NameLookup, build_base_dataset
from contrast_batch.results import EFFECT_COL, FEATURE_COL, MEAN_COL, PADJ_COL, PVALUE_COL
from contrast_batch.stats import bh_fdr

DONORS = ["d1", "d2", "d3"]
DENDRIMERS = ["control", "galnac"]
TLRS = ["off", "on"]
N_FEATURES = 40
# up 8-fold in galnac relative to control
DE_FEATURES = [f"F{i:02d}" for i in range(5)]


def make_counts_and_metadata(seed=0):
    rng = np.random.default_rng(seed)

    rows = []
    for donor in DONORS:
        for dendrimer in DENDRIMERS:
            for tlr in TLRS:
                rows.append(
                    {
                        "sample_id": f"{donor}_{dendrimer}_{tlr}",
                        "donor": donor,
                        "dendrimer": dendrimer,
                        "tlr": tlr,
                    }
                )
    meta = pd.DataFrame(rows).set_index("sample_id")

    features = [f"F{i:02d}" for i in range(N_FEATURES)]
    base_mean = rng.uniform(50, 500, size=N_FEATURES)
    donor_effect = dict(zip(DONORS, [0.8, 1.0, 1.25]))
    library = rng.uniform(0.7, 1.4, size=len(meta))
    size = 1.0 / 0.05

    counts = np.empty((N_FEATURES, len(meta)), dtype=int)
    for j, (_, r) in enumerate(meta.iterrows()):
        fold = np.ones(N_FEATURES)
        if r["dendrimer"] == "galnac":
            fold[: len(DE_FEATURES)] = 8.0
        mu = base_mean * fold * donor_effect[r["donor"]] * library[j]
        counts[:, j] = rng.negative_binomial(size, size / (size + mu))

    df = pd.DataFrame(counts, index=pd.Index(features, name="featureId"), columns=meta.index)
    zero = pd.DataFrame(
        np.zeros((1, len(meta)), dtype=int), index=pd.Index(["F_zero"], name="featureId"),
        columns=meta.index,
    )
    return pd.concat([df, zero]), meta


def fake_fitter(subset, varying_factor, level_a, level_b):
    """Fast stand-in for fit_contrast: the first three features are significant."""
    n = subset.counts.shape[0]
    pvals = np.concatenate([np.full(3, 1e-8), np.linspace(0.2, 0.9, n - 3)])
    effect = np.where(np.arange(n) < 3, 2.5, 0.1)
    return pd.DataFrame(
        {
            FEATURE_COL: list(subset.counts.index),
            EFFECT_COL: effect,
            MEAN_COL: subset.counts.mean(axis=1).to_numpy(dtype=float),
            PVALUE_COL: pvals,
            PADJ_COL: bh_fdr(pvals),
        }
    )


def make_spec(
    spec_id,
    hold_constant_factor="tlr",
    hold_constant_value="on",
    varying_factor="dendrimer",
    level_a="galnac",
    level_b="control",
):
    return ComparisonSpec(
        id=spec_id,
        hold_constant_factor=hold_constant_factor,
        hold_constant_value=hold_constant_value,
        varying_factor=varying_factor,
        level_a=level_a,
        level_b=level_b,
    )


@pytest.fixture(scope="session")
def counts_and_metadata():
    return make_counts_and_metadata()


@pytest.fixture(scope="session")
def base(counts_and_metadata):
    counts, meta = counts_and_metadata
    return build_base_dataset(counts, meta)


@pytest.fixture
def lookup():
    return NameLookup({"F00": "CD28", "F01": "4-1BB", "F02": "   "})
