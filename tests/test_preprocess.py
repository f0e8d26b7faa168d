# -*- coding: utf-8 -*-
# Copyright Ahmed Eladawy

import numpy as np
import pandas as pd
import pytest

from phyto_cca import (
    standardize,
    shift_positive,
    find_column,
    clean_matrices,
    split_focal,
    InvalidInputError,
    ColumnNotFoundError,
    SchemaMismatchError,
)


def test_standardize_zero_mean_unit_sd(matrices):
    env, _ = matrices
    z = standardize(env)
    assert np.allclose(z.mean(axis=0), 0.0, atol=1e-12)
    assert np.allclose(z.std(axis=0, ddof=1), 1.0, atol=1e-12)


def test_zero_variance_column_rejected_before_ordination():
    rng = np.random.default_rng(0)
    env = pd.DataFrame(rng.normal(size=(10, 3)), columns=["River", "Salt", "DO"])
    env["DO"] = 5.0
    phyto = pd.DataFrame(rng.integers(1, 20, size=(10, 3)), columns=["A", "B", "C"])
    with pytest.raises(InvalidInputError, match="DO"):
        clean_matrices(env, phyto)


def test_non_numeric_cells_rejected():
    env = pd.DataFrame({"River": [1.0, 2.0, 3.0], "Salt": ["a", "b", "c"]})
    with pytest.raises(InvalidInputError):
        standardize(env)


def test_shift_positive_min_is_one():
    df = pd.DataFrame({"a": [-3.2, 0.5], "b": [1.1, np.nan]})
    out = shift_positive(df)
    assert np.nanmin(out.to_numpy()) == 1.0
    assert out.loc[1, "a"] == pytest.approx(0.5 + 3.2 + 1.0)


def test_find_column_ignores_case_and_punctuation():
    cols = ["River discharge", "Total Sea Level (Marinha)"]
    assert find_column(cols, "Total.Sea.Level..Marinha.") == "Total Sea Level (Marinha)"
    assert find_column(cols, "River discharge") == "River discharge"
    with pytest.raises(ColumnNotFoundError):
        find_column(cols, "Wind")


def test_clean_complete_cases_and_alignment(matrices, clean_kwargs):
    env, phyto = matrices
    phyto = phyto.copy()
    dropped = phyto.index[[2, 5, 11]]
    phyto.loc[dropped[0], "Hemiaulus"] = 0
    phyto.loc[dropped[1], "Coscinodiscus"] = 0
    phyto.loc[dropped[2], "Chaetoceros"] = 0

    data = clean_matrices(env, phyto, **clean_kwargs)

    assert len(data.abundance) == len(env) - 3
    assert not data.abundance.isna().any().any()
    assert data.env.index.equals(data.abundance.index)
    assert not set(dropped) & set(data.env.index)


def test_clean_shift_renames_and_removals(matrices, clean_kwargs):
    env, phyto = matrices
    data = clean_matrices(env, phyto, **clean_kwargs)

    assert list(data.env.columns) == ["River", "Salt", "DO", "Temp", "CDOM", "Rain"]
    assert list(data.abundance.columns) == ["CHAE", "HEMI", "GUISTRI", "RHIPRO", "COS"]
    assert data.removed == ("Total Sea Level (Marinha)", "AirTemp")
    assert data.env.to_numpy().min() == 1.0
    assert data.abundance.to_numpy().min() == 1.0


def test_clean_unsorted_input_matches_sorted(matrices, clean_kwargs):
    env, phyto = matrices
    shuffled = phyto.sample(frac=1.0, random_state=3)
    a = clean_matrices(env, phyto, **clean_kwargs)
    b = clean_matrices(env, shuffled, **clean_kwargs)
    pd.testing.assert_frame_equal(a.env, b.env)
    pd.testing.assert_frame_equal(a.abundance, b.abundance)


def test_clean_is_idempotent_and_leaves_inputs(matrices, clean_kwargs):
    env, phyto = matrices
    env0, phyto0 = env.copy(), phyto.copy()
    a = clean_matrices(env, phyto, **clean_kwargs)
    b = clean_matrices(env, phyto, **clean_kwargs)
    pd.testing.assert_frame_equal(a.env, b.env, check_exact=True)
    pd.testing.assert_frame_equal(a.abundance, b.abundance, check_exact=True)
    pd.testing.assert_frame_equal(env, env0)
    pd.testing.assert_frame_equal(phyto, phyto0)


def test_missing_drop_or_exclude_column(matrices, clean_kwargs):
    env, phyto = matrices
    with pytest.raises(ColumnNotFoundError):
        clean_matrices(env, phyto, **dict(clean_kwargs, drop_columns=("Wind speed",)))
    with pytest.raises(ColumnNotFoundError):
        clean_matrices(env, phyto, **dict(clean_kwargs, exclude=("Tide",)))


def test_rename_count_mismatch(matrices, clean_kwargs):
    env, phyto = matrices
    with pytest.raises(SchemaMismatchError):
        clean_matrices(env, phyto, **dict(clean_kwargs, env_names=("River", "Salt")))
    with pytest.raises(SchemaMismatchError):
        clean_matrices(env, phyto, **dict(clean_kwargs, taxon_names=("A", "A", "B", "C", "D")))


def test_duplicate_row_labels_rejected(matrices):
    env, phyto = matrices
    env = pd.concat([env, env.iloc[[0]]])
    with pytest.raises(InvalidInputError):
        clean_matrices(env, phyto)


def test_split_focal(matrices, clean_kwargs):
    env, phyto = matrices
    data = clean_matrices(env, phyto, **clean_kwargs)
    response, focal = split_focal(data, "COS")
    assert list(response.columns) == ["CHAE", "HEMI", "GUISTRI", "RHIPRO"]
    assert focal.name == "COS"
    assert focal.index.equals(response.index)
    with pytest.raises(ColumnNotFoundError):
        split_focal(data, "DINO")


def test_exclusions_use_exact_names(matrices, clean_kwargs):
    env, phyto = matrices
    with pytest.raises(ColumnNotFoundError):
        clean_matrices(env, phyto, **dict(clean_kwargs, exclude=("airtemp",)))
    # raw drop columns still resolve R-mangled headers
    data = clean_matrices(env, phyto, **clean_kwargs)
    assert "AirTemp" not in data.env.columns
