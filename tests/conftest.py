# -*- coding: utf-8 -*-
# Copyright Ahmed Eladawy

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest


RAW_ENV_COLS = ["River discharge", "Salinity", "Dissolved O2", "Total Sea Level (Marinha)",
                "Water temp", "CDOM", "Rain", "Air temp"]
ENV_NAMES = ("River", "Salt", "DO", "Temp", "CDOM", "Rain", "AirTemp")
TAXON_NAMES = ("CHAE", "HEMI", "GUISTRI", "RHIPRO", "COS")


def make_matrices(n=20, seed=7):
    """Synthetic abiotic/phytoplankton pair with gradients along River and Salt."""
    rng = np.random.default_rng(seed)
    dates = pd.date_range("2019-01-01", periods=n, freq="7D").strftime("%Y-%m-%d")

    env = pd.DataFrame(rng.normal(size=(n, len(RAW_ENV_COLS))), index=dates, columns=RAW_ENV_COLS)
    env["Salinity"] = 30 + 2 * env["Salinity"]
    env["Water temp"] = 26 + env["Water temp"]
    env.index.name = "date"

    g1 = env["River discharge"].to_numpy()
    g2 = env["Salinity"].to_numpy() - 30
    lam = np.column_stack([
        np.exp(2.0 + 0.8 * g1),
        np.exp(2.0 - 0.8 * g1),
        np.exp(2.0 + 0.4 * g2),
        np.exp(1.5 - 0.4 * g2 + 0.3 * g1),
    ])
    counts = rng.poisson(lam) + 1
    cos = 50 + 6 * g1 - 3 * g2 + rng.normal(scale=0.5, size=n)

    phyto = pd.DataFrame(np.column_stack([counts, cos]), index=dates,
                         columns=["Chaetoceros", "Hemiaulus", "Guinardia striata",
                                  "Rhizosolenia pro", "Coscinodiscus"])
    phyto.index.name = "date"
    return env, phyto


@pytest.fixture
def matrices():
    return make_matrices()


@pytest.fixture
def clean_kwargs():
    return dict(drop_columns=("Total.Sea.Level..Marinha.",),
                env_names=ENV_NAMES,
                taxon_names=TAXON_NAMES,
                exclude=("AirTemp",))
