# -*- coding: utf-8 -*-
# Copyright Ahmed Eladawy

"""
CCA vs MLR variance-explained figures for the phytoplankton sampling frequencies.

For each frequency scenario (low, neap-spring, monthly) this script:
- Loads the abiotic and phytoplankton matrices (first column = sampling date).
- Standardizes and cleans both matrices (zeros -> not measured, complete cases only).
- Runs a CCA without the focal taxon (Coscinodiscus) and an MLR of the focal taxon.
- Saves a two-panel figure (CCA biplot + CCA/MLR contribution bars) and the tables.

Main outputs:
- {OUT_DIR}/figures/cca_variance_explained_{name}_paper.png
- {OUT_DIR}/tables/cca_{name}_taxon_scores.csv, cca_{name}_env_scores.csv
- {OUT_DIR}/tables/cca_mlr_{name}_importance.csv, mlr_{name}_heldout.csv

A scenario that fails is reported (scenario, stage, error kind) and the loop continues.
"""

import os
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple, List

import numpy as np
import pandas as pd

import matplotlib.pyplot as plt

from phyto_cca import (
    CCAAnalysisError,
    clean_matrices,
    split_focal,
    cca,
    ordination_importance,
    regression_importance,
    assemble_comparison,
    AXES,
)


# =============================================================================
# Configuration
# =============================================================================
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.path.join(BASE_DIR, "data", "cca")

OUT_DIR = os.path.join(BASE_DIR, "outputs", "cca_variance_explained")
FIG_DIR = os.path.join(OUT_DIR, "figures")
TAB_DIR = os.path.join(OUT_DIR, "tables")

RANDOM_SEED = 123
TRAIN_FRACTION = 0.70

# Collinear with the tide level; removed before renaming
DROP_COLUMNS = ("Total.Sea.Level..Marinha.",)

ENV_NAMES = ("River", "Salt", "DO", "Turb", "Chla", "Temp", "CDOM", "Tide",
             "Subtidal", "Rain", "SolarRad", "AirTemp", "EWwind", "NSwind",
             "EWcurrent", "NScurrent")
TAXON_NAMES = ("CHAE", "HEMI", "GUISTRI", "RHIPRO", "RHIRO", "GUIDA", "COS")

# Predictors left out of both models
EXCLUDE = ("AirTemp", "Chla", "Turb", "Tide")

FOCAL_TAXON = "COS"
FOCAL_LABEL = "Coscinodiscus"

# Figure
FIG_SIZE = (7.0, 9.9)  # 2100 x 2970 px at 300 dpi
FIG_DPI = 300
BIPLOT_LIM = 0.75
BIPLOT_STEP = 0.25
ENV_COLOR = "blue"
TAXON_COLOR = "red"
BAR_COLORS = ("darkorange", "darkblue")


@dataclass(frozen=True)
class ScenarioConfig:
    name: str
    env_file: str
    phyto_file: str
    cca1_pct: float
    cca2_pct: float
    drop_columns: Tuple[str, ...] = DROP_COLUMNS
    env_names: Optional[Tuple[str, ...]] = ENV_NAMES
    taxon_names: Optional[Tuple[str, ...]] = TAXON_NAMES
    exclude: Tuple[str, ...] = EXCLUDE
    focal_taxon: str = FOCAL_TAXON
    focal_label: str = FOCAL_LABEL


# Axis percentages come from the ordination summary of each frequency
SCENARIOS = (
    ScenarioConfig("low",
                   os.path.join(DATA_DIR, "sub_df_env_final_mat.csv"),
                   os.path.join(DATA_DIR, "sub_df_phyto_final_mat.csv"),
                   cca1_pct=68, cca2_pct=22),
    ScenarioConfig("neap_spring",
                   os.path.join(DATA_DIR, "sq_df_env_final_mat.csv"),
                   os.path.join(DATA_DIR, "sq_df_phyto_final_mat.csv"),
                   cca1_pct=72.8, cca2_pct=18.4),
    ScenarioConfig("monthly",
                   os.path.join(DATA_DIR, "month_df_env_final_mat.csv"),
                   os.path.join(DATA_DIR, "month_df_phyto_final_mat.csv"),
                   cca1_pct=71.8, cca2_pct=18.4),
)


# =============================================================================
# Plot style
# =============================================================================

def set_style():
    plt.rcParams.update({
        "font.size": 10,
        "axes.titlesize": 11.5,
        "axes.labelsize": 10.5,
        "xtick.labelsize": 9,
        "ytick.labelsize": 9,
        "legend.fontsize": 9.5,
        "axes.linewidth": 1.0,
        "pdf.fonttype": 42,
        "ps.fonttype": 42,
    })


# =============================================================================
# Helper functions
# =============================================================================

def ensure_dirs(out_dir=OUT_DIR):
    os.makedirs(os.path.join(out_dir, "figures"), exist_ok=True)
    os.makedirs(os.path.join(out_dir, "tables"), exist_ok=True)


def load_matrix(path):
    """Read a matrix CSV whose first column holds the observation identifier."""
    df = pd.read_csv(path)
    df = df.set_index(df.columns[0])
    df.index = df.index.astype(str).str.strip()
    return df


def _pct(v):
    return f"{v:g}"


def plot_comparison(comparison, cfg, out_path):
    ordi = comparison.ordination
    env = ordi.env_scores
    sp = ordi.taxon_scores
    table = comparison.table

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=FIG_SIZE)

    # CCA biplot
    ticks = np.arange(-BIPLOT_LIM, BIPLOT_LIM + BIPLOT_STEP / 2, BIPLOT_STEP)
    ax1.set_xlim(-BIPLOT_LIM, BIPLOT_LIM)
    ax1.set_ylim(-BIPLOT_LIM, BIPLOT_LIM)
    ax1.set_xticks(ticks)
    ax1.set_yticks(ticks)
    ax1.axhline(0, ls=":", lw=0.8, color="k")
    ax1.axvline(0, ls=":", lw=0.8, color="k")
    ax1.set_title(f"CCA without {cfg.focal_label} ({cfg.name})")
    ax1.set_xlabel(f"{AXES[0]} ({_pct(cfg.cca1_pct)}%)")
    ax1.set_ylabel(f"{AXES[1]} ({_pct(cfg.cca2_pct)}%)")

    for var, (x, y) in env[list(AXES)].iterrows():
        ax1.annotate("", xy=(x, y), xytext=(0, 0),
                     arrowprops=dict(arrowstyle="-|>", lw=1.0, color=ENV_COLOR))
        ax1.text(x, y, var, color=ENV_COLOR, fontsize=8, ha="center", va="bottom")

    ax1.scatter(sp[AXES[0]], sp[AXES[1]], marker="s", s=22, color=TAXON_COLOR, zorder=3)
    for taxon, (x, y) in sp[list(AXES)].iterrows():
        ax1.text(x, y, taxon, color=TAXON_COLOR, fontsize=6.5, ha="center", va="top")

    # CCA vs MLR contributions
    n_var = table.shape[1]
    xpos = np.arange(n_var)
    width = 0.4
    for i, (method, color) in enumerate(zip(table.index, BAR_COLORS)):
        ax2.bar(xpos + (i - 0.5) * width, table.loc[method].to_numpy(float),
                width=width, color=color, label=method)

    ymax = float(np.nanmax(table.to_numpy(float)))
    ax2.set_ylim(0, ymax * 1.1 if ymax > 0 else 1.0)
    ax2.set_xticks(xpos)
    ax2.set_xticklabels(table.columns, rotation=45, ha="right")
    ax2.set_title("Proportion Explained by Environmental Variables")
    ax2.set_ylabel("Proportion explained (%)")
    ax2.legend(loc="upper right", frameon=False)

    fig.tight_layout()
    fig.savefig(out_path, dpi=FIG_DPI)
    plt.close(fig)
    return out_path


def export_tables(comparison, fit, cfg, tab_dir=TAB_DIR):
    ordi = comparison.ordination
    paths = {
        "taxon_scores": os.path.join(tab_dir, f"cca_{cfg.name}_taxon_scores.csv"),
        "env_scores": os.path.join(tab_dir, f"cca_{cfg.name}_env_scores.csv"),
        "importance": os.path.join(tab_dir, f"cca_mlr_{cfg.name}_importance.csv"),
        "heldout": os.path.join(tab_dir, f"mlr_{cfg.name}_heldout.csv"),
    }
    ordi.taxon_scores.to_csv(paths["taxon_scores"], index_label="taxon")
    ordi.env_scores.to_csv(paths["env_scores"], index_label="variable")

    imp = comparison.table.T
    imp["MLR_coef"] = fit.coefficients.reindex(imp.index)
    imp.to_csv(paths["importance"], index_label="variable")

    held = dict(fit.heldout)
    held["n_train"] = len(fit.train_index)
    pd.DataFrame([held]).to_csv(paths["heldout"], index=False)
    return paths


# =============================================================================
# Scenario pipeline
# =============================================================================

class ScenarioFailure(Exception):
    """Wraps the error of one scenario with the stage it happened in."""

    def __init__(self, scenario, stage, error):
        self.scenario = scenario
        self.stage = stage
        self.error = error
        super().__init__(f"scenario '{scenario}' failed at stage '{stage}' "
                         f"({type(error).__name__}): {error}")


def analyse_scenario(cfg, env, phyto, seed=RANDOM_SEED, train_fraction=TRAIN_FRACTION):
    """Preprocess -> CCA -> MLR -> comparison for one scenario."""
    stage = "preprocess"
    try:
        data = clean_matrices(env, phyto,
                              drop_columns=cfg.drop_columns,
                              env_names=cfg.env_names,
                              taxon_names=cfg.taxon_names,
                              exclude=cfg.exclude)
        response, focal = split_focal(data, cfg.focal_taxon)

        stage = "ordination"
        ordi = cca(response, data.env)
        prop_env = ordination_importance(ordi)

        stage = "regression"
        fit = regression_importance(focal, data.env, seed=seed, train_fraction=train_fraction)

        stage = "compare"
        comparison = assemble_comparison(ordi, prop_env, fit.importance, cfg.focal_taxon,
                                         variables=list(data.env.columns))
    except CCAAnalysisError as e:
        raise ScenarioFailure(cfg.name, stage, e) from e
    return data, comparison, fit


def run_scenario(cfg, out_dir=OUT_DIR, seed=RANDOM_SEED):
    print(f"\n\nRunning CCA analysis for frequency: {cfg.name}")

    try:
        env = load_matrix(cfg.env_file)
        phyto = load_matrix(cfg.phyto_file)
    except (OSError, ValueError) as e:
        raise ScenarioFailure(cfg.name, "load", e) from e

    data, comparison, fit = analyse_scenario(cfg, env, phyto, seed=seed)

    ordi = comparison.ordination
    props = ordi.axis_proportions
    print(f"Rows used: n={len(data.env)} | predictors: {', '.join(comparison.variables)}")
    print(f"Removed predictors: {', '.join(data.removed) or 'none'}")
    print(f"Constrained axes (% of total inertia): "
          f"{AXES[0]}={props[0]:.1f}, {AXES[1]}={props[1]:.1f} "
          f"(labels use {_pct(cfg.cca1_pct)}/{_pct(cfg.cca2_pct)})")
    print(f"MLR held-out: n={fit.heldout['n']}, R2={fit.heldout['r2']:.3f}, "
          f"RMSE={fit.heldout['rmse']:.3f}")

    fig_path = os.path.join(out_dir, "figures", f"cca_variance_explained_{cfg.name}_paper.png")
    try:
        plot_comparison(comparison, cfg, fig_path)
        paths = export_tables(comparison, fit, cfg, tab_dir=os.path.join(out_dir, "tables"))
    except (OSError, ValueError) as e:
        raise ScenarioFailure(cfg.name, "render", e) from e

    print("Saved plot:", fig_path)
    paths["figure"] = fig_path
    return paths


def main(scenarios=SCENARIOS, out_dir=OUT_DIR, seed=RANDOM_SEED) -> List[ScenarioFailure]:
    ensure_dirs(out_dir)
    set_style()

    failures = []
    for cfg in scenarios:
        try:
            run_scenario(cfg, out_dir=out_dir, seed=seed)
        except ScenarioFailure as f:
            print(f"\nWARNING: {f}")
            failures.append(f)

    print(f"\nDone: {len(scenarios) - len(failures)}/{len(scenarios)} scenarios. Outputs in: {out_dir}")
    return failures


if __name__ == "__main__":
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=FutureWarning)
        main()
