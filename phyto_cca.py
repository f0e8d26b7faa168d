# -*- coding: utf-8 -*-
# Copyright Ahmed Eladawy

"""
Constrained ordination and variable-importance core for the phytoplankton CCA figures.

What this module does:
- Standardizes abiotic predictors and cleans the paired phytoplankton matrix
  (zeros treated as not measured, complete cases only, positive shift).
- Fits a Canonical Correspondence Analysis (CCA) of the taxa (focal taxon excluded)
  on the retained predictors, with vegan-style scaling 2 scores.
- Fits an OLS model of the focal taxon on the same predictors (70/30 seeded split)
  and turns coefficients into relative importance.
- Aligns both importance measures on one ordered variable axis for plotting.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple, Dict

import numpy as np
import pandas as pd

from scipy.stats import spearmanr
from sklearn.metrics import r2_score, mean_squared_error


RANDOM_SEED = 123
TRAIN_FRACTION = 0.70
AXES = ("CCA1", "CCA2")

# Eigenvalues below this are treated as zero (same cut as vegan)
EIG_ZERO = np.sqrt(np.finfo(float).eps)

# Relative singular-value cut for rank checks (R qr/lm default tol)
RANK_TOL = 1e-7


# =============================================================================
# Errors
# =============================================================================

class CCAAnalysisError(Exception):
    """Base class for failures that abort a single scenario."""


class InvalidInputError(CCAAnalysisError, ValueError):
    pass


class ColumnNotFoundError(CCAAnalysisError, KeyError):
    def __str__(self):
        return str(self.args[0]) if self.args else ""


class SchemaMismatchError(CCAAnalysisError, ValueError):
    pass


class SingularMatrixError(CCAAnalysisError, np.linalg.LinAlgError):
    pass


class InsufficientDataError(CCAAnalysisError, ValueError):
    pass


class AlignmentError(CCAAnalysisError, ValueError):
    pass


# =============================================================================
# Records
# =============================================================================

@dataclass
class CleanedDataset:
    env: pd.DataFrame
    abundance: pd.DataFrame
    removed: Tuple[str, ...] = ()


@dataclass
class OrdinationResult:
    taxon_scores: pd.DataFrame
    env_scores: pd.DataFrame
    eigenvalues: np.ndarray
    total_inertia: float

    @property
    def constrained_inertia(self) -> float:
        return float(np.sum(self.eigenvalues))

    @property
    def axis_proportions(self) -> np.ndarray:
        """Eigenvalue of each constrained axis as a share (%) of total inertia."""
        return 100.0 * self.eigenvalues / self.total_inertia


@dataclass
class RegressionFit:
    coefficients: pd.Series
    intercept: float
    importance: pd.Series
    train_index: pd.Index
    test_index: pd.Index
    heldout: Dict[str, float] = field(default_factory=dict)


@dataclass
class Comparison:
    table: pd.DataFrame
    ordination: OrdinationResult
    focal_taxon: str

    @property
    def variables(self):
        return list(self.table.columns)


# =============================================================================
# Matrix preprocessing
# =============================================================================

def _norm_name(name) -> str:
    return re.sub(r"[^0-9a-z]", "", str(name).lower())


def find_column(columns, name) -> str:
    """
    Return the column label matching `name`.

    Exact matches win; otherwise case and punctuation are ignored, so the
    R-mangled header "Total.Sea.Level..Marinha." still finds
    "Total Sea Level (Marinha)".
    """
    columns = list(columns)
    if name in columns:
        return name
    target = _norm_name(name)
    hits = [c for c in columns if _norm_name(c) == target]
    if len(hits) == 1:
        return hits[0]
    if len(hits) > 1:
        raise ColumnNotFoundError(f"Column name {name!r} is ambiguous: {hits}")
    raise ColumnNotFoundError(f"Column {name!r} not found in {columns}")


def _check_labels(df: pd.DataFrame, what: str):
    if df.index.has_duplicates:
        dup = df.index[df.index.duplicated()].unique().tolist()
        raise InvalidInputError(f"{what} has duplicate row labels: {dup}")
    if df.columns.has_duplicates:
        dup = df.columns[df.columns.duplicated()].unique().tolist()
        raise InvalidInputError(f"{what} has duplicate column names: {dup}")


def _as_numeric(df: pd.DataFrame, what: str) -> pd.DataFrame:
    try:
        return df.apply(pd.to_numeric).astype(float)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"{what} contains non-numeric cells: {e}") from e


def standardize(env: pd.DataFrame) -> pd.DataFrame:
    """Z-score every column (sample sd, as decostand 'standardize')."""
    env = _as_numeric(env, "Environment matrix")
    sd = env.std(axis=0, ddof=1)
    bad = sd.index[~(sd > 0)].tolist()
    if bad:
        raise InvalidInputError(f"Zero-variance environmental column(s): {bad}")
    return (env - env.mean(axis=0)) / sd


def shift_positive(frame: pd.DataFrame) -> pd.DataFrame:
    """Shift so the global minimum becomes exactly 1."""
    return frame - np.nanmin(frame.to_numpy(float)) + 1.0


def _rename(df: pd.DataFrame, names, what: str) -> pd.DataFrame:
    if names is None:
        return df
    names = list(names)
    if len(names) != df.shape[1]:
        raise SchemaMismatchError(
            f"{what}: {len(names)} new names for {df.shape[1]} columns {list(df.columns)}")
    if len(set(names)) != len(names):
        raise SchemaMismatchError(f"{what}: duplicated names in {names}")
    out = df.copy()
    out.columns = names
    return out


def clean_matrices(env: pd.DataFrame,
                   phyto: pd.DataFrame,
                   drop_columns: Sequence[str] = (),
                   env_names: Optional[Sequence[str]] = None,
                   taxon_names: Optional[Sequence[str]] = None,
                   exclude: Sequence[str] = ()) -> CleanedDataset:
    """
    Build the CleanedDataset for one scenario.

    Steps: align on shared identifiers, standardize predictors, zeros -> NaN in
    the taxa, complete-case filter, drop collinear raw columns, rename, drop the
    scenario exclusions, then shift each matrix to a minimum of 1.
    Removal happens before the shift so every output matrix has minimum 1;
    a constant shift of the predictors does not change CCA or OLS slopes.
    """
    _check_labels(env, "Environment matrix")
    _check_labels(phyto, "Abundance matrix")

    common = env.index[env.index.isin(phyto.index)]
    if len(common) == 0:
        raise InvalidInputError("Environment and abundance matrices share no identifiers.")

    env_std = standardize(env).loc[common]
    abund = _as_numeric(phyto, "Abundance matrix").loc[common]
    if (abund < 0).any().any():
        raise InvalidInputError("Abundance matrix contains negative values.")

    # Zero means not measured
    abund = abund.mask(abund == 0)
    complete = abund.notna().all(axis=1) & env_std.notna().all(axis=1)
    abund = abund.loc[complete]
    env_std = env_std.loc[complete]
    if len(abund) == 0:
        raise InvalidInputError("No observation has complete abundance data.")

    drop = [find_column(env_std.columns, c) for c in drop_columns]
    env_std = env_std.drop(columns=drop)

    env_std = _rename(env_std, env_names, "Environment matrix")
    abund = _rename(abund, taxon_names, "Abundance matrix")

    missing = [c for c in exclude if c not in env_std.columns]
    if missing:
        raise ColumnNotFoundError(
            f"Excluded predictor(s) {missing} not in {list(env_std.columns)}")
    excl = list(exclude)
    env_std = env_std.drop(columns=excl)
    if env_std.shape[1] == 0:
        raise InvalidInputError("All environmental columns were removed.")

    return CleanedDataset(
        env=shift_positive(env_std),
        abundance=shift_positive(abund),
        removed=tuple(drop) + tuple(excl),
    )


def split_focal(dataset: CleanedDataset, focal_taxon: str) -> Tuple[pd.DataFrame, pd.Series]:
    """Separate the focal taxon from the ordination response matrix."""
    if focal_taxon not in dataset.abundance.columns:
        raise ColumnNotFoundError(
            f"Focal taxon {focal_taxon!r} not in {list(dataset.abundance.columns)}")
    response = dataset.abundance.drop(columns=[focal_taxon])
    focal = dataset.abundance[focal_taxon]
    return response, focal


# =============================================================================
# Ordination (CCA)
# =============================================================================

def numeric_rank(M, tol=RANK_TOL) -> int:
    """Rank of M after scaling columns to unit length; near-collinear columns count once."""
    M = np.asarray(M, float)
    if M.size == 0:
        return 0
    norms = np.linalg.norm(M, axis=0)
    norms[norms == 0] = 1.0
    s = np.linalg.svd(M / norms, compute_uv=False)
    if s.size == 0 or s[0] == 0:
        return 0
    return int(np.sum(s > s[0] * tol))


def _weighted_centre(X, w):
    """Centre columns by weighted means, then scale rows by sqrt(w)."""
    Xc = X - w @ X
    return Xc * np.sqrt(w)[:, None]


def cca(response: pd.DataFrame, env: pd.DataFrame) -> OrdinationResult:
    """
    Canonical Correspondence Analysis of `response` constrained by `env`.

    Returns scaling 2 scores for the first two constrained axes:
    taxa as weighted averages (chi-square distances), predictors as biplot
    correlations with the linear-combination site scores.
    """
    if not response.index.equals(env.index):
        raise InvalidInputError("Response and environment rows are not aligned.")

    Y = response.to_numpy(float)
    X = env.to_numpy(float)
    n, p = X.shape
    if not np.all(np.isfinite(Y)) or not np.all(np.isfinite(X)):
        raise InvalidInputError("CCA input contains missing or infinite values.")
    if (Y < 0).any():
        raise InvalidInputError("CCA response must be non-negative.")

    total = Y.sum()
    if total <= 0:
        raise InvalidInputError("CCA response matrix is empty.")
    P = Y / total
    r = P.sum(axis=1)
    c = P.sum(axis=0)
    if (r <= 0).any() or (c <= 0).any():
        raise InvalidInputError("CCA response has an empty row or column.")

    # Chi-square residuals
    rc = np.outer(r, c)
    Ybar = (P - rc) / np.sqrt(rc)
    total_inertia = float(np.sum(Ybar ** 2))

    Xw = _weighted_centre(X, r)
    rank = numeric_rank(Xw)
    if rank < p:
        raise SingularMatrixError(
            f"Constraining matrix is rank-deficient (rank {rank} < {p} predictors, n={n}).")

    Q, _ = np.linalg.qr(Xw)
    Yfit = Q @ (Q.T @ Ybar)

    U, s, Vt = np.linalg.svd(Yfit, full_matrices=False)
    k = int(np.sum(s ** 2 > EIG_ZERO))
    if k < 2:
        raise InsufficientDataError(f"Only {k} constrained axis available; need 2.")

    eig = s[:k] ** 2
    U2 = U[:, :2]
    V2 = Vt[:2].T

    sp = V2 / np.sqrt(c)[:, None] * np.sqrt(eig[:2])
    bp = (Xw / np.linalg.norm(Xw, axis=0)).T @ U2

    return OrdinationResult(
        taxon_scores=pd.DataFrame(sp, index=response.columns, columns=list(AXES)),
        env_scores=pd.DataFrame(bp, index=env.columns, columns=list(AXES)),
        eigenvalues=eig,
        total_inertia=total_inertia,
    )


def ordination_importance(result: OrdinationResult) -> pd.Series:
    """Share (%) of squared biplot length on the two displayed axes."""
    sq = (result.env_scores[list(AXES)] ** 2).sum(axis=1)
    tot = sq.sum()
    if not tot > 0:
        raise InvalidInputError("All biplot scores are zero.")
    return (sq / tot * 100.0).rename("CCA")


# =============================================================================
# Importance estimator (regression)
# =============================================================================

def split_rows(n: int, train_fraction=TRAIN_FRACTION, seed=RANDOM_SEED):
    """Seeded random train/held-out split; n_train = int(train_fraction * n)."""
    rng = np.random.default_rng(seed)
    perm = rng.permutation(n)
    n_train = int(train_fraction * n)
    return np.sort(perm[:n_train]), np.sort(perm[n_train:])


def _heldout_metrics(y_true, y_pred):
    out = {"n": int(len(y_true)), "r2": np.nan, "rmse": np.nan, "spearman_rho": np.nan}
    if len(y_true) >= 2:
        out["r2"] = float(r2_score(y_true, y_pred))
        out["rmse"] = float(np.sqrt(mean_squared_error(y_true, y_pred)))
        if np.ptp(y_true) > 0 and np.ptp(y_pred) > 0:
            rho, _ = spearmanr(y_true, y_pred)
            out["spearman_rho"] = float(rho)
    elif len(y_true) == 1:
        out["rmse"] = float(abs(y_true[0] - y_pred[0]))
    return out


def regression_importance(focal: pd.Series,
                          env: pd.DataFrame,
                          seed=RANDOM_SEED,
                          train_fraction=TRAIN_FRACTION) -> RegressionFit:
    """
    OLS of the focal taxon on the predictors, fitted on the training rows.

    Importance is |coef| / sum(|coef|) * 100 (intercept excluded). The held-out
    rows are scored with R2, RMSE and Spearman rho.
    """
    if not focal.index.equals(env.index):
        raise InvalidInputError("Focal taxon and environment rows are not aligned.")

    X = env.to_numpy(float)
    y = focal.to_numpy(float)
    n, p = X.shape

    idx_train, idx_test = split_rows(n, train_fraction=train_fraction, seed=seed)
    if len(idx_train) < p + 1:
        raise InsufficientDataError(
            f"{len(idx_train)} training rows for {p} predictors (need at least {p + 1}).")
    if np.ptp(y[idx_train]) == 0:
        raise InvalidInputError("Focal taxon is constant on the training rows.")

    A = np.column_stack([np.ones(len(idx_train)), X[idx_train]])
    rank = numeric_rank(A)
    if rank < A.shape[1]:
        raise SingularMatrixError(
            f"Regression design matrix is rank-deficient (rank {rank} < {A.shape[1]}).")

    B = np.linalg.lstsq(A, y[idx_train], rcond=None)[0]
    coefs = pd.Series(B[1:], index=env.columns, name="coef")

    mag = coefs.abs()
    if not mag.sum() > 0:
        raise InvalidInputError("All regression coefficients are zero.")
    importance = (mag / mag.sum() * 100.0).rename("MLR")

    y_hat = B[0] + X[idx_test] @ B[1:]
    return RegressionFit(
        coefficients=coefs,
        intercept=float(B[0]),
        importance=importance,
        train_index=env.index[idx_train],
        test_index=env.index[idx_test],
        heldout=_heldout_metrics(y[idx_test], y_hat),
    )


# =============================================================================
# Comparison assembly
# =============================================================================

def assemble_comparison(ordination: OrdinationResult,
                        cca_importance: pd.Series,
                        mlr_importance: pd.Series,
                        focal_taxon: str,
                        variables: Optional[Sequence[str]] = None) -> Comparison:
    """Stack CCA and MLR importance on one ordered variable axis."""
    a = set(cca_importance.index)
    b = set(mlr_importance.index)
    if a != b:
        raise AlignmentError(
            f"Importance vectors differ: only CCA {sorted(a - b)}, only MLR {sorted(b - a)}")

    if variables is None:
        variables = [v for v in ordination.env_scores.index if v in a]
    variables = list(variables)
    if len(variables) != len(a) or set(variables) != a:
        raise AlignmentError(f"Variable order {variables} does not match {sorted(a)}")

    if focal_taxon in ordination.taxon_scores.index:
        raise AlignmentError(f"Focal taxon {focal_taxon!r} is part of the ordination response.")

    table = pd.DataFrame(
        [cca_importance.reindex(variables).to_numpy(float),
         mlr_importance.reindex(variables).to_numpy(float)],
        index=["CCA", "MLR"],
        columns=variables,
    )
    return Comparison(table=table, ordination=ordination, focal_taxon=focal_taxon)
