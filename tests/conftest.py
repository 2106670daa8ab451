"""Shared fixtures: synthetic MaxQuant-style evidence tables and protein matrices."""

import numpy as np
import pandas as pd
import pytest

EVIDENCE_COLUMNS = [
    "Charge", "Sequence", "Modified sequence", "Proteins", "Leading razor protein",
    "Experiment", "Reverse", "Potential contaminant", "Intensity",
]

CONDITIONS = ("Control", "Treated")
N_REPLICATES = 3
SHIFTED_PROTEINS = ("P01", "P02")


def make_evidence(seed: int = 7) -> pd.DataFrame:
    """
    12 proteins x 5 peptides measured in Control_1..3 and Treated_1..3.

    P01 and P02 are 4x (+2 log2) more abundant in Treated. P13 has only two
    peptides. P12 is not seen at all in Treated_1. One reversed and one
    contaminant hit are included.
    """
    rng = np.random.default_rng(seed)
    experiments = [f"{c}_{r}" for c in CONDITIONS for r in range(1, N_REPLICATES + 1)]
    rows = []

    def add(protein, n_peptides, base, skip=()):
        for k in range(n_peptides):
            seq = f"PEPTIDE{protein}K{k}"
            pep_offset = rng.normal(0, 1.0)
            for exp in experiments:
                if exp in skip:
                    continue
                shift = 2.0 if (protein in SHIFTED_PROTEINS and exp.startswith("Treated")) else 0.0
                for charge in (2, 3) if k == 0 else (2,):
                    log2_int = base + pep_offset + shift + rng.normal(0, 0.1)
                    rows.append({
                        "Charge": charge,
                        "Sequence": seq,
                        "Modified sequence": f"_{seq}_",
                        "Proteins": f"{protein};{protein}-2",
                        "Leading razor protein": protein,
                        "Experiment": exp,
                        "Reverse": "",
                        "Potential contaminant": "",
                        "Intensity": float(2 ** log2_int),
                    })

    for i in range(1, 13):
        protein = f"P{i:02d}"
        add(protein, 5, 20 + i * 0.5, skip=("Treated_1",) if protein == "P12" else ())
    add("P13", 2, 22)

    rows.append({**rows[0], "Leading razor protein": "REV__P99", "Proteins": "REV__P99", "Reverse": "+"})
    rows.append({**rows[0], "Leading razor protein": "CON__P98", "Proteins": "CON__P98",
                 "Potential contaminant": "+"})
    return pd.DataFrame(rows, columns=EVIDENCE_COLUMNS)


@pytest.fixture
def evidence_df():
    return make_evidence()


@pytest.fixture
def evidence_file(tmp_path, evidence_df):
    path = tmp_path / "evidence.txt"
    evidence_df.to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def base_config(evidence_file, tmp_path):
    return {
        "dataset": {"input_file": str(evidence_file)},
        "preprocessing": {
            "filtering": {"min_peptides": 3, "max_missing_fraction": 0.5},
            "rollup": {"count_children": "all"},
            "imputation": {"method": "knn", "knn_k": 5, "on_failure": "drop"},
            # no per-sample bias in the synthetic runs
            "normalization": {"method": "none"},
        },
        "analysis": {
            "reference_condition": "Control",
            "p_cutoff": 0.05,
            "lfc_cutoff": 0.5,
            "exports": {
                "path_table": str(tmp_path / "out" / "run"),
                "path_h5ad": str(tmp_path / "out" / "run.h5ad"),
            },
        },
    }


@pytest.fixture
def five_group_matrix():
    """
    20 proteins x 15 samples (5 groups x 3 replicates), log2 scale.
    Proteins 0, 1, 2 carry +2.0 in Ampicillin only.
    """
    rng = np.random.default_rng(2024)
    groups = ["Control", "Ampicillin", "Kanamycin", "Tetracycline", "Rifampicin"]
    conditions = [g for g in groups for _ in range(3)]
    samples = [f"{g}_{r}" for g in groups for r in range(1, 4)]

    base = rng.normal(25, 1.0, size=(20, 1))
    mat = base + rng.normal(0, 0.1, size=(20, 15))
    amp = np.array([c == "Ampicillin" for c in conditions])
    mat[np.ix_([0, 1, 2], np.where(amp)[0])] += 2.0

    obs = pd.DataFrame(
        {"CONDITION": conditions, "REPLICATE": [r for _ in groups for r in range(1, 4)]},
        index=pd.Index(samples, name="Sample"),
    )
    ids = [f"PROT{i:02d}" for i in range(20)]
    return mat, obs, ids
