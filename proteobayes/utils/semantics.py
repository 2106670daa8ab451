"""
Canonical semantics for proteobayes.

This module is intentionally small and declarative:
  - Canonical column names after harmonization
  - Canonical layer names of the protein-level AnnData
  - Method tags used in the flat results table
"""

# Canonical long-table columns
COL_CHARGE = "CHARGE"
COL_PEPTIDE_SEQ = "PEPTIDE_SEQ"
COL_MODIFIED_SEQUENCE = "MODIFIED_SEQUENCE"
COL_PROTEIN_GROUP = "PROTEIN_GROUP"
COL_INDEX = "INDEX"
COL_FILENAME = "FILENAME"
COL_REVERSE = "REVERSE"
COL_CONTAMINANT = "CONTAMINANT"
COL_SIGNAL = "SIGNAL"

# Derived columns
COL_PSM_ID = "PSM_ID"
COL_NUMBER_PEPTIDES = "NUMBER_PEPTIDES"
COL_N = "N"
COL_PEPTIDE_ID = "PEPTIDE_ID"

REQUIRED_COLUMNS = (
    COL_CHARGE,
    COL_PEPTIDE_SEQ,
    COL_MODIFIED_SEQUENCE,
    COL_PROTEIN_GROUP,
    COL_INDEX,
    COL_FILENAME,
    COL_REVERSE,
    COL_CONTAMINANT,
    COL_SIGNAL,
)

# Protein-level layers, in the order they are produced
LAYER_RAW = "raw"
LAYER_LOG2 = "log2"
LAYER_IMPUTED = "imputed"
LAYER_NORMALIZED = "normalized"

# Child-count policies
COUNT_ALL = "all"
COUNT_PRESENT = "present"

# Method tags
METHOD_PIPELINE = "proteobayes"
METHOD_REFERENCE = "reference"
