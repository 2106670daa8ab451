"""
Canonical keys written to .uns / .varm by the analysis components.
"""

# -----------------------
# .uns (analysis metadata)
# -----------------------
UNS_CONTRAST_NAMES = "contrast_names"
UNS_CONTRAST_LEVELS = "contrast_levels"  # name -> [treatment, control]
UNS_PILOT_MODE = "pilot_study_mode"
UNS_RESIDUAL_VARIANCE = "residual_variance"
UNS_EBAYES = "ebayes"
UNS_DESIGN = "design"
UNS_RESULTS = "results"
UNS_FEATURE_SELECTION = "feature_selection"
UNS_REFERENCE = "reference"
UNS_WARNINGS = "warnings"

# Missingness
UNS_MISSINGNESS = "missingness"
UNS_MISSINGNESS_SOURCE = "missingness_source"
UNS_MISSINGNESS_RULE = "missingness_rule"

# -----------------------
# .varm (analysis outputs)
# -----------------------
VARM_LOG2FC = "log2fc"

VARM_SE_RAW = "se_raw"
VARM_T_RAW = "t_raw"
VARM_P_RAW = "p_raw"
VARM_Q_RAW = "q_raw"

VARM_SE_EBAYES = "se_ebayes"
VARM_T_EBAYES = "t_ebayes"
VARM_P_EBAYES = "p_ebayes"
VARM_Q_EBAYES = "q_ebayes"

VARM_HEDGES_G = "hedges_g"

# -----------------------
# Flat results table
# -----------------------
RESULT_COLUMNS = [
    "INDEX", "CONTRAST", "LOG2FC", "S2_POST", "P_VALUE", "ADJ_P_VALUE", "SIGNIFICANT", "METHOD",
]
FEATURE_SELECTION_COLUMNS = ["INDEX", "CONTRAST", "HEDGES_G", "SELECTED"]
