import re
import polars as pl
from typing import Dict, Optional
from proteobayes.utils.utils import log_info, log_warning, logger
from proteobayes.utils.errors import SchemaError
from proteobayes.utils.semantics import REQUIRED_COLUMNS


class DataHarmonizer:
    """Harmonizes input data by renaming columns to a common format."""

    DEFAULT_COLUMN_MAP = {
        "charge_column": ("CHARGE", "Charge"),
        "peptide_seq_column": ("PEPTIDE_SEQ", "Sequence"),
        "modified_seq_column": ("MODIFIED_SEQUENCE", "Modified sequence"),
        "protein_group_column": ("PROTEIN_GROUP", "Proteins"),
        "index_column": ("INDEX", "Leading razor protein"),
        "filename_column": ("FILENAME", "Experiment"),
        "reverse_column": ("REVERSE", "Reverse"),
        "contaminant_column": ("CONTAMINANT", "Potential contaminant"),
        "signal_column": ("SIGNAL", "Intensity"),
    }

    DEFAULT_LABEL_PATTERN = r"^(?P<CONDITION>.+?)[_-](?P<REPLICATE>\d+)$"

    def __init__(self, column_config: dict):
        """Initialize column mappings with user-defined config (MaxQuant names by default)."""
        column_config = column_config or {}
        self.column_map: Dict[str, str] = {}
        self.annotation_file = column_config.get("annotation_file", None)
        self.label_pattern = column_config.get("label_pattern") or self.DEFAULT_LABEL_PATTERN

        for config_key, (std_name, default_col) in self.DEFAULT_COLUMN_MAP.items():
            original_col = column_config.get(config_key) or default_col
            self.column_map[original_col] = std_name

    def _rename_columns_safely(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Rename to standardized names, raising if a required column is absent or if
        a rename would clobber a different existing column.
        """
        rename_map: Dict[str, str] = {}
        missing = []

        for original, target in self.column_map.items():
            if original in df.columns:
                if target in df.columns and original != target:
                    raise SchemaError(
                        f"Cannot rename '{original}' to standardized '{target}' because "
                        f"'{target}' already exists in the dataset."
                    )
                rename_map[original] = target
            elif target in df.columns:
                # already harmonized
                continue
            else:
                missing.append(original)

        if missing:
            msg = f"Input table is missing expected column(s): {missing}"
            logger.error(msg)
            raise SchemaError(msg)

        return df.rename(rename_map) if rename_map else df

    def harmonize(self, df: pl.DataFrame) -> pl.DataFrame:
        """Rename to canonical names and keep only the canonical columns, typed."""
        df = self._rename_columns_safely(df)
        df = df.select(list(REQUIRED_COLUMNS)).with_columns(
            pl.col("CHARGE").cast(pl.Int64, strict=False),
            pl.col("SIGNAL").cast(pl.Float64, strict=False),
            *[pl.col(c).cast(pl.Utf8) for c in
              ("PEPTIDE_SEQ", "MODIFIED_SEQUENCE", "PROTEIN_GROUP", "INDEX", "FILENAME",
               "REVERSE", "CONTAMINANT")],
        )
        return df

    def _load_annotation(self) -> pl.DataFrame:
        ann = pl.read_csv(self.annotation_file, separator="\t", ignore_errors=True)

        # Pick a single join key (first match wins), then rename only that one -> 'FILENAME'
        join_col = None
        for cand in ("FILENAME", "Experiment", "Sample", "File Name", "filename"):
            if cand in ann.columns:
                join_col = cand
                break
        if join_col is None:
            raise SchemaError(
                f"Annotation file {self.annotation_file!r} must contain a join column: "
                "'Experiment', 'Sample' or 'FILENAME'."
            )
        cond_col = next((c for c in ("CONDITION", "Condition", "Group") if c in ann.columns), None)
        if cond_col is None:
            raise SchemaError(f"Annotation file {self.annotation_file!r} has no 'Condition' column.")
        repl_col = next((c for c in ("REPLICATE", "Replicate") if c in ann.columns), None)

        ann = ann.select(
            pl.col(join_col).cast(pl.Utf8).str.strip_chars().alias("FILENAME"),
            pl.col(cond_col).cast(pl.Utf8).str.strip_chars().alias("CONDITION"),
            (pl.col(repl_col).cast(pl.Int64, strict=False) if repl_col
             else pl.lit(None, dtype=pl.Int64)).alias("REPLICATE"),
        )
        return ann

    def _parse_labels(self, samples: list) -> pl.DataFrame:
        pattern = re.compile(self.label_pattern)
        conds, repls = [], []
        for s in samples:
            m = pattern.match(s)
            if not m:
                raise SchemaError(
                    f"Cannot parse sample label '{s}' with pattern {self.label_pattern!r}. "
                    f"Example labels: {samples[:10]}"
                )
            conds.append(m.group("CONDITION"))
            groups = m.groupdict()
            repls.append(int(groups["REPLICATE"]) if groups.get("REPLICATE") else None)
        return pl.DataFrame(
            {"FILENAME": samples, "CONDITION": conds, "REPLICATE": repls},
            schema={"FILENAME": pl.Utf8, "CONDITION": pl.Utf8, "REPLICATE": pl.Int64},
        )

    def sample_annotation(self, samples: list) -> pl.DataFrame:
        """
        Build the per-sample design table (FILENAME, CONDITION, REPLICATE) in the
        given sample order, from the annotation file or by parsing the labels.
        """
        if self.annotation_file:
            log_info("Injecting annotation")
            ann = self._load_annotation()
            known = set(ann.get_column("FILENAME").to_list())
            missing = [s for s in samples if s not in known]
            if missing:
                raise SchemaError(f"Samples not found in annotation ({len(missing)}): {missing[:20]}")
            extra = sorted(known - set(samples))
            if extra:
                log_warning(f"Annotation lists {len(extra)} sample(s) absent from data: {extra[:10]}")
            ann = pl.DataFrame({"FILENAME": samples}).join(ann, on="FILENAME", how="left")
        else:
            ann = self._parse_labels(samples)

        # Replicates default to order of appearance within a condition
        if ann.get_column("REPLICATE").is_null().any():
            ann = ann.with_columns(
                pl.int_range(1, pl.len() + 1).over("CONDITION").cast(pl.Int64).alias("_ORDER")
            ).with_columns(
                pl.coalesce([pl.col("REPLICATE"), pl.col("_ORDER")]).alias("REPLICATE")
            ).drop("_ORDER")
        return ann


def sanitize_condition(s: Optional[str]) -> str:
    """Map a condition label to a patsy-safe token."""
    s = (s or "").strip()
    s = re.sub(r"[^A-Za-z0-9_]+", "_", s)
    # must not start with a digit
    if re.match(r"^[0-9]", s or ""):
        s = "C_" + s
    return s or "C_UNLABELED"
