from proteobayes.workflow.dataset import Dataset
from proteobayes.analysis.limma_pipeline import run_limma_pipeline
from proteobayes.analysis.variance_decomposition import run_feature_selection
from proteobayes.analysis.reference import run_reference_comparison
from proteobayes.export.de_exporter import DEExporter
from proteobayes.utils.utils import log_time, log_warning


@log_time("Proteobayes Pipeline")
def run_pipeline(config: dict):
    """Load, preprocess, analyse and export; returns the analysed AnnData."""
    dataset = Dataset(**config)
    adata = dataset.get_anndata()
    adata = run_limma_pipeline(adata, config)

    analysis_config = config.get("analysis", {}) or {}

    fs_config = analysis_config.get("feature_selection", {}) or {}
    if fs_config.get("enabled", True):
        adata = run_feature_selection(adata, config)

    adata = run_reference_comparison(adata, config)

    export_config = analysis_config.get("exports", {}) or {}
    exporter = DEExporter(adata, output_path=export_config.get("path_table", "proteobayes"))
    if analysis_config.get("export_table", True):
        exporter.export()
    if export_config.get("path_h5ad"):
        exporter.export_adata(export_config.get("path_h5ad"))

    warnings_ = list(adata.uns.get("warnings", []))
    if warnings_:
        log_warning(f"{len(warnings_)} warning(s) during the run:")
        for w in warnings_:
            log_warning(f"  - {w}")

    return adata
