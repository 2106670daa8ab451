def configure_cli_display() -> None:
    """
    Configure dataframe display defaults for logging.

    Imported lazily from the CLI `run` command so `init` stays fast.
    """
    import polars as pl
    import pandas as pd

    pl.Config.set_tbl_rows(10)
    pl.Config.set_tbl_cols(20)
    pl.Config.set_tbl_width_chars(160)

    pd.set_option("display.max_rows", 10)
    pd.set_option("display.max_columns", 20)
    pd.set_option("display.width", 160)
