import typer
from pathlib import Path
import yaml
from importlib.resources import files

app = typer.Typer(help="Proteobayes: label-free proteomics with moderated statistics")


@app.command()
def init(path: Path = typer.Argument(Path("proteobayes_config.yaml"), help="Where to write the template")):
    """
    Generate a config scaffold (basic template) at given path.
    """
    default_yaml = files("proteobayes.templates").joinpath("user_template.yaml").read_text()

    path.write_text(default_yaml)
    typer.echo(f"Template written to {path}")


@app.command()
def run(
    config: Path = typer.Option(..., help="Path to YAML config file"),
):
    """
    Run the Proteobayes pipeline from a config YAML.
    """
    from proteobayes.utils.cli_setup import configure_cli_display
    from proteobayes.main import run_pipeline

    configure_cli_display()
    config_data = yaml.safe_load(config.read_text()) or {}

    adata = run_pipeline(config=config_data)

    warnings_ = list(adata.uns.get("warnings", []))
    typer.echo(f"Done: {adata.n_vars} proteins, {len(adata.uns.get('contrast_names', []))} contrast(s), "
               f"{len(warnings_)} warning(s).")
    for w in warnings_:
        typer.echo(f"WARNING {w}")


if __name__ == "__main__":
    app()
