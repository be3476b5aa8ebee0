import typer
from typing import Optional
from typing_extensions import Annotated

from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())

app = typer.Typer(
    help="cloudsql-postgres-operator: manages Cloud SQL for PostgreSQL instances",
    add_completion=False,
)


@app.command("run")
def run_operator(
    config_file: Annotated[
        Optional[str],
        typer.Option("--config-file", help="Path to the TOML configuration file"),
    ] = None,
):
    """Run the operator (connects to the cluster)."""
    from cloudsql_operator.config import load_configuration
    from cloudsql_operator.main import main

    try:
        config = load_configuration(config_file)
    except Exception as e:
        typer.echo(f"Failed to load configuration: {e}")
        raise typer.Exit(1)

    main(config)


@app.command("generate-crds")
def generate_crds(
    output: Annotated[
        str, typer.Option("-o", "--output", help="Output directory")
    ] = "crds/generated",
):
    """Generate the CRD YAML manifest from the pydantic models."""
    from cloudsql_operator.crd.generator import CRDManager

    try:
        file_path = CRDManager().write(output)
    except Exception as e:
        typer.echo(f"Failed to generate CRDs: {e}")
        raise typer.Exit(1)

    typer.echo(f"CRD generated successfully in {file_path}")
