"""Lumina CLI entry point."""

import click


@click.group()
def cli():
    """Lumina: REST APIs from resource configuration."""
    pass


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, default=False)
def serve(host: str, port: int, reload: bool):
    """Run the API with uvicorn."""
    import os

    import uvicorn

    from lumina.cli.common import project_config

    config = project_config()
    # The app factory reads its configuration from the environment
    os.environ["LUMINA_BASE_PATH"] = str(config.base_path)
    uvicorn.run(
        "lumina.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=config.log_level,
    )


# Register subcommand groups
from lumina.cli.auth_cmd import auth  # noqa: E402
from lumina.cli.generate_cmd import generate  # noqa: E402
from lumina.cli.migrate_cmd import migrate  # noqa: E402
from lumina.cli.postman_cmd import postman  # noqa: E402
from lumina.cli.resources_cmd import resources  # noqa: E402

cli.add_command(auth)
cli.add_command(generate)
cli.add_command(migrate)
cli.add_command(postman)
cli.add_command(resources)
