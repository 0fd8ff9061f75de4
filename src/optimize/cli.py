from __future__ import annotations

import typer

from optimize.clients.api_client import APIError
from optimize.commands import applications, experiments
from optimize.commands.activity import app as activity_app
from optimize.commands.run import app as run_app
from optimize.infrastructure.logging import render_error
from optimize.runtime import bootstrap

app = typer.Typer(help="Optimize CLI root", no_args_is_help=True)

get_app = typer.Typer(help="Display one or many resources", no_args_is_help=True)
delete_app = typer.Typer(help="Delete resources", no_args_is_help=True)
label_app = typer.Typer(help="Update resource labels", no_args_is_help=True)
create_app = typer.Typer(help="Create a resource", no_args_is_help=True)
edit_app = typer.Typer(help="Edit a resource", no_args_is_help=True)


def _register(group: typer.Typer, names: tuple[str, ...], func) -> None:
    primary, *aliases = names
    group.command(primary)(func)
    for alias in aliases:
        group.command(alias, hidden=True)(func)


_register(get_app, ("applications", "application", "app", "apps"), applications.get_applications)
_register(get_app, ("experiments", "experiment", "exp", "exps"), experiments.get_experiments)
_register(delete_app, ("applications", "application", "app", "apps"), applications.delete_applications)
_register(delete_app, ("experiments", "experiment", "exp", "exps"), experiments.delete_experiments)
_register(label_app, ("experiments", "experiment", "exp", "exps"), experiments.label_experiments)
_register(create_app, ("application", "app"), applications.create_application)
_register(edit_app, ("application", "app"), applications.edit_application)


@app.callback(invoke_without_command=True)
def init_callback() -> None:
    """Bootstrap environment (dotenv + config + logging) before any command."""
    bootstrap()


app.add_typer(get_app, name="get")
app.add_typer(delete_app, name="delete")
app.add_typer(label_app, name="label")
app.add_typer(create_app, name="create")
app.add_typer(edit_app, name="edit")
app.add_typer(activity_app, name="activity")
app.add_typer(run_app, name="run")


def main() -> None:
    try:
        app()
    except APIError as exc:
        render_error(str(exc))
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
