#!/usr/bin/env python3
"""
Prode Management CLI

Runs the commands registered on the Flask app outside of ``flask``:

    python manage.py settle match 12
    python manage.py leaderboard show --limit 20
"""

from flask.cli import FlaskGroup

from prode import create_app


def _create_app():
    return create_app()


cli = FlaskGroup(create_app=_create_app, help="Prode Management CLI")


if __name__ == "__main__":
    cli()
