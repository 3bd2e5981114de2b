"""Console entry that runs the Flask CLI against the configured application."""

from __future__ import annotations

from flask.cli import FlaskGroup

from . import create_app


cli = FlaskGroup(
    create_app=create_app,
    help="Detect and correct clinic timestamps stored with timezone drift.",
)


def main() -> None:
    cli.main()


if __name__ == "__main__":
    main()
