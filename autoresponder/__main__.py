"""
Entry point for running autoresponder as a module:

    python -m autoresponder
"""

from autoresponder.cli.commands import app

if __name__ == "__main__":
    app()
