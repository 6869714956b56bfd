"""Allow running the CLI via ``python -m agent_supervisor``."""

from agent_supervisor.cli import cli

if __name__ == "__main__":
    cli()
