"""Entry point for PawnAI Studio when invoked as a module or command."""

import sys

from pawnai_studio.cli import app
from pawnai_studio.cli.utils import console


def main() -> None:
    """Main entry point function for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[warning]Cancelled by user[/warning]")
        sys.exit(0)
    except Exception as e:
        console.print(f"[error]Error: {str(e)}[/error]")
        sys.exit(1)


if __name__ == "__main__":
    main()
