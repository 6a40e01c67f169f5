"""Entry point for running the console as a module.

Usage:
    python -m agent_console chat
    python -m agent_console --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from agent_console.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
