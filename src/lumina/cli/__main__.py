"""CLI entry point for lumina.cli module.

Enables execution via: python -m lumina.cli
"""

from lumina.cli.expire_jobs import main

if __name__ == "__main__":
    main()
