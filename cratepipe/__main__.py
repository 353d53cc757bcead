"""CLI entry point: python -m cratepipe"""

from cratepipe.cli import main

main()
