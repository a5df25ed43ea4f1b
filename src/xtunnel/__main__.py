"""
Main entry point for running xtunnel as a module.

Usage:
    python -m xtunnel up
    python -m xtunnel link set 'vless://...'
    python -m xtunnel status
"""

from .cli import cli

if __name__ == "__main__":
    cli()
