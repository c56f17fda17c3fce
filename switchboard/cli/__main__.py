"""Entry point for running as module: python -m switchboard.cli"""
from switchboard.cli.cli import main

if __name__ == "__main__":
    main()
