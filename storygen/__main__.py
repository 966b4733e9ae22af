"""CLI entry point for python -m storygen"""
from storygen.cli import app

if __name__ == "__main__":
    app()
