"""Greeting used to check that the package is installed and importable."""

from __future__ import annotations

__all__ = ["print_hello", "main"]


def print_hello():
    """Print the library greeting."""
    print("Hello SLAM")


def main(argv=None):
    """Print the program greeting and return the exit status."""
    print("Hello SLAM!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())