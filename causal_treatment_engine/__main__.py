"""
Entry point for running the package as a module.

Usage:
    python -m causal_treatment_engine analyze request.json
"""

from .cli import main

if __name__ == "__main__":
    main()
