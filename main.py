#!/usr/bin/env python3
"""Thin wrapper: run the git-vcommit CLI. Usage: python main.py [options] <branch> (same as python -m vcommit)."""

import sys

if __name__ == "__main__":
    from vcommit.cli import main
    sys.exit(main())
