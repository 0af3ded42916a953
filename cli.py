#!/usr/bin/env python
"""
Memory checkpoint CLI entry point.

Usage:
    python cli.py status                  # Engine status
    python cli.py create "before deploy"  # Manual checkpoint
    python cli.py list --limit 5          # Recent checkpoints
    python cli.py rollback <checkpoint>   # Roll back with a safety checkpoint
    python cli.py recovery system_failure # Run a recovery strategy
"""

from src.memory_checkpoint.cli.app import main

if __name__ == "__main__":
    main()
