"""
Main entry point for running the package as a module.

Uses the Click-based CLI from slack_summarizer/cli/.
"""
import sys

from slack_summarizer.cli import main

if __name__ == "__main__":
    sys.exit(main())
