"""
Enable running the package with: python -m ajournal

Same as the installed `ajournal` command.
"""

from .main import main

raise SystemExit(main())
