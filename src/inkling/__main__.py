"""Allow ``python -m inkling``."""

from .app import main

raise SystemExit(main())
