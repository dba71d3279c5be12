"""Allow ``python -m kvmcreate``."""

from kvmcreate.cli import main

raise SystemExit(main())
