"""Allow ``python -m agentcore``."""

from .app import main

raise SystemExit(main())
