"""Allow ``python -m gencoach``."""

from gencoach.pipeline import main

main()
