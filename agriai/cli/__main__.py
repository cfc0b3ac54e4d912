"""Allow ``python -m agriai.cli`` execution."""

from agriai.cli.manage import main

main()
