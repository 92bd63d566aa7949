"""ldap-access command line entrypoint.

Reads the directory settings from the environment, runs one query and prints
the formatted entries as JSON::

    LDAP_DOMAIN_CONTROLLERS=dc1.example.com LDAP_MASTER_USER=svc \\
    LDAP_MASTER_PASSWORD=... ldap-access "(sAMAccountName=jdoe)"
"""
import json
import logging
import os
import sys
from typing import List, Optional

from ldap_access.config import DirectoryConfig
from ldap_access.core.constants import YES_VALUES
from ldap_access.errors import DirectoryError
from ldap_access.registry import DirectoryRegistry

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def _setup_logging() -> logging.Logger:
    """Configure and return the application logger."""

    debug = os.getenv("DEBUG", "").upper() in YES_VALUES

    # Only the package logger, the root logger belongs to the host application
    app_logger = logging.getLogger("ldap_access")
    app_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    app_logger.propagate = False

    for h in list(app_logger.handlers):
        app_logger.removeHandler(h)

    formatter = logging.Formatter(
        fmt="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S %d.%m.%y",
    )

    # stdout carries the JSON document
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    return app_logger

# ---------------------------------------------------------------------------
# Main entrypoint
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None, registry: Optional[DirectoryRegistry] = None) -> int:
    """Run one query and print its entries.  Returns the exit status."""
    logger = _setup_logging()
    args = sys.argv[1:] if argv is None else argv
    search_filter = args[0] if args else ""

    cfg = DirectoryConfig.from_env()
    if registry is None:
        registry = DirectoryRegistry()
    directory = registry.forge("default", cfg)
    logger.debug("Directory config: %s", cfg.masked())

    try:
        result = directory.query(search_filter).execute(
            directory_dn=os.getenv("LDAP_QUERY_DN", ""),
            attributes=os.getenv("LDAP_QUERY_ATTRIBUTES") or None,
            limit=int(os.getenv("LDAP_QUERY_LIMIT", "0") or 0),
        )
    except (DirectoryError, ValueError) as exc:
        logger.error("Query failed: %s", exc)
        return 1
    finally:
        registry.remove("default")

    if result.has_error():
        logger.error("Directory error: %s", result.error)
        return 1

    print(json.dumps(result.formatted(), indent=2, default=str, ensure_ascii=False))
    logger.info("%d entries returned", result.count())
    return 0


if __name__ == "__main__":
    sys.exit(main())
