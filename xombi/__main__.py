"""Run the bot: ``python -m xombi``."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from xombi.app import run
from xombi.config import initialize_environment
from xombi.errors import ClientCreationError, ConfigurationError, InstallationLimitError

logger = logging.getLogger("xombi")


def _report_installation_limit(error: InstallationLimitError) -> None:
    print("\n❌ XMTP Installation Limit Error", file=sys.stderr)
    print(
        "Your XMTP identity has reached the maximum number of installations.",
        file=sys.stderr,
    )
    print("\nTo resolve this issue, you can:", file=sys.stderr)
    for step in error.resolution_steps():
        print(step, file=sys.stderr)
    print("\nFor more information, see: https://docs.xmtp.org/", file=sys.stderr)
    print(f"\nOriginal error: {error}", file=sys.stderr)


def main() -> None:
    initialize_environment()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(run())
    except InstallationLimitError as e:
        _report_installation_limit(e)
        sys.exit(1)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)
    except ClientCreationError as e:
        logger.error("XMTP client creation failed: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
