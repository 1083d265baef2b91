from __future__ import annotations

import asyncio
import logging
import tempfile

from smoketest_mailcache import smoketest_runner

from evolved_badge.badgeconfig import BadgeConfig
from evolved_badge.badgedaemon import BadgeDaemon

CONFIG = """\
[databases]
home_directory = {home}

[watch]
debounce_ms = 200
"""


def main() -> int:
    """Run the daemon against a fake mail cache until ctrl-c is pressed."""
    logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(message)s")

    with smoketest_runner(verbose=True) as home:
        with tempfile.NamedTemporaryFile("w", suffix=".ini") as config_file:
            config_file.write(CONFIG.format(home=home))
            config_file.flush()

            daemon = BadgeDaemon(BadgeConfig(config_file.name))
            return asyncio.run(daemon.run())


if __name__ == "__main__":
    raise SystemExit(main())
