import logging
import os
import sys


def setup_logging():
    level = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()
    logging.basicConfig(
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
    )
    # Stripe's SDK logs every request at INFO; keep webhook noise down
    logging.getLogger("stripe").setLevel(logging.WARNING)
