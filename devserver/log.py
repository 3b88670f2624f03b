import logging

# Two debug channels: general server chatter and optional-feature failures.
server_log = logging.getLogger("devserver.server")
error_log = logging.getLogger("devserver.error")

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def configure_logging(debug: bool = False):
    """
    Attach a console handler to the ``devserver`` loggers.

    Debug lines only show with DEBUG set; warnings and errors always do.
    Safe to call more than once.
    """
    root = logging.getLogger("devserver")
    root.setLevel(logging.DEBUG if debug else logging.WARNING)

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.propagate = False

    return root
