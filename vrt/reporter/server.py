"""Serve a generated report directory on localhost."""

from __future__ import annotations

import errno
import functools
import logging
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable

import click

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9324
HOST = "127.0.0.1"


class ReportRequestHandler(SimpleHTTPRequestHandler):
    """Static file handler that logs through ``logging`` instead of stderr."""

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def create_report_server(report_dir: str | Path, port: int = DEFAULT_PORT) -> ThreadingHTTPServer:
    """Bind a server for ``report_dir``. Raises OSError if the port is taken."""
    handler = functools.partial(ReportRequestHandler, directory=str(report_dir))
    return ThreadingHTTPServer((HOST, port), handler)


def report_url(port: int) -> str:
    return f"http://localhost:{port}"


def serve_report(
    report_dir: str | Path,
    port: int = DEFAULT_PORT,
    open_browser: bool = True,
    on_ready: Callable[[str, bool], None] | None = None,
) -> bool:
    """Serve the report until interrupted.

    If another server already holds the port the report is assumed to be
    served there: the browser is opened and False is returned immediately.
    ``on_ready(url, already_running)`` is called once the URL is known.
    """
    report_dir = Path(report_dir)
    if not (report_dir / "index.html").is_file():
        raise FileNotFoundError(f"No report found in {report_dir}. Run run-tests first.")

    url = report_url(port)
    try:
        server = create_report_server(report_dir, port)
    except OSError as e:
        if e.errno != errno.EADDRINUSE:
            raise
        logger.info("Report server already running on port %d", port)
        if on_ready:
            on_ready(url, True)
        if open_browser:
            click.launch(url)
        return False

    logger.debug("Serving %s at %s", report_dir, url)
    if on_ready:
        on_ready(url, False)
    if open_browser:
        click.launch(url)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.debug("Report server interrupted")
    finally:
        server.server_close()
    return True
