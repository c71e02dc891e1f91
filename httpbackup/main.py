"""
Process entry point: web surface + orchestrator loop.

The orchestrator loop runs on the main thread; the web surface runs on a
background thread. SIGINT/SIGTERM stop the loop, let an in-flight run finish,
then shut the web server down.
"""

import argparse
import logging
import os
import signal
import sys
import threading

from werkzeug.serving import make_server

from httpbackup import create_app
from httpbackup.backup.runner import Runner
from httpbackup.config import config, max_parallel_from_env
from httpbackup.events import EventChannel
from httpbackup.scheduler import Orchestrator
from httpbackup.settings import ConfigError


logger = logging.getLogger(__name__)


def parse_listen_addr(addr: str):
    """Split "host:port" into (host, port); a missing host means all interfaces."""
    host, sep, port = addr.rpartition(':')
    if not sep:
        raise ValueError(f"listen address must be host:port, got {addr!r}")
    host = host.strip('[]') or '0.0.0.0'
    return host, int(port)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Periodic HTTP backup downloader')
    parser.add_argument('--config', help='Path to config.json (default: HTTPBACKUP_CONFIG or ./config.json)')
    parser.add_argument('--env', default=os.environ.get('FLASK_ENV', 'production'),
                        help='Configuration name: development or production')
    args = parser.parse_args(argv)

    overrides = {'CONFIG_PATH': args.config} if args.config else None

    config_class = config.get(args.env, config['default'])
    config_path = args.config or config_class.CONFIG_PATH

    def runner_factory():
        return Runner(
            max_parallel=max_parallel_from_env(),
            timeout=config_class.HTTP_TIMEOUT,
            user_agent=config_class.USER_AGENT
        )

    events = EventChannel(config_class.EVENT_QUEUE_SIZE)
    orchestrator = Orchestrator(config_path, events, runner_factory=runner_factory)
    app = create_app(args.env, orchestrator=orchestrator, config_overrides=overrides)

    try:
        orchestrator.start()
    except ConfigError as e:
        logger.critical(f"Failed to load config: {e}")
        return 1
    logger.info(f"Config loaded from {config_path}")

    cfg = orchestrator.current_config()
    try:
        host, port = parse_listen_addr(cfg.web_listen_addr)
        server = make_server(host, port, app, threaded=True)
    except (ValueError, OSError) as e:
        logger.critical(f"Web server failed to start on {cfg.web_listen_addr}: {e}")
        orchestrator.stop(wait=False)
        return 1

    web_thread = threading.Thread(target=server.serve_forever, name='web', daemon=True)
    web_thread.start()
    logger.info(f"Web UI listening on http://{cfg.web_listen_addr}")

    def handle_signal(signum, frame):
        logger.info(f"Shutdown signal received ({signal.Signals(signum).name})")
        orchestrator.stop(wait=False)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    orchestrator.serve_forever()

    if not orchestrator.wait_for_run():
        logger.warning("In-flight run did not finish")
    server.shutdown()
    logger.info("Shutdown complete")
    return 0


if __name__ == '__main__':
    sys.exit(main())
