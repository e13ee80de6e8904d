# -*- coding: utf-8 -*-
"""CLI entrypoint for extsecrets-populate."""

import argparse
import logging
import signal
import sys

from ._version import __version__
from .definitions import SOURCE_CLUSTER, SOURCE_FILESYSTEM
from .exceptions import PopulateError, PopulateFailed
from .model import RetryPolicy
from .populate import PopulateOptions, SecretPopulator

logger = logging.getLogger(__name__)


def build_parser():
    defaults = RetryPolicy()
    parser = argparse.ArgumentParser(
        prog="extsecrets-populate",
        description="Populate the secret stores behind ExternalSecrets with generated, "
                    "copied and templated values")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("-n", "--namespace", help="namespace of the ExternalSecrets (default: jx)")
    parser.add_argument("--boot-secret-namespace",
                        help="namespace of the boot and source secrets (default: --namespace)")
    parser.add_argument("-d", "--dir", help="root directory of ExternalSecret files")
    parser.add_argument("--source", choices=(SOURCE_CLUSTER, SOURCE_FILESYSTEM),
                        help="where to read ExternalSecrets from (default: cluster)")
    parser.add_argument("--schema", dest="schema_file",
                        help="secret schema file, a local path or gs://bucket/object")
    parser.add_argument("--backend", dest="backend_type",
                        help="write every ExternalSecret to this backend instead of its backendType")
    parser.add_argument("--no-wait", action="store_true", default=None,
                        help="do not wait for missing secrets, make a single attempt")
    parser.add_argument("--workers", type=int, help="ExternalSecrets populated concurrently")
    parser.add_argument("--retry-steps", type=int, default=defaults.steps)
    parser.add_argument("--retry-duration", type=float, default=defaults.duration,
                        help="first backoff wait in seconds")
    parser.add_argument("--retry-factor", type=float, default=defaults.factor)
    parser.add_argument("--retry-jitter", type=float, default=defaults.jitter)
    parser.add_argument("-v", "--verbose", action="store_true", help="log at debug level")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr
    )

    options = PopulateOptions.from_env(
        namespace=args.namespace,
        boot_secret_namespace=args.boot_secret_namespace,
        dir=args.dir,
        source=args.source,
        schema_file=args.schema_file,
        backend_type=args.backend_type,
        no_wait=args.no_wait,
        workers=args.workers,
        retry_policy=RetryPolicy(steps=args.retry_steps,
                                 duration=args.retry_duration,
                                 factor=args.retry_factor,
                                 jitter=args.retry_jitter))
    populator = SecretPopulator(options)

    def _cancel(signum, frame):
        logger.warning(f"Received signal {signum}, finishing in flight writes")
        populator.cancel()

    signal.signal(signal.SIGTERM, _cancel)
    signal.signal(signal.SIGINT, _cancel)

    try:
        populator.run()
    except PopulateFailed as e:
        for outcome in e.result.failed:
            print(f"Error: {outcome.namespace}/{outcome.name}: {'; '.join(outcome.reasons)}",
                  file=sys.stderr)
        return 1
    except PopulateError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
