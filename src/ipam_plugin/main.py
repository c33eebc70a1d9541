"""Entry point for the k8s-ipam CNI plugin."""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import random
import sys
import time
from typing import (
    Any,
    Callable,
    ContextManager,
    Dict,
    Iterator,
    Mapping,
    Optional,
    TextIO,
    TypeVar,
)

from k8s_ipam.allocator import Allocator
from k8s_ipam.exceptions import ConflictError, IPAMError
from k8s_ipam.kube import KubeClient

from .config import NetworkConfig, PluginConfig, parse_network_config, pod_from_args
from .result import (
    UnknownCommand,
    build_error,
    build_result,
    build_version_info,
    result_version,
)

LOG = logging.getLogger(__name__)

T = TypeVar("T")


def _setup_logging(config: Optional[PluginConfig], verbose: bool) -> None:
    if verbose:
        level = logging.DEBUG
    elif config is not None:
        level = getattr(logging, config.log_level, logging.INFO)
    else:
        level = logging.INFO
    # stdout is reserved for the CNI result document.
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        filename=str(config.log_file) if config is not None and config.log_file else None,
    )


def retry_on_conflict(
    operation: Callable[[], T],
    retries: int,
    backoff: float,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` again from scratch each time it loses a write race."""

    attempt = 0
    while True:
        try:
            return operation()
        except ConflictError as exc:
            if attempt >= retries:
                raise
            attempt += 1
            LOG.debug("retrying after conflict (%d/%d): %s", attempt, retries, exc)
            if backoff > 0:
                sleep(random.uniform(0, backoff))


@contextlib.contextmanager
def open_allocator(config: PluginConfig) -> Iterator[Allocator]:
    """Yield an allocator backed by the cluster; its client is closed on exit."""

    with KubeClient.from_kubeconfig(config.kubeconfig, timeout=config.timeout) as client:
        yield Allocator(
            store=client,
            liveness=client,
            pool_name=config.pool_name,
            options=config.allocator.to_options(),
        )


def cmd_add(network: NetworkConfig, allocator: Allocator, cni_args: str) -> Dict[str, Any]:
    namespace, name = pod_from_args(cni_args)
    allocation = retry_on_conflict(
        lambda: allocator.allocate(namespace, name),
        network.ipam.conflict_retries,
        network.ipam.retry_backoff,
    )
    return build_result(network.cni_version, allocation)


def cmd_del(network: NetworkConfig, allocator: Allocator, cni_args: str) -> Dict[str, Any]:
    namespace, name = pod_from_args(cni_args)
    retry_on_conflict(
        lambda: allocator.free(namespace, name),
        network.ipam.conflict_retries,
        network.ipam.retry_backoff,
    )
    return build_result(network.cni_version)


COMMANDS = {
    "ADD": cmd_add,
    "DEL": cmd_del,
}


def main(
    argv: list[str] | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    allocator_factory: Callable[[PluginConfig], ContextManager[Allocator]] = open_allocator,
) -> int:
    parser = argparse.ArgumentParser(description="k8s-ipam CNI plugin")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    environ = os.environ if environ is None else environ
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    command = environ.get("CNI_COMMAND", "")
    if command == "VERSION":
        json.dump(build_version_info(), stdout)
        return 0

    cni_version = ""
    network: Optional[NetworkConfig] = None
    try:
        network = parse_network_config(stdin.read())
        cni_version = network.cni_version
        _setup_logging(network.ipam, args.verbose)
        result_version(cni_version)

        handler = COMMANDS.get(command)
        if handler is None:
            raise UnknownCommand(command)

        with allocator_factory(network.ipam) as allocator:
            result = handler(network, allocator, environ.get("CNI_ARGS", ""))
    except IPAMError as exc:
        if network is None:
            _setup_logging(None, args.verbose)
        LOG.error("%s failed: %s", command or "command", exc)
        json.dump(build_error(cni_version, exc), stdout)
        return 1

    json.dump(result, stdout, indent=4)
    return 0


def run() -> None:  # pragma: no cover
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover
    run()
