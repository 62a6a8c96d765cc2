"""Benchmark entrypoint.

Loads a manifest, builds the deployment backend it names, runs one
benchmark and tears the network down. Exit status 1 on any run failure;
teardown failures are logged and do not change the exit status.
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from benchnet.bench.benchmark import BenchTest, trace_push_env
from benchnet.config.manifest import Manifest, load_manifest
from benchnet.deploy.base import DeploymentBackend
from benchnet.shared.errors import BenchnetError
from benchnet.shared.logging import configure_logging

logger = logging.getLogger("benchnet.bench")


def build_backend(manifest: Manifest, scope: str) -> DeploymentBackend:
    if manifest.backend == "machine":
        from benchnet.deploy.machine import MachineBackend, MachineSettings
        from benchnet.machine.cluster import KubectlCluster
        from benchnet.machine.provisioner import DigitalOceanProvisioner

        m = manifest.machine
        settings = MachineSettings(
            region=m.region,
            size=m.size,
            os_image=m.os_image,
            user_data=m.user_data,
            ssh_user=m.ssh_user,
            creation_attempts=manifest.poll.creation_attempts,
            creation_interval=manifest.poll.creation_interval,
        )
        return MachineBackend(
            scope,
            DigitalOceanProvisioner(),
            KubectlCluster(context=m.kube_context),
            settings,
            user_data_vars=m.user_data_vars,
        )

    from benchnet.deploy.docker import DockerBackend

    return DockerBackend(scope, pull=True)


async def run_benchmark(manifest: Manifest) -> int:
    backend = build_backend(manifest, manifest.test_name.lower())
    bench = BenchTest(manifest, backend, node_env=trace_push_env())
    try:
        result = await bench.execute()
    except BenchnetError as exc:
        logger.error({"bench": {"test": manifest.test_name, "status": "failed", "error": str(exc)}})
        return 1

    if result.teardown is not None and not result.teardown.ok:
        logger.warning({"bench": {"teardown_failures": [str(f) for f in result.teardown.failures]}})
    logger.info(
        {"bench": {"test": manifest.test_name, "status": "passed", "transactions": result.total_transactions}}
    )
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run a benchmark on an ephemeral test network")
    parser.add_argument("--manifest", required=True, help="Path to the manifest YAML")
    parser.add_argument("--env-file", default=None, help="Optional .env file (provider tokens, trace push settings)")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--json-logs", action="store_true")
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)

    try:
        manifest = load_manifest(args.manifest)
    except BenchnetError as exc:
        configure_logging()
        logger.error({"bench": {"status": "invalid_manifest", "error": str(exc)}})
        return 1

    configure_logging(
        level=args.log_level or manifest.logging.level,
        json_logs=args.json_logs or manifest.logging.json_logs,
        events_dir=manifest.logging.events_dir,
    )
    logger.info({"bench": {"test": manifest.test_name, "validators": manifest.validators, "backend": manifest.backend}})

    try:
        return asyncio.run(run_benchmark(manifest))
    except KeyboardInterrupt:
        logger.info({"bench": "keyboard_interrupt"})
        return 1


if __name__ == "__main__":
    sys.exit(main())
