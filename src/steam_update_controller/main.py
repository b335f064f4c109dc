"""Main entry point for the Steam Update Controller."""

import argparse
import asyncio
import contextlib
import signal

from steam_update_controller.config import get_settings
from steam_update_controller.controller.restart import WorkloadRestarter
from steam_update_controller.controller.update import CycleFailedError, UpdateController
from steam_update_controller.k8s.client import KubeClient
from steam_update_controller.k8s.config import load_cluster_config
from steam_update_controller.logging import get_logger, setup_logging
from steam_update_controller.steamcmd.client import SteamCMDClient
from steam_update_controller.steamcmd.installation import Installation
from steam_update_controller.steamcmd.runner import SteamCMDRunner


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="steam-update-controller",
        description="Keep game server workloads on the latest Steam build.",
    )
    parser.add_argument(
        "--kubeconfig",
        default=None,
        help="Path to kubeconfig file (uses in-cluster config if not provided)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single update cycle and exit",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings)
    log = get_logger("steam_update_controller.main")

    log.info(
        "starting_update_controller",
        steam_app=settings.steam_app,
        steam_app_id=settings.steam_app_id,
        check_interval=str(settings.check_interval),
        namespace=settings.namespace,
        pod_selector=settings.pod_selector,
    )

    cluster = load_cluster_config(args.kubeconfig or settings.kubeconfig)
    kube = KubeClient(cluster, settings.namespace)

    installation = Installation(
        root=settings.game_mount_path,
        steam_app=settings.steam_app,
        steam_app_id=settings.steam_app_id,
        marker_file=settings.install_marker,
    )
    steam = SteamCMDClient(
        installation=installation,
        runner=SteamCMDRunner(settings.steamcmd_executable),
        steam_app_id=settings.steam_app_id,
        update_script=settings.update_script,
    )
    controller = UpdateController(
        steam=steam,
        restarter=WorkloadRestarter(
            kube, grace_period=settings.restart_grace_period.total_seconds()
        ),
        pod_selector=settings.pod_selector,
        check_interval=settings.check_interval.total_seconds(),
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay.total_seconds(),
    )

    exit_code = 0
    if args.once:
        task = asyncio.create_task(controller.run_cycle())
    else:
        task = asyncio.create_task(controller.run())

    # Cancelling the task also kills any SteamCMD process it is waiting on
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, task.cancel)

    try:
        result = await task
        if result is not None:
            log.info("update_cycle_result", **result.to_dict())
    except asyncio.CancelledError:
        log.info("shutdown_requested")
    except CycleFailedError as exc:
        log.error("update_cycle_failed", stage=exc.stage.value, error=str(exc))
        exit_code = 1
    finally:
        await kube.aclose()
        log.info("update_controller_stopped")

    return exit_code


def run() -> None:
    """Run the application."""
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
