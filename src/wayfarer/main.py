"""Command line entry point for Wayfarer.

Lists nearby quests or plays one end to end against a live backend, with a
simulated walker standing in for the phone's GPS.
"""

import argparse
import asyncio
import sys

import structlog

from wayfarer.config import get_settings
from wayfarer.core.controller import (
    ArrivalDetected,
    PhaseChanged,
    QuestCompleted,
    QuestEvent,
    QuestPhase,
    QuestProgressionController,
)
from wayfarer.core.errors import WayfarerError
from wayfarer.core.geo import Location, validate_location
from wayfarer.core.rank import RankProfile, get_rank_name
from wayfarer.logging_config import configure_logging
from wayfarer.services.backend import NakamaBackend, QuestBackend
from wayfarer.services.device import SimulatedWalker
from wayfarer.services.routing import default_route_provider
from wayfarer.services.submission import Submission

logger = structlog.get_logger(__name__)


async def list_nearby(backend: QuestBackend, location: Location, radius_km: float) -> None:
    """Print the quests available around ``location``."""
    response = await backend.get_available_quests(location, radius_km)
    if not response.quests:
        print("No quests nearby.")
        return
    for quest in response.quests:
        print(f"{quest.id}  {quest.title}  ({quest.reward_xp} XP, {quest.total_steps} steps)")


async def play_quest(
    backend: QuestBackend,
    quest_id: str,
    start: Location,
    step_meters: float,
    interval_seconds: float,
    total_xp: int,
) -> int:
    """
    Play one quest with a simulated walker.

    Returns:
        The XP total after the quest
    """
    quest = await backend.get_quest_detail(quest_id)
    walker = SimulatedWalker(start, step_meters=step_meters)
    controller = QuestProgressionController(
        backend,
        default_route_provider(),
        walker,
        total_xp=total_xp,
        poll_interval_seconds=interval_seconds,
    )

    arrived = asyncio.Event()

    def on_event(event: QuestEvent) -> None:
        if isinstance(event, PhaseChanged):
            print(f"  {event.old_phase.value} -> {event.new_phase.value}")
        elif isinstance(event, ArrivalDetected):
            print(f"Arrived at step {event.step_number}")
            arrived.set()
        elif isinstance(event, QuestCompleted):
            print(
                f"Quest complete! +{event.xp_awarded} XP "
                f"({event.old_total_xp} -> {event.new_total_xp})"
            )
            if event.leveled_up:
                print(f"Rank up: {get_rank_name(event.new_rank)}")

    controller.subscribe(on_event)

    try:
        await controller.join(quest)
        while controller.phase is QuestPhase.WAITING:
            await asyncio.sleep(interval_seconds)

        while controller.phase is QuestPhase.ACTIVE:
            step = controller.current_step
            if step is None:
                break
            walker.walk_toward(step.location)
            arrived.clear()

            route = await controller.navigate()
            if route is not None:
                print(f"Step {step.step_number}: {route.summary()}")
            await arrived.wait()

            submission = Submission(
                photo_ref="simulated://photo" if step.requires_photo else None,
                text="Visited" if step.requires_text else None,
            )
            await controller.complete_task(submission)
    finally:
        await controller.close()

    return controller.total_xp


def parse_location(lat: float, lon: float) -> Location:
    result = validate_location(lat, lon)
    if not result.ok or result.location is None:
        raise SystemExit(f"Invalid location: {result.error}")
    return result.location


async def run_cli(argv: list[str] | None = None) -> int:
    """Parse arguments and run the chosen command."""
    settings = get_settings()

    argparser = argparse.ArgumentParser(description="Wayfarer quest client")
    argparser.add_argument("--email", "-e", required=True, help="Account email")
    argparser.add_argument("--password", "-p", required=True, help="Account password")
    argparser.add_argument("--lat", type=float, required=True, help="Starting latitude")
    argparser.add_argument("--lon", type=float, required=True, help="Starting longitude")
    argparser.add_argument("--log-level", default=None, help="Override log level")

    sub = argparser.add_subparsers(dest="command", required=True)

    nearby = sub.add_parser("nearby", help="List nearby quests")
    nearby.add_argument(
        "--radius", type=float, default=settings.max_quest_distance_km, help="Radius in km"
    )

    play = sub.add_parser("play", help="Play a quest with a simulated walker")
    play.add_argument("quest_id", help="Quest to play")
    play.add_argument("--step-meters", type=float, default=25.0, help="Metres walked per fix")
    play.add_argument("--interval", type=float, default=1.0, help="Seconds between fixes")
    play.add_argument("--xp", type=int, default=0, help="XP total before the quest")

    args = argparser.parse_args(argv)
    configure_logging(level=args.log_level)
    start = parse_location(args.lat, args.lon)

    async with NakamaBackend() as backend:
        try:
            await backend.authenticate_email(args.email, args.password)
            if args.command == "nearby":
                await list_nearby(backend, start, args.radius)
            else:
                total = await play_quest(
                    backend, args.quest_id, start, args.step_meters, args.interval, args.xp
                )
                print(f"Total XP: {total} ({RankProfile(total_xp=total).rank_name})")
        except WayfarerError as e:
            logger.error("command_failed", command=args.command, error=str(e))
            print(f"Error: {e}", file=sys.stderr)
            return 1

    return 0


def run() -> None:
    """Synchronous entry point for the ``wayfarer`` console script."""
    try:
        sys.exit(asyncio.run(run_cli()))
    except KeyboardInterrupt:
        logger.info("stopped_by_user")


if __name__ == "__main__":
    run()
