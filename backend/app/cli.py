"""Management CLI for group formation.

Usage:
    python -m app.cli create-tables                          # Create schema (local use)
    python -m app.cli preview <cluster_id> <season_id> <year> [--tolerance 3 ...]
    python -m app.cli ungrouped <cluster_id> <season_id> <year>
    python -m app.cli form <cluster_id> <season_id> <year> [--no-supervisors]
"""

import argparse
import asyncio
import logging
import sys

import app.models  # noqa: F401  (register tables on Base.metadata)
from app.database import Base, async_session, engine
from app.middleware.exceptions import RiceProductionException
from app.schemas.grouping import FormGroupsRequest, GroupingParameters, UndersizedPolicy
from app.services.group_formation import form_groups, list_ungrouped_plots, preview_groups

logger = logging.getLogger(__name__)

# argparse dest → GroupingParameters field
PARAMETER_FLAGS = {
    "proximity_threshold": "proximity_threshold",
    "tolerance": "planting_date_tolerance",
    "min_area": "min_group_area",
    "max_area": "max_group_area",
    "min_plots": "min_plots_per_group",
    "max_plots": "max_plots_per_group",
    "policy": "undersized_policy",
}


async def create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created.")


async def preview(args, params: GroupingParameters):
    async with async_session() as db:
        result = await preview_groups(db, args.cluster_id, args.season_id, args.year, params)
    print(result.model_dump_json(indent=2))


async def ungrouped(args, params: GroupingParameters):
    async with async_session() as db:
        result = await list_ungrouped_plots(
            db, args.cluster_id, args.season_id, args.year, params
        )
    print(result.model_dump_json(indent=2))


async def form(args, params: GroupingParameters):
    body = FormGroupsRequest(
        cluster_id=args.cluster_id,
        season_id=args.season_id,
        year=args.year,
        parameters=params,
        auto_assign_supervisors=not args.no_supervisors,
        create_groups_immediately=args.activate,
    )
    async with async_session() as db:
        result = await form_groups(db, body)
        await db.commit()
    print(result.model_dump_json(indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rice production group formation")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("create-tables", help="Create all tables (local use only)")

    for name, help_text in (
        ("preview", "Show the groups that would be formed"),
        ("ungrouped", "List plots that cannot be grouped and why"),
        ("form", "Form and commit the groups"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("cluster_id")
        cmd.add_argument("season_id")
        cmd.add_argument("year", type=int)
        cmd.add_argument("--proximity-threshold", type=float, help="Metres")
        cmd.add_argument("--tolerance", type=int, help="Planting date tolerance in days")
        cmd.add_argument("--min-area", type=float, help="Hectares")
        cmd.add_argument("--max-area", type=float, help="Hectares")
        cmd.add_argument("--min-plots", type=int)
        cmd.add_argument("--max-plots", type=int)
        cmd.add_argument("--policy", choices=[p.value for p in UndersizedPolicy])
        if name == "form":
            cmd.add_argument(
                "--no-supervisors", action="store_true",
                help="Leave groups without a supervisor",
            )
            cmd.add_argument(
                "--activate", action="store_true",
                help="Create groups as active instead of draft",
            )
    return parser


def parameters_from(args: argparse.Namespace) -> GroupingParameters:
    supplied = {
        field: getattr(args, dest)
        for dest, field in PARAMETER_FLAGS.items()
        if getattr(args, dest, None) is not None
    }
    return GroupingParameters(**supplied)


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)

    if args.command == "create-tables":
        asyncio.run(create_tables())
        return 0

    runner = {"preview": preview, "ungrouped": ungrouped, "form": form}[args.command]
    try:
        asyncio.run(runner(args, parameters_from(args)))
    except RiceProductionException as exc:
        logger.error("%s: %s", exc.error_code, exc.message)
        return 1
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
