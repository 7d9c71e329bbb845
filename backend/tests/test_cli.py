"""Command-line argument handling tests."""

import pytest

from app.cli import build_parser, parameters_from
from app.schemas.grouping import UndersizedPolicy


@pytest.mark.unit
class TestCliArguments:

    def test_flags_map_to_parameters(self):
        """Supplied flags override defaults; the rest come from settings."""
        args = build_parser().parse_args([
            "preview", "cluster-1", "season-ws", "2024",
            "--tolerance", "4", "--max-plots", "8", "--policy", "merge",
        ])

        params = parameters_from(args)

        assert args.year == 2024
        assert params.planting_date_tolerance == 4
        assert params.max_plots_per_group == 8
        assert params.undersized_policy == UndersizedPolicy.MERGE
        assert params.proximity_threshold == 100.0

    def test_form_flags(self):
        args = build_parser().parse_args([
            "form", "cluster-1", "season-ws", "2024", "--no-supervisors", "--activate",
        ])
        assert args.no_supervisors is True
        assert args.activate is True

    def test_unknown_policy_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["preview", "c", "s", "2024", "--policy", "drop"])

    def test_create_tables_takes_no_parameters(self):
        """create-tables has no grouping flags, so no parameters are built from it."""
        args = build_parser().parse_args(["create-tables"])
        assert args.command == "create-tables"
        assert parameters_from(args).min_plots_per_group == 3
