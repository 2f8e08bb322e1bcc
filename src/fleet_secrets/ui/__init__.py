"""CLI surface: argparse router and output renderer."""

from fleet_secrets.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "create_renderer"]
