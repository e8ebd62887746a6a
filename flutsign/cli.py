import argparse
import sys
from pathlib import Path
from rich.console import Console
from rich.panel import Panel
from rich.text import Text
from rich.theme import Theme
from rich_argparse import RichHelpFormatter
from dotenv import find_dotenv, load_dotenv
from flutsign.arguments import add_build_arguments, add_signing_arguments
from flutsign.logger import log_error
from flutsign.src.core.errors import SigningError
from flutsign.src.constants.cli_constants import (
    __version__,
    get_banner_text,
    APP_DESCRIPTION,
)


class FlutsignHelpFormatter(RichHelpFormatter):
    """Custom formatter for the flutsign CLI that enhances the output with rich styling."""

    def __init__(self, prog):
        super().__init__(prog, max_help_position=30, width=100)
        self.console = Console(
            theme=Theme(
                {
                    "command": "bold cyan",
                    "argument": "green",
                    "option": "yellow",
                    "version": "blue",
                    "title": "bold magenta",
                }
            )
        )

    def start_section(self, heading):
        # Make section headings more prominent
        heading_text = Text(heading, style="title")
        super().start_section(str(heading_text))


def display_banner():
    """Display the flutsign banner."""
    console = Console()
    banner = get_banner_text()

    version_info = Text(f"v{__version__}", style="version")
    tagline = Text(APP_DESCRIPTION, style="italic")

    panel = Panel.fit(
        Text.assemble(banner, "\n", tagline, "\n", version_info),
        border_style="green",
        padding=(1, 2),
    )
    console.print(panel)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flutsign",
        description=f"flutsign: {APP_DESCRIPTION}",
        formatter_class=FlutsignHelpFormatter,
        add_help=True,
    )
    parser.add_argument(
        "--version", action="version", version=f"flutsign {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command")

    resolve_parser = subparsers.add_parser(
        "resolve-signing",
        help="Fetch credentials and write signing settings into the project",
        formatter_class=FlutsignHelpFormatter,
        description="Download the profile and certificate, install them into a "
        "temporary keychain and configure the Xcode project for Runner-only signing.",
    )
    add_signing_arguments(resolve_parser)

    build_parser = subparsers.add_parser(
        "build",
        help="Resolve signing, then build and export a signed IPA",
        formatter_class=FlutsignHelpFormatter,
        description="Run the full signing chain followed by flutter build, "
        "xcodebuild archive and export. 📦",
    )
    add_signing_arguments(build_parser)
    add_build_arguments(build_parser)

    inspect_parser = subparsers.add_parser(
        "inspect-profile",
        help="Show the contents of a provisioning profile",
        formatter_class=FlutsignHelpFormatter,
        description="Decode a .mobileprovision file and print its signing fields.",
    )
    inspect_parser.add_argument(
        "profile_path", type=Path, help="Path to the .mobileprovision file"
    )
    inspect_parser.add_argument(
        "--full",
        action="store_true",
        help="Also print the complete profile as JSON [default: disabled]",
    )

    return parser


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    # Display the banner before the help text
    if not argv or "-h" in argv or "--help" in argv:
        display_banner()

    # Values already exported by the CI runner take precedence over .env
    load_dotenv(find_dotenv(usecwd=True), override=False)

    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "resolve-signing":
            from flutsign.commands.resolve_signing import run_resolve_signing_command

            return run_resolve_signing_command(args)
        elif args.command == "build":
            from flutsign.commands.build import run_build_command

            return run_build_command(args)
        elif args.command == "inspect-profile":
            from flutsign.commands.inspect_profile import run_inspect_profile_command

            return run_inspect_profile_command(args)
        else:
            parser.print_help()
            return 1
    except SigningError as e:
        log_error(f"{type(e).__name__}: {e}")
        return e.exit_code
    except KeyboardInterrupt:
        log_error("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
