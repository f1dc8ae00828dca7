import argparse
import sys
from pathlib import Path
from dotenv import load_dotenv
from rich_argparse import RichHelpFormatter
from signstage.src.constants.cli_constants import __version__, APP_DESCRIPTION


class SignStageHelpFormatter(RichHelpFormatter):
    """Help formatter shared by every signstage command."""

    def __init__(self, prog):
        super().__init__(prog, max_help_position=30, width=100)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signstage",
        description=f"signstage: {APP_DESCRIPTION}",
        formatter_class=SignStageHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"signstage {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command")

    prepare_parser = subparsers.add_parser(
        "prepare",
        help="Prepare keychain and provisioning profiles for a build job",
        formatter_class=SignStageHelpFormatter,
        description="Create a temporary keychain, import every target's certificate "
        "and install its provisioning profile.",
    )
    prepare_parser.add_argument(
        "job_path", type=Path, help="Path to the build job JSON payload"
    )
    prepare_parser.add_argument(
        "--keep",
        action="store_true",
        help="Leave the keychain and profiles in place after preparing [default: clean up]",
    )

    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Decode a provisioning profile and show its signing fields",
        formatter_class=SignStageHelpFormatter,
    )
    inspect_parser.add_argument(
        "profile_path", type=Path, help="Path to the .mobileprovision file"
    )
    inspect_parser.add_argument(
        "--keychain",
        required=True,
        help="Keychain to decode the profile with",
    )
    inspect_parser.add_argument(
        "--target", default="inspect", help="Target name to report [default: inspect]"
    )

    return parser


def main(argv=None):
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == "prepare":
        from signstage.commands.prepare import run_prepare_command

        return run_prepare_command(args)
    elif args.command == "inspect":
        from signstage.commands.inspect import run_inspect_command

        return run_inspect_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
