import json
from rich.table import Table

from signstage.logger import get_console
from signstage.src.core.credentials_manager import Credentials, CredentialsManager
from signstage.src.core.errors import CredentialsError
from signstage.src.job.job import Job

console = get_console()


def print_credentials(credentials: Credentials) -> None:
    """Show the staged credentials, one row per target."""
    table = Table(title="Prepared credentials")
    table.add_column("Target")
    table.add_column("Bundle ID")
    table.add_column("Team ID")
    table.add_column("Distribution")
    table.add_column("Profile")

    application_target = credentials.application_target_provisioning_profile.data.target
    for target, data in sorted(credentials.target_provisioning_profiles.items()):
        label = f"{target} (app)" if target == application_target else target
        table.add_row(
            label,
            data.bundle_identifier,
            data.team_id,
            data.distribution_type.value,
            data.path,
        )

    console.print(table)
    console.print(f"[blue]Keychain:[/] {credentials.keychain_path}")


def run_prepare_command(args) -> int:
    try:
        job = Job.from_dict(json.loads(args.job_path.read_text()))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/] Failed to read job {args.job_path}: {e}")
        return 1
    except CredentialsError as e:
        console.print(f"[red]Error ({e.kind.value}):[/] {e}")
        return 1

    manager = CredentialsManager(job)
    exit_code = 0
    try:
        credentials = manager.prepare()
        if credentials is None:
            console.print("[yellow]Simulator build, no credentials needed")
        else:
            print_credentials(credentials)
    except CredentialsError as e:
        console.print(f"[red]Error ({e.kind.value}):[/] {e}")
        exit_code = 1

    if not args.keep:
        try:
            manager.clean_up()
        except CredentialsError as e:
            console.print(f"[red]Error ({e.kind.value}):[/] {e}")
            exit_code = 1

    return exit_code
