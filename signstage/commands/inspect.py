import tempfile
from pathlib import Path
from rich.table import Table

from signstage.logger import get_console
from signstage.src.core.errors import CredentialsError
from signstage.src.core.provisioning_profile import ProvisioningProfile

console = get_console()


def run_inspect_command(args) -> int:
    """Decode a provisioning profile into a scratch directory and print it."""
    if not args.profile_path.exists():
        console.print(f"[red]Error:[/] Provisioning profile not found: {args.profile_path}")
        return 1

    with tempfile.TemporaryDirectory(prefix="signstage-inspect-") as scratch_dir:
        profile = ProvisioningProfile(
            args.profile_path.read_bytes(),
            args.keychain,
            args.target,
            certificate_common_name="",
            profiles_dir=Path(scratch_dir),
        )
        try:
            profile.init()
        except CredentialsError as e:
            console.print(f"[red]Error ({e.kind.value}):[/] {e}")
            return 1

        data = profile.data
        table = Table(title=f"Provisioning profile: {args.profile_path.name}")
        table.add_column("Field")
        table.add_column("Value")
        table.add_row("Name", data.name)
        table.add_row("UUID", data.uuid)
        table.add_row("Team ID", data.team_id)
        table.add_row("Bundle ID", data.bundle_identifier)
        table.add_row("Distribution", data.distribution_type.value)
        table.add_row("Certificate SHA-1", profile.get_developer_certificate_fingerprint())
        console.print(table)

        profile.destroy()
    return 0
