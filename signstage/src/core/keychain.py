import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from signstage.logger import get_console
from signstage.src.core.errors import CredentialsError, ErrorKind
from signstage.src.utils.config_loader import get_temp_dir
from signstage.src.utils.process import run_command

_IDENTITY_LINE_RE = re.compile(r'^\s*\d+\)\s+([0-9A-Fa-f]{40})\s+"(.+)"\s*$')


@dataclass(frozen=True)
class KeychainData:
    path: str
    password: str


class Keychain:
    """Ephemeral file-backed keychain used for a single build"""

    def __init__(self, temp_dir: Optional[Path] = None):
        self.console = get_console()
        self.temp_dir = Path(temp_dir) if temp_dir else get_temp_dir()
        self._data: Optional[KeychainData] = None
        self._created = False
        self._destroyed = False

    @property
    def data(self) -> KeychainData:
        if not self._created or self._data is None:
            raise RuntimeError("Keychain is not created")
        return self._data

    def create(self) -> str:
        """Create, unlock and configure a new keychain; return its path"""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        path = str(self.temp_dir / f"{uuid.uuid4()}.keychain")
        password = uuid.uuid4().hex
        self.console.log(f"[yellow]Creating keychain:[/] {path}")

        run_command(["security", "create-keychain", "-p", password, path])
        # From here on destroy() has something to remove
        self._data = KeychainData(path=path, password=password)
        self._created = True

        run_command(["security", "unlock-keychain", "-p", password, path])
        run_command(
            [
                "security",
                "set-keychain-settings",
                "-lut",  # lock on sleep, user lock, with timeout
                "21600",  # 6 hour timeout
                path,
            ]
        )

        # Put our keychain first so codesign finds the identity
        keychains = [k for k in self._get_keychain_list() if path not in k]
        run_command(["security", "list-keychains", "-d", "user", "-s", path, *keychains])

        self.console.log(f"[green]Created keychain:[/] {path}")
        return path

    def import_certificate(self, p12_path: str, password: str) -> None:
        """Import a PKCS#12 bundle into the keychain"""
        data = self.data
        self.console.log(f"[yellow]Importing certificate:[/] {p12_path}")
        run_command(
            [
                "security",
                "import",
                str(p12_path),
                "-P",
                password,
                "-A",  # Allow all applications to access the keys
                "-f",
                "pkcs12",
                "-T",  # Specify trusted applications
                "/usr/bin/codesign",
                "-T",
                "/usr/bin/security",
                "-k",
                data.path,
            ]
        )
        # Allow codesign to access keychain without prompting
        run_command(
            [
                "security",
                "set-key-partition-list",
                "-S",
                "apple-tool:,apple:,codesign:",
                "-s",
                "-k",
                data.password,
                data.path,
            ]
        )

    def ensure_certificate_imported(self, team_id: str, fingerprint: str) -> None:
        """Fail unless a code signing identity with this fingerprint is usable"""
        identities = self.list_identities()
        for identity_fingerprint, name in identities:
            if identity_fingerprint == fingerprint.upper() and f"({team_id})" in name:
                self.console.log(f"[green]Found signing identity:[/] {name}")
                return
        raise CredentialsError(
            ErrorKind.CONSISTENCY,
            f"Distribution certificate with fingerprint {fingerprint} hasn't been "
            f"imported successfully (team id {team_id})",
        )

    def list_identities(self) -> List[Tuple[str, str]]:
        """Valid code signing identities in this keychain as (sha1, name)"""
        result = run_command(
            ["security", "find-identity", "-v", "-p", "codesigning", self.data.path]
        )
        identities = []
        for line in result.stdout.decode(errors="replace").splitlines():
            m = _IDENTITY_LINE_RE.match(line)
            if m:
                identities.append((m.group(1).upper(), m.group(2)))
        return identities

    def destroy(self) -> None:
        """Remove the keychain from the search list and from disk"""
        if not self._created or self._data is None:
            self.console.log("[yellow]Keychain hasn't been created yet, nothing to destroy")
            return
        if self._destroyed:
            return

        path = self._data.path
        self.console.log(f"[yellow]Destroying keychain:[/] {path}")
        try:
            keychains = [k for k in self._get_keychain_list() if path not in k]
            run_command(["security", "list-keychains", "-d", "user", "-s", *keychains])
        finally:
            # Always delete the keychain
            run_command(["security", "delete-keychain", path])
            self._destroyed = True
        self.console.log("[green]Cleaned up keychain[/]")

    def _get_keychain_list(self) -> List[str]:
        """Get list of current user keychains"""
        result = run_command(["security", "list-keychains", "-d", "user"])
        return [
            k.strip().strip('"')
            for k in result.stdout.decode(errors="replace").splitlines()
            if k.strip()
        ]
