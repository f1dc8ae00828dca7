import hashlib
import plistlib
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from signstage.logger import get_console
from signstage.src.core.errors import parse_error, trust_mismatch_error
from signstage.src.utils.config_loader import get_provisioning_profiles_dir
from signstage.src.utils.process import run_command


class DistributionType(Enum):
    AD_HOC = "ad-hoc"
    APP_STORE = "app-store"
    ENTERPRISE = "enterprise"


class ProfileState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADED = "loaded"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class ProvisioningProfileData:
    path: str
    target: str
    bundle_identifier: str
    team_id: str
    uuid: str
    name: str
    developer_certificate: bytes
    certificate_common_name: str
    distribution_type: DistributionType


def resolve_distribution_type(plist: Dict[str, Any]) -> DistributionType:
    """Enterprise wins over ad hoc, ad hoc over App Store"""
    if plist.get("ProvisionsAllDevices") is True:
        return DistributionType.ENTERPRISE
    if plist.get("ProvisionedDevices"):
        return DistributionType.AD_HOC
    return DistributionType.APP_STORE


def _require(plist: Dict[str, Any], key: str, expected_type: type) -> Any:
    value = plist.get(key)
    if not isinstance(value, expected_type):
        raise parse_error(
            f"Provisioning profile is malformed: '{key}' is missing or not a "
            f"{expected_type.__name__}"
        )
    return value


class ProvisioningProfile:
    """A signed provisioning profile installed for one build target.

    Goes through uninitialized -> loaded (``init``) -> destroyed (``destroy``).
    The keychain is only referenced by path, the owner of this profile is
    responsible for the keychain's lifetime.
    """

    def __init__(
        self,
        profile: bytes,
        keychain_path: str,
        target: str,
        certificate_common_name: str,
        profiles_dir: Optional[Path] = None,
    ):
        self.console = get_console()
        self.profile = profile
        self.keychain_path = keychain_path
        self.target = target
        self.certificate_common_name = certificate_common_name
        self.profiles_dir = (
            Path(profiles_dir) if profiles_dir else get_provisioning_profiles_dir()
        )
        self.state = ProfileState.UNINITIALIZED
        self._path: Optional[Path] = None
        self._data: Optional[ProvisioningProfileData] = None

    @property
    def data(self) -> ProvisioningProfileData:
        if self.state is not ProfileState.LOADED or self._data is None:
            raise RuntimeError(
                f"Provisioning profile for target '{self.target}' is {self.state.value}"
            )
        return self._data

    def init(self) -> None:
        """Write the profile to disk, decode it and parse its fields"""
        if self.state is not ProfileState.UNINITIALIZED:
            raise RuntimeError(
                f"Provisioning profile for target '{self.target}' is already {self.state.value}"
            )

        self.profiles_dir.mkdir(parents=True, exist_ok=True)
        path = self.profiles_dir / f"{uuid.uuid4()}.mobileprovision"
        self.console.log(f"[yellow]Writing provisioning profile to:[/] {path}")
        path.write_bytes(self.profile)

        try:
            plist = self._load(path)
            self._data = self._parse(path, plist)
        except Exception as err:
            # Never recorded by the caller, so nobody else would remove it
            try:
                path.unlink(missing_ok=True)
            except OSError as unlink_err:
                self.console.log(f"[red]Failed to remove {path}:[/] {unlink_err}")
                err.add_note(f"Removing {path} also failed: {unlink_err}")
            raise
        self._path = path
        self.state = ProfileState.LOADED
        self.console.log(
            f"[green]Loaded provisioning profile[/] [blue]{self._data.name}[/] "
            f"({self._data.distribution_type.value}) for target '{self.target}'"
        )

    def _load(self, path: Path) -> Dict[str, Any]:
        """Decode the CMS envelope with the keychain and parse the plist"""
        result = run_command(
            ["security", "cms", "-D", "-k", self.keychain_path, "-i", str(path)]
        )
        try:
            plist = plistlib.loads(result.stdout)
        except Exception as e:
            raise parse_error(f"Error when parsing plist: {e}")
        if not isinstance(plist, dict):
            raise parse_error("Error when parsing plist: top level object is not a dict")
        return plist

    def _parse(self, path: Path, plist: Dict[str, Any]) -> ProvisioningProfileData:
        entitlements = _require(plist, "Entitlements", dict)
        application_identifier = _require(entitlements, "application-identifier", str)
        # "<TEAMID>.<bundle.id>"
        _, _, bundle_identifier = application_identifier.partition(".")
        if not bundle_identifier:
            raise parse_error(
                f"Provisioning profile is malformed: invalid application-identifier "
                f"'{application_identifier}'"
            )

        team_identifiers = _require(plist, "TeamIdentifier", list)
        certificates = _require(plist, "DeveloperCertificates", list)
        if not team_identifiers or not certificates:
            raise parse_error(
                "Provisioning profile is malformed: TeamIdentifier and "
                "DeveloperCertificates must not be empty"
            )
        developer_certificate = certificates[0]
        if not isinstance(developer_certificate, (bytes, bytearray)):
            raise parse_error(
                "Provisioning profile is malformed: developer certificate is not data"
            )

        return ProvisioningProfileData(
            path=str(path),
            target=self.target,
            bundle_identifier=bundle_identifier,
            team_id=str(team_identifiers[0]),
            uuid=_require(plist, "UUID", str),
            name=_require(plist, "Name", str),
            developer_certificate=bytes(developer_certificate),
            certificate_common_name=self.certificate_common_name,
            distribution_type=resolve_distribution_type(plist),
        )

    def verify_certificate(self, fingerprint: str) -> None:
        """Check the profile embeds exactly the certificate with this fingerprint"""
        profile_fingerprint = self.get_developer_certificate_fingerprint()
        if profile_fingerprint != fingerprint:
            raise trust_mismatch_error(expected=fingerprint, actual=profile_fingerprint)

    def get_developer_certificate_fingerprint(self) -> str:
        return hashlib.sha1(self.data.developer_certificate).hexdigest().upper()

    def destroy(self) -> None:
        """Remove the profile file from disk"""
        if self._path is None:
            self.console.log(
                f"[yellow]Provisioning profile for target '{self.target}' hasn't been "
                "written yet, nothing to destroy"
            )
            return
        if self.state is ProfileState.DESTROYED:
            return

        self.console.log(f"[yellow]Removing provisioning profile:[/] {self._path}")
        self._path.unlink(missing_ok=True)
        self.state = ProfileState.DESTROYED
