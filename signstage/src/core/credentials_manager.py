import base64
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from signstage.logger import get_console
from signstage.src.core import distribution_certificate
from signstage.src.core.errors import (
    CredentialsError,
    ErrorKind,
    configuration_error,
)
from signstage.src.core.keychain import Keychain
from signstage.src.core.provisioning_profile import (
    DistributionType,
    ProvisioningProfile,
    ProvisioningProfileData,
)
from signstage.src.job.job import Job, TargetCredentials
from signstage.src.utils.config_loader import get_temp_dir

TargetProvisioningProfiles = Dict[str, ProvisioningProfileData]


@dataclass
class Credentials:
    """Everything downstream build steps need to sign the app"""

    application_target_provisioning_profile: ProvisioningProfile
    keychain_path: str
    target_provisioning_profiles: TargetProvisioningProfiles
    distribution_type: DistributionType
    team_id: str


class CredentialsManager:
    """Stages the keychain and provisioning profiles for one iOS build.

    The manager owns every resource it creates. If preparing any target fails,
    all of them are destroyed and the original error is re-raised. Call
    ``clean_up`` once the build is done (or use the manager as a context
    manager).
    """

    keychain_class = Keychain
    provisioning_profile_class = ProvisioningProfile

    def __init__(
        self,
        job: Job,
        temp_dir: Optional[Path] = None,
        profiles_dir: Optional[Path] = None,
    ):
        self.console = get_console()
        self.job = job
        self.temp_dir = Path(temp_dir) if temp_dir else get_temp_dir()
        self.profiles_dir = profiles_dir
        self.keychain: Optional[Keychain] = None
        self.provisioning_profiles: List[ProvisioningProfile] = []
        self._cleaned_up = False

    def __enter__(self) -> "CredentialsManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clean_up()

    def prepare(self) -> Optional[Credentials]:
        """Create the keychain and install every target's credentials"""
        if self.job.simulator:
            return None

        if self.job.secrets is None:
            raise configuration_error("Secrets must be defined for non-custom builds")
        build_credentials = self.job.secrets.build_credentials
        if not build_credentials:
            raise configuration_error("credentials are required for an iOS build")

        self.console.log("[bold]Preparing credentials")
        target_provisioning_profiles: TargetProvisioningProfiles = {}
        try:
            self.console.log("[yellow]Creating keychain")
            self.keychain = self.keychain_class(temp_dir=self.temp_dir)
            self.keychain.create()

            # One at a time: all targets share the keychain
            for target, target_credentials in build_credentials.items():
                provisioning_profile = self._prepare_target_credentials(
                    target, target_credentials
                )
                self.provisioning_profiles.append(provisioning_profile)
                target_provisioning_profiles[target] = provisioning_profile.data
        except BaseException as err:
            self._roll_back(err)
            raise

        self._warn_on_inconsistent_targets()
        application_target_provisioning_profile = (
            self._get_application_target_provisioning_profile()
        )
        application_data = application_target_provisioning_profile.data
        self.console.log(
            f"[green]Credentials ready.[/] Application target: "
            f"[blue]{application_data.target}[/] ({application_data.bundle_identifier})"
        )

        return Credentials(
            application_target_provisioning_profile=application_target_provisioning_profile,
            keychain_path=self.keychain.data.path,
            target_provisioning_profiles=target_provisioning_profiles,
            distribution_type=application_data.distribution_type,
            team_id=application_data.team_id,
        )

    def clean_up(self) -> None:
        """Destroy the keychain and every installed provisioning profile"""
        if self._cleaned_up or (
            self.keychain is None and not self.provisioning_profiles
        ):
            return

        errors: List[Exception] = []
        if self.keychain is not None:
            try:
                self.keychain.destroy()
            except Exception as e:
                self.console.log(f"[red]Failed to destroy keychain:[/] {e}")
                errors.append(e)
        for provisioning_profile in self.provisioning_profiles:
            try:
                provisioning_profile.destroy()
            except Exception as e:
                self.console.log(
                    f"[red]Failed to remove provisioning profile for target "
                    f"'{provisioning_profile.target}':[/] {e}"
                )
                errors.append(e)
        self._cleaned_up = True

        if errors:
            raise CredentialsError(
                ErrorKind.CLEANUP,
                f"Failed to clean up {len(errors)} credential resource(s): {errors[0]}",
                errors=errors,
            ) from errors[0]

    def _roll_back(self, err: BaseException) -> None:
        """Clean up after a failed prepare without masking ``err``"""
        self.console.log(f"[red]Preparing credentials failed:[/] {err}")
        try:
            self.clean_up()
        except CredentialsError as cleanup_err:
            err.add_note(f"Cleaning up credentials also failed: {cleanup_err}")

    def _prepare_target_credentials(
        self, target: str, target_credentials: TargetCredentials
    ) -> ProvisioningProfile:
        assert self.keychain is not None, "Keychain should be initialized"
        certificate = target_credentials.distribution_certificate

        self.console.log(f"[bold]Preparing credentials for target '{target}'")
        self.console.log("[yellow]Getting distribution certificate fingerprint and common name")
        certificate_fingerprint = distribution_certificate.get_fingerprint(certificate)
        certificate_common_name = distribution_certificate.get_common_name(certificate)
        self.console.log(
            f'[blue]Fingerprint[/] = "{certificate_fingerprint}", '
            f"[blue]common name[/] = {certificate_common_name}"
        )

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        dist_cert_path = self.temp_dir / f"{uuid.uuid4()}.p12"
        self.console.log(f"[yellow]Writing distribution certificate to:[/] {dist_cert_path}")
        dist_cert_path.write_bytes(base64.b64decode(certificate.data_base64))
        try:
            self.console.log("[yellow]Importing distribution certificate into the keychain")
            self.keychain.import_certificate(str(dist_cert_path), certificate.password)
        finally:
            dist_cert_path.unlink(missing_ok=True)

        self.console.log("[yellow]Initializing provisioning profile")
        provisioning_profile = self.provisioning_profile_class(
            base64.b64decode(target_credentials.provisioning_profile_base64),
            self.keychain.data.path,
            target,
            certificate_common_name,
            profiles_dir=self.profiles_dir,
        )
        provisioning_profile.init()

        self.console.log(
            "[yellow]Validating whether the distribution certificate has been imported successfully"
        )
        try:
            self.keychain.ensure_certificate_imported(
                provisioning_profile.data.team_id, certificate_fingerprint
            )

            self.console.log(
                "[yellow]Verifying whether the distribution certificate and provisioning profile match"
            )
            provisioning_profile.verify_certificate(certificate_fingerprint)
        except BaseException as err:
            # Not recorded yet, so clean_up() wouldn't see it
            try:
                provisioning_profile.destroy()
            except Exception as destroy_err:
                self.console.log(
                    f"[red]Failed to remove provisioning profile for target '{target}':[/] "
                    f"{destroy_err}"
                )
                err.add_note(
                    f"Removing the provisioning profile for target '{target}' also "
                    f"failed: {destroy_err}"
                )
            raise

        return provisioning_profile

    def _warn_on_inconsistent_targets(self) -> None:
        team_ids = {p.data.team_id for p in self.provisioning_profiles}
        distribution_types = {p.data.distribution_type for p in self.provisioning_profiles}
        if len(team_ids) > 1:
            self.console.log(
                f"[yellow]Warning: targets use different team ids: {sorted(team_ids)}"
            )
        if len(distribution_types) > 1:
            self.console.log(
                "[yellow]Warning: targets use different distribution types: "
                f"{sorted(t.value for t in distribution_types)}"
            )

    def _get_application_target_provisioning_profile(self) -> ProvisioningProfile:
        # Sorting works because sibling targets share the app's bundle id as prefix.
        # TODO: take the application target from the build manifest instead
        return sorted(
            self.provisioning_profiles, key=lambda p: p.data.bundle_identifier
        )[0]
