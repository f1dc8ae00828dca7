from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from signstage.src.core.errors import configuration_error


@dataclass
class DistributionCertificate:
    """PKCS#12 bundle as delivered in the build secrets"""

    data_base64: str
    password: str

    @classmethod
    def from_dict(cls, data: Any, where: str) -> "DistributionCertificate":
        if not isinstance(data, dict):
            raise configuration_error(f"{where} must be an object")
        data_base64 = data.get("dataBase64")
        if not isinstance(data_base64, str) or not data_base64:
            raise configuration_error(f"{where}.dataBase64 is required")
        # Empty password is allowed, a missing one is not
        password = data.get("password")
        if not isinstance(password, str):
            raise configuration_error(f"{where}.password is required")
        return cls(data_base64=data_base64, password=password)


@dataclass
class TargetCredentials:
    """Certificate and provisioning profile for one build target"""

    provisioning_profile_base64: str
    distribution_certificate: DistributionCertificate

    @classmethod
    def from_dict(cls, data: Any, where: str) -> "TargetCredentials":
        if not isinstance(data, dict):
            raise configuration_error(f"{where} must be an object")
        profile = data.get("provisioningProfileBase64")
        if not isinstance(profile, str) or not profile:
            raise configuration_error(f"{where}.provisioningProfileBase64 is required")
        if "distributionCertificate" not in data:
            raise configuration_error(f"{where}.distributionCertificate is required")
        return cls(
            provisioning_profile_base64=profile,
            distribution_certificate=DistributionCertificate.from_dict(
                data["distributionCertificate"], f"{where}.distributionCertificate"
            ),
        )


@dataclass
class BuildSecrets:
    build_credentials: Optional[Dict[str, TargetCredentials]] = None

    @classmethod
    def from_dict(cls, data: Any) -> "BuildSecrets":
        if not isinstance(data, dict):
            raise configuration_error("secrets must be an object")
        raw = data.get("buildCredentials")
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise configuration_error("secrets.buildCredentials must be an object")
        build_credentials = {
            target: TargetCredentials.from_dict(
                target_data, f"secrets.buildCredentials.{target}"
            )
            for target, target_data in raw.items()
        }
        return cls(build_credentials=build_credentials)


@dataclass
class Job:
    """The parts of an iOS build job relevant to credential staging"""

    simulator: bool = False
    secrets: Optional[BuildSecrets] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Build a job from its camelCase JSON payload."""
        if not isinstance(data, dict):
            raise configuration_error("job must be an object")
        simulator = data.get("simulator", False)
        if not isinstance(simulator, bool):
            raise configuration_error("simulator must be a boolean")
        secrets = data.get("secrets")
        extra = {k: v for k, v in data.items() if k not in ("simulator", "secrets")}
        return cls(
            simulator=simulator,
            secrets=BuildSecrets.from_dict(secrets) if secrets is not None else None,
            extra=extra,
        )
