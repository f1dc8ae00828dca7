import base64
import datetime
import hashlib
import plistlib
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from signstage.src.core import keychain as keychain_mod
from signstage.src.core import provisioning_profile as profile_mod
from signstage.src.core.errors import CredentialsError, ErrorKind

TEAM_ID = "ABCDE12345"


class SigningMaterial:
    """A self-signed certificate packed the way build secrets deliver it."""

    def __init__(self, common_name: str, password: str = "secret"):
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        now = datetime.datetime.now(datetime.timezone.utc)
        self.certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=365))
            .sign(key, hashes.SHA256())
        )
        self.common_name = common_name
        self.password = password
        self.der = self.certificate.public_bytes(serialization.Encoding.DER)
        self.fingerprint = hashlib.sha1(self.der).hexdigest().upper()
        self.p12 = pkcs12.serialize_key_and_certificates(
            name=b"distribution",
            key=key,
            cert=self.certificate,
            cas=None,
            encryption_algorithm=serialization.BestAvailableEncryption(
                password.encode("utf-8")
            ),
        )

    @property
    def p12_base64(self) -> str:
        return base64.b64encode(self.p12).decode("ascii")


def make_profile_plist(
    bundle_identifier: str,
    certificates: List[bytes],
    team_id: str = TEAM_ID,
    provisions_all_devices: Optional[bool] = None,
    provisioned_devices: Optional[List[str]] = None,
    name: str = "Example Profile",
    uuid: str = "11111111-2222-3333-4444-555555555555",
) -> bytes:
    plist: Dict[str, Any] = {
        "Name": name,
        "UUID": uuid,
        "TeamIdentifier": [team_id],
        "DeveloperCertificates": certificates,
        "Entitlements": {"application-identifier": f"{team_id}.{bundle_identifier}"},
    }
    if provisions_all_devices is not None:
        plist["ProvisionsAllDevices"] = provisions_all_devices
    if provisioned_devices is not None:
        plist["ProvisionedDevices"] = provisioned_devices
    return plistlib.dumps(plist)


def target_credentials(material: SigningMaterial, profile: bytes) -> Dict[str, Any]:
    """Build-job payload for a single target"""
    return {
        "provisioningProfileBase64": base64.b64encode(profile).decode("ascii"),
        "distributionCertificate": {
            "dataBase64": material.p12_base64,
            "password": material.password,
        },
    }


class FakeSecurity:
    """Stands in for run_command, emulating the `security` tool.

    `security cms -D` echoes the file back, so a "signed" profile in tests is
    simply the plist payload. Imported certificates become identities that
    `find-identity` reports.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.keychains: List[str] = ["/Users/ci/Library/Keychains/login.keychain-db"]
        self.identities: List[tuple] = []
        self.cms_inputs: List[bytes] = []
        self.failures: Dict[str, List[str]] = {}

    def fail(self, subcommand: str, stderr: str, times: int = 1) -> None:
        """Make the next `times` invocations of `subcommand` exit non-zero"""
        self.failures.setdefault(subcommand, []).extend([stderr] * times)

    def fail_nth(self, subcommand: str, nth: int, stderr: str) -> None:
        """Make only the nth (1-based) invocation of `subcommand` fail"""
        self.failures.setdefault(subcommand, [])
        queue = self.failures[subcommand]
        queue.extend([""] * (nth - len(queue)))
        queue[nth - 1] = stderr

    def count(self, subcommand: str) -> int:
        return sum(1 for call in self.calls if call[1] == subcommand)

    def __call__(self, cmd: List[str]) -> subprocess.CompletedProcess:
        assert cmd[0] == "security"
        self.calls.append(list(cmd))
        subcommand = cmd[1]

        pending = self.failures.get(subcommand)
        if pending:
            stderr = pending.pop(0)
            if stderr:
                raise CredentialsError(
                    ErrorKind.EXTERNAL_TOOL,
                    stderr.strip(),
                    command=cmd,
                    returncode=1,
                    stderr=stderr.strip(),
                )

        stdout = b""
        if subcommand == "list-keychains":
            if "-s" in cmd:
                self.keychains = cmd[cmd.index("-s") + 1 :]
            else:
                stdout = "".join(f'    "{k}"\n' for k in self.keychains).encode()
        elif subcommand == "delete-keychain":
            self.keychains = [k for k in self.keychains if k != cmd[2]]
        elif subcommand == "import":
            password = cmd[cmd.index("-P") + 1]
            _, cert, _ = pkcs12.load_key_and_certificates(
                Path(cmd[2]).read_bytes(), password.encode("utf-8")
            )
            common_name = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
            fingerprint = cert.fingerprint(hashes.SHA1()).hex().upper()
            self.identities.append((fingerprint, common_name))
        elif subcommand == "find-identity":
            lines = [
                f'  {i}) {fingerprint} "{name}"'
                for i, (fingerprint, name) in enumerate(self.identities, start=1)
            ]
            lines.append(f"     {len(self.identities)} valid identities found")
            stdout = ("\n".join(lines) + "\n").encode()
        elif subcommand == "cms":
            data = Path(cmd[cmd.index("-i") + 1]).read_bytes()
            self.cms_inputs.append(data)
            stdout = data

        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr=b"")


@pytest.fixture
def security(monkeypatch) -> FakeSecurity:
    fake = FakeSecurity()
    monkeypatch.setattr(keychain_mod, "run_command", fake)
    monkeypatch.setattr(profile_mod, "run_command", fake)
    return fake


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep tests away from the real home directory configuration"""
    monkeypatch.setenv("SIGNSTAGE_CONFIG", str(tmp_path / "no-config.toml"))
    monkeypatch.setenv("SIGNSTAGE_PROVISIONING_PROFILES_DIR", str(tmp_path / "profiles"))
    monkeypatch.setenv("SIGNSTAGE_TEMP_DIR", str(tmp_path / "tmp"))


@pytest.fixture(scope="session")
def app_material() -> SigningMaterial:
    return SigningMaterial(f"Apple Distribution: Example Inc ({TEAM_ID})")


@pytest.fixture(scope="session")
def other_material() -> SigningMaterial:
    return SigningMaterial(f"Apple Distribution: Example Inc ({TEAM_ID})", password="other")
