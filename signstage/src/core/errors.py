from enum import Enum
from typing import List, Optional


class ErrorKind(Enum):
    """Why credential staging failed"""

    CONFIGURATION = "configuration"
    EXTERNAL_TOOL = "external-tool"
    PARSE = "parse"
    TRUST_MISMATCH = "trust-mismatch"
    CONSISTENCY = "consistency"
    CLEANUP = "cleanup"


class CredentialsError(Exception):
    """Single error type for credential staging; branch on ``kind``.

    Extra attributes are only populated for the kinds that produce them:

    * ``EXTERNAL_TOOL``: ``command``, ``returncode``, ``stderr``
    * ``TRUST_MISMATCH``: ``expected_fingerprint``, ``actual_fingerprint``
    * ``CLEANUP``: ``errors`` (every failure raised while tearing down)
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
        expected_fingerprint: Optional[str] = None,
        actual_fingerprint: Optional[str] = None,
        errors: Optional[List[BaseException]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.expected_fingerprint = expected_fingerprint
        self.actual_fingerprint = actual_fingerprint
        self.errors = errors or []

    def __repr__(self) -> str:
        return f"CredentialsError(kind={self.kind.value!r}, message={self.message!r})"


def configuration_error(message: str) -> CredentialsError:
    return CredentialsError(ErrorKind.CONFIGURATION, message)


def parse_error(message: str) -> CredentialsError:
    return CredentialsError(ErrorKind.PARSE, message)


def trust_mismatch_error(expected: str, actual: str) -> CredentialsError:
    return CredentialsError(
        ErrorKind.TRUST_MISMATCH,
        "Provisioning profile and distribution certificate don't match. "
        f"Profile's certificate fingerprint = {actual}, "
        f"distribution certificate fingerprint = {expected}",
        expected_fingerprint=expected,
        actual_fingerprint=actual,
    )
