import subprocess
from typing import List

from signstage.src.core.errors import CredentialsError, ErrorKind


def run_command(cmd: List[str]) -> subprocess.CompletedProcess:
    """Run an external command to completion and return the result.

    stdout/stderr are captured as bytes. A non-zero exit raises an
    EXTERNAL_TOOL error whose message is the trimmed stderr.
    """
    result = subprocess.run(cmd, capture_output=True, check=False)
    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace").strip()
        raise CredentialsError(
            ErrorKind.EXTERNAL_TOOL,
            stderr or f"{cmd[0]} exited with code {result.returncode}",
            command=cmd,
            returncode=result.returncode,
            stderr=stderr,
        )
    return result
