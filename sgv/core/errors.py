"""Process exit codes used by the ``sgv`` command line."""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    The values are part of the CLI contract (CI scripts check them):
    - 0: Success
    - 1: User error (bad input, invalid version, refused step)
    - 2: Environment error (missing token, dirty tree, wrong branch)
    - 3: Build error (build or compression failed)
    - 4: Network error (remote API or storage unreachable/rejected)
    - 5: I/O error (file not found, permission denied)
    - 6: VCS error (git command failed)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5
    VCS_ERROR = 6

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
