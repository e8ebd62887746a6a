"""Error and warning types raised along the signing and build chain.

Every fatal error carries the process exit code the CLI returns for it, so
CI logs can tell a broken download from a missing signing identity without
reading the output.
"""

from typing import Optional


class SigningError(Exception):
    """Base class for fatal pipeline errors"""

    exit_code = 1


class ConfigurationError(SigningError):
    exit_code = 2


class DownloadError(SigningError):
    """A profile, certificate or key could not be fetched"""

    exit_code = 3

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to download {source}: {reason}")


class DecodeError(SigningError):
    """The provisioning profile container could not be read"""

    exit_code = 4

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to decode provisioning profile {path}: {reason}")


class MissingFieldError(SigningError):
    """A required value was absent after every extraction tier"""

    exit_code = 5

    def __init__(self, field: str, source: Optional[str] = None):
        self.field = field
        self.source = source
        message = f"Missing required field: {field}"
        if source:
            message += f" ({source})"
        super().__init__(message)


class NoSigningIdentityError(SigningError):
    exit_code = 6

    def __init__(self, keychain: Optional[str] = None):
        self.keychain = keychain
        location = f"keychain {keychain}" if keychain else "the keychain search list"
        super().__init__(
            f"No valid distribution signing identity found in {location}"
        )


class BundleIdMismatchError(SigningError):
    """Raised instead of a warning when mismatch handling is strict"""

    exit_code = 7

    def __init__(self, env_bundle_id: str, profile_bundle_id: str):
        self.env_bundle_id = env_bundle_id
        self.profile_bundle_id = profile_bundle_id
        super().__init__(
            f"Bundle ID {env_bundle_id} does not match provisioning profile "
            f"bundle ID {profile_bundle_id}"
        )


class ProjectConfigError(SigningError):
    exit_code = 8


class BuildError(SigningError):
    """An external build step failed"""

    exit_code = 9

    def __init__(self, step: str, reason: str, log_path=None):
        self.step = step
        self.reason = reason
        self.log_path = log_path
        message = f"{step} failed: {reason}"
        if log_path:
            message += f" (see {log_path})"
        super().__init__(message)


class SigningWarning(UserWarning):
    """Non-fatal signing inconsistency. The build continues."""


class BundleIdMismatchWarning(SigningWarning):
    def __init__(self, env_bundle_id: str, profile_bundle_id: str):
        self.env_bundle_id = env_bundle_id
        self.profile_bundle_id = profile_bundle_id
        super().__init__(
            f"Bundle ID mismatch: using {env_bundle_id} but provisioning profile "
            f"expects {profile_bundle_id}"
        )


class TeamIdMismatchWarning(SigningWarning):
    def __init__(self, env_team_id: str, profile_team_id: str):
        self.env_team_id = env_team_id
        self.profile_team_id = profile_team_id
        super().__init__(
            f"Team ID mismatch: using {env_team_id} but provisioning profile "
            f"belongs to {profile_team_id}"
        )
