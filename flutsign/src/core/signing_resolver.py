"""Reconcile environment-supplied signing values with the provisioning profile.

This module is pure: no filesystem, network or subprocess access. The
caller decides what to do with the returned warnings.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from flutsign.src.core.errors import (
    BundleIdMismatchError,
    BundleIdMismatchWarning,
    MissingFieldError,
    SigningWarning,
    TeamIdMismatchWarning,
)

# Bundle IDs shipped with the template project. Seeing one of these in the
# environment means nobody configured the app, so the profile wins.
# com.test.app is deliberately absent: older build scripts treated it as a
# placeholder, but it is a real ID and must stay authoritative.
DEFAULT_PLACEHOLDER_BUNDLE_IDS = (
    "com.example.sampleprojects.sampleProject",
    "com.example.quikapp",
)

DEFAULT_IDENTITY_NAME = "iPhone Distribution"


class MismatchPolicy(Enum):
    PERMISSIVE = "permissive"  # Warn and keep the environment value
    STRICT = "strict"  # Abort the build


class ValueSource(Enum):
    ENVIRONMENT = "environment"
    PROFILE = "profile"


@dataclass(frozen=True)
class ResolvedSigningConfig:
    """Final signing values for one build"""

    bundle_id: str
    team_id: str
    profile_uuid: str
    cert_identity_name: str = DEFAULT_IDENTITY_NAME
    bundle_id_source: ValueSource = ValueSource.PROFILE
    team_id_source: ValueSource = ValueSource.PROFILE


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def is_placeholder_bundle_id(
    bundle_id: Optional[str],
    placeholder_bundle_ids: Iterable[str] = DEFAULT_PLACEHOLDER_BUNDLE_IDS,
) -> bool:
    """True when the value is unset or one of the template identifiers"""
    bundle_id = _clean(bundle_id)
    return not bundle_id or bundle_id in set(placeholder_bundle_ids)


def resolve_bundle_id(
    env_bundle_id: Optional[str],
    profile_bundle_id: Optional[str],
    placeholder_bundle_ids: Iterable[str] = DEFAULT_PLACEHOLDER_BUNDLE_IDS,
) -> Tuple[str, ValueSource, Optional[BundleIdMismatchWarning]]:
    env_bundle_id = _clean(env_bundle_id)
    profile_bundle_id = _clean(profile_bundle_id)

    if is_placeholder_bundle_id(env_bundle_id, placeholder_bundle_ids):
        if profile_bundle_id:
            return profile_bundle_id, ValueSource.PROFILE, None
        # Nothing better available; keep the placeholder so the error names it
        return env_bundle_id, ValueSource.ENVIRONMENT, None

    warning = None
    if profile_bundle_id and env_bundle_id != profile_bundle_id:
        warning = BundleIdMismatchWarning(env_bundle_id, profile_bundle_id)
    return env_bundle_id, ValueSource.ENVIRONMENT, warning


def resolve_team_id(
    env_team_id: Optional[str], profile_team_id: Optional[str]
) -> Tuple[str, ValueSource, Optional[TeamIdMismatchWarning]]:
    env_team_id = _clean(env_team_id)
    profile_team_id = _clean(profile_team_id)

    if not env_team_id:
        return profile_team_id, ValueSource.PROFILE, None

    warning = None
    if profile_team_id and env_team_id != profile_team_id:
        warning = TeamIdMismatchWarning(env_team_id, profile_team_id)
    return env_team_id, ValueSource.ENVIRONMENT, warning


def resolve_signing(
    env_bundle_id: Optional[str],
    env_team_id: Optional[str],
    profile_bundle_id: Optional[str],
    profile_team_id: Optional[str],
    profile_uuid: Optional[str],
    placeholder_bundle_ids: Iterable[str] = DEFAULT_PLACEHOLDER_BUNDLE_IDS,
    identity_name: str = DEFAULT_IDENTITY_NAME,
    policy: MismatchPolicy = MismatchPolicy.PERMISSIVE,
) -> Tuple[ResolvedSigningConfig, List[SigningWarning]]:
    """Decide the effective bundle ID, team ID and profile UUID.

    Bundle ID: an unset or placeholder environment value is replaced by the
    profile value. Any other environment value is kept; if it differs from
    the profile a BundleIdMismatchWarning is returned, or
    BundleIdMismatchError is raised under MismatchPolicy.STRICT.

    Team ID: same precedence without the placeholder rule.

    Raises MissingFieldError when a final value is empty.
    """
    warnings: List[SigningWarning] = []

    bundle_id, bundle_source, bundle_warning = resolve_bundle_id(
        env_bundle_id, profile_bundle_id, placeholder_bundle_ids
    )
    if bundle_warning is not None:
        if policy is MismatchPolicy.STRICT:
            raise BundleIdMismatchError(
                bundle_warning.env_bundle_id, bundle_warning.profile_bundle_id
            )
        warnings.append(bundle_warning)

    team_id, team_source, team_warning = resolve_team_id(env_team_id, profile_team_id)
    if team_warning is not None:
        warnings.append(team_warning)

    profile_uuid = _clean(profile_uuid)

    if is_placeholder_bundle_id(bundle_id, placeholder_bundle_ids):
        raise MissingFieldError("BUNDLE_ID", "not set and not found in profile")
    if not team_id:
        raise MissingFieldError("APPLE_TEAM_ID", "not set and not found in profile")
    if not profile_uuid:
        raise MissingFieldError("UUID", "provisioning profile UUID is required")

    resolved = ResolvedSigningConfig(
        bundle_id=bundle_id,
        team_id=team_id,
        profile_uuid=profile_uuid,
        cert_identity_name=identity_name,
        bundle_id_source=bundle_source,
        team_id_source=team_source,
    )
    return resolved, warnings
