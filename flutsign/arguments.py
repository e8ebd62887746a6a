from pathlib import Path

from flutsign.src.utils.config_loader import CERT_TYPES, EXPORT_METHODS


def add_signing_arguments(parser):
    """Add the credential and identity arguments shared by every signing command."""
    parser.add_argument(
        "--profile-url",
        type=str,
        help="URL or path of the provisioning profile [env: PROFILE_URL]",
    )
    parser.add_argument(
        "--cert-type",
        choices=CERT_TYPES,
        help="Certificate input form [env: CERT_TYPE, default: p12]",
    )
    parser.add_argument(
        "--cert-p12-url",
        type=str,
        help="URL or path of the P12 certificate [env: CERT_P12_URL]",
    )
    parser.add_argument(
        "--cert-cer-url",
        type=str,
        help="URL or path of the CER certificate, manual mode [env: CERT_CER_URL]",
    )
    parser.add_argument(
        "--cert-key-url",
        type=str,
        help="URL or path of the private key, manual mode [env: CERT_KEY_URL]",
    )
    parser.add_argument(
        "--cert-password",
        type=str,
        help="Certificate password, omit for an unprotected P12 [env: CERT_PASSWORD]",
    )
    parser.add_argument(
        "--bundle-id",
        type=str,
        help="App bundle identifier [env: BUNDLE_ID, default: from profile]",
    )
    parser.add_argument(
        "--team-id",
        type=str,
        help="Apple Developer team ID [env: APPLE_TEAM_ID, default: from profile]",
    )
    parser.add_argument(
        "--profile-type",
        choices=EXPORT_METHODS,
        help="Export method [env: PROFILE_TYPE, default: app-store]",
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        help="Flutter project root [default: current directory]",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort when BUNDLE_ID does not match the profile [default: warn]",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="TOML configuration file [env: FLUTSIGN_CONFIG, default: ~/.flutsign/config.toml]",
    )


def add_build_arguments(parser):
    """Add the arguments only the build command takes."""
    parser.add_argument(
        "--version-name",
        type=str,
        help="Marketing version passed as --build-name [env: VERSION_NAME]",
    )
    parser.add_argument(
        "--version-code",
        type=str,
        help="Build number passed as --build-number [env: VERSION_CODE]",
    )
    parser.add_argument(
        "--app-name",
        type=str,
        help="Display name written to Info.plist [env: APP_NAME]",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Where the IPA and summary are copied [default: output/ios]",
    )
    parser.add_argument(
        "--upload",
        action="store_true",
        help="Upload the IPA to App Store Connect [env: UPLOAD_TO_APP_STORE]",
    )
