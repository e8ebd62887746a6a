import plistlib
import shutil
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from asn1crypto import cms
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

FIXTURES = Path(__file__).parent / "fixtures"

PROFILE_UUID = "0F1E2D3C-4B5A-6978-8796-A5B4C3D2E1F0"
PROFILE_TEAM = "ABCDE12345"
PROFILE_BUNDLE = "com.acme.shop"

IDENTITY_OUTPUT = (
    '  1) 0123456789ABCDEF0123456789ABCDEF01234567 "iPhone Distribution: Acme Inc (ABCDE12345)"\n'
    "     1 valid identities found\n"
)

PODFILE = """platform :ios, '12.0'

target 'Runner' do
  use_frameworks!
  flutter_install_all_ios_pods File.dirname(File.realpath(__FILE__))
end

post_install do |installer|
  installer.pods_project.targets.each do |target|
    flutter_additional_ios_build_settings(target)
  end
end
"""


def profile_plist(
    uuid=PROFILE_UUID,
    team=PROFILE_TEAM,
    bundle=PROFILE_BUNDLE,
    **overrides,
):
    data = {
        "AppIDName": "Acme Shop",
        "ApplicationIdentifierPrefix": [team],
        "CreationDate": datetime(2026, 1, 1),
        "DeveloperCertificates": [b"\x30\x82\x01\x00"],
        "Entitlements": {
            "application-identifier": f"{team}.{bundle}",
            "com.apple.developer.team-identifier": team,
            "get-task-allow": False,
            "keychain-access-groups": [f"{team}.*"],
        },
        "ExpirationDate": datetime(2099, 1, 1),
        "Name": "Acme Shop App Store",
        "TeamIdentifier": [team],
        "TeamName": "Acme Inc",
        "UUID": uuid,
        "Version": 1,
    }
    for key, value in overrides.items():
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
    return data


def wrap_in_cms(plist_bytes: bytes) -> bytes:
    """Wrap a plist in a CMS SignedData container like Apple's profiles"""
    signed_data = cms.SignedData(
        {
            "version": "v1",
            "digest_algorithms": [],
            "encap_content_info": {"content_type": "data", "content": plist_bytes},
            "signer_infos": [],
        }
    )
    return cms.ContentInfo({"content_type": "signed_data", "content": signed_data}).dump()


@pytest.fixture
def make_profile(tmp_path):
    """Factory writing a .mobileprovision built from profile_plist()"""

    def _make(name="profile.mobileprovision", signed=True, **overrides):
        plist_bytes = plistlib.dumps(profile_plist(**overrides))
        path = tmp_path / name
        path.write_bytes(wrap_in_cms(plist_bytes) if signed else plist_bytes)
        return path

    return _make


@pytest.fixture
def cert_and_key(tmp_path):
    """Self-signed distribution certificate (PEM) and its private key (PEM)"""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name(
        [x509.NameAttribute(NameOID.COMMON_NAME, "iPhone Distribution: Acme Inc (ABCDE12345)")]
    )
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )

    cer_path = tmp_path / "certificate.cer"
    key_path = tmp_path / "certificate.key"
    cer_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return cer_path, key_path, key, certificate


class FakeSubprocess:
    """Records commands and answers `security find-identity` with a canned identity"""

    def __init__(self, identity_output=IDENTITY_OUTPUT, keychains=""):
        self.calls = []
        self.identity_output = identity_output
        self.keychains = keychains

    def __call__(self, cmd, *args, **kwargs):
        self.calls.append(list(cmd))
        stdout = ""
        if cmd[:2] == ["security", "find-identity"]:
            stdout = self.identity_output
        elif cmd[:2] == ["security", "list-keychains"] and len(cmd) == 4:
            stdout = self.keychains
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    def commands(self, *prefix):
        return [call for call in self.calls if call[: len(prefix)] == list(prefix)]


@pytest.fixture
def fake_subprocess(monkeypatch):
    fake = FakeSubprocess()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture
def flutter_project(tmp_path):
    """Minimal Flutter iOS project layout"""
    root = tmp_path / "app"
    ios = root / "ios"
    (ios / "Runner.xcodeproj").mkdir(parents=True)
    (ios / "Flutter").mkdir()
    (ios / "Runner").mkdir()

    shutil.copyfile(FIXTURES / "project.pbxproj", ios / "Runner.xcodeproj" / "project.pbxproj")
    (ios / "Flutter" / "Release.xcconfig").write_text('#include "Generated.xcconfig"\n')
    (ios / "Podfile").write_text(PODFILE)
    (ios / "Runner" / "Info.plist").write_bytes(
        plistlib.dumps(
            {
                "CFBundleDisplayName": "Sample Project",
                "CFBundleIdentifier": "$(PRODUCT_BUNDLE_IDENTIFIER)",
                "CFBundleShortVersionString": "$(FLUTTER_BUILD_NAME)",
            }
        )
    )
    return root
