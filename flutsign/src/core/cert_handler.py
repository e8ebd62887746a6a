from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List
import os
import re
import secrets
import string
import subprocess

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from flutsign.logger import get_console, log_error, log_info, log_success, log_warning
from flutsign.src.core.errors import ConfigurationError, NoSigningIdentityError

KEYCHAIN_PREFIX = "flutsign-"

# Identity classes accepted for App Store / ad hoc signing
DISTRIBUTION_IDENTITY_MARKERS = ("iPhone Distribution", "Apple Distribution")

IDENTITY_LINE = re.compile(r'\d+\) ([A-F0-9]{40}) "(.*?)"')


@dataclass(frozen=True)
class Certificate:
    """A P12 ready for keychain import"""

    source_form: str  # "p12" or "manual"
    p12_path: Path
    password: Optional[str] = None


@dataclass(frozen=True)
class SigningIdentity:
    sha1: str
    common_name: str


def _load_certificate(data: bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _load_private_key(data: bytes, password: Optional[str]):
    loaders = (serialization.load_pem_private_key, serialization.load_der_private_key)
    last_error: Exception = ValueError("unsupported key format")
    for loader in loaders:
        try:
            return loader(data, password=None)
        except TypeError:
            # Encrypted key; only usable with the certificate password
            if not password:
                raise ConfigurationError("Private key is encrypted but no password was given")
            try:
                return loader(data, password=password.encode("utf-8"))
            except ValueError as e:
                raise ConfigurationError(f"Could not decrypt private key: {e}") from e
        except ValueError as e:
            last_error = e
    raise ConfigurationError(f"Could not read private key: {last_error}")


def build_p12(
    cer_path: Path, key_path: Path, output_path: Path, password: Optional[str]
) -> Path:
    """Package a CER + KEY pair into a P12.

    ``password`` has no default on purpose: None produces a P12 without
    password protection, any other value encrypts it.
    """
    try:
        certificate = _load_certificate(Path(cer_path).read_bytes())
    except ValueError as e:
        raise ConfigurationError(f"Could not read certificate {cer_path}: {e}")
    private_key = _load_private_key(Path(key_path).read_bytes(), password)

    names = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    friendly_name = names[0].value.encode("utf-8") if names else None

    if password:
        # macOS `security import` only reads the legacy PKCS12 algorithms
        encryption = (
            serialization.PrivateFormat.PKCS12.encryption_builder()
            .kdf_rounds(50000)
            .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
            .hmac_hash(hashes.SHA1())
            .build(password.encode("utf-8"))
        )
    else:
        encryption = serialization.NoEncryption()

    p12_data = pkcs12.serialize_key_and_certificates(
        name=friendly_name,
        key=private_key,
        cert=certificate,
        cas=None,
        encryption_algorithm=encryption,
    )
    output_path = Path(output_path)
    output_path.write_bytes(p12_data)
    if password:
        log_success("Generated P12 with password protection")
    else:
        log_success("Generated P12 without password protection")
    return output_path


def count_distribution_identities(find_identity_output: str) -> List[SigningIdentity]:
    """Parse `security find-identity` output and keep distribution identities"""
    identities = []
    for sha1, name in IDENTITY_LINE.findall(find_identity_output):
        if any(marker in name for marker in DISTRIBUTION_IDENTITY_MARKERS):
            identities.append(SigningIdentity(sha1=sha1, common_name=name))
    return identities


class CertHandler:
    """Installs a signing certificate into a temporary keychain"""

    def __init__(self, keychain_password: Optional[str] = None):
        self.console = get_console()
        self.keychain: Optional[str] = None
        self.keychain_password = keychain_password or secrets.token_urlsafe(24)
        self.identities: List[SigningIdentity] = []

    def prepare_certificate(
        self,
        cert_type: str,
        password: Optional[str],
        work_dir: Path,
        p12_path: Optional[Path] = None,
        cer_path: Optional[Path] = None,
        key_path: Optional[Path] = None,
    ) -> Optional[Certificate]:
        """Turn the downloaded inputs into a Certificate, or None if absent"""
        if cert_type == "p12":
            if not p12_path:
                log_warning("P12 certificate type selected but no P12 was provided")
                return None
            return Certificate(source_form="p12", p12_path=Path(p12_path), password=password)

        if cert_type == "manual":
            if not cer_path or not key_path:
                log_warning("Manual certificate type selected but CER or KEY is missing")
                return None
            log_info("🔧 Generating P12 from CER/KEY files...")
            output = build_p12(cer_path, key_path, Path(work_dir) / "certificate.p12", password)
            return Certificate(source_form="manual", p12_path=output, password=password)

        raise ConfigurationError(
            f"Unknown certificate type: {cert_type} (supported: p12, manual)"
        )

    def install(self, certificate: Optional[Certificate]) -> List[SigningIdentity]:
        """Import the certificate and verify a distribution identity exists.

        Without a certificate the existing keychain search list is checked.
        Raises NoSigningIdentityError when no identity is found.
        """
        if certificate is None:
            log_warning("No certificate provided, checking existing keychains")
            return self.verify_identities(None)

        self._cleanup_old_keychains()
        self._setup_keychain()
        self._import_certificate(certificate)
        return self.verify_identities(self.keychain)

    def _run(self, cmd: List[str], description: str) -> subprocess.CompletedProcess:
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            log_error(
                f"{description} failed:\nstdout: {result.stdout}\nstderr: {result.stderr}"
            )
        return result

    def _setup_keychain(self) -> None:
        """Create and configure temporary keychain"""
        suffix = "".join(secrets.choice(string.ascii_lowercase) for _ in range(8))
        self.keychain = f"{KEYCHAIN_PREFIX}{suffix}"
        self.console.log(f"[bold]====== KEYCHAIN SETUP: {self.keychain} ======")

        keychains = self._get_keychain_list()
        self._run(
            ["security", "create-keychain", "-p", self.keychain_password, self.keychain],
            "Create keychain",
        )
        self._run(
            ["security", "unlock-keychain", "-p", self.keychain_password, self.keychain],
            "Unlock keychain",
        )
        # Lock after 6 hours so long archives keep access
        self._run(
            ["security", "set-keychain-settings", "-lut", "21600", self.keychain],
            "Keychain settings",
        )
        if os.getenv("CI"):
            self._run(
                ["security", "default-keychain", "-s", self.keychain],
                "Setting default keychain",
            )
        self._run(
            ["security", "list-keychains", "-d", "user", "-s", self.keychain, *keychains],
            "Search list update",
        )

    def _import_certificate(self, certificate: Certificate) -> None:
        log_info(f"Importing {certificate.source_form} certificate: {certificate.p12_path}")
        cmd = [
            "security",
            "import",
            str(certificate.p12_path),
            "-k",
            self.keychain,
            "-f",
            "pkcs12",
            "-T",
            "/usr/bin/codesign",
            "-T",
            "/usr/bin/security",
        ]
        if certificate.password:
            cmd.extend(["-P", certificate.password])
        if self._run(cmd, "Certificate import").returncode == 0:
            log_success("Certificate imported into keychain")

        # Allow codesign to use the key without a UI prompt
        self._run(
            [
                "security",
                "set-key-partition-list",
                "-S",
                "apple-tool:,apple:,codesign:",
                "-s",
                "-k",
                self.keychain_password,
                self.keychain,
            ],
            "Partition list setup",
        )

    def verify_identities(self, keychain: Optional[str]) -> List[SigningIdentity]:
        cmd = ["security", "find-identity", "-v", "-p", "codesigning"]
        if keychain:
            cmd.append(keychain)
        result = subprocess.run(cmd, capture_output=True, text=True)
        identities = count_distribution_identities(result.stdout or "")
        if not identities:
            log_error("No valid distribution signing identities found in keychain")
            raise NoSigningIdentityError(keychain)

        self.identities = identities
        log_success(f"Found {len(identities)} valid distribution identity(ies) in keychain")
        for identity in identities:
            log_info(f"  {identity.sha1} {identity.common_name}")
        return identities

    def cleanup(self) -> None:
        """Remove the temporary keychain from the search list and delete it"""
        if not self.keychain:
            return
        try:
            keychains = [k for k in self._get_keychain_list() if self.keychain not in k]
            subprocess.run(
                ["security", "list-keychains", "-d", "user", "-s", *keychains],
                capture_output=True,
            )
            subprocess.run(["security", "delete-keychain", self.keychain], capture_output=True)
            log_success(f"Cleaned up keychain {self.keychain}")
        except OSError as e:
            log_error(f"Error during keychain cleanup: {e}")
        finally:
            self.keychain = None

    def _get_keychain_list(self) -> List[str]:
        """Get list of current keychains"""
        result = subprocess.run(
            ["security", "list-keychains", "-d", "user"],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            return []
        return [k.strip().strip('"') for k in result.stdout.splitlines() if k.strip()]

    def _cleanup_old_keychains(self) -> None:
        """Remove keychains left behind by earlier runs"""
        for keychain in self._get_keychain_list():
            if KEYCHAIN_PREFIX in Path(keychain).name:
                log_warning(f"Cleaning up old keychain: {keychain}")
                self._run(["security", "delete-keychain", keychain], "Delete old keychain")
