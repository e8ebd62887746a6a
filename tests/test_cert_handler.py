import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from conftest import FakeSubprocess
from flutsign.src.core.cert_handler import (
    CertHandler,
    Certificate,
    build_p12,
    count_distribution_identities,
)
from flutsign.src.core.errors import ConfigurationError, NoSigningIdentityError


def test_build_p12_without_password(cert_and_key, tmp_path):
    cer_path, key_path, _, certificate = cert_and_key

    output = build_p12(cer_path, key_path, tmp_path / "out.p12", None)

    key, cert, _ = pkcs12.load_key_and_certificates(output.read_bytes(), None)
    assert cert == certificate
    assert key is not None


def test_build_p12_with_password(cert_and_key, tmp_path):
    cer_path, key_path, _, certificate = cert_and_key

    output = build_p12(cer_path, key_path, tmp_path / "out.p12", "s3cret")

    with pytest.raises(ValueError):
        pkcs12.load_key_and_certificates(output.read_bytes(), None)
    _, cert, _ = pkcs12.load_key_and_certificates(output.read_bytes(), b"s3cret")
    assert cert == certificate


def test_build_p12_accepts_der_certificate(cert_and_key, tmp_path):
    _, key_path, _, certificate = cert_and_key
    der_path = tmp_path / "certificate.der"
    der_path.write_bytes(certificate.public_bytes(serialization.Encoding.DER))

    output = build_p12(der_path, key_path, tmp_path / "out.p12", None)

    _, cert, _ = pkcs12.load_key_and_certificates(output.read_bytes(), None)
    assert cert == certificate


def test_build_p12_encrypted_key_needs_password(cert_and_key, tmp_path):
    cer_path, _, key, _ = cert_and_key
    encrypted = tmp_path / "encrypted.key"
    encrypted.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(b"s3cret"),
        )
    )

    with pytest.raises(ConfigurationError):
        build_p12(cer_path, encrypted, tmp_path / "out.p12", None)

    output = build_p12(cer_path, encrypted, tmp_path / "out.p12", "s3cret")
    assert output.exists()


def test_build_p12_wrong_key_password_is_a_configuration_error(cert_and_key, tmp_path):
    cer_path, _, key, _ = cert_and_key
    encrypted = tmp_path / "encrypted.key"
    encrypted.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(b"right"),
        )
    )

    with pytest.raises(ConfigurationError) as excinfo:
        build_p12(cer_path, encrypted, tmp_path / "out.p12", "wrong")

    assert excinfo.value.exit_code == 2
    assert "decrypt" in str(excinfo.value)


def test_count_distribution_identities():
    output = (
        '  1) 0123456789ABCDEF0123456789ABCDEF01234567 "Apple Development: Dev (XYZ)"\n'
        '  2) 89ABCDEF0123456789ABCDEF0123456789ABCDEF "iPhone Distribution: Acme Inc (ABCDE12345)"\n'
        '  3) FEDCBA9876543210FEDCBA9876543210FEDCBA98 "Apple Distribution: Acme Inc (ABCDE12345)"\n'
        "     3 valid identities found\n"
    )

    identities = count_distribution_identities(output)

    assert [i.sha1 for i in identities] == [
        "89ABCDEF0123456789ABCDEF0123456789ABCDEF",
        "FEDCBA9876543210FEDCBA9876543210FEDCBA98",
    ]
    assert count_distribution_identities("     0 valid identities found\n") == []


def test_prepare_p12_certificate(tmp_path):
    p12_path = tmp_path / "certificate.p12"
    certificate = CertHandler().prepare_certificate("p12", None, tmp_path, p12_path=p12_path)
    assert certificate == Certificate(source_form="p12", p12_path=p12_path, password=None)


def test_prepare_manual_certificate_builds_p12(cert_and_key, tmp_path):
    cer_path, key_path, _, _ = cert_and_key
    work = tmp_path / "work"
    work.mkdir()

    certificate = CertHandler().prepare_certificate(
        "manual", "pw", work, cer_path=cer_path, key_path=key_path
    )

    assert certificate.source_form == "manual"
    assert certificate.p12_path == work / "certificate.p12"
    assert certificate.password == "pw"


def test_prepare_without_inputs_returns_none(tmp_path):
    handler = CertHandler()
    assert handler.prepare_certificate("p12", None, tmp_path) is None
    assert handler.prepare_certificate("manual", None, tmp_path, cer_path=tmp_path / "a.cer") is None


def test_prepare_unknown_type_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        CertHandler().prepare_certificate("pem", None, tmp_path)


def test_install_without_password_omits_password_argument(fake_subprocess, tmp_path):
    handler = CertHandler(keychain_password="kc")
    certificate = Certificate(source_form="p12", p12_path=tmp_path / "c.p12", password=None)

    identities = handler.install(certificate)

    assert len(identities) == 1
    imports = fake_subprocess.commands("security", "import")
    assert len(imports) == 1
    assert "-P" not in imports[0]
    assert handler.keychain.startswith("flutsign-")
    assert fake_subprocess.commands("security", "create-keychain", "-p", "kc")
    assert fake_subprocess.commands("security", "find-identity", "-v", "-p", "codesigning", handler.keychain)


def test_install_with_password_passes_it(fake_subprocess, tmp_path):
    certificate = Certificate(source_form="manual", p12_path=tmp_path / "c.p12", password="pw")

    CertHandler().install(certificate)

    import_cmd = fake_subprocess.commands("security", "import")[0]
    assert import_cmd[import_cmd.index("-P") + 1] == "pw"


@pytest.mark.parametrize("source_form", ["p12", "manual"])
def test_install_without_identity_raises(monkeypatch, tmp_path, source_form):
    fake = FakeSubprocess(identity_output="     0 valid identities found\n")
    monkeypatch.setattr("subprocess.run", fake)
    certificate = Certificate(source_form=source_form, p12_path=tmp_path / "c.p12")

    with pytest.raises(NoSigningIdentityError) as excinfo:
        CertHandler().install(certificate)

    assert excinfo.value.exit_code == 6


def test_install_without_certificate_checks_search_list(fake_subprocess):
    handler = CertHandler()

    identities = handler.install(None)

    assert identities[0].common_name.startswith("iPhone Distribution")
    assert handler.keychain is None
    assert fake_subprocess.calls == [["security", "find-identity", "-v", "-p", "codesigning"]]


def test_stale_keychains_removed_and_cleanup(monkeypatch, tmp_path):
    fake = FakeSubprocess(
        keychains='    "/Users/ci/Library/Keychains/login.keychain-db"\n'
        '    "/Users/ci/Library/Keychains/flutsign-oldoldol-db"\n'
    )
    monkeypatch.setattr("subprocess.run", fake)
    handler = CertHandler()
    handler.install(Certificate(source_form="p12", p12_path=tmp_path / "c.p12"))
    keychain = handler.keychain

    handler.cleanup()

    assert ["security", "delete-keychain", "/Users/ci/Library/Keychains/flutsign-oldoldol-db"] in fake.calls
    assert ["security", "delete-keychain", keychain] in fake.calls
    assert handler.keychain is None
