import datetime
import io
import struct

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from rdplink.gcc_server import (
    RDP_VERSION_5_PLUS,
    GccError,
    Message,
    ProprietaryServerCertificate,
    ServerCertificate,
    ServerCoreData,
    ServerNetworkData,
    ServerSecurityData,
    X509CertificateChain,
)


@pytest.fixture(scope="module")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=1024)


@pytest.fixture(scope="module")
def der_cert(private_key):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "server.example.com")])
    now = datetime.datetime(2020, 1, 1)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(1)
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


def _proprietary_body(private_key, signature=b"\x11" * 64):
    numbers = private_key.public_key().public_numbers()
    modulus = numbers.n.to_bytes(128, "little")
    blob = struct.pack("<IIIII", 0x31415352, len(modulus) + 8, 1024, 127, numbers.e)
    blob += modulus + bytes(8)
    body = struct.pack("<IIHH", 1, 1, 6, len(blob)) + blob
    body += struct.pack("<HH", 8, len(signature) + 8) + signature + bytes(8)
    return body


def _x509_body(der):
    return struct.pack("<I", 1) + struct.pack("<I", len(der)) + der + bytes(12)


def test_proprietary_certificate_fields(private_key):
    cert = ProprietaryServerCertificate.read(io.BytesIO(_proprietary_body(private_key)))
    assert cert.public_key_blob.magic == 0x31415352
    assert cert.public_key_blob.pub_exp == 65537
    assert len(cert.public_key_blob.modulus) == 128
    assert cert.signature_blob == b"\x11" * 64
    assert cert.verify() is True


def test_proprietary_public_key_matches(private_key):
    cert = ProprietaryServerCertificate.read(io.BytesIO(_proprietary_body(private_key)))
    key = cert.get_public_key()
    assert key.public_numbers() == private_key.public_key().public_numbers()


def test_proprietary_truncated_raises(private_key):
    body = _proprietary_body(private_key)[:-4]
    with pytest.raises(GccError):
        ProprietaryServerCertificate.read(io.BytesIO(body))


def test_x509_chain_public_key(private_key, der_cert):
    chain = X509CertificateChain.read(io.BytesIO(_x509_body(der_cert)))
    assert len(chain.cert_blobs) == 1
    assert chain.cert_blobs[0].cb_cert == len(der_cert)
    assert chain.get_public_key().public_numbers() == private_key.public_key().public_numbers()
    assert chain.verify() is True


def test_x509_chain_uses_last_certificate(private_key, der_cert):
    data = struct.pack("<I", 2)
    data += struct.pack("<I", 3) + b"bad"
    data += struct.pack("<I", len(der_cert)) + der_cert + bytes(12)
    chain = X509CertificateChain.read(io.BytesIO(data))
    assert chain.get_public_key().public_numbers() == private_key.public_key().public_numbers()


def test_x509_chain_bad_certificate_raises():
    chain = X509CertificateChain.read(io.BytesIO(_x509_body(b"not a certificate")))
    with pytest.raises(GccError):
        chain.get_public_key()


def test_x509_chain_missing_padding_raises(der_cert):
    with pytest.raises(GccError):
        X509CertificateChain.read(io.BytesIO(_x509_body(der_cert)[:-12]))


def test_server_certificate_dispatch(private_key, der_cert):
    expected = private_key.public_key().public_numbers()
    v1 = ServerCertificate.read(io.BytesIO(struct.pack("<I", 1) + _proprietary_body(private_key)))
    assert v1.version == 1
    assert isinstance(v1.cert_data, ProprietaryServerCertificate)
    assert v1.cert_data.signature_blob == b"\x11" * 64
    assert v1.cert_data.get_public_key().public_numbers() == expected
    v2 = ServerCertificate.read(io.BytesIO(struct.pack("<I", 2) + _x509_body(der_cert)))
    assert v2.version == 2
    assert isinstance(v2.cert_data, X509CertificateChain)
    assert v2.cert_data.cert_blobs[0].cb_cert == len(der_cert)
    assert v2.cert_data.get_public_key().public_numbers() == expected


def test_server_certificate_ignores_top_bit(private_key):
    data = struct.pack("<I", 0x80000001) + _proprietary_body(private_key)
    cert = ServerCertificate.read(io.BytesIO(data))
    assert cert.version == 0x80000001
    assert isinstance(cert.cert_data, ProprietaryServerCertificate)


def test_server_certificate_unsupported_version():
    with pytest.raises(GccError, match="Unsupported version"):
        ServerCertificate.read(io.BytesIO(struct.pack("<I", 3)))


def test_server_core_data_read():
    data = struct.pack("<III", RDP_VERSION_5_PLUS, 3, 1)
    core = ServerCoreData.read(io.BytesIO(data))
    assert core == ServerCoreData(RDP_VERSION_5_PLUS, 3, 1)
    assert ServerCoreData.SC_TYPE == Message.SC_CORE == 0x0C01


def test_server_core_data_short_block_reads_zero():
    core = ServerCoreData.read(io.BytesIO(struct.pack("<II", RDP_VERSION_5_PLUS, 2)))
    assert core.early_capability_flags == 0
    assert core.client_requested_protocol == 2


def test_server_network_data_read():
    data = struct.pack("<HH", 1003, 2) + struct.pack("<HH", 1004, 1005) + bytes(2)
    net = ServerNetworkData.read(io.BytesIO(data))
    assert net.mcs_channel_id == 1003
    assert net.channel_ids == [1004, 1005]
    assert net.channel_count == 2
    assert ServerNetworkData.SC_TYPE == Message.SC_NET


def test_server_network_data_truncated_raises():
    with pytest.raises(GccError):
        ServerNetworkData.read(io.BytesIO(struct.pack("<HH", 1003, 2) + struct.pack("<H", 1004)))


def test_server_security_data_without_encryption():
    stream = io.BytesIO(struct.pack("<II", 0, 0) + b"rest")
    sec = ServerSecurityData.read(stream)
    assert sec.server_certificate is None
    assert sec.server_random == b""
    assert stream.read() == b"rest"


def test_server_security_data_with_certificate(private_key):
    cert = struct.pack("<I", 1) + _proprietary_body(private_key)
    random = bytes(range(32))
    data = struct.pack("<IIII", 2, 2, len(random), len(cert)) + random + cert
    sec = ServerSecurityData.read(io.BytesIO(data))
    assert sec.encryption_method == 2
    assert sec.server_random == random
    assert sec.server_cert_len == len(cert)
    key = sec.server_certificate.cert_data.get_public_key()
    assert key.public_numbers() == private_key.public_key().public_numbers()


def test_server_security_data_bad_certificate_raises():
    cert = struct.pack("<I", 7)
    data = struct.pack("<IIII", 1, 1, 0, len(cert)) + cert
    with pytest.raises(GccError):
        ServerSecurityData.read(io.BytesIO(data))