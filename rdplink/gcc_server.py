"""Server-to-client GCC user data blocks: core, network and security data."""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import BinaryIO, Optional, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa

_log = logging.getLogger(__name__)

RDP_VERSION_4 = 0x00080001
RDP_VERSION_5_PLUS = 0x00080004

RSA_MAGIC = 0x31415352


class Message(IntEnum):
    """Types of GCC user data blocks."""

    SC_CORE = 0x0C01
    SC_SECURITY = 0x0C02
    SC_NET = 0x0C03
    CS_CORE = 0xC001
    CS_SECURITY = 0xC002
    CS_NET = 0xC003
    CS_CLUSTER = 0xC004
    CS_MONITOR = 0xC005


class CertificateType(IntEnum):
    """Version of a server certificate chain."""

    CERT_CHAIN_VERSION_1 = 0x00000001
    CERT_CHAIN_VERSION_2 = 0x00000002


class GccError(ValueError):
    """Raised when a server GCC block is malformed or unsupported."""


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    if size < 0:
        raise GccError(f"negative field size {size}")
    data = stream.read(size)
    if len(data) != size:
        raise GccError(f"unexpected end of data: wanted {size} bytes, got {len(data)}")
    return data


def _read_u16(stream: BinaryIO) -> int:
    return struct.unpack("<H", _read_exact(stream, 2))[0]


def _read_u32(stream: BinaryIO) -> int:
    return struct.unpack("<I", _read_exact(stream, 4))[0]


def _read_u32_or_zero(stream: BinaryIO) -> int:
    data = stream.read(4)
    return struct.unpack("<I", data)[0] if len(data) == 4 else 0


def _der_element(data: bytes, pos: int) -> tuple[int, bytes, int]:
    """Return the tag, content and end offset of the DER element at ``pos``."""
    if pos + 2 > len(data):
        raise GccError("truncated DER element")
    tag = data[pos]
    length = data[pos + 1]
    pos += 2
    if length & 0x80:
        count = length & 0x7F
        if count == 0 or count > 4 or pos + count > len(data):
            raise GccError("bad DER length")
        length = int.from_bytes(data[pos:pos + count], "big")
        pos += count
    end = pos + length
    if end > len(data):
        raise GccError("truncated DER content")
    return tag, data[pos:end], end


def _der_children(content: bytes) -> list[tuple[int, bytes]]:
    children = []
    pos = 0
    while pos < len(content):
        tag, body, pos = _der_element(content, pos)
        children.append((tag, body))
    return children


def _rsa_key_from_tbs(tbs: bytes) -> rsa.RSAPublicKey:
    """Extract a PKCS#1 RSA key from the subject public key info of a TBS certificate."""
    tag, body, _ = _der_element(tbs, 0)
    if tag != 0x30:
        raise GccError("TBS certificate is not a sequence")
    fields = _der_children(body)
    if fields and fields[0][0] == 0xA0:
        fields = fields[1:]
    if len(fields) < 6 or fields[5][0] != 0x30:
        raise GccError("missing subject public key info")
    spki = _der_children(fields[5][1])
    if len(spki) < 2 or spki[1][0] != 0x03 or not spki[1][1]:
        raise GccError("missing subject public key bit string")
    key_tag, key_body, _ = _der_element(spki[1][1][1:], 0)
    if key_tag != 0x30:
        raise GccError("subject public key is not an RSA key")
    numbers = _der_children(key_body)
    if len(numbers) < 2 or numbers[0][0] != 0x02 or numbers[1][0] != 0x02:
        raise GccError("subject public key is not an RSA key")
    modulus = int.from_bytes(numbers[0][1], "big")
    exponent = int.from_bytes(numbers[1][1], "big")
    return rsa.RSAPublicNumbers(exponent, modulus).public_key()


@dataclass
class RSAPublicKey:
    """RSA public key blob of a proprietary certificate; modulus is little-endian."""

    magic: int = RSA_MAGIC
    keylen: int = 0
    bitlen: int = 0
    datalen: int = 0
    pub_exp: int = 0
    modulus: bytes = b""
    padding: bytes = b""


@dataclass
class ProprietaryServerCertificate:
    """Server certificate in the proprietary (version 1) format."""

    sig_alg_id: int = 1
    key_alg_id: int = 1
    public_key_blob_type: int = 0x0006
    public_key_blob_len: int = 0
    public_key_blob: RSAPublicKey = field(default_factory=RSAPublicKey)
    signature_blob_type: int = 0x0008
    signature_blob_len: int = 0
    signature_blob: bytes = b""
    padding: bytes = b""

    @classmethod
    def read(cls, stream: BinaryIO) -> ProprietaryServerCertificate:
        """Parse a proprietary certificate."""
        cert = cls()
        cert.sig_alg_id = _read_u32(stream)
        cert.key_alg_id = _read_u32(stream)
        cert.public_key_blob_type = _read_u16(stream)
        cert.public_key_blob_len = _read_u16(stream)
        blob = RSAPublicKey()
        blob.magic = _read_u32(stream)
        blob.keylen = _read_u32(stream)
        blob.bitlen = _read_u32(stream)
        blob.datalen = _read_u32(stream)
        blob.pub_exp = _read_u32(stream)
        blob.modulus = _read_exact(stream, blob.keylen - 8)
        blob.padding = _read_exact(stream, 8)
        cert.public_key_blob = blob
        cert.signature_blob_type = _read_u16(stream)
        cert.signature_blob_len = _read_u16(stream)
        cert.signature_blob = _read_exact(stream, cert.signature_blob_len - 8)
        cert.padding = _read_exact(stream, 8)
        return cert

    def get_public_key(self) -> rsa.RSAPublicKey:
        """Return the server's RSA public key."""
        modulus = int.from_bytes(self.public_key_blob.modulus, "little")
        try:
            return rsa.RSAPublicNumbers(self.public_key_blob.pub_exp, modulus).public_key()
        except ValueError as exc:
            raise GccError(f"invalid RSA public key: {exc}") from exc

    def verify(self) -> bool:
        """Certificates are accepted without verification."""
        return True


@dataclass
class CertBlob:
    """One DER encoded certificate of an X.509 chain."""

    ab_cert: bytes = b""

    @property
    def cb_cert(self) -> int:
        return len(self.ab_cert)


@dataclass
class X509CertificateChain:
    """Server certificate chain in the X.509 (version 2) format."""

    cert_blobs: list[CertBlob] = field(default_factory=list)
    padding: bytes = b""

    @classmethod
    def read(cls, stream: BinaryIO) -> X509CertificateChain:
        """Parse a chain of length-prefixed certificates followed by padding."""
        count = _read_u32(stream)
        blobs = [CertBlob(_read_exact(stream, _read_u32(stream))) for _ in range(count)]
        padding = _read_exact(stream, 12)
        return cls(blobs, padding)

    def get_public_key(self) -> rsa.RSAPublicKey:
        """Return the RSA public key of the last certificate in the chain."""
        if not self.cert_blobs:
            raise GccError("empty certificate chain")
        data = self.cert_blobs[-1].ab_cert
        try:
            cert = x509.load_der_x509_certificate(data)
        except ValueError as exc:
            _log.error("X509 certificate parse error: %s", exc)
            raise GccError(f"cannot parse X509 certificate: {exc}") from exc
        try:
            key = cert.public_key()
        except (UnsupportedAlgorithm, ValueError):
            return _rsa_key_from_tbs(cert.tbs_certificate_bytes)
        if not isinstance(key, rsa.RSAPublicKey):
            raise GccError("certificate key is not an RSA key")
        return key

    def verify(self) -> bool:
        """Certificates are accepted without verification."""
        return True


CertData = Union[ProprietaryServerCertificate, X509CertificateChain]


@dataclass
class ServerCertificate:
    """Server certificate with its version word."""

    version: int = 0
    cert_data: Optional[CertData] = None

    @classmethod
    def read(cls, stream: BinaryIO) -> ServerCertificate:
        """Parse a certificate, choosing the format from its version."""
        version = _read_u32(stream)
        kind = version & 0x7FFFFFFF
        if kind == CertificateType.CERT_CHAIN_VERSION_1:
            _log.debug("ProprietaryServerCertificate")
            data: CertData = ProprietaryServerCertificate.read(stream)
        elif kind == CertificateType.CERT_CHAIN_VERSION_2:
            _log.debug("X509CertificateChain")
            data = X509CertificateChain.read(stream)
        else:
            _log.error("unsupported certificate version: %d", kind)
            raise GccError("Unsupported version")
        return cls(version, data)


@dataclass
class ServerCoreData:
    """Server core data block."""

    SC_TYPE = Message.SC_CORE

    rdp_version: int = RDP_VERSION_5_PLUS
    client_requested_protocol: int = 0
    early_capability_flags: int = 0

    @classmethod
    def read(cls, stream: BinaryIO) -> ServerCoreData:
        """Parse the block; fields missing at the end read as zero."""
        return cls(
            _read_u32_or_zero(stream),
            _read_u32_or_zero(stream),
            _read_u32_or_zero(stream),
        )


@dataclass
class ServerNetworkData:
    """Server network data block: the MCS I/O channel and the static channel ids."""

    SC_TYPE = Message.SC_NET

    mcs_channel_id: int = 0
    channel_ids: list[int] = field(default_factory=list)

    @property
    def channel_count(self) -> int:
        return len(self.channel_ids)

    @classmethod
    def read(cls, stream: BinaryIO) -> ServerNetworkData:
        """Parse the block."""
        mcs_channel_id = _read_u16(stream)
        count = _read_u16(stream)
        return cls(mcs_channel_id, [_read_u16(stream) for _ in range(count)])


@dataclass
class ServerSecurityData:
    """Server security data block."""

    SC_TYPE = Message.SC_SECURITY

    encryption_method: int = 0
    encryption_level: int = 0
    server_random_len: int = 0x20
    server_cert_len: int = 0
    server_random: bytes = b""
    server_certificate: Optional[ServerCertificate] = None

    @classmethod
    def read(cls, stream: BinaryIO) -> ServerSecurityData:
        """Parse the block; random and certificate follow only when encryption is used."""
        data = cls()
        data.encryption_method = _read_u32(stream)
        data.encryption_level = _read_u32(stream)
        if data.encryption_method == 0 and data.encryption_level == 0:
            return data
        data.server_random_len = _read_u32(stream)
        data.server_cert_len = _read_u32(stream)
        data.server_random = _read_exact(stream, data.server_random_len)
        cert_bytes = _read_exact(stream, data.server_cert_len)
        data.server_certificate = ServerCertificate.read(io.BytesIO(cert_bytes))
        return data