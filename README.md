# rdplink

`rdplink` implements the connection layers of a Remote Desktop Protocol
client in pure Python:

- `rdplink.ber`: BER encoding and decoding helpers used by the T.125 connect PDUs
  (`write_integer`, `read_integer`, `write_application_tag`, ...). Malformed
  input raises `BerError`.
- `rdplink.per`: PER helpers used by T.124 GCC and the MCS domain PDUs
  (`write_length`, `read_length`, `write_object_identifier`, ...).
- `rdplink.gcc`: client user data blocks (`ClientCoreData`,
  `ClientNetworkData`, `ClientSecurityData`), `make_conference_create_request`
  and `read_conference_create_response`.
- `rdplink.gcc_server`: parsing of the server blocks (`ServerCoreData`,
  `ServerNetworkData`, `ServerSecurityData`) and of server certificates
  (`ProprietaryServerCertificate`, `X509CertificateChain`), whose
  `get_public_key()` returns a `cryptography` RSA public key. Errors raise
  `GccError`.
- `rdplink.tpkt`: the `Emitter` event helper and `TPKT`, which frames outgoing
  X.224 packets and fast-path PDUs and splits incoming bytes into packets.
- `rdplink.x224`: the connection request/confirm exchange, security protocol
  negotiation and data TPDU framing (`X224`).
- `rdplink.mcs`: the MCS connect sequence, user attach and channel joins
  (`MCSClient`), plus the connect PDU structures.

## Installation

```
pip install rdplink
```

## Encoding helpers

Writers return `bytes`:

```python
from rdplink import ber, per

ber.write_integer(0x1234)        # b"\x02\x02\x12\x34"
per.write_length(0x100)          # b"\x81\x00"
```

Readers take a binary stream:

```python
import io
from rdplink import ber

ber.read_integer(io.BytesIO(b"\x02\x01\x05"))   # 5
```

## Client settings

```python
from rdplink.gcc import ClientNetworkData, make_conference_create_request

network = ClientNetworkData()
network.add_virtual_channel("cliprdr", 0xC0A00000)
request = make_conference_create_request(network.pack())
```

## Stacking the layers

Each layer is an `Emitter` with `on`, `once`, `off` and `emit`. The layers are
stacked on an object you supply that has `write(data)`, `close()` and
`start_tls()`:

```python
from rdplink.tpkt import TPKT
from rdplink.x224 import X224
from rdplink.mcs import MCSClient

tpkt = TPKT(transport)              # transport: your byte stream
x224 = X224(tpkt, start_nla=None)   # callable run when the server selects CredSSP
mcs = MCSClient(x224)
mcs.set_client_desktop(1024, 768)

mcs.on("connect", lambda client, server, user_id, channels: ...)
mcs.on("sec", lambda channel_name, payload: ...)
mcs.on("error", print)

x224.connect()
# for every chunk read from the network:
tpkt.feed(chunk)
```

`TPKT` emits `data` for each complete X.224 packet and passes fast-path PDUs
to the callable given to `set_fast_path_listener` as `(sec_flag, payload)`.
`X224` emits `connect` with the selected protocol and `data` with each
payload. `MCSClient` starts its sequence on that `connect`, then emits
`connect` once every channel is joined and `sec` for each received channel
payload. `MCSClient.write` sends on the global channel and
`send_to_channel` on a named one.

## What this package does not do

- It opens no sockets and does no TLS itself: reading from the network,
  calling `TPKT.feed`, and the TLS upgrade behind `start_tls()` belong to the
  transport you supply.
- It has no NLA/CredSSP or NTLM implementation; when the server selects it,
  `X224` calls the `start_nla` callable you pass, or emits an error if none
  was given.
- It stops at the MCS layer: there is no RDP security layer, licensing,
  capability exchange, fast-path decoding, graphics or input handling, and no
  virtual channel plugins.
- Server certificates are parsed but not verified.

## Running the tests

```
pip install -e ".[test]"
pytest
```