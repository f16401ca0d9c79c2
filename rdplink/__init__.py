"""Connection layers of a Remote Desktop Protocol client: TPKT, X.224, MCS, GCC, BER and PER."""

__version__ = "0.1.0"
__all__ = ["ber", "per", "gcc", "gcc_server", "tpkt", "x224", "mcs"]