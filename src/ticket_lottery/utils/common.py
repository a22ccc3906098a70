"""Common utility functions for the lottery backend."""

from web3 import Web3


def derive_address(identity: str) -> str:
    """Derive the payout address for a caller identity.

    Identities that already are addresses are returned checksummed; anything
    else is mapped to the last 20 bytes of its keccak-256 digest.
    """
    if not identity:
        raise ValueError("identity must be a non-empty string")
    if Web3.is_address(identity):
        return Web3.to_checksum_address(identity)
    digest = bytes(Web3.keccak(text=identity))
    return Web3.to_checksum_address("0x" + digest[-20:].hex())


def shorten_address(address: str) -> str:
    """Shorten an address for display: '0x123456...abcd'.
    Handles addresses with or without '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"
