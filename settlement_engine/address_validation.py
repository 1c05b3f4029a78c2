"""
Settlement Engine - Address Validation.

============================================================
PURPOSE
============================================================
Format checks for recipient settle addresses and memos.

SUPPORTED NETWORKS:
- EVM: ethereum, polygon, bsc, arbitrum, optimism,
  avalanche, base, fantom
- Bitcoin (Taproot bc1p rejected)
- Solana, Tron, XRP, Stellar, Cardano, Polkadot/Kusama

Memo-based networks (XRP, Stellar, ...) require a memo;
XRP destination tags must be numeric.

The orchestrator only depends on the AddressValidator
protocol; remote validators may be injected instead.

============================================================
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Set


BASE58 = "1-9A-HJ-NP-Za-km-z"

_EVM = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BTC_P2PKH = re.compile(rf"^1[{BASE58}]{{25,34}}$")
_BTC_P2SH = re.compile(rf"^3[{BASE58}]{{25,34}}$")
_BTC_BECH32 = re.compile(r"^bc1q[a-z0-9]{38,58}$")
_SOLANA = re.compile(rf"^[{BASE58}]{{32,44}}$")
_TRON = re.compile(rf"^T[{BASE58}]{{33}}$")
_XRP = re.compile(rf"^r[{BASE58}]{{24,34}}$")
_STELLAR = re.compile(r"^G[A-Z2-7]{55}$")
_CARDANO = re.compile(r"^addr1[a-z0-9]{98}$")
_POLKADOT = re.compile(rf"^[{BASE58}]{{47,48}}$")


def _matcher(*patterns: "re.Pattern") -> Callable[[str], bool]:
    def check(address: str) -> bool:
        return any(p.match(address) for p in patterns)
    return check


is_evm_address = _matcher(_EVM)
is_btc_address = _matcher(_BTC_P2PKH, _BTC_P2SH, _BTC_BECH32)
is_solana_address = _matcher(_SOLANA)
is_tron_address = _matcher(_TRON)
is_xrp_address = _matcher(_XRP)
is_stellar_address = _matcher(_STELLAR)
is_cardano_address = _matcher(_CARDANO)
is_polkadot_address = _matcher(_POLKADOT)


EVM_NETWORKS: Set[str] = {
    "ethereum", "polygon", "bsc", "arbitrum", "optimism", "avalanche", "base", "fantom",
}

NETWORK_VALIDATORS: Dict[str, Callable[[str], bool]] = {
    **{network: is_evm_address for network in EVM_NETWORKS},
    "bitcoin": is_btc_address,
    "solana": is_solana_address,
    "tron": is_tron_address,
    "xrp": is_xrp_address,
    "ripple": is_xrp_address,
    "stellar": is_stellar_address,
    "xlm": is_stellar_address,
    "cardano": is_cardano_address,
    "polkadot": is_polkadot_address,
    "kusama": is_polkadot_address,
}

MEMO_REQUIRED_NETWORKS: Set[str] = {"xrp", "ripple", "stellar", "xlm", "eos", "cosmos", "atom"}

FORMAT_HINTS: Dict[str, str] = {
    "bitcoin": "Use addresses starting with 1, 3, or bc1q (not bc1p Taproot)",
    "solana": "Solana addresses are 32-44 base58 characters",
    "tron": "Tron addresses start with T and are 34 characters",
    "xrp": "XRP addresses start with r and are ~25-35 characters",
    "ripple": "XRP addresses start with r and are ~25-35 characters",
    "stellar": "Stellar addresses start with G and are 56 characters",
    "xlm": "Stellar addresses start with G and are 56 characters",
    **{network: "EVM addresses start with 0x and are 42 characters" for network in EVM_NETWORKS},
}


@dataclass(frozen=True)
class AddressCheck:
    """Outcome of an address/memo check."""

    ok: bool
    reason: str = ""
    requires_memo: bool = False


def validate_settle_details(
    unit: str,
    chain: str,
    address: str,
    memo: Optional[str] = None,
) -> AddressCheck:
    """
    Validate a settle address (and memo) for a chain.

    Args:
        unit: Coin symbol (unused by format checks)
        chain: Network name, e.g. 'ethereum'
        address: Wallet address
        memo: Memo or destination tag

    Returns:
        AddressCheck
    """
    network = (chain or "").lower()
    address = address or ""

    validator = NETWORK_VALIDATORS.get(network)
    if validator is None:
        return AddressCheck(
            ok=False,
            reason=f"Unsupported network: {chain}. Please check the network name.",
        )

    if network == "bitcoin" and address.startswith("bc1p"):
        return AddressCheck(
            ok=False,
            reason=(
                "Taproot (bc1p) addresses are not supported. Please use a SegWit "
                "address starting with bc1q, or a legacy address starting with 1 or 3."
            ),
        )

    if not validator(address):
        hint = FORMAT_HINTS.get(network, "")
        return AddressCheck(ok=False, reason=f"Invalid {chain} address format. {hint}".strip())

    requires_memo = network in MEMO_REQUIRED_NETWORKS
    is_xrp = network in ("xrp", "ripple")
    if requires_memo and not memo:
        memo_name = "Destination Tag" if is_xrp else "Memo"
        example = "123456" if is_xrp else "text or number"
        return AddressCheck(
            ok=False,
            reason=f"{chain} requires a {memo_name}. Example: {example}",
            requires_memo=True,
        )

    if memo and is_xrp and not memo.isdigit():
        return AddressCheck(
            ok=False,
            reason="XRP Destination Tag must be a number (e.g., 123456)",
            requires_memo=True,
        )

    return AddressCheck(ok=True, requires_memo=requires_memo)


class AddressValidator(Protocol):
    """Collaborator the orchestrator calls for every recipient."""

    async def validate_address(
        self,
        unit: str,
        chain: str,
        address: str,
        memo: Optional[str] = None,
    ) -> AddressCheck:
        ...


class FormatAddressValidator:
    """AddressValidator backed by local format checks."""

    async def validate_address(
        self,
        unit: str,
        chain: str,
        address: str,
        memo: Optional[str] = None,
    ) -> AddressCheck:
        return validate_settle_details(unit, chain, address, memo)
