"""
Monitored address universe.

Addresses are loaded from ``addresses.<network>.yaml`` (or a mapping supplied
by the caller) with the shape::

    delegators: [0x...]
    groups:
      - name: My Group
        owner: 0x...
        validators: [0x...]
    slashers: [0x...]
    aliases:
      0x...: Friendly name

All addresses are lowercased on load.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import structlog
import yaml

from accountant.core.config import settings
from accountant.core.exceptions import ConfigurationError


logger = structlog.get_logger(__name__)

SIGNER_KINDS = ("Validator", "Attestation")


class SignerEventSource(Protocol):
    async def head_block(self) -> int: ...

    async def get_events(self, contract: str, event: str, from_block: int, to_block: int, filters=None) -> list: ...


def _unique(addresses: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(addresses))


def load_address_file(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the YAML address list for the configured network."""
    path = Path(path or settings.resolved_addresses_file)
    try:
        with open(path, encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Unable to read address file {path}",
            details={"path": str(path), "error": str(e)}
        )


class MonitoredAddresses:
    """Addresses whose balances the ledger tracks, with aliases and group membership."""

    def __init__(self, addresses: Optional[Dict[str, Any]] = None):
        raw = addresses if addresses is not None else load_address_file()

        self.delegators: List[str] = [a.lower() for a in raw.get("delegators") or []]
        self.slashers: List[str] = [a.lower() for a in raw.get("slashers") or []]
        self.groups: List[Dict[str, Any]] = [
            {
                "name": group.get("name", ""),
                "owner": group["owner"].lower(),
                "validators": [v.lower() for v in group.get("validators") or []],
            }
            for group in raw.get("groups") or []
        ]
        self.aliases: Dict[str, str] = {
            address.lower(): alias for address, alias in (raw.get("aliases") or {}).items()
        }
        # signer -> group owner, discovered from authorization events
        self.group_mapping: Dict[str, Optional[str]] = {}

    def all_voters(self) -> List[str]:
        return _unique(self.delegators + self.all_group_owners() + self.all_validators())

    def all_group_owners(self) -> List[str]:
        return [group["owner"] for group in self.groups]

    def all_validators(self) -> List[str]:
        return [validator for group in self.groups for validator in group["validators"]]

    def all_aliased_addresses(self) -> List[str]:
        return list(self.aliases)

    def lookup_alias(self, address: str) -> str:
        return self.aliases.get(address.lower(), "")

    def add_alias(self, address: str, alias: str) -> None:
        self.aliases[address.lower()] = alias

    def group_for_validator(self, validator: str, warn: bool = False) -> Optional[str]:
        validator = validator.lower()
        for group in self.groups:
            if validator in group["validators"]:
                return group["owner"]

        if warn:
            logger.warning(
                f"Cannot find group for validator {validator}",
                address=validator,
                investigate=True,
            )
        return None

    def group_for_address(self, address: str, warn: bool = False) -> Optional[str]:
        address = address.lower()
        if address in self.all_group_owners():
            return address
        if address in self.group_mapping:
            return self.group_mapping[address]
        return self.group_for_validator(address, warn)

    def is_signer(self, address: str) -> bool:
        return "Signer" in self.lookup_alias(address)

    async def all_signer_keys_of_type(self, kind: str, chain: SignerEventSource) -> List[str]:
        """
        Signer keys authorized by the monitored validators.

        Each discovered signer is aliased "<validator alias> - <kind>Signer"
        and mapped to its validator's group.
        """
        if kind not in SIGNER_KINDS:
            raise ValueError(f"Signer kind must be one of {SIGNER_KINDS}, got {kind}")

        # Without validators the filter would match every signer on chain
        validators = self.all_validators()
        if not validators:
            return []

        events = await chain.get_events(
            "Accounts",
            f"{kind}SignerAuthorized",
            0,
            await chain.head_block(),
            {"account": validators},
        )

        keys: List[str] = []
        for event in events:
            signer = event.args["signer"].lower()
            account = event.args["account"].lower()
            if not self.lookup_alias(account):
                logger.warning(
                    "Unknown signer/account combo",
                    signer=signer,
                    address=account,
                    investigate=True,
                )

            self.add_alias(signer, f"{self.lookup_alias(account)} - {kind}Signer")
            self.group_mapping[signer] = self.group_for_validator(account, warn=True)
            keys.append(signer)

        return keys

    async def all_known_addresses(self, chain: SignerEventSource) -> List[str]:
        """Validator signers, voters and aliased addresses, without duplicates."""
        signer_keys = await self.all_signer_keys_of_type("Validator", chain)
        return _unique(signer_keys + self.all_voters() + self.all_aliased_addresses())
