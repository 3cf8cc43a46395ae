"""
Minimal ABIs for the Celo core contracts the accountant reads.

Only the events and view functions used by collectors and the reconciler
are declared.
"""

from typing import Dict, List, Sequence, Tuple


REGISTRY_ADDRESS = "0x000000000000000000000000000000000000ce10"

# Inputs as (name, type, indexed)
EventInput = Tuple[str, str, bool]


def event_abi(name: str, inputs: Sequence[EventInput]) -> Dict:
    return {
        "anonymous": False,
        "inputs": [
            {"indexed": indexed, "name": arg, "type": arg_type}
            for arg, arg_type, indexed in inputs
        ],
        "name": name,
        "type": "event",
    }


def view_abi(name: str, inputs: Sequence[Tuple[str, str]], outputs: Sequence[str]) -> Dict:
    return {
        "constant": True,
        "inputs": [{"name": arg, "type": arg_type} for arg, arg_type in inputs],
        "name": name,
        "outputs": [{"name": "", "type": out} for out in outputs],
        "payable": False,
        "stateMutability": "view",
        "type": "function",
    }


REGISTRY_ABI: List[Dict] = [
    view_abi("getAddressForString", [("identifier", "string")], ["address"]),
]

ERC20_ABI: List[Dict] = [
    event_abi("Transfer", [("from", "address", True), ("to", "address", True), ("value", "uint256", False)]),
    view_abi("balanceOf", [("owner", "address")], ["uint256"]),
    view_abi("symbol", [], ["string"]),
]

ACCOUNTS_ABI: List[Dict] = [
    event_abi("ValidatorSignerAuthorized", [("account", "address", True), ("signer", "address", False)]),
    event_abi("AttestationSignerAuthorized", [("account", "address", True), ("signer", "address", False)]),
]

ATTESTATIONS_ABI: List[Dict] = [
    event_abi(
        "Withdrawal",
        [("account", "address", True), ("token", "address", True), ("amount", "uint256", False)],
    ),
]

ELECTION_ABI: List[Dict] = [
    event_abi(
        "ValidatorGroupVoteActivated",
        [("account", "address", True), ("group", "address", True), ("value", "uint256", False), ("units", "uint256", False)],
    ),
    event_abi(
        "ValidatorGroupActiveVoteRevoked",
        [("account", "address", True), ("group", "address", True), ("value", "uint256", False), ("units", "uint256", False)],
    ),
    event_abi("EpochRewardsDistributedToVoters", [("group", "address", True), ("value", "uint256", False)]),
    view_abi("getCurrentValidatorSigners", [], ["address[]"]),
]

EXCHANGE_ABI: List[Dict] = [
    event_abi(
        "Exchanged",
        [
            ("exchanger", "address", True),
            ("sellAmount", "uint256", False),
            ("buyAmount", "uint256", False),
            ("soldGold", "bool", False),
        ],
    ),
]

LOCKED_GOLD_ABI: List[Dict] = [
    event_abi("GoldLocked", [("account", "address", True), ("value", "uint256", False)]),
    event_abi("GoldWithdrawn", [("account", "address", True), ("value", "uint256", False)]),
    event_abi(
        "AccountSlashed",
        [
            ("slashed", "address", True),
            ("penalty", "uint256", False),
            ("reporter", "address", True),
            ("reward", "uint256", False),
        ],
    ),
    view_abi("getAccountTotalLockedGold", [("account", "address")], ["uint256"]),
    view_abi("getTotalPendingWithdrawals", [("account", "address")], ["uint256"]),
]

VALIDATORS_ABI: List[Dict] = [
    event_abi(
        "ValidatorEpochPaymentDistributed",
        [
            ("validator", "address", True),
            ("validatorPayment", "uint256", False),
            ("group", "address", True),
            ("groupPayment", "uint256", False),
        ],
    ),
]

# Registry identifier -> ABI
CONTRACT_ABIS: Dict[str, List[Dict]] = {
    "Accounts": ACCOUNTS_ABI,
    "Attestations": ATTESTATIONS_ABI,
    "Election": ELECTION_ABI,
    "Exchange": EXCHANGE_ABI,
    "GoldToken": ERC20_ABI,
    "LockedGold": LOCKED_GOLD_ABI,
    "StableToken": ERC20_ABI,
    "Validators": VALIDATORS_ABI,
}
