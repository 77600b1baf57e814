"""
Minimal ABIs for the token (ERC-20 plus the EIP-2612 ``nonces`` read) and
for the TokenBank contract. Only the functions the client calls are listed.
"""

from typing import Dict, Any, List


def _view(name: str, inputs: List[Dict[str, str]], output_type: str) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": inputs,
        "outputs": [{"name": "", "type": output_type}],
    }


def get_balance_abi() -> List[Dict[str, Any]]:
    return [_view("balanceOf", [{"name": "account", "type": "address"}], "uint256")]


def get_allowance_abi() -> List[Dict[str, Any]]:
    return [
        _view(
            "allowance",
            [
                {"name": "owner", "type": "address"},
                {"name": "spender", "type": "address"},
            ],
            "uint256",
        )
    ]


def get_approve_abi() -> List[Dict[str, Any]]:
    """``approve(spender, amount) returns (bool)``."""
    return [
        {
            "name": "approve",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "spender", "type": "address"},
                {"name": "amount", "type": "uint256"},
            ],
            "outputs": [{"name": "", "type": "bool"}],
        }
    ]


def get_token_abi() -> List[Dict[str, Any]]:
    """
    ERC-20 functions the client calls, plus the reads an EIP-2612 permit needs.

    ``name`` supplies the EIP-712 domain name and ``nonces(owner)`` the
    per-owner permit counter.
    """
    return [
        *get_balance_abi(),
        *get_allowance_abi(),
        *get_approve_abi(),
        _view("name", [], "string"),
        _view("symbol", [], "string"),
        _view("decimals", [], "uint8"),
        _view("nonces", [{"name": "owner", "type": "address"}], "uint256"),
    ]


def get_token_bank_abi() -> List[Dict[str, Any]]:
    """
    TokenBank entry points::

        function deposit(uint256 amount) external
        function withdraw(uint256 amount) external
        function permitDeposit(
            address owner, uint256 amount, uint256 deadline,
            uint8 v, bytes32 r, bytes32 s
        ) external
        function depositWithPermit2(
            PermitTransferFrom calldata permit,
            bytes calldata signature,
            address owner
        ) external
        function getDeposit(address account) external view returns (uint256)

    where ``PermitTransferFrom = { TokenPermissions permitted; uint256 nonce; uint256 deadline }``
    and ``TokenPermissions = { address token; uint256 amount }``.
    """
    amount_only = [{"name": "amount", "type": "uint256"}]
    return [
        {
            "name": "deposit",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": amount_only,
            "outputs": [],
        },
        {
            "name": "withdraw",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": amount_only,
            "outputs": [],
        },
        {
            "name": "permitDeposit",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "owner",    "type": "address"},
                {"name": "amount",   "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
                {"name": "v",        "type": "uint8"},
                {"name": "r",        "type": "bytes32"},
                {"name": "s",        "type": "bytes32"},
            ],
            "outputs": [],
        },
        {
            "name": "depositWithPermit2",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {
                    "name": "permit",
                    "type": "tuple",
                    "components": [
                        {
                            "name": "permitted",
                            "type": "tuple",
                            "components": [
                                {"name": "token",  "type": "address"},
                                {"name": "amount", "type": "uint256"},
                            ],
                        },
                        {"name": "nonce",    "type": "uint256"},
                        {"name": "deadline", "type": "uint256"},
                    ],
                },
                {"name": "signature", "type": "bytes"},
                {"name": "owner",     "type": "address"},
            ],
            "outputs": [],
        },
        _view("getDeposit", [{"name": "account", "type": "address"}], "uint256"),
    ]
