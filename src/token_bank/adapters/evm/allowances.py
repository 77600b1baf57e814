"""
ERC-20 allowance checks.

The classic deposit needs the bank to be approved for at least the deposit
amount; the Permit2 deposit needs the Permit2 singleton to be approved (a
one-time bootstrap, normally for ``MAX_UINT256``). Both decide with the same
rule: approve only when the current allowance is strictly below what the
next call will pull.
"""

from ..bases import ChainReader


def needs_approval(current: int, required: int) -> bool:
    """
    Decide whether an approval transaction must precede a transfer.

    Args:
        current: Allowance currently granted by the owner to the spender.
        required: Amount the upcoming call will transfer.

    Returns:
        True iff ``current < required``. An exact match never triggers a
        redundant approval.
    """
    return current < required


async def query_erc20_allowance(reader: ChainReader, token: str, owner: str, spender: str) -> int:
    """
    Read ``allowance(owner, spender)`` from the token contract.

    Args:
        reader: Chain reader capability.
        token: ERC-20 token contract address.
        owner: Address of the token holder.
        spender: Address authorized to spend the tokens.

    Returns:
        int: The remaining allowance in the token's smallest unit.
    """
    allowance = await reader.read_contract(token, "allowance", (owner, spender))
    return int(allowance)
