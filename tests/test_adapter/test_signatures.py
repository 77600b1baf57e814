"""
Tests for typed-data payload construction, signature decomposition and
local signing.
"""

import json

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from token_bank.adapters.evm.constants import PERMIT2_NONCE_UPPER_BOUND
from token_bank.adapters.evm.signatures import (
    build_eip2612_typed_data,
    build_permit2_typed_data,
    compute_deadline,
    decompose_signature,
    fetch_eip2612_typed_data,
    generate_permit2_nonce,
    sign_typed_data_locally,
)
from token_bank.engine.exceptions import SignatureFormatError, ValidationError

from mocks import (
    BANK,
    FIXED_DEADLINE,
    FIXED_NOW,
    OWNER,
    OWNER_PRIVATE_KEY,
    PERMIT2,
    SETTINGS,
    SIGNATURE,
    SIG_R,
    SIG_S,
    TOKEN,
    TOKEN_NAME,
    WHITESPACE_PADDED_SIGNATURE,
    FakeChain,
)


def _eip2612(**overrides):
    values = dict(
        owner=OWNER,
        spender=BANK,
        value=100,
        nonce=3,
        deadline=FIXED_DEADLINE,
        token_name=TOKEN_NAME,
        chain_id=SETTINGS.chain_id,
        token_address=TOKEN,
    )
    values.update(overrides)
    return build_eip2612_typed_data(**values)


def _permit2(**overrides):
    values = dict(
        owner=OWNER,
        spender=BANK,
        token=TOKEN,
        amount=100,
        nonce=7,
        deadline=FIXED_DEADLINE,
        chain_id=SETTINGS.chain_id,
        permit2_address=PERMIT2,
    )
    values.update(overrides)
    return build_permit2_typed_data(**values)


class TestDecomposeSignature:

    def test_splits_r_s_v(self):
        sig = decompose_signature(SIGNATURE)
        assert sig.r == "0x" + SIG_R
        assert sig.s == "0x" + SIG_S
        assert sig.v == 27

    def test_is_deterministic(self):
        first = decompose_signature(SIGNATURE).to_canonical_json()
        assert first == decompose_signature(SIGNATURE).to_canonical_json()
        assert first == '{"r":"0x' + SIG_R + '","s":"0x' + SIG_S + '","v":27}'

    @pytest.mark.parametrize("v_byte, expected", [("00", 0), ("01", 1), ("1c", 28), ("ff", 255)])
    def test_v_is_raw_byte(self, v_byte, expected):
        sig = decompose_signature("0x" + SIG_R + SIG_S + v_byte)
        assert sig.v == expected

    def test_packed_hex_matches_input(self):
        assert decompose_signature(SIGNATURE).to_packed_hex() == SIGNATURE

    def test_contract_args_are_v_then_raw_bytes(self):
        v, r, s = decompose_signature(SIGNATURE).to_contract_args()
        assert v == 27
        assert r == bytes.fromhex(SIG_R)
        assert s == bytes.fromhex(SIG_S)

    @pytest.mark.parametrize(
        "bad",
        [
            None,
            "",
            SIGNATURE[:-2],
            SIGNATURE[:10],
            SIGNATURE + "00",
            SIGNATURE[2:] + "00",
            "0x" + "zz" * 65,
            WHITESPACE_PADDED_SIGNATURE,
            "0x" + SIG_R + SIG_S + "1\n",
        ],
        ids=["none", "empty", "one-byte-short", "truncated", "too-long", "no-prefix", "non-hex",
             "embedded-whitespace", "trailing-newline"],
    )
    def test_rejects_malformed(self, bad):
        with pytest.raises(SignatureFormatError):
            decompose_signature(bad)

    def test_rejects_non_string(self):
        with pytest.raises(SignatureFormatError):
            decompose_signature(b"\x00" * 65)


class TestEIP2612Payload:

    def test_identical_inputs_give_identical_payloads(self):
        first = json.dumps(_eip2612().to_dict(), sort_keys=True)
        second = json.dumps(_eip2612().to_dict(), sort_keys=True)
        assert first == second

    def test_domain_and_message(self):
        data = _eip2612().to_dict()
        assert data["primaryType"] == "Permit"
        assert data["domain"] == {
            "name": TOKEN_NAME,
            "version": "1",
            "chainId": SETTINGS.chain_id,
            "verifyingContract": TOKEN,
        }
        assert data["message"] == {
            "owner": OWNER,
            "spender": BANK,
            "value": 100,
            "nonce": 3,
            "deadline": FIXED_DEADLINE,
        }

    def test_permit_field_order(self):
        fields = _eip2612().to_dict()["types"]["Permit"]
        assert [f["name"] for f in fields] == ["owner", "spender", "value", "nonce", "deadline"]
        assert [f["type"] for f in fields] == ["address", "address", "uint256", "uint256", "uint256"]

    def test_domain_type_declares_version(self):
        names = [f["name"] for f in _eip2612().to_dict()["types"]["EIP712Domain"]]
        assert names == ["name", "version", "chainId", "verifyingContract"]

    def test_requires_account(self):
        with pytest.raises(ValidationError):
            _eip2612(owner=None)

    def test_wallet_json_renders_uints_as_strings(self):
        wallet = json.loads(_eip2612(value=2**200).to_wallet_json())
        assert wallet["message"]["value"] == str(2**200)
        assert wallet["message"]["nonce"] == "3"
        assert wallet["domain"]["chainId"] == str(SETTINGS.chain_id)
        assert wallet["message"]["owner"] == OWNER

    @pytest.mark.asyncio
    async def test_fetch_reads_nonce_and_name(self):
        chain = FakeChain(nonce=9)
        typed = await fetch_eip2612_typed_data(
            chain,
            owner=OWNER,
            spender=BANK,
            value=100,
            deadline=FIXED_DEADLINE,
            chain_id=SETTINGS.chain_id,
            token_address=TOKEN,
        )
        assert typed.message.nonce == 9
        assert typed.domain.name == TOKEN_NAME
        assert [r[1] for r in chain.reads] == ["nonces", "name"]


class TestPermit2Payload:

    def test_domain_has_no_version(self):
        data = _permit2().to_dict()
        assert "version" not in data["domain"]
        assert data["domain"] == {"name": "Permit2", "chainId": SETTINGS.chain_id, "verifyingContract": PERMIT2}
        assert [f["name"] for f in data["types"]["EIP712Domain"]] == ["name", "chainId", "verifyingContract"]

    def test_eip2612_has_version_and_permit2_does_not(self):
        assert "version" in _eip2612().to_dict()["domain"]
        assert "version" not in _permit2().to_dict()["domain"]

    def test_nested_token_permissions(self):
        data = _permit2().to_dict()
        assert data["primaryType"] == "PermitTransferFrom"
        assert data["types"]["TokenPermissions"] == [
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ]
        assert data["message"] == {
            "permitted": {"token": TOKEN, "amount": 100},
            "spender": BANK,
            "nonce": 7,
            "deadline": FIXED_DEADLINE,
        }

    def test_wallet_dict_stringifies_nested_amount(self):
        wallet = _permit2().to_wallet_dict()
        assert wallet["message"]["permitted"] == {"token": TOKEN, "amount": "100"}
        assert wallet["message"]["nonce"] == "7"

    def test_requires_account(self):
        with pytest.raises(ValidationError):
            _permit2(owner="")


class TestHelpers:

    def test_permit2_nonce_range(self):
        for _ in range(50):
            assert 0 <= generate_permit2_nonce() < PERMIT2_NONCE_UPPER_BOUND

    def test_deadline_is_now_plus_window(self):
        assert compute_deadline(3600, clock=lambda: FIXED_NOW + 0.9) == FIXED_NOW + 3600


class TestLocalSigning:

    @pytest.mark.parametrize("builder", [_eip2612, _permit2], ids=["eip2612", "permit2"])
    def test_signature_recovers_owner(self, builder):
        full_message = builder().to_dict()
        signature = sign_typed_data_locally(OWNER_PRIVATE_KEY, full_message)

        assert signature.startswith("0x") and len(signature) == 132
        recovered = Account.recover_message(encode_typed_data(full_message=full_message), signature=signature)
        assert recovered == OWNER

    def test_local_signature_decomposes(self):
        signature = sign_typed_data_locally(OWNER_PRIVATE_KEY, _eip2612().to_dict())
        sig = decompose_signature(signature)
        assert sig.v in (27, 28)
        assert sig.to_packed_hex() == signature
