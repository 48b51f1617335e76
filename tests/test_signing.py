"""Tests for the local signing backend."""

import pytest
from eth_account import Account
from stellar_sdk import Account as StellarAccount
from stellar_sdk import Keypair, TransactionBuilder

from htlcbridge.chains import Chain
from htlcbridge.crypto import KeyEncryptor, generate_master_key
from htlcbridge.signing import KeyNotFoundError, LocalSigner

EVM_KEY = "0x" + "11" * 32
PASSPHRASE = "Test SDF Network ; September 2015"


class TestLocalSigner:
    """Tests for LocalSigner."""

    def test_add_evm_key(self):
        signer = LocalSigner(load_env=False)

        address = signer.add_evm_key(EVM_KEY)

        assert address == Account.from_key(EVM_KEY).address
        assert signer.can_sign(Chain.POLYGON, address.lower())
        assert not signer.can_sign(Chain.POLYGON, "0x" + "22" * 20)

    @pytest.mark.asyncio
    async def test_sign_evm_transaction(self):
        signer = LocalSigner(load_env=False)
        address = signer.add_evm_key(EVM_KEY)
        tx = {
            "to": Account.from_key("0x" + "22" * 32).address,
            "data": "0x",
            "value": 1,
            "gas": 21000,
            "gasPrice": 10**9,
            "nonce": 0,
            "chainId": 137,
        }

        raw = await signer.sign_evm_transaction(Chain.POLYGON, address, tx)

        assert isinstance(raw, bytes)
        assert Account.recover_transaction(raw) == address

    @pytest.mark.asyncio
    async def test_unknown_sender(self):
        signer = LocalSigner(load_env=False)

        with pytest.raises(KeyNotFoundError):
            await signer.sign_evm_transaction(Chain.POLYGON, "0x" + "22" * 20, {})

    @pytest.mark.asyncio
    async def test_sign_stellar_envelope(self):
        signer = LocalSigner(load_env=False)
        keypair = Keypair.random()
        public_key = signer.add_stellar_secret(keypair.secret)
        envelope = (
            TransactionBuilder(StellarAccount(public_key, 1), PASSPHRASE, base_fee=100)
            .append_bump_sequence_op(5)
            .set_timeout(300)
            .build()
        )

        signed = await signer.sign_stellar_envelope(public_key, envelope)

        assert len(signed.signatures) == 1
        assert signer.can_sign(Chain.STELLAR, public_key)

    def test_loads_encrypted_env_keys(self, monkeypatch):
        master_key = generate_master_key()
        stellar = Keypair.random()
        monkeypatch.setenv("HOT_WALLET_PRIVATE_KEY", KeyEncryptor(master_key).encrypt(EVM_KEY))
        monkeypatch.setenv("HOT_WALLET_PRIVATE_KEY_STELLAR", stellar.secret)

        signer = LocalSigner(master_key=master_key)

        evm_address = Account.from_key(EVM_KEY).address
        assert signer.address_for(Chain.POLYGON) == evm_address
        assert signer.address_for(Chain.ETHEREUM) == evm_address
        assert signer.address_for(Chain.STELLAR) == stellar.public_key

    @pytest.mark.asyncio
    async def test_health_check(self):
        signer = LocalSigner(load_env=False)
        assert not await signer.health_check()

        signer.add_evm_key(EVM_KEY)
        assert await signer.health_check()
