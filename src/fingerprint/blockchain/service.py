"""Fingerprint registry client backed by managed keys.

Wallet and signing keys come from the KeyManager and never leave this
module; every hand-off to a signing operation is audited.
"""

import time
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, Web3Exception

from fingerprint.audit.logger import AuditLogger
from fingerprint.audit.types import AuditEventType, LogLevel
from fingerprint.blockchain.abi import FINGERPRINT_REGISTRY_ABI, ZERO_HASH
from fingerprint.blockchain.eip712 import (
    PRIMARY_TYPE,
    create_agent_fingerprint_message,
    create_eip712_domain,
    sign_agent_fingerprint,
    verify_agent_fingerprint_signature,
)
from fingerprint.blockchain.errors import (
    BlockchainError,
    NotConnectedError,
    TransactionFailedError,
    UnsupportedFeatureError,
)
from fingerprint.blockchain.types import (
    AgentInfo,
    BlockchainConfig,
    FingerprintRecord,
    RevocationData,
    SignatureData,
)
from fingerprint.core.logging import get_logger
from fingerprint.keys.manager import KeyManager
from fingerprint.keys.types import KeyType

logger = get_logger(__name__)

SERVICE_ACTOR = "blockchain-service"


def _hex(value: Any) -> str:
    return "0x" + bytes(value).hex()


class SecureBlockchainService:
    """Registers, verifies and revokes agent fingerprints.

    Example:
        service = SecureBlockchainService(
            BlockchainConfig.from_settings(), key_manager, audit_logger
        )
        await service.connect_wallet()
        agent = AgentInfo(id="agent-1", name="Helper", provider="Acme", version="1.0")
        agent = replace(agent, fingerprint_hash=service.generate_fingerprint_hash(agent))
        tx_hash = await service.register_fingerprint(agent)
    """

    def __init__(
        self,
        config: BlockchainConfig,
        key_manager: KeyManager,
        audit_logger: AuditLogger,
        web3: AsyncWeb3 | None = None,
    ):
        """Initialize the service.

        Args:
            config: Registry connection details
            key_manager: Source of WALLET and SIGNING keys
            audit_logger: Audit logger
            web3: Pre-built web3 client (defaults to an HTTP provider on config.network_url)
        """
        self.config = config
        self.key_manager = key_manager
        self.audit_logger = audit_logger
        self.w3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.network_url))
        self.contract_address = to_checksum_address(config.contract_address)
        self.contract = self.w3.eth.contract(
            address=self.contract_address, abi=FINGERPRINT_REGISTRY_ABI
        )
        self._account: LocalAccount | None = None
        self._capabilities: dict[str, bool] = {}

    @property
    def wallet_address(self) -> str | None:
        """Address of the connected wallet, if any."""
        return self._account.address if self._account is not None else None

    @staticmethod
    def generate_fingerprint_hash(agent: AgentInfo) -> str:
        """Keccak-256 over the agent's identity and the current time in milliseconds."""
        data = f"{agent.id}-{agent.name}-{agent.provider}-{agent.version}-{int(time.time() * 1000)}"
        return "0x" + keccak(text=data).hex()

    async def _require_connection(self) -> None:
        if not await self.w3.is_connected():
            raise NotConnectedError()

    # ----------------------------------------------------------------
    # Wallet
    # ----------------------------------------------------------------

    async def connect_wallet(self, key_id: str | None = None) -> str:
        """Load the WALLET key and use it for transactions.

        Returns:
            The wallet address

        Raises:
            KeyProviderError: If the key cannot be read
            BlockchainError: If the stored key is not a valid private key
        """
        key_label = key_id or self.key_manager.get_default_key_id(KeyType.WALLET)
        private_key = await self.key_manager.get_key(KeyType.WALLET, key_id, actor=SERVICE_ACTOR)
        try:
            account: LocalAccount = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            await self.audit_logger.log(
                LogLevel.WARNING,
                AuditEventType.WALLET_CONNECTION,
                "Wallet connection failed",
                SERVICE_ACTOR,
                target=self.contract_address,
                result="failure",
                details={"keyId": key_label, "error": type(e).__name__},
            )
            raise BlockchainError(f"Stored wallet key {key_label} is not a valid private key") from None

        self._account = account
        logger.info("wallet_connected", address=account.address, key_id=key_label)
        await self.audit_logger.log(
            LogLevel.INFO,
            AuditEventType.WALLET_CONNECTION,
            "Wallet connected using stored key",
            account.address,
            target=self.contract_address,
            details={"keyId": key_label, "chainId": self.config.chain_id},
        )
        return account.address

    async def _send_transaction(self, operation: str, call: Any) -> tuple[str, dict[str, Any]]:
        account = self._account
        if account is None:
            raise NotConnectedError("No wallet connected")

        tx = await call.build_transaction(
            {
                "from": account.address,
                "nonce": await self.w3.eth.get_transaction_count(account.address),
                "chainId": self.config.chain_id,
            }
        )
        signed = account.sign_transaction(tx)
        tx_hash = _hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info("transaction_sent", operation=operation, tx_hash=tx_hash)

        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise TransactionFailedError(tx_hash, operation)
        logger.info(
            "transaction_confirmed",
            operation=operation,
            tx_hash=tx_hash,
            block_number=receipt["blockNumber"],
        )
        return tx_hash, receipt

    async def _ensure_wallet(self, key_id: str | None) -> None:
        if self._account is None or key_id is not None:
            await self.connect_wallet(key_id)

    # ----------------------------------------------------------------
    # Registry operations
    # ----------------------------------------------------------------

    async def register_fingerprint(
        self,
        agent: AgentInfo,
        use_eip712: bool = False,
        key_id: str | None = None,
    ) -> str:
        """Register an agent's fingerprint.

        Args:
            agent: Agent with ``fingerprint_hash`` set
            use_eip712: Also produce an EIP-712 signature with the SIGNING key
            key_id: WALLET key to send from (default wallet key if omitted)

        Returns:
            Transaction hash

        Raises:
            BlockchainError: If the agent has no fingerprint hash or the transaction fails
        """
        if not agent.fingerprint_hash:
            raise BlockchainError("Agent has no fingerprint hash; generate one first")
        await self._require_connection()
        await self._ensure_wallet(key_id)

        details: dict[str, Any] = {"fingerprintHash": agent.fingerprint_hash, "agentId": agent.id}
        if use_eip712:
            signature = await self.generate_eip712_signature(agent)
            details["eip712Signer"] = signature.signer_address

        call = self.contract.functions.registerFingerprint(
            agent.id, agent.name, agent.provider, agent.version, agent.fingerprint_hash
        )
        return await self._transact("Registered fingerprint", call, details)

    async def revoke_fingerprint(self, fingerprint_hash: str, key_id: str | None = None) -> str:
        """Revoke a fingerprint (registrant or contract owner only).

        Returns:
            Transaction hash

        Raises:
            UnsupportedFeatureError: If the contract has no revocation support
        """
        await self._require_connection()
        if not await self.supports_revocation():
            raise UnsupportedFeatureError("revocation")
        await self._ensure_wallet(key_id)

        call = self.contract.functions.revokeFingerprint(fingerprint_hash)
        return await self._transact(
            "Revoked fingerprint", call, {"fingerprintHash": fingerprint_hash}
        )

    async def _transact(self, operation: str, call: Any, details: dict[str, Any]) -> str:
        actor = self.wallet_address or "unknown"
        try:
            tx_hash, receipt = await self._send_transaction(operation, call)
        except (BlockchainError, Web3Exception, OSError) as e:
            await self.audit_logger.log_blockchain_transaction(
                operation,
                actor,
                self.contract_address,
                self.config.chain_id,
                tx_hash=getattr(e, "tx_hash", None),
                success=False,
                details={**details, "error": str(e)},
            )
            raise

        await self.audit_logger.log_blockchain_transaction(
            operation,
            actor,
            self.contract_address,
            self.config.chain_id,
            tx_hash=tx_hash,
            details={**details, "blockNumber": receipt["blockNumber"]},
        )
        return tx_hash

    async def _supports(self, function_name: str) -> bool:
        cached = self._capabilities.get(function_name)
        if cached is not None:
            return cached
        try:
            await getattr(self.contract.functions, function_name)(ZERO_HASH).call()
        except (ContractLogicError, BadFunctionCallOutput):
            logger.info("contract_feature_unsupported", function=function_name)
            self._capabilities[function_name] = False
            return False
        except (Web3Exception, OSError) as e:
            # Reachable but failed for another reason: assume present, re-probe later
            logger.debug("contract_feature_probe_failed", function=function_name, error=str(e))
            return True
        self._capabilities[function_name] = True
        return True

    async def supports_revocation(self) -> bool:
        """Whether the contract implements ``isRevoked``/``revokeFingerprint``."""
        return await self._supports("isRevoked")

    async def supports_extended_verification(self) -> bool:
        """Whether the contract implements ``verifyFingerprintExtended``."""
        return await self._supports("verifyFingerprintExtended")

    async def verify_fingerprint(self, fingerprint_hash: str) -> FingerprintRecord | None:
        """Look up a fingerprint.

        Returns:
            The registered record (with revocation data when available), or
            None if the hash is not registered
        """
        await self._require_connection()
        record: FingerprintRecord | None = None
        extended_used = False

        if await self.supports_extended_verification():
            try:
                result = await self.contract.functions.verifyFingerprintExtended(
                    fingerprint_hash
                ).call()
                extended_used = True
            except (ContractLogicError, BadFunctionCallOutput) as e:
                logger.info("extended_verification_failed", error=str(e))

        if extended_used:
            is_verified, id_, name, provider, version, created_at, revoked, revoked_at = result
            if is_verified:
                record = FingerprintRecord(
                    id=id_,
                    name=name,
                    provider=provider,
                    version=version,
                    fingerprint_hash=fingerprint_hash,
                    created_at=int(created_at),
                    revoked=bool(revoked),
                    revoked_at=int(revoked_at),
                )
        else:
            result = await self.contract.functions.verifyFingerprint(fingerprint_hash).call()
            is_verified, id_, name, provider, version, created_at = result
            if is_verified:
                revocation = await self.is_revoked(fingerprint_hash)
                record = FingerprintRecord(
                    id=id_,
                    name=name,
                    provider=provider,
                    version=version,
                    fingerprint_hash=fingerprint_hash,
                    created_at=int(created_at),
                    revoked=revocation.revoked if revocation else None,
                    revoked_at=revocation.revoked_at if revocation else None,
                    revoked_by=revocation.revoked_by if revocation else None,
                )

        await self.audit_logger.log(
            LogLevel.INFO,
            AuditEventType.CONTRACT_INTERACTION,
            "Verified fingerprint",
            self.wallet_address or "unknown",
            target=self.contract_address,
            details={
                "fingerprintHash": fingerprint_hash,
                "verified": record is not None,
                "revoked": record.revoked if record else None,
                "chainId": self.config.chain_id,
            },
        )
        return record

    async def is_revoked(self, fingerprint_hash: str) -> RevocationData | None:
        """Revocation data if the fingerprint is revoked, else None.

        Also None when the contract has no revocation support.
        """
        await self._require_connection()
        if not await self.supports_revocation():
            return None
        try:
            revoked, revoked_at, revoked_by = await self.contract.functions.isRevoked(
                fingerprint_hash
            ).call()
        except (ContractLogicError, BadFunctionCallOutput) as e:
            logger.warning("revocation_check_failed", error=str(e))
            return None
        if not revoked:
            return None
        return RevocationData(revoked=True, revoked_at=int(revoked_at), revoked_by=revoked_by)

    # ----------------------------------------------------------------
    # EIP-712 signatures
    # ----------------------------------------------------------------

    async def generate_eip712_signature(
        self, agent: AgentInfo, key_id: str | None = None
    ) -> SignatureData:
        """Sign an agent fingerprint message with the SIGNING key.

        Raises:
            KeyProviderError: If the key cannot be read
            EIP712Error: If the message is invalid or signing fails
        """
        key_label = key_id or self.key_manager.get_default_key_id(KeyType.SIGNING)
        domain = create_eip712_domain(self.config.chain_id, self.contract_address)
        message = create_agent_fingerprint_message(agent)
        private_key = await self.key_manager.get_key(KeyType.SIGNING, key_id, actor=SERVICE_ACTOR)

        try:
            signer = Account.from_key(private_key).address
            signature = sign_agent_fingerprint(private_key, domain, message)
        except Exception as e:
            await self.audit_logger.log_signature_event(
                True,
                "EIP-712 signature generation failed",
                SERVICE_ACTOR,
                PRIMARY_TYPE,
                success=False,
                details={"keyId": key_label, "error": type(e).__name__},
            )
            raise

        await self.audit_logger.log_signature_event(
            True,
            "Generated EIP-712 signature",
            signer,
            PRIMARY_TYPE,
            details={
                "keyId": key_label,
                "timestamp": message["timestamp"],
                "agent": {
                    "id": agent.id,
                    "name": agent.name,
                    "provider": agent.provider,
                    "version": agent.version,
                },
            },
        )
        return SignatureData(signature=signature, signer_address=signer, timestamp=message["timestamp"])

    async def verify_eip712_signature(
        self, signature: str, agent: AgentInfo, timestamp: int
    ) -> str | None:
        """Recover the signer of an agent fingerprint signature.

        Returns:
            Signer address, or None if the signature is invalid
        """
        domain = create_eip712_domain(self.config.chain_id, self.contract_address)
        message = create_agent_fingerprint_message(agent, timestamp)
        recovered = verify_agent_fingerprint_signature(signature, domain, message)

        await self.audit_logger.log_signature_event(
            False,
            "Verified EIP-712 signature",
            recovered or "invalid",
            PRIMARY_TYPE,
            success=recovered is not None,
            details={
                "timestamp": timestamp,
                "verified": recovered is not None,
                "agent": {
                    "id": agent.id,
                    "name": agent.name,
                    "provider": agent.provider,
                    "version": agent.version,
                },
            },
        )
        return recovered

    async def close(self) -> None:
        """Drop the wallet and close the RPC session."""
        self._account = None
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
