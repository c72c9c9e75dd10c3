# kerits/chain/issuer.py
from typing import Dict, List, Optional, Union

import structlog

from kerits.chain.importer import store_credential
from kerits.chain.kel import KeyEventLog
from kerits.chain.registry import Registry
from kerits.core.credential import Credential
from kerits.core.errors import MalformedInput, RegistryNotFound, SAIDMismatch, UnknownIdentifier
from kerits.core.events import Issuance, RegistryInception, Revocation, Rotation, to_hex
from kerits.core.types import CredentialStatus, LogKind, Seal
from kerits.crypto.keys import KeyManager, Signer
from kerits.storage import LogStore, open_storage

log = structlog.get_logger(__name__)


class Issuer:
    """
    An identifier that runs credential registries.

    Joins the issuer's KEL, its signing keys and a shared store. Every
    registry inception is sealed into the KEL with an interaction event, and
    a nested registry is additionally sealed into its parent's TEL.

        issuer = Issuer.incept(phrase, storage="memory://")
        registry = issuer.create_registry()
        issuer.issue(credential, registry.registry_id)
    """

    def __init__(self, kel: KeyEventLog, signer: Optional[Signer] = None,
                 storage: Optional[Union[LogStore, str]] = None):
        if not kel.is_active:
            raise UnknownIdentifier("Issuer KEL has no inception")
        self.kel = kel
        self.signer = signer
        self.storage = open_storage(storage) if storage is not None else kel.storage
        self._registries: Dict[str, Registry] = {}

    @classmethod
    def incept(cls, phrase: str, storage: Optional[Union[LogStore, str]] = None) -> "Issuer":
        """Create a single-key identifier from generation 0 of `phrase`."""
        signer = KeyManager.keyset(phrase, 0)
        kel = KeyEventLog(storage=open_storage(storage))
        kel.incept([signer.verfer], KeyManager.next_commitment(phrase, 0), signers=[signer])
        log.info("issuer_incepted", prefix=kel.prefix)
        return cls(kel, signer)

    @classmethod
    def load(cls, prefix: str, storage: Union[LogStore, str], phrase: Optional[str] = None) -> "Issuer":
        """Reload an issuer from storage; `phrase` regenerates its current signer."""
        kel = KeyEventLog(prefix=prefix, storage=open_storage(storage))
        signer = KeyManager.keyset(phrase, cls._generation(kel)) if phrase else None
        return cls(kel, signer)

    @staticmethod
    def _generation(kel: KeyEventLog) -> int:
        return sum(1 for e in kel.events if isinstance(e, Rotation))

    @property
    def prefix(self) -> str:
        return self.kel.prefix

    @property
    def signers(self) -> Optional[List[Signer]]:
        return [self.signer] if self.signer else None

    def rotate(self, phrase: str) -> Rotation:
        """Rotate to the next key generation of `phrase`."""
        generation = self._generation(self.kel) + 1
        signer = KeyManager.keyset(phrase, generation)
        event = self.kel.rotate(
            [signer.verfer], KeyManager.next_commitment(phrase, generation), signers=[signer],
        )
        self.signer = signer
        return event

    # --- registries --------------------------------------------------------

    def registry(self, registry_id: str) -> Registry:
        registry = self._registries.get(registry_id)
        if registry is not None:
            return registry
        if self.storage is None or self.storage.get_log_kind(registry_id) != LogKind.TEL:
            raise RegistryNotFound(f"Registry {registry_id} not found")
        registry = Registry(registry_id=registry_id, storage=self.storage)
        if registry.issuer != self.prefix:
            raise RegistryNotFound(f"Registry {registry_id} is not managed by {self.prefix}")
        self._registries[registry_id] = registry
        return registry

    def registries(self) -> List[str]:
        """Registry ids sealed in the KEL, in anchoring order."""
        ids = []
        for event in self.kel.events:
            for seal in event.seals:
                if seal.i not in ids:
                    ids.append(seal.i)
        return ids

    def create_registry(self, parent: Optional[str] = None, nonce: Optional[str] = None) -> Registry:
        """
        Create a registry and seal its inception into the KEL, and into the
        parent registry for a nested one. The KEL seal is appended first, so
        a failed KEL append leaves nothing stored for the registry.
        """
        parent_registry = self.registry(parent) if parent else None
        vcp = RegistryInception.create(self.prefix, nonce=nonce, parent=parent)
        seal = Seal(i=vcp.log_id, d=vcp.said, s=to_hex(0))
        self.kel.interact([seal], signers=self.signers)
        registry = Registry(storage=self.storage)
        registry.apply(vcp)
        if parent_registry is not None:
            parent_registry.anchor([seal])
        self._registries[vcp.log_id] = registry
        log.info("registry_created", registry_id=vcp.log_id, issuer=self.prefix, parent=parent)
        return registry

    # --- credentials -------------------------------------------------------

    def _resolve(self, credential: Union[Credential, str], registry_id: Optional[str]):
        if isinstance(credential, Credential):
            if credential.issuer != self.prefix:
                raise MalformedInput(f"Credential {credential.said} was issued by {credential.issuer}")
            if not credential.verify():
                raise SAIDMismatch(f"Credential {credential.said} fails SAID verification",
                                   actual=credential.said)
            registry_id = registry_id or credential.registry
            said = credential.said
        else:
            said = credential
        if not registry_id:
            raise RegistryNotFound(f"No registry given for credential {said}")
        return said, self.registry(registry_id)

    def issue(self, credential: Union[Credential, str], registry_id: Optional[str] = None) -> Issuance:
        """Record the issuance; a full Credential is also kept in the store for export."""
        said, registry = self._resolve(credential, registry_id)
        event = registry.issue(said)
        if isinstance(credential, Credential):
            store_credential(self.storage, credential)
        return event

    def revoke(self, credential: Union[Credential, str], registry_id: Optional[str] = None) -> Revocation:
        said, registry = self._resolve(credential, registry_id)
        return registry.revoke(said)

    def status(self, credential: Union[Credential, str], registry_id: Optional[str] = None) -> CredentialStatus:
        said, registry = self._resolve(credential, registry_id)
        return registry.status(said)
