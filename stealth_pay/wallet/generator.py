"""
StealthPay - Stealth Address Generator
========================================
Lato sender: dal meta-address del destinatario a indirizzo one-time,
chiave effimera e viewing tag.

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0
"""

import threading
from collections import OrderedDict
from typing import Optional, Tuple, Union

from stealth_pay.constants import GENERATOR_CACHE_SIZE
from stealth_pay.domain.crypto_core import (
    ecdh_shared_secret,
    scalar_random,
    scalarmult_base,
    secret_scope,
)
from stealth_pay.domain.keypairs import PublicIdentity
from stealth_pay.domain.models import PreparedPayment, StealthAddressOutput
from stealth_pay.errors import InvalidKeyFormatError
from stealth_pay.logging_setup import get_logger
from stealth_pay.utils.base58 import encode_public_key
from stealth_pay.wallet.stealth_address import (
    derive_stealth_public_key,
    derive_viewing_tag,
)


logger = get_logger("generator")

Receiver = Union[str, PublicIdentity]


class StealthAddressGenerator:
    """
    Generatore di stealth address (non richiede segreti del destinatario).
    
    Ogni chiamata senza chiave effimera esplicita estrae una nuova chiave
    casuale: due pagamenti allo stesso destinatario non sono collegabili.
    
    Le derivazioni con chiave effimera fornita dal chiamante (test, replay)
    sono deterministiche e vengono memorizzate in una cache LRU.
    
    Args:
        cache_size: Voci massime in cache (0 = disabilitata)
    
    Examples:
        >>> generator = StealthAddressGenerator()
        >>> output = generator.generate_stealth_address(meta_address)
        >>> len(output.viewing_tag)
        4
    """
    
    def __init__(self, cache_size: int = GENERATOR_CACHE_SIZE):
        self.cache_size = cache_size
        self._cache: "OrderedDict[Tuple[str, bytes], StealthAddressOutput]" = OrderedDict()
        self._cache_lock = threading.Lock()
    
    @staticmethod
    def _resolve(receiver: Receiver) -> PublicIdentity:
        if isinstance(receiver, PublicIdentity):
            return receiver
        return PublicIdentity.from_meta_address(receiver)
    
    def generate_stealth_address(
        self,
        receiver: Receiver,
        ephemeral_secret: Optional[bytes] = None,
    ) -> StealthAddressOutput:
        """
        Deriva un nuovo stealth address per il destinatario.
        
        Args:
            receiver: Meta-address (str) o PublicIdentity del destinatario
            ephemeral_secret: Scalare effimero (solo test deterministici)
        
        Returns:
            StealthAddressOutput: (stealth_address, ephemeral_public_key, viewing_tag)
        
        Raises:
            InvalidMetaAddressError: Meta-address invalido
            InvalidKeyFormatError: Chiavi del destinatario o effimera invalide
        """
        identity = self._resolve(receiver)
        
        if ephemeral_secret is None:
            return self._derive(identity, scalar_random())
        
        with secret_scope(ephemeral_secret) as eph_sk:
            eph_pk = scalarmult_base(eph_sk)
            cache_key = (identity.to_meta_address(), eph_pk)
            
            cached = self._cache_get(cache_key)
            if cached is not None:
                return cached
            
            output = self._derive(identity, eph_sk)
            self._cache_put(cache_key, output)
            return output
    
    def prepare_payment(
        self,
        receiver: Receiver,
        amount: int,
        ephemeral_secret: Optional[bytes] = None,
    ) -> PreparedPayment:
        """Deriva lo stealth address e costruisce il PreparedPayment"""
        output = self.generate_stealth_address(receiver, ephemeral_secret)
        return PreparedPayment.from_output(output, amount)
    
    def _derive(self, identity: PublicIdentity, ephemeral_secret) -> StealthAddressOutput:
        with secret_scope(ephemeral_secret) as eph_sk:
            ephemeral_public_key = scalarmult_base(eph_sk)
            
            try:
                shared = bytearray(ecdh_shared_secret(eph_sk, identity.viewing_pk))
            except InvalidKeyFormatError:
                logger.warning("ECDH with receiver viewing key failed")
                raise
        
        with secret_scope(shared) as shared_secret:
            stealth_address = derive_stealth_public_key(identity.spending_pk, shared_secret)
            viewing_tag = derive_viewing_tag(shared_secret)
        
        logger.debug(
            "Stealth address generated",
            extra_data={
                "stealth_address": encode_public_key(stealth_address),
                "ephemeral_public_key": encode_public_key(ephemeral_public_key),
            }
        )
        
        return StealthAddressOutput(
            stealth_address=stealth_address,
            ephemeral_public_key=ephemeral_public_key,
            viewing_tag=viewing_tag,
        )
    
    # ========================================================================
    # CACHE
    # ========================================================================
    
    def _cache_get(self, key):
        if not self.cache_size:
            return None
        with self._cache_lock:
            output = self._cache.get(key)
            if output is not None:
                self._cache.move_to_end(key)
            return output
    
    def _cache_put(self, key, output: StealthAddressOutput) -> None:
        if not self.cache_size:
            return
        with self._cache_lock:
            self._cache[key] = output
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
    
    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
    
    @property
    def cache_len(self) -> int:
        return len(self._cache)


__all__ = ["StealthAddressGenerator"]
