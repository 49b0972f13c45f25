"""
StealthPay - Meta-Address QR Codes
====================================
QR code per pubblicare e leggere meta-address stealth.

Il payload del QR e' il meta-address stesso
(``stealth:<version>:<spending pk>:<viewing pk>``): chi scansiona ottiene
solo chiavi pubbliche.
"""

from typing import Any, Dict
from pathlib import Path
import base64
from io import BytesIO, StringIO

import qrcode
from qrcode.image.svg import SvgPathImage

from stealth_pay.constants import META_ADDRESS_PREFIX, META_ADDRESS_SEPARATOR
from stealth_pay.domain.keypairs import PublicIdentity
from stealth_pay.errors import (
    InvalidKeyFormatError,
    InvalidMetaAddressError,
    InvalidQRDataError,
    QRCodeError,
)
from stealth_pay.logging_setup import get_logger

logger = get_logger("qr.generator")

SUPPORTED_FORMATS = ("svg", "png", "base64")


# ============================================================================
# QR CODE GENERATOR
# ============================================================================

class MetaAddressQRGenerator:
    """
    QR code generator per meta-address.
    
    Examples:
        >>> generator = MetaAddressQRGenerator()
        >>> qr_data = generator.generate(keypair.to_meta_address())
        >>> svg_content = qr_data["svg"]
    """
    
    def __init__(
        self,
        error_correction: str = "M",
        box_size: int = 10,
        border: int = 4
    ):
        """
        Initialize QR generator.
        
        Args:
            error_correction: Error correction level (L, M, Q, H)
            box_size: Size of each QR box in pixels
            border: Border size in boxes
        """
        self.error_correction = self._get_error_correction(error_correction)
        self.box_size = box_size
        self.border = border
    
    @staticmethod
    def _get_error_correction(level: str):
        levels = {
            "L": qrcode.constants.ERROR_CORRECT_L,
            "M": qrcode.constants.ERROR_CORRECT_M,
            "Q": qrcode.constants.ERROR_CORRECT_Q,
            "H": qrcode.constants.ERROR_CORRECT_H,
        }
        try:
            return levels[level.upper()]
        except KeyError:
            raise QRCodeError(f"Unknown error correction level: {level}") from None
    
    def _make(self, payload: str) -> qrcode.QRCode:
        qr = qrcode.QRCode(
            version=None,
            error_correction=self.error_correction,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(payload)
        qr.make(fit=True)
        return qr
    
    def generate(self, meta_address: str, format: str = "svg") -> Dict[str, Any]:
        """
        Generate QR code for a meta-address.
        
        Args:
            meta_address: Meta-address (validato prima della codifica)
            format: Output format ('svg', 'png', 'base64')
        
        Returns:
            Dict: QR code data
        
        Raises:
            InvalidMetaAddressError: Meta-address invalido
            QRCodeError: Formato non supportato
        """
        if format not in SUPPORTED_FORMATS:
            raise QRCodeError(
                f"Unsupported format: {format}",
                details={"supported": list(SUPPORTED_FORMATS)}
            )
        
        identity = PublicIdentity.from_meta_address(meta_address)
        payload = identity.to_meta_address()
        qr = self._make(payload)
        
        if format == "svg":
            result = self._generate_svg(qr)
        elif format == "png":
            result = self._generate_png(qr)
        else:
            result = self._generate_base64(qr)
        
        result.update({
            "type": "meta_address",
            "data": payload,
            "version": identity.version,
        })
        
        logger.debug(
            "Meta-address QR generated",
            extra_data={"format": format, "qr_version": qr.version}
        )
        return result
    
    def _generate_svg(self, qr: qrcode.QRCode) -> Dict[str, Any]:
        img = qr.make_image(image_factory=SvgPathImage)
        buffer = BytesIO()
        img.save(buffer)
        return {
            "format": "svg",
            "svg": buffer.getvalue().decode("utf-8"),
            "mime_type": "image/svg+xml",
        }
    
    def _generate_png(self, qr: qrcode.QRCode) -> Dict[str, Any]:
        img = qr.make_image(fill_color="black", back_color="white")
        buffer = BytesIO()
        img.save(buffer, format="PNG")
        return {
            "format": "png",
            "png": buffer.getvalue(),
            "mime_type": "image/png",
        }
    
    def _generate_base64(self, qr: qrcode.QRCode) -> Dict[str, Any]:
        png_data = self._generate_png(qr)["png"]
        base64_data = base64.b64encode(png_data).decode("utf-8")
        return {
            "format": "base64",
            "base64": base64_data,
            "data_url": f"data:image/png;base64,{base64_data}",
            "mime_type": "image/png",
        }
    
    def to_ascii(self, meta_address: str, invert: bool = False) -> str:
        """QR in caratteri block per il terminale"""
        identity = PublicIdentity.from_meta_address(meta_address)
        qr = self._make(identity.to_meta_address())
        out = StringIO()
        qr.print_ascii(out=out, invert=invert)
        return out.getvalue()
    
    def save(self, meta_address: str, path: Path) -> Path:
        """Scrive il QR su file (.svg o .png secondo l'estensione)"""
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix == ".svg":
            path.write_text(self.generate(meta_address, format="svg")["svg"], encoding="utf-8")
        elif suffix == ".png":
            path.write_bytes(self.generate(meta_address, format="png")["png"])
        else:
            raise QRCodeError(f"Unsupported QR file extension: {path.suffix or '(none)'}")
        
        logger.info("Meta-address QR saved", extra_data={"path": str(path)})
        return path


# ============================================================================
# PAYLOAD PARSING
# ============================================================================

def parse_qr_payload(text: str) -> PublicIdentity:
    """
    Decodifica il testo letto da un QR in una PublicIdentity.
    
    Raises:
        InvalidQRDataError: Payload non stealth o meta-address invalido
    """
    payload = text.strip()
    if not payload.startswith(META_ADDRESS_PREFIX + META_ADDRESS_SEPARATOR):
        raise InvalidQRDataError(
            "QR payload is not a stealth meta-address",
            details={"prefix": payload.split(META_ADDRESS_SEPARATOR, 1)[0][:16]}
        )
    try:
        return PublicIdentity.from_meta_address(payload)
    except (InvalidMetaAddressError, InvalidKeyFormatError) as e:
        raise InvalidQRDataError(f"Invalid meta-address in QR payload: {e.message}") from e


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "MetaAddressQRGenerator",
    "parse_qr_payload",
    "SUPPORTED_FORMATS",
]
